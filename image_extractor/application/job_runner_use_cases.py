import logging
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from image_extractor.application.ports import (
    ArchiverPort,
    CompletionNotifierPort,
    FileGatewayPort,
    FrameExtractorPort,
    JobStateRepositoryPort,
    ObjectStoragePort,
    ProgressNotifierPort,
    VideoAnalyzerPort,
)
from image_extractor.domain.errors import CommandTimeoutError, JobInterruptedError
from image_extractor.domain.job_models import (
    JobState,
    JobStatus,
    ProcessingMessage,
    ProcessingStep,
    utc_now,
)
from image_extractor.domain.models import (
    BlockWindow,
    TempPaths,
    VideoMetadata,
    compute_block_window,
    compute_total_blocks,
)

logger = logging.getLogger(__name__)


class RunExtractionJobUseCase:
    """1件のメッセージについてフレーム抽出ジョブを実行（または途中から再開）するユースケースです。

    ステップは Validating → Downloading → Analyzing → Extracting → Zipping → Done の順に進み、
    ブロックごと・ステップごとにジョブ状態を保存します。再配信されたメッセージは保存済みの
    状態を見て、終わっていないステップだけを実行します。
    """

    def __init__(
        self,
        job_repository: JobStateRepositoryPort,
        object_storage: ObjectStoragePort,
        file_gateway: FileGatewayPort,
        video_analyzer: VideoAnalyzerPort,
        frame_extractor: FrameExtractorPort,
        archiver: ArchiverPort,
        progress_notifier: ProgressNotifierPort,
        completion_notifier: CompletionNotifierPort,
        frames_bucket: str,
        zip_bucket: str,
        temp_folder: Path,
        block_size_seconds: int = 30,
        frame_rate: int = 1,
        frame_extension: str = "jpg",
        clock: Callable[[], datetime] = utc_now,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        if block_size_seconds <= 0:
            raise ValueError("block_size_seconds は 0 より大きい値を指定してください。")

        self._job_repository = job_repository
        self._object_storage = object_storage
        self._file_gateway = file_gateway
        self._video_analyzer = video_analyzer
        self._frame_extractor = frame_extractor
        self._archiver = archiver
        self._progress_notifier = progress_notifier
        self._completion_notifier = completion_notifier
        self._frames_bucket = frames_bucket
        self._zip_bucket = zip_bucket
        self._temp_folder = temp_folder
        self._block_size_seconds = block_size_seconds
        self._frame_rate = frame_rate
        self._frame_extension = frame_extension
        self._clock = clock
        self._monotonic = monotonic

    def execute(
        self,
        message: ProcessingMessage,
        cancel_event: Optional[threading.Event] = None,
        deadline: Optional[float] = None,
    ) -> None:
        """ジョブを1件実行します。失敗時はジョブを Failed にしてから元の例外を再送出します。

        deadline は monotonic 時刻で、過ぎたらキャンセルと同じく Interrupted で止めます。
        ffmpeg のタイムアウトもこの時刻までに収まるよう短くします。
        """

        logger.info(
            "start job_id=%s source=%s/%s",
            message.job_id,
            message.source_bucket,
            message.source_key,
        )

        job = self._get_or_create_job(message.job_id)

        if self._should_skip_job(job):
            return

        with self._file_gateway.job_workspace(self._temp_folder, message) as paths:
            try:
                self._execute_job_steps(message, job, paths, cancel_event, deadline)
                self._complete_job(job)
            except Exception as ex:
                self._handle_job_failure(job, ex)
                raise

    def _get_or_create_job(self, job_id: str) -> JobState:
        job = self._job_repository.get_job_state(job_id)
        if job is not None:
            return job

        now = self._clock()
        return JobState(job_id=job_id, created_at=now, last_heartbeat=now)

    def _should_skip_job(self, job: JobState) -> bool:
        """完了済みならスキップし、それ以外は再開または初期化します。"""

        if job.status == JobStatus.COMPLETED:
            logger.info("job already completed, skipping job_id=%s", job.job_id)
            return True

        if job.status in (JobStatus.RUNNING, JobStatus.INTERRUPTED):
            logger.info(
                "resuming job_id=%s status=%s step=%s block=%s/%s",
                job.job_id,
                job.status.value,
                job.current_step.name,
                job.current_block,
                job.total_blocks,
            )
            return False

        job.status = JobStatus.PENDING
        job.current_step = ProcessingStep.VALIDATING
        return False

    def _execute_job_steps(
        self,
        message: ProcessingMessage,
        job: JobState,
        paths: TempPaths,
        cancel_event: Optional[threading.Event],
        deadline: Optional[float],
    ) -> None:
        self._ensure_job_started(job)

        self._execute_download_step(message, job, paths.video_path, cancel_event, deadline)
        metadata = self._execute_analysis_step(job, paths.video_path, cancel_event, deadline)
        self._execute_extraction_step(message, job, paths, metadata, cancel_event, deadline)
        self._execute_zipping_step(message, job, paths, cancel_event, deadline)

    def _ensure_job_started(self, job: JobState) -> None:
        if job.started_at is None:
            job.started_at = self._clock()

        job.status = JobStatus.RUNNING
        self._checkpoint(job)

    def _execute_download_step(
        self,
        message: ProcessingMessage,
        job: JobState,
        video_path: Path,
        cancel_event: Optional[threading.Event],
        deadline: Optional[float],
    ) -> None:
        # 全ブロック抽出済みなら元動画は不要
        if job.current_step > ProcessingStep.DOWNLOADING or job.extraction_finished:
            logger.info("skip download job_id=%s step=%s", job.job_id, job.current_step.name)
            return

        self._raise_if_cancelled(cancel_event, deadline, job)

        job.current_step = ProcessingStep.DOWNLOADING
        logger.info(
            "downloading video job_id=%s source=%s/%s",
            job.job_id,
            message.source_bucket,
            message.source_key,
        )

        self._object_storage.download_file(message.source_bucket, message.source_key, video_path)
        self._checkpoint(job)

    def _execute_analysis_step(
        self,
        job: JobState,
        video_path: Path,
        cancel_event: Optional[threading.Event],
        deadline: Optional[float],
    ) -> VideoMetadata:
        already_analyzed = job.total_frames > 0 and job.total_blocks > 0
        if job.current_step > ProcessingStep.ANALYZING or already_analyzed or job.extraction_finished:
            # 実際の長さではなく、残りブロックの長さを計算できる程度の近似値
            return VideoMetadata(
                duration_seconds=float(job.total_blocks * self._block_size_seconds),
                frame_count=job.total_frames,
            )

        self._raise_if_cancelled(cancel_event, deadline, job)

        job.current_step = ProcessingStep.ANALYZING
        metadata = self._video_analyzer.analyze(video_path)

        job.total_frames = metadata.frame_count
        job.total_blocks = compute_total_blocks(metadata.duration_seconds, self._block_size_seconds)

        logger.info(
            "analysis finished job_id=%s duration=%.2fs frames=%s blocks=%s",
            job.job_id,
            metadata.duration_seconds,
            metadata.frame_count,
            job.total_blocks,
        )
        self._checkpoint(job)

        return metadata

    def _execute_extraction_step(
        self,
        message: ProcessingMessage,
        job: JobState,
        paths: TempPaths,
        metadata: VideoMetadata,
        cancel_event: Optional[threading.Event],
        deadline: Optional[float],
    ) -> None:
        if job.current_step > ProcessingStep.EXTRACTING:
            return

        job.current_step = ProcessingStep.EXTRACTING
        logger.info(
            "extracting job_id=%s total_blocks=%s starting_block=%s",
            job.job_id,
            job.total_blocks,
            job.current_block + 1,
        )

        for block_index in range(job.current_block, job.total_blocks):
            self._raise_if_cancelled(cancel_event, deadline, job)
            self._process_single_block(message, job, paths, metadata, block_index, cancel_event, deadline)

    def _process_single_block(
        self,
        message: ProcessingMessage,
        job: JobState,
        paths: TempPaths,
        metadata: VideoMetadata,
        block_index: int,
        cancel_event: Optional[threading.Event],
        deadline: Optional[float],
    ) -> None:
        window = compute_block_window(metadata.duration_seconds, block_index, self._block_size_seconds)

        if window.duration_seconds <= 0:
            logger.info("skip empty block job_id=%s block=%s", job.job_id, block_index + 1)
            self._advance_block_cursor(job, window, uploaded_frames=0)
            return

        logger.info("processing block %s/%s job_id=%s", block_index + 1, job.total_blocks, job.job_id)

        try:
            self._frame_extractor.extract_block(
                video_path=paths.video_path,
                frames_dir=paths.frames_dir,
                block_index=window.index,
                start_seconds=window.start_seconds,
                duration_seconds=window.duration_seconds,
                frame_rate=self._frame_rate,
                frame_extension=self._frame_extension,
                timeout_sec=self._remaining_seconds(deadline),
            )
        except CommandTimeoutError as ex:
            # 期限に合わせて短くしたタイムアウトなら中断として扱う
            if self._is_cancelled(cancel_event, deadline):
                raise self._interrupted_error(job) from ex
            raise

        uploaded_frames = self._upload_block_frames(message, paths.frames_dir, window)
        self._advance_block_cursor(job, window, uploaded_frames)
        self._notify_block_progress(job)

    def _upload_block_frames(self, message: ProcessingMessage, frames_dir: Path, window: BlockWindow) -> int:
        """ブロックのフレームをアップロードし、ローカルから削除します。"""

        frame_paths = self._file_gateway.list_block_frames(frames_dir, window.index, self._frame_extension)
        if len(frame_paths) == 0:
            logger.warning("no frames produced job_id=%s block=%s", message.job_id, window.index + 1)
            return 0

        prefix = "{0}/{1}".format(message.job_id, window.object_prefix_name)
        self._object_storage.upload_files(frame_paths, self._frames_bucket, prefix)

        self._file_gateway.remove_files(frame_paths)
        return len(frame_paths)

    def _advance_block_cursor(self, job: JobState, window: BlockWindow, uploaded_frames: int) -> None:
        job.current_block = window.index + 1
        job.processed_frames += uploaded_frames

        if window.duration_seconds > 0:
            job.last_processed_second += int(window.duration_seconds)

        if job.total_frames > 0:
            job.progress = min(100, round(job.processed_frames / job.total_frames * 100))

        self._checkpoint(job)

    def _notify_block_progress(self, job: JobState) -> None:
        progress = round(job.current_block / job.total_blocks * 100)
        self._progress_notifier.notify_progress(job.job_id, progress, job.current_block, job.total_blocks)

    def _execute_zipping_step(
        self,
        message: ProcessingMessage,
        job: JobState,
        paths: TempPaths,
        cancel_event: Optional[threading.Event],
        deadline: Optional[float],
    ) -> str:
        if job.current_step > ProcessingStep.ZIPPING:
            return job.zip_key or ""

        self._raise_if_cancelled(cancel_event, deadline, job)

        job.current_step = ProcessingStep.ZIPPING
        logger.info("creating zip job_id=%s", job.job_id)

        zip_key = "{0}/{1}".format(message.job_id, paths.zip_path.name)

        # フレームはブロックごとにローカルから消しているので、ストレージから取り直す。
        # 同じバケットに前回のZIPが残っていても取り込まない
        frame_prefix = "{0}/".format(message.job_id)
        frame_count = self._object_storage.download_prefix(
            self._frames_bucket,
            frame_prefix,
            paths.zip_staging_dir,
            exclude_keys=[zip_key] if self._frames_bucket == self._zip_bucket else [],
        )
        logger.info("re-materialized frames job_id=%s count=%s", job.job_id, frame_count)

        zip_path = self._archiver.create_archive(paths.zip_staging_dir, paths.zip_path)
        self._archiver.upload_archive(self._zip_bucket, zip_key, zip_path)

        job.zip_bucket = self._zip_bucket
        job.zip_key = zip_key

        logger.info("zip uploaded job_id=%s target=%s/%s", job.job_id, self._zip_bucket, zip_key)
        self._checkpoint(job)

        return zip_key

    def _complete_job(self, job: JobState) -> None:
        now = self._clock()
        job.status = JobStatus.COMPLETED
        job.current_step = ProcessingStep.DONE
        job.completed_at = now
        job.last_heartbeat = now

        self._job_repository.save_job_state(job)

        zip_bucket = job.zip_bucket or self._zip_bucket
        zip_key = job.zip_key or ""

        self._completion_notifier.notify_completion(job.job_id, zip_bucket, zip_key)
        logger.info("completed job_id=%s", job.job_id)

    def _handle_job_failure(self, job: JobState, ex: Exception) -> None:
        """ジョブを失敗状態で保存します。保存失敗は元の例外を隠さないようログのみにします。"""

        if isinstance(ex, JobInterruptedError):
            job.status = JobStatus.INTERRUPTED
        else:
            job.status = JobStatus.FAILED

        # 完了保存後の通知失敗でも completed_at は残さない
        job.completed_at = None
        job.last_heartbeat = self._clock()

        logger.warning(
            "job stopped job_id=%s status=%s step=%s error=%s: %s",
            job.job_id,
            job.status.value,
            job.current_step.name,
            type(ex).__name__,
            ex,
        )

        try:
            self._job_repository.save_job_state(job)
        except Exception as save_ex:
            logger.error("failed to persist failure state job_id=%s error=%s", job.job_id, save_ex)

    def _checkpoint(self, job: JobState) -> None:
        job.last_heartbeat = self._clock()
        self._job_repository.save_job_state(job)

    def _raise_if_cancelled(
        self,
        cancel_event: Optional[threading.Event],
        deadline: Optional[float],
        job: JobState,
    ) -> None:
        if self._is_cancelled(cancel_event, deadline):
            raise self._interrupted_error(job)

    def _is_cancelled(self, cancel_event: Optional[threading.Event], deadline: Optional[float]) -> bool:
        if cancel_event is not None and cancel_event.is_set():
            return True

        return deadline is not None and self._monotonic() >= deadline

    def _remaining_seconds(self, deadline: Optional[float]) -> Optional[float]:
        if deadline is None:
            return None

        return max(0.0, deadline - self._monotonic())

    def _interrupted_error(self, job: JobState) -> JobInterruptedError:
        return JobInterruptedError(
            "ジョブを中断しました: job_id={0} step={1} block={2}/{3}".format(
                job.job_id,
                job.current_step.name,
                job.current_block,
                job.total_blocks,
            )
        )
