import logging
import signal
import threading
import time
from typing import Any, Dict, Optional

import boto3

from image_extractor.adapters.composite_progress_notifier import (
    CompositeCompletionNotifier,
    CompositeProgressNotifier,
)
from image_extractor.adapters.console_progress_notifier import ConsoleProgressNotifier
from image_extractor.adapters.ffmpeg_frame_extractor import FfmpegFrameExtractor
from image_extractor.adapters.ffprobe_video_analyzer import FfprobeVideoAnalyzer
from image_extractor.adapters.local_file_gateway import LocalFileGateway
from image_extractor.adapters.minio_object_storage import MinioObjectStorageAdapter
from image_extractor.adapters.postgres_job_state_repository import PostgresJobStateRepository, build_conninfo
from image_extractor.adapters.sqs_message_parser import parse_message_body
from image_extractor.adapters.sqs_notifiers import SqsCompletionNotifier, SqsProgressNotifier
from image_extractor.adapters.subprocess_command_runner import SubprocessCommandRunner
from image_extractor.adapters.zip_archiver import ZipArchiver
from image_extractor.application.job_runner_use_cases import RunExtractionJobUseCase
from image_extractor.application.use_cases import ProcessQueueEventUseCase
from image_extractor.config import EnvironmentValidator, ProcessingConfig, load_config
from image_extractor.domain.errors import ConfigurationError
from image_extractor.logging_config import setup_logging

logger = logging.getLogger(__name__)

RECEIVE_WAIT_TIME_SEC = 20

_queue_event_use_case: Optional[ProcessQueueEventUseCase] = None
_config: Optional[ProcessingConfig] = None


def build_queue_event_use_case(config: ProcessingConfig, sqs_client=None) -> ProcessQueueEventUseCase:
    """設定から全アダプターを組み立てます。"""

    if sqs_client is None:
        sqs_client = boto3.client("sqs", region_name=config.aws_region)

    command_runner = SubprocessCommandRunner()
    object_storage = MinioObjectStorageAdapter(
        endpoint=config.storage_endpoint,
        access_key=config.storage_access_key,
        secret_key=config.storage_secret_key,
        secure=config.storage_secure,
        region=config.storage_region,
        max_concurrency=config.upload_concurrency,
    )

    job_repository = PostgresJobStateRepository(
        dsn=build_conninfo(
            host=config.job_state_db_host,
            port=config.job_state_db_port,
            user=config.job_state_db_user,
            password=config.job_state_db_password,
            dbname=config.job_state_db_name,
        ),
        collection=config.job_state_collection,
    )
    job_repository.ensure_schema()

    console_notifier = ConsoleProgressNotifier()
    progress_notifier = CompositeProgressNotifier(
        [console_notifier, SqsProgressNotifier(sqs_client, config.progress_queue_url)]
    )
    completion_notifier = CompositeCompletionNotifier(
        [console_notifier, SqsCompletionNotifier(sqs_client, config.progress_queue_url)]
    )

    run_job_use_case = RunExtractionJobUseCase(
        job_repository=job_repository,
        object_storage=object_storage,
        file_gateway=LocalFileGateway(),
        video_analyzer=FfprobeVideoAnalyzer(
            command_runner=command_runner,
            ffprobe_path=config.ffprobe_path,
            timeout_sec=config.ffprobe_timeout_sec,
        ),
        frame_extractor=FfmpegFrameExtractor(
            command_runner=command_runner,
            ffmpeg_path=config.ffmpeg_path,
            timeout_sec=config.ffmpeg_timeout_sec,
        ),
        archiver=ZipArchiver(object_storage),
        progress_notifier=progress_notifier,
        completion_notifier=completion_notifier,
        frames_bucket=config.frames_bucket,
        zip_bucket=config.zip_bucket,
        temp_folder=config.temp_folder,
        block_size_seconds=config.block_size,
        frame_rate=config.frame_rate,
        frame_extension=config.frame_extension,
    )

    return ProcessQueueEventUseCase(
        parse_message=parse_message_body,
        run_job_use_case=run_job_use_case,
    )


def handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """SQSトリガーのエントリポイントです。失敗時は例外を送出して再配信に任せます。"""

    use_case, config = _get_runtime()

    records = event.get("Records", []) if isinstance(event, dict) else []
    cancel_event = threading.Event()
    deadline = _compute_deadline(context, config.deadline_margin_sec)
    timer = _start_deadline_timer(context, cancel_event, config.deadline_margin_sec)

    try:
        message = use_case.execute(records, cancel_event=cancel_event, deadline=deadline)
    except Exception as ex:
        logger.exception("invocation failed record_count=%s error=%s", len(records), ex)
        raise
    finally:
        if timer is not None:
            timer.cancel()

    return {"status": "processed", "video_id": message.job_id}


def main() -> int:
    """キューをロングポーリングして1件ずつ処理するワーカーです。"""

    config = _load_runtime_config()

    if config.input_queue_url is None:
        raise ConfigurationError("environment variable is required: INPUT_QUEUE_URL")

    sqs_client = boto3.client("sqs", region_name=config.aws_region)
    use_case = build_queue_event_use_case(config, sqs_client)

    stop_event = threading.Event()
    signal.signal(signal.SIGTERM, lambda signum, frame: stop_event.set())

    logger.info("worker started queue=%s", config.input_queue_url)

    try:
        while stop_event.is_set() == False:
            response = sqs_client.receive_message(
                QueueUrl=config.input_queue_url,
                MaxNumberOfMessages=1,
                WaitTimeSeconds=RECEIVE_WAIT_TIME_SEC,
            )

            messages = response.get("Messages", [])
            if len(messages) == 0:
                continue

            sqs_message = messages[0]
            record = {"messageId": sqs_message.get("MessageId"), "body": sqs_message.get("Body")}

            try:
                use_case.execute([record], cancel_event=stop_event)
            except Exception as ex:
                # 削除せずに可視性タイムアウト後の再配信に任せる
                logger.exception("job failed message_id=%s error=%s", record["messageId"], ex)
                continue

            sqs_client.delete_message(
                QueueUrl=config.input_queue_url,
                ReceiptHandle=sqs_message["ReceiptHandle"],
            )

    except KeyboardInterrupt:
        logger.info("stopping worker...")

    return 0


def _load_runtime_config() -> ProcessingConfig:
    """設定を読み込み、ログ設定の後に内容を出力してから実行環境を検証します。"""

    config = load_config()
    setup_logging(config.log_level)
    logger.info("configuration loaded: %s", config.describe())

    EnvironmentValidator().validate(config)
    return config


def _get_runtime():
    """コンテナ内で1回だけ設定読み込みと組み立てを行います。"""

    global _queue_event_use_case, _config

    if _queue_event_use_case is None:
        config = _load_runtime_config()

        _queue_event_use_case = build_queue_event_use_case(config)
        _config = config

    return _queue_event_use_case, _config


def _compute_deadline(context: Any, margin_sec: float) -> Optional[float]:
    """実行期限から余裕分を引いた monotonic 時刻を返します。"""

    get_remaining_time = getattr(context, "get_remaining_time_in_millis", None)
    if get_remaining_time is None:
        return None

    return time.monotonic() + get_remaining_time() / 1000.0 - margin_sec


def _start_deadline_timer(
    context: Any,
    cancel_event: threading.Event,
    margin_sec: float,
) -> Optional[threading.Timer]:
    """実行期限の少し前にキャンセルを要求するタイマーを開始します。"""

    get_remaining_time = getattr(context, "get_remaining_time_in_millis", None)
    if get_remaining_time is None:
        return None

    delay_sec = get_remaining_time() / 1000.0 - margin_sec
    if delay_sec <= 0:
        cancel_event.set()
        return None

    timer = threading.Timer(delay_sec, cancel_event.set)
    timer.daemon = True
    timer.start()
    return timer


if __name__ == "__main__":
    raise SystemExit(main())
