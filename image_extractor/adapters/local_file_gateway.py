import logging
import shutil
from contextlib import contextmanager
from pathlib import Path, PurePosixPath
from typing import Iterator, Sequence

from image_extractor.application.ports import FileGatewayPort
from image_extractor.domain.job_models import ProcessingMessage
from image_extractor.domain.models import TempPaths, frame_file_prefix

logger = logging.getLogger(__name__)


class LocalFileGateway(FileGatewayPort):
    """ローカルファイル操作のアダプターです。"""

    def build_temp_paths(self, temp_root: Path, message: ProcessingMessage) -> TempPaths:
        """ジョブIDと元動画のキーから一時ファイルの配置を決めます。"""

        extension = PurePosixPath(message.source_key).suffix
        job_id = message.job_id

        return TempPaths(
            video_path=temp_root / "{0}_video{1}".format(job_id, extension),
            frames_dir=temp_root / "{0}_frames".format(job_id),
            zip_staging_dir=temp_root / "{0}_zip".format(job_id),
            zip_path=temp_root / "{0}.zip".format(job_id),
        )

    @contextmanager
    def job_workspace(self, temp_root: Path, message: ProcessingMessage) -> Iterator[TempPaths]:
        """一時領域を作成し、成功・失敗に関わらず終了時に削除します。"""

        paths = self.build_temp_paths(temp_root, message)
        self.ensure_dir(paths.frames_dir)
        self.ensure_dir(paths.zip_staging_dir)

        try:
            yield paths
        finally:
            self._cleanup(paths)

    def ensure_dir(self, path: Path) -> None:
        """ディレクトリを作成します。"""

        path.mkdir(parents=True, exist_ok=True)

    def list_block_frames(self, frames_dir: Path, block_index: int, frame_extension: str) -> Sequence[Path]:
        """指定ブロックのフレーム画像一覧を取得します。"""

        if frames_dir.exists() == False:
            return []

        pattern = "{0}*.{1}".format(frame_file_prefix(block_index), frame_extension)
        return sorted(frames_dir.glob(pattern))

    def remove_files(self, paths: Sequence[Path]) -> None:
        """ファイルを削除します。"""

        for path in paths:
            path.unlink(missing_ok=True)

    def remove_dir(self, path: Path) -> None:
        """ディレクトリを削除します。"""

        if path.exists():
            shutil.rmtree(path)

    def _cleanup(self, paths: TempPaths) -> None:
        # cleanup失敗は非致命として扱う
        try:
            paths.video_path.unlink(missing_ok=True)
            paths.zip_path.unlink(missing_ok=True)
            self.remove_dir(paths.frames_dir)
            self.remove_dir(paths.zip_staging_dir)
            logger.info("temporary files removed video=%s", paths.video_path)
        except OSError as ex:
            logger.warning("temporary file cleanup failed: %s", ex)
