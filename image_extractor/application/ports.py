from contextlib import AbstractContextManager
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, Sequence

from image_extractor.domain.job_models import JobState, ProcessingMessage
from image_extractor.domain.models import TempPaths, VideoMetadata


@dataclass(frozen=True)
class CommandResult:
    """外部プロセスの実行結果です。"""

    returncode: int
    stdout: str
    stderr: str


class CommandRunnerPort(Protocol):
    """外部プロセス実行のポートです。"""

    def run(self, args: Sequence[str], timeout_sec: Optional[float] = None) -> CommandResult:
        """コマンドを実行し、非0終了やタイムアウトは例外にします。"""


class VideoAnalyzerPort(Protocol):
    """動画解析のポートです。"""

    def analyze(self, video_path: Path) -> VideoMetadata:
        """動画の長さとフレーム数を取得します。"""


class FrameExtractorPort(Protocol):
    """1ブロック分のフレーム抽出のポートです。"""

    def extract_block(
        self,
        video_path: Path,
        frames_dir: Path,
        block_index: int,
        start_seconds: int,
        duration_seconds: float,
        frame_rate: int,
        frame_extension: str,
        timeout_sec: Optional[float] = None,
    ) -> None:
        """指定範囲のフレームを frames_dir へ書き出します。timeout_sec は既定のタイムアウトより短い場合だけ使います。"""


class FileGatewayPort(Protocol):
    """ローカルファイル操作のポートです。"""

    def job_workspace(self, temp_root: Path, message: ProcessingMessage) -> AbstractContextManager[TempPaths]:
        """ジョブ用の一時領域を作成し、終了時に必ず削除します。"""

    def list_block_frames(self, frames_dir: Path, block_index: int, frame_extension: str) -> Sequence[Path]:
        """指定ブロックのフレーム画像一覧を取得します。"""

    def remove_files(self, paths: Sequence[Path]) -> None:
        """ファイルを削除します。"""


class ObjectStoragePort(Protocol):
    """オブジェクトストレージのポートです。"""

    def download_file(self, bucket: str, key: str, local_path: Path) -> None:
        """オブジェクトをローカルへダウンロードします。"""

    def upload_file(
        self,
        local_path: Path,
        bucket: str,
        key: str,
        content_type: Optional[str] = None,
    ) -> None:
        """ローカルファイルをアップロードします。"""

    def upload_files(self, local_paths: Sequence[Path], bucket: str, prefix: str) -> None:
        """複数ファイルを並列アップロードします。1件でも失敗すれば全体を失敗にします。"""

    def download_prefix(
        self,
        bucket: str,
        prefix: str,
        destination_dir: Path,
        exclude_keys: Sequence[str] = (),
    ) -> int:
        """prefix 配下のオブジェクトを exclude_keys を除いてダウンロードし、件数を返します。"""


class ArchiverPort(Protocol):
    """ZIPアーカイブのポートです。"""

    def create_archive(self, source_dir: Path, zip_path: Path) -> Path:
        """ディレクトリの内容からZIPを作成します。"""

    def upload_archive(self, bucket: str, key: str, zip_path: Path) -> None:
        """ZIPをアップロードします。"""


class JobStateRepositoryPort(Protocol):
    """ジョブ状態永続化のポートです。"""

    def get_job_state(self, job_id: str) -> Optional[JobState]:
        """ジョブ状態を取得します。存在しなければ None を返します。"""

    def save_job_state(self, state: JobState) -> None:
        """ジョブ状態を UPSERT します。"""


class ProgressNotifierPort(Protocol):
    """進捗通知のポートです。"""

    def notify_progress(self, job_id: str, progress: int, current_block: int, total_blocks: int) -> None:
        """ブロック単位の進捗を通知します。"""


class CompletionNotifierPort(Protocol):
    """完了通知のポートです。"""

    def notify_completion(self, job_id: str, zip_bucket: str, zip_key: str) -> None:
        """ジョブ完了を通知します。"""
