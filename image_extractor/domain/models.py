import math
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class VideoMetadata:
    """ffprobeで取得した動画情報です。frame_count=0 は「不明」を表します。"""

    duration_seconds: float
    frame_count: int = 0


@dataclass(frozen=True)
class BlockWindow:
    """1ブロック分の抽出範囲です。"""

    index: int
    start_seconds: int
    duration_seconds: float

    @property
    def object_prefix_name(self) -> str:
        return "block_{0}".format(self.index + 1)


@dataclass(frozen=True)
class TempPaths:
    """1ジョブ分の一時ファイル配置です。"""

    video_path: Path
    frames_dir: Path
    zip_staging_dir: Path
    zip_path: Path


def compute_total_blocks(duration_seconds: float, block_size_seconds: int) -> int:
    """ブロック数を求めます。短い動画でも最低1ブロックは処理します。"""

    if block_size_seconds <= 0:
        raise ValueError("block_size_seconds は 0 より大きい値を指定してください。")

    total_blocks = int(math.ceil(duration_seconds / block_size_seconds))
    if total_blocks < 1:
        return 1

    return total_blocks


def compute_block_window(total_duration_seconds: float, block_index: int, block_size_seconds: int) -> BlockWindow:
    """ブロック番号から抽出範囲を求めます。duration は秒の端数を保持し、0 以下なら抽出不要です。"""

    block_start = block_index * block_size_seconds
    remaining_seconds = total_duration_seconds - block_start
    block_duration = float(min(remaining_seconds, block_size_seconds))

    return BlockWindow(
        index=block_index,
        start_seconds=block_start,
        duration_seconds=block_duration,
    )


def frame_file_prefix(block_index: int) -> str:
    return "block{0:04d}_frame".format(block_index)
