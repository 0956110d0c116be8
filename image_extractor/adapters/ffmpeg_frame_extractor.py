import logging
from pathlib import Path
from typing import Optional

from image_extractor.application.ports import CommandRunnerPort, FrameExtractorPort
from image_extractor.domain.models import frame_file_prefix

logger = logging.getLogger(__name__)

DEFAULT_EXTRACT_TIMEOUT_SEC = 900.0


class FfmpegFrameExtractor(FrameExtractorPort):
    """ffmpegを使って動画の1ブロック分をフレーム画像へ変換するアダプターです。"""

    def __init__(
        self,
        command_runner: CommandRunnerPort,
        ffmpeg_path: str = "ffmpeg",
        timeout_sec: float = DEFAULT_EXTRACT_TIMEOUT_SEC,
    ) -> None:
        self._command_runner = command_runner
        self._ffmpeg_path = ffmpeg_path
        self._timeout_sec = timeout_sec

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
        """ffmpegでフレーム抽出を実行します。"""

        if frame_rate <= 0:
            raise ValueError("frame_rate は 0 より大きい値を指定してください。")

        frames_dir.mkdir(parents=True, exist_ok=True)

        output_pattern = frames_dir / "{0}%04d.{1}".format(frame_file_prefix(block_index), frame_extension)
        command = [
            self._ffmpeg_path,
            "-hide_banner",
            "-loglevel",
            "error",
            "-y",
            "-ss",
            format_seconds(start_seconds),
            "-i",
            str(video_path),
            "-t",
            format_seconds(duration_seconds),
            "-vf",
            f"fps={frame_rate}",
            str(output_pattern),
        ]

        effective_timeout = self._timeout_sec
        if timeout_sec is not None and timeout_sec < effective_timeout:
            effective_timeout = timeout_sec

        logger.debug(
            "extracting block=%s start=%ss duration=%ss fps=%s timeout=%ss",
            block_index,
            start_seconds,
            duration_seconds,
            frame_rate,
            effective_timeout,
        )

        self._command_runner.run(command, timeout_sec=effective_timeout)


def format_seconds(value: float) -> str:
    """秒数をミリ秒精度の文字列にします。整数なら小数点を付けません。"""

    text = "{0:.3f}".format(value).rstrip("0").rstrip(".")
    return text if text not in ("", "-0") else "0"
