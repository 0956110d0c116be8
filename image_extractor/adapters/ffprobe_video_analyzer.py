import json
import logging
from pathlib import Path
from typing import Any, Dict

from image_extractor.application.ports import CommandRunnerPort, VideoAnalyzerPort
from image_extractor.domain.errors import ProbeOutputParseError
from image_extractor.domain.models import VideoMetadata

logger = logging.getLogger(__name__)

DEFAULT_PROBE_TIMEOUT_SEC = 300.0


class FfprobeVideoAnalyzer(VideoAnalyzerPort):
    """ffprobe を使って動画の長さとフレーム数を取得するアダプターです。"""

    def __init__(
        self,
        command_runner: CommandRunnerPort,
        ffprobe_path: str = "ffprobe",
        timeout_sec: float = DEFAULT_PROBE_TIMEOUT_SEC,
    ) -> None:
        self._command_runner = command_runner
        self._ffprobe_path = ffprobe_path
        self._timeout_sec = timeout_sec

    def analyze(self, video_path: Path) -> VideoMetadata:
        """ffprobe の JSON 出力を解析します。"""

        command = [
            self._ffprobe_path,
            "-v",
            "quiet",
            "-print_format",
            "json",
            "-show_format",
            "-show_streams",
            str(video_path),
        ]

        result = self._command_runner.run(command, timeout_sec=self._timeout_sec)

        if result.stdout is None or result.stdout.strip() == "":
            raise ProbeOutputParseError("ffprobe の出力が空でした: {0}".format(video_path))

        metadata = parse_ffprobe_output(result.stdout)
        logger.info(
            "probed video path=%s duration=%.2fs frames=%s",
            video_path,
            metadata.duration_seconds,
            metadata.frame_count,
        )
        return metadata


def parse_ffprobe_output(output: str) -> VideoMetadata:
    """ffprobe の JSON を VideoMetadata に変換します。

    duration は必須です。nb_frames は取れなければ 0（不明）として扱います。
    """

    try:
        root = json.loads(output)
    except json.JSONDecodeError as ex:
        raise ProbeOutputParseError("ffprobe の JSON 出力を解析できません: {0}".format(ex)) from ex

    if not isinstance(root, dict):
        raise ProbeOutputParseError("ffprobe の出力がオブジェクトではありません。")

    format_info = root.get("format")
    if not isinstance(format_info, dict):
        raise ProbeOutputParseError("ffprobe の出力に 'format' がありません。")

    duration_text = format_info.get("duration")
    if duration_text is None:
        raise ProbeOutputParseError("ffprobe の出力に 'duration' がありません。")

    duration_text = str(duration_text).strip()
    if duration_text == "":
        raise ProbeOutputParseError("ffprobe の出力の 'duration' が空です。")

    try:
        duration = float(duration_text)
    except ValueError as ex:
        raise ProbeOutputParseError("duration を解析できません: {0}".format(duration_text)) from ex

    if duration < 0:
        raise ProbeOutputParseError("duration が負の値です: {0}".format(duration_text))

    return VideoMetadata(
        duration_seconds=duration,
        frame_count=_parse_frame_count(root),
    )


def _parse_frame_count(root: Dict[str, Any]) -> int:
    streams = root.get("streams")
    if not isinstance(streams, list):
        return 0

    video_stream = None
    for stream in streams:
        if isinstance(stream, dict) and stream.get("codec_type") == "video":
            video_stream = stream
            break

    if video_stream is None:
        return 0

    nb_frames = video_stream.get("nb_frames")
    if nb_frames is None:
        return 0

    try:
        frame_count = int(str(nb_frames).strip())
    except ValueError:
        return 0

    return frame_count if frame_count > 0 else 0
