import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from image_extractor.adapters.subprocess_command_runner import SubprocessCommandRunner
from image_extractor.domain.errors import CommandFailedError, CommandTimeoutError


@patch("image_extractor.adapters.subprocess_command_runner.subprocess.run")
def test_returns_output_on_success(mock_run):
    mock_run.return_value = subprocess.CompletedProcess(args=["ffprobe"], returncode=0, stdout="{}", stderr="")

    result = SubprocessCommandRunner().run(["ffprobe", Path("/tmp/a.mp4")], timeout_sec=3.0)

    assert result.returncode == 0
    assert result.stdout == "{}"
    mock_run.assert_called_once_with(
        ["ffprobe", "/tmp/a.mp4"],
        capture_output=True,
        text=True,
        timeout=3.0,
    )


@patch("image_extractor.adapters.subprocess_command_runner.subprocess.run")
def test_non_zero_exit_raises_with_stderr(mock_run):
    mock_run.return_value = subprocess.CompletedProcess(args=["ffmpeg"], returncode=1, stdout="", stderr="Invalid data")

    with pytest.raises(CommandFailedError) as excinfo:
        SubprocessCommandRunner().run(["ffmpeg", "-i", "x"])

    assert excinfo.value.returncode == 1
    assert excinfo.value.stderr == "Invalid data"
    assert excinfo.value.command == ["ffmpeg", "-i", "x"]
    assert "Invalid data" in str(excinfo.value)


@patch("image_extractor.adapters.subprocess_command_runner.subprocess.run")
def test_timeout_raises_timeout_error(mock_run):
    mock_run.side_effect = subprocess.TimeoutExpired(cmd=["ffmpeg"], timeout=1.0, stderr=b"partial")

    with pytest.raises(CommandTimeoutError) as excinfo:
        SubprocessCommandRunner().run(["ffmpeg"], timeout_sec=1.0)

    assert excinfo.value.stderr == "partial"


@patch("image_extractor.adapters.subprocess_command_runner.subprocess.run")
def test_missing_binary_raises_command_failed(mock_run):
    mock_run.side_effect = FileNotFoundError("no such file")

    with pytest.raises(CommandFailedError) as excinfo:
        SubprocessCommandRunner().run(["ffmpeg"])

    assert excinfo.value.returncode is None
