import json
import threading
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from image_extractor import worker_main
from image_extractor.domain.errors import InvalidBatchError
from image_extractor.domain.job_models import ProcessingMessage


def test_deadline_timer_sets_cancel_event_before_deadline():
    context = SimpleNamespace(get_remaining_time_in_millis=lambda: 1050)
    cancel_event = threading.Event()

    timer = worker_main._start_deadline_timer(context, cancel_event, margin_sec=1.0)

    assert timer is not None
    assert cancel_event.wait(timeout=5.0) == True


def test_deadline_already_passed_cancels_immediately():
    context = SimpleNamespace(get_remaining_time_in_millis=lambda: 500)
    cancel_event = threading.Event()

    timer = worker_main._start_deadline_timer(context, cancel_event, margin_sec=15.0)

    assert timer is None
    assert cancel_event.is_set()


def test_no_timer_without_lambda_context():
    cancel_event = threading.Event()

    assert worker_main._start_deadline_timer(None, cancel_event, margin_sec=15.0) is None
    assert cancel_event.is_set() == False


@patch.object(worker_main, "_get_runtime")
def test_handler_returns_processed_video_id(mock_runtime):
    use_case = MagicMock()
    use_case.execute.return_value = ProcessingMessage("vid", "videos", "uploads/vid.mp4")
    mock_runtime.return_value = (use_case, SimpleNamespace(deadline_margin_sec=15.0))
    body = json.dumps({"video_id": "vid", "bucket": "videos", "key": "uploads/vid.mp4"})

    result = worker_main.handler({"Records": [{"messageId": "m-1", "body": body}]}, None)

    assert result == {"status": "processed", "video_id": "vid"}
    records = use_case.execute.call_args.args[0]
    assert records == [{"messageId": "m-1", "body": body}]


@patch.object(worker_main, "_get_runtime")
def test_handler_reraises_failures(mock_runtime):
    use_case = MagicMock()
    use_case.execute.side_effect = InvalidBatchError("two records")
    mock_runtime.return_value = (use_case, SimpleNamespace(deadline_margin_sec=15.0))

    with pytest.raises(InvalidBatchError):
        worker_main.handler({"Records": []}, None)


def test_deadline_is_remaining_time_minus_margin():
    context = SimpleNamespace(get_remaining_time_in_millis=lambda: 60000)

    with patch.object(worker_main.time, "monotonic", return_value=500.0):
        deadline = worker_main._compute_deadline(context, margin_sec=15.0)

    assert deadline == pytest.approx(545.0)


def test_no_deadline_without_lambda_context():
    assert worker_main._compute_deadline(None, margin_sec=15.0) is None


@patch.object(worker_main, "_get_runtime")
def test_handler_passes_deadline_to_use_case(mock_runtime):
    use_case = MagicMock()
    use_case.execute.return_value = ProcessingMessage("vid", "videos", "uploads/vid.mp4")
    mock_runtime.return_value = (use_case, SimpleNamespace(deadline_margin_sec=15.0))
    context = SimpleNamespace(get_remaining_time_in_millis=lambda: 600000)

    worker_main.handler({"Records": []}, context)

    kwargs = use_case.execute.call_args.kwargs
    assert kwargs["deadline"] is not None
    assert kwargs["cancel_event"].is_set() == False


def test_configuration_is_logged_after_logging_is_set_up():
    config = MagicMock()
    config.log_level = "DEBUG"
    config.describe.return_value = {"frames_bucket": "frames"}
    calls = MagicMock()

    with patch.object(worker_main, "load_config", return_value=config) as mock_load, patch.object(
        worker_main, "setup_logging"
    ) as mock_setup, patch.object(worker_main, "logger") as mock_logger, patch.object(
        worker_main, "EnvironmentValidator"
    ) as mock_validator:
        calls.attach_mock(mock_load, "load_config")
        calls.attach_mock(mock_setup, "setup_logging")
        calls.attach_mock(mock_logger.info, "log_info")
        calls.attach_mock(mock_validator.return_value.validate, "validate")

        assert worker_main._load_runtime_config() is config

    names = [call[0] for call in calls.mock_calls]
    assert names == ["load_config", "setup_logging", "log_info", "validate"]
    mock_setup.assert_called_once_with("DEBUG")
