import pytest

from image_extractor.domain.job_models import JobState
from image_extractor.domain.models import compute_block_window, compute_total_blocks, frame_file_prefix


@pytest.mark.parametrize(
    "duration, expected",
    [
        (95.0, 4),
        (90.0, 3),
        (90.3, 4),
        (10.0, 1),
        (0.0, 1),
        (0.4, 1),
    ],
)
def test_compute_total_blocks(duration, expected):
    assert compute_total_blocks(duration, 30) == expected


def test_compute_total_blocks_rejects_non_positive_block_size():
    with pytest.raises(ValueError):
        compute_total_blocks(95.0, 0)


def test_block_windows_cover_the_whole_video():
    windows = [compute_block_window(95.0, index, 30) for index in range(4)]

    assert [(w.start_seconds, w.duration_seconds) for w in windows] == [(0, 30), (30, 30), (60, 30), (90, 5)]
    assert [w.object_prefix_name for w in windows] == ["block_1", "block_2", "block_3", "block_4"]


def test_block_window_keeps_fractional_seconds():
    """端数秒も抽出範囲に含めます。"""

    assert compute_block_window(95.7, 3, 30).duration_seconds == pytest.approx(5.7)
    assert compute_block_window(90.3, 3, 30).duration_seconds == pytest.approx(0.3)
    assert compute_block_window(0.8, 0, 30).duration_seconds == pytest.approx(0.8)
    assert compute_block_window(0.0, 0, 30).duration_seconds == 0


def test_frame_file_prefix_is_zero_padded():
    assert frame_file_prefix(3) == "block0003_frame"
    assert frame_file_prefix(12345) == "block12345_frame"


def test_extraction_finished():
    assert JobState(job_id="vid").extraction_finished == False
    assert JobState(job_id="vid", total_blocks=4, current_block=3).extraction_finished == False
    assert JobState(job_id="vid", total_blocks=4, current_block=4).extraction_finished == True
