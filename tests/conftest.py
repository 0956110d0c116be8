from dataclasses import dataclass
from pathlib import Path

import pytest

from fakes import (
    FakeClock,
    FakeFrameExtractor,
    FakeObjectStorage,
    FakeVideoAnalyzer,
    InMemoryJobStateRepository,
    RecordingNotifier,
)
from image_extractor.adapters.local_file_gateway import LocalFileGateway
from image_extractor.adapters.zip_archiver import ZipArchiver
from image_extractor.application.job_runner_use_cases import RunExtractionJobUseCase
from image_extractor.domain.job_models import ProcessingMessage
from image_extractor.domain.models import VideoMetadata


@dataclass
class WorkflowHarness:
    use_case: RunExtractionJobUseCase
    repository: InMemoryJobStateRepository
    storage: FakeObjectStorage
    analyzer: FakeVideoAnalyzer
    extractor: FakeFrameExtractor
    notifier: RecordingNotifier
    temp_folder: Path


@pytest.fixture
def message() -> ProcessingMessage:
    return ProcessingMessage(job_id="vid", source_bucket="videos", source_key="uploads/vid.mp4")


@pytest.fixture
def make_harness(tmp_path):
    """依存をすべてフェイクにしたワークフローを組み立てます。"""

    def factory(
        duration_seconds: float = 95.0,
        frame_count: int = 0,
        repository: InMemoryJobStateRepository = None,
        extractor: FakeFrameExtractor = None,
        notifier: RecordingNotifier = None,
        block_size_seconds: int = 30,
        storage: FakeObjectStorage = None,
        zip_bucket: str = "zb",
        monotonic=None,
    ) -> WorkflowHarness:
        repository = repository or InMemoryJobStateRepository()
        storage = storage or FakeObjectStorage()
        analyzer = FakeVideoAnalyzer(VideoMetadata(duration_seconds=duration_seconds, frame_count=frame_count))
        extractor = extractor or FakeFrameExtractor()
        notifier = notifier or RecordingNotifier()
        temp_folder = tmp_path / "work"
        temp_folder.mkdir(exist_ok=True)

        use_case = RunExtractionJobUseCase(
            job_repository=repository,
            object_storage=storage,
            file_gateway=LocalFileGateway(),
            video_analyzer=analyzer,
            frame_extractor=extractor,
            archiver=ZipArchiver(storage),
            progress_notifier=notifier,
            completion_notifier=notifier,
            frames_bucket="frames",
            zip_bucket=zip_bucket,
            temp_folder=temp_folder,
            block_size_seconds=block_size_seconds,
            frame_rate=1,
            frame_extension="jpg",
            clock=FakeClock(),
            monotonic=monotonic or (lambda: 1000.0),
        )

        return WorkflowHarness(
            use_case=use_case,
            repository=repository,
            storage=storage,
            analyzer=analyzer,
            extractor=extractor,
            notifier=notifier,
            temp_folder=temp_folder,
        )

    return factory
