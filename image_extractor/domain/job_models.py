from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Dict, Optional


class JobStatus(str, Enum):
    """ジョブの状態です。"""

    PENDING = "Pending"
    RUNNING = "Running"
    COMPLETED = "Completed"
    FAILED = "Failed"
    INTERRUPTED = "Interrupted"


class ProcessingStep(IntEnum):
    """処理ステップです。定義順がそのまま実行順になります。"""

    VALIDATING = 0
    DOWNLOADING = 1
    ANALYZING = 2
    EXTRACTING = 3
    ZIPPING = 4
    DONE = 5


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ProcessingMessage:
    """キューから受け取った1件の処理要求です。"""

    job_id: str
    source_bucket: str
    source_key: str


@dataclass
class JobState:
    """ジョブIDごとに永続化される再開用の状態です。"""

    job_id: str
    status: JobStatus = JobStatus.PENDING
    current_step: ProcessingStep = ProcessingStep.VALIDATING

    last_processed_second: int = 0
    current_block: int = 0
    total_blocks: int = 0
    processed_frames: int = 0
    total_frames: int = 0
    progress: int = 0

    created_at: datetime = field(default_factory=utc_now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    last_heartbeat: datetime = field(default_factory=utc_now)

    zip_bucket: Optional[str] = None
    zip_key: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def extraction_finished(self) -> bool:
        """全ブロックの抽出が終わっているかを返します。"""

        return self.total_blocks > 0 and self.current_block >= self.total_blocks
