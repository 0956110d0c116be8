from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from image_extractor.domain.job_models import JobState, JobStatus, ProcessingStep


def to_document(state: JobState) -> Dict[str, Any]:
    """JobState を JSON 化できる dict に変換します。"""

    return {
        "job_id": state.job_id,
        "status": state.status.value,
        "current_step": state.current_step.name.title(),
        "last_processed_second": state.last_processed_second,
        "current_block": state.current_block,
        "total_blocks": state.total_blocks,
        "processed_frames": state.processed_frames,
        "total_frames": state.total_frames,
        "progress": state.progress,
        "created_at": _format_timestamp(state.created_at),
        "started_at": _format_timestamp(state.started_at),
        "completed_at": _format_timestamp(state.completed_at),
        "last_heartbeat": _format_timestamp(state.last_heartbeat),
        "zip_bucket": state.zip_bucket,
        "zip_key": state.zip_key,
        "metadata": dict(state.metadata),
    }


def from_document(document: Mapping[str, Any]) -> JobState:
    """保存済みの dict から JobState を復元します。"""

    created_at = _parse_timestamp(document.get("created_at"))
    last_heartbeat = _parse_timestamp(document.get("last_heartbeat"))

    state = JobState(
        job_id=str(document["job_id"]),
        status=JobStatus(document.get("status", JobStatus.PENDING.value)),
        current_step=ProcessingStep[str(document.get("current_step", "Validating")).upper()],
        last_processed_second=int(document.get("last_processed_second", 0)),
        current_block=int(document.get("current_block", 0)),
        total_blocks=int(document.get("total_blocks", 0)),
        processed_frames=int(document.get("processed_frames", 0)),
        total_frames=int(document.get("total_frames", 0)),
        progress=int(document.get("progress", 0)),
        started_at=_parse_timestamp(document.get("started_at")),
        completed_at=_parse_timestamp(document.get("completed_at")),
        zip_bucket=document.get("zip_bucket"),
        zip_key=document.get("zip_key"),
        metadata=dict(document.get("metadata") or {}),
    )

    if created_at is not None:
        state.created_at = created_at
    if last_heartbeat is not None:
        state.last_heartbeat = last_heartbeat

    return state


def _format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None

    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)

    return value.isoformat()


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        return value

    return datetime.fromisoformat(str(value))
