import json
import logging
from datetime import datetime
from typing import Any, Callable, Dict

from botocore.exceptions import BotoCoreError, ClientError

from image_extractor.application.ports import CompletionNotifierPort, ProgressNotifierPort
from image_extractor.domain.errors import NotificationError
from image_extractor.domain.job_models import utc_now

logger = logging.getLogger(__name__)

RUNNING_STATUS = "RUNNING"
COMPLETED_STATUS = "COMPLETED"


def build_progress_payload(
    job_id: str,
    progress: int,
    current_block: int,
    total_blocks: int,
    timestamp: datetime,
) -> Dict[str, Any]:
    return {
        "video_id": job_id,
        "status": RUNNING_STATUS,
        "progress": progress,
        "current_block": current_block,
        "total_blocks": total_blocks,
        "timestamp": timestamp.isoformat(),
    }


def build_completion_payload(job_id: str, zip_bucket: str, zip_key: str, timestamp: datetime) -> Dict[str, Any]:
    return {
        "video_id": job_id,
        "status": COMPLETED_STATUS,
        "progress": 100,
        "timestamp": timestamp.isoformat(),
        "zip": {"bucket": zip_bucket, "key": zip_key},
    }


class _SqsSender:
    def __init__(self, sqs_client, queue_url: str, clock: Callable[[], datetime] = utc_now) -> None:
        self._sqs_client = sqs_client
        self._queue_url = queue_url
        self._clock = clock

    def _send(self, payload: Dict[str, Any]) -> None:
        try:
            self._sqs_client.send_message(QueueUrl=self._queue_url, MessageBody=json.dumps(payload))
        except (BotoCoreError, ClientError) as ex:
            raise NotificationError("通知メッセージを送信できません: {0}".format(ex)) from ex


class SqsProgressNotifier(_SqsSender, ProgressNotifierPort):
    """SQSへ進捗メッセージを送るアダプターです。"""

    def notify_progress(self, job_id: str, progress: int, current_block: int, total_blocks: int) -> None:
        payload = build_progress_payload(job_id, progress, current_block, total_blocks, self._clock())
        self._send(payload)
        logger.debug("progress sent job_id=%s progress=%s", job_id, progress)


class SqsCompletionNotifier(_SqsSender, CompletionNotifierPort):
    """SQSへ完了メッセージを送るアダプターです。"""

    def notify_completion(self, job_id: str, zip_bucket: str, zip_key: str) -> None:
        payload = build_completion_payload(job_id, zip_bucket, zip_key, self._clock())
        self._send(payload)
        logger.info("completion sent job_id=%s zip=%s/%s", job_id, zip_bucket, zip_key)
