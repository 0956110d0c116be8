import logging
import threading
from typing import Any, Callable, Mapping, Optional, Sequence

from image_extractor.application.job_runner_use_cases import RunExtractionJobUseCase
from image_extractor.domain.errors import InvalidBatchError
from image_extractor.domain.job_models import ProcessingMessage

logger = logging.getLogger(__name__)


class ProcessQueueEventUseCase:
    """キューから届いたレコード群を検証し、1件のジョブとして実行するユースケースです。"""

    def __init__(
        self,
        parse_message: Callable[[str], ProcessingMessage],
        run_job_use_case: RunExtractionJobUseCase,
    ) -> None:
        self._parse_message = parse_message
        self._run_job_use_case = run_job_use_case

    def execute(
        self,
        records: Sequence[Mapping[str, Any]],
        cancel_event: Optional[threading.Event] = None,
        deadline: Optional[float] = None,
    ) -> ProcessingMessage:
        """1回の呼び出しにつき1レコードだけを受け付けます。"""

        if len(records) != 1:
            raise InvalidBatchError(
                "1回の呼び出しで処理できるメッセージは1件だけです。受信件数: {0}".format(len(records))
            )

        record = records[0]
        message = self._parse_message(record.get("body") or "")

        logger.info("received message_id=%s job_id=%s", record.get("messageId"), message.job_id)

        self._run_job_use_case.execute(message, cancel_event=cancel_event, deadline=deadline)
        return message
