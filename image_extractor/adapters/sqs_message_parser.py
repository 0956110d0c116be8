"""
キューメッセージ本文の解析。

本文は {"video_id": ..., "bucket": ..., "key": ...} 形式の JSON です。
それ以外のフィールドは無視します。
"""

import logging

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from image_extractor.domain.errors import MessageParseError
from image_extractor.domain.job_models import ProcessingMessage

logger = logging.getLogger(__name__)


class ProcessingMessageBody(BaseModel):
    """キューメッセージ本文のスキーマです。"""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    video_id: str = Field(..., min_length=1)
    bucket: str = Field(..., min_length=1)
    key: str = Field(..., min_length=1)


def parse_message_body(body: str) -> ProcessingMessage:
    """メッセージ本文を ProcessingMessage に変換します。"""

    if body is None or body.strip() == "":
        raise MessageParseError("メッセージ本文が空です。")

    try:
        parsed = ProcessingMessageBody.model_validate_json(body)
    except ValidationError as ex:
        logger.error("invalid message body: %s", ex.errors(include_url=False))
        raise MessageParseError(
            "メッセージに必須フィールド (video_id, bucket, key) がないか、JSON が不正です: {0}".format(ex)
        ) from ex

    return ProcessingMessage(
        job_id=parsed.video_id,
        source_bucket=parsed.bucket,
        source_key=parsed.key,
    )
