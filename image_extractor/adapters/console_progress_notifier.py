import logging

from image_extractor.application.ports import CompletionNotifierPort, ProgressNotifierPort

logger = logging.getLogger(__name__)


class ConsoleProgressNotifier(ProgressNotifierPort, CompletionNotifierPort):
    """ログ出力で進捗表示するアダプターです。"""

    def notify_progress(self, job_id: str, progress: int, current_block: int, total_blocks: int) -> None:
        """進捗を出力します。"""

        safe_total = total_blocks if total_blocks > 0 else 1
        logger.info("[PROGRESS] job_id=%s %s%% (%s/%s)", job_id, progress, current_block, safe_total)

    def notify_completion(self, job_id: str, zip_bucket: str, zip_key: str) -> None:
        """完了を出力します。"""

        logger.info("[DONE] job_id=%s zip=%s/%s", job_id, zip_bucket, zip_key)
