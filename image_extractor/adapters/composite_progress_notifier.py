from typing import Iterable

from image_extractor.application.ports import CompletionNotifierPort, ProgressNotifierPort


class CompositeProgressNotifier(ProgressNotifierPort):
    """複数の進捗通知先へ中継するアダプターです。"""

    def __init__(self, notifiers: Iterable[ProgressNotifierPort]) -> None:
        self._notifiers = list(notifiers)

    def notify_progress(self, job_id: str, progress: int, current_block: int, total_blocks: int) -> None:
        for notifier in self._notifiers:
            notifier.notify_progress(job_id, progress, current_block, total_blocks)


class CompositeCompletionNotifier(CompletionNotifierPort):
    """複数の完了通知先へ中継するアダプターです。"""

    def __init__(self, notifiers: Iterable[CompletionNotifierPort]) -> None:
        self._notifiers = list(notifiers)

    def notify_completion(self, job_id: str, zip_bucket: str, zip_key: str) -> None:
        for notifier in self._notifiers:
            notifier.notify_completion(job_id, zip_bucket, zip_key)
