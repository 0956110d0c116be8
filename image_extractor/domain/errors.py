from typing import Optional, Sequence


class ImageExtractorError(Exception):
    """このサービスで扱う例外の基底クラスです。"""


class ConfigurationError(ImageExtractorError):
    """必須設定が不足している場合に送出します。"""


class EnvironmentValidationError(ImageExtractorError):
    """実行環境（バイナリ・一時フォルダ）が不正な場合に送出します。"""


class MessageParseError(ImageExtractorError):
    """キューメッセージを解釈できない場合に送出します。"""


class InvalidBatchError(MessageParseError):
    """1回の呼び出しで1件以外のメッセージを受け取った場合に送出します。"""


class ExternalProcessError(ImageExtractorError):
    """外部プロセスの失敗です。"""

    def __init__(
        self,
        message: str,
        command: Sequence[str] = (),
        returncode: Optional[int] = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr


class CommandFailedError(ExternalProcessError):
    """外部プロセスが起動できない、または非0で終了した場合に送出します。"""


class CommandTimeoutError(ExternalProcessError):
    """外部プロセスがタイムアウトした場合に送出します。"""


class ProbeOutputParseError(ImageExtractorError):
    """ffprobe の出力が不正な場合に送出します。"""


class StorageError(ImageExtractorError):
    """オブジェクトストレージ操作の失敗です。"""


class StatePersistenceError(ImageExtractorError):
    """ジョブ状態の読み書きに失敗した場合に送出します。"""


class JobInterruptedError(ImageExtractorError):
    """キャンセル要求によってジョブを中断した場合に送出します。"""


class NotificationError(ImageExtractorError):
    """進捗・完了通知の送信に失敗した場合に送出します。"""
