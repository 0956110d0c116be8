import logging
import sys

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"


def setup_logging(level: str = "INFO") -> None:
    """ルートロガーに標準出力ハンドラを1つだけ設定します。"""

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    has_console_handler = any(
        isinstance(h, logging.StreamHandler) and getattr(h, "stream", None) is sys.stdout
        for h in root_logger.handlers
    )
    if has_console_handler == False:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root_logger.addHandler(console_handler)

    # ライブラリのログは警告以上だけ出す
    for name in ("botocore", "boto3", "urllib3", "psycopg"):
        logging.getLogger(name).setLevel(logging.WARNING)
