import logging
import os
import shutil
import tempfile
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Mapping, Optional

from image_extractor.domain.errors import ConfigurationError, EnvironmentValidationError

logger = logging.getLogger(__name__)

_SENSITIVE_FIELDS = ("job_state_db_password", "storage_secret_key")


@dataclass(frozen=True)
class ProcessingConfig:
    """環境変数から読み込んだ処理設定です。"""

    frames_bucket: str
    zip_bucket: str
    progress_queue_url: str

    job_state_db_host: str
    job_state_db_user: str
    job_state_db_password: str
    job_state_db_name: str
    job_state_collection: str
    job_state_db_port: int = 5432

    temp_folder: Path = Path(tempfile.gettempdir())
    frame_extension: str = "jpg"
    frame_rate: int = 1
    block_size: int = 30

    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    ffprobe_timeout_sec: float = 300.0
    ffmpeg_timeout_sec: float = 900.0
    upload_concurrency: int = 16

    storage_endpoint: str = "s3.amazonaws.com"
    storage_access_key: Optional[str] = None
    storage_secret_key: Optional[str] = None
    storage_region: Optional[str] = None
    storage_secure: bool = True

    aws_region: Optional[str] = None
    input_queue_url: Optional[str] = None
    deadline_margin_sec: float = 15.0
    log_level: str = "INFO"

    def describe(self) -> str:
        """ログ出力用に機密値を伏せた文字列を返します。"""

        parts = []
        for item in fields(self):
            value = getattr(self, item.name)
            if item.name in _SENSITIVE_FIELDS and value:
                value = "*****"
            parts.append("{0}={1}".format(item.name, value))

        return " ".join(parts)


def load_config(environ: Optional[Mapping[str, str]] = None) -> ProcessingConfig:
    """環境変数から設定を読み込みます。必須項目がなければ ConfigurationError です。"""

    env = os.environ if environ is None else environ

    config = ProcessingConfig(
        frames_bucket=_get_required_env(env, "FRAMES_BUCKET_NAME"),
        zip_bucket=_get_required_env(env, "ZIP_BUCKET_NAME"),
        progress_queue_url=_get_required_env(env, "PROGRESS_QUEUE_URL"),
        job_state_db_host=_get_required_env(env, "JOB_STATE_DB_HOST"),
        job_state_db_user=_get_required_env(env, "JOB_STATE_DB_USER"),
        job_state_db_password=_get_required_env(env, "JOB_STATE_DB_PASSWORD"),
        job_state_db_name=_get_required_env(env, "JOB_STATE_DB_NAME"),
        job_state_collection=_get_required_env(env, "JOB_STATE_COLLECTION"),
        job_state_db_port=_get_env_int(env, "JOB_STATE_DB_PORT", 5432),
        temp_folder=Path(_get_env_str(env, "TEMP_FOLDER", tempfile.gettempdir())),
        frame_extension=_get_env_str(env, "FRAME_EXTENSION", "jpg").lstrip("."),
        frame_rate=_get_env_int(env, "FRAME_RATE", 1),
        block_size=_get_env_int(env, "BLOCK_SIZE", 30),
        ffmpeg_path=_get_env_str(env, "FFMPEG_PATH", "ffmpeg"),
        ffprobe_path=_get_env_str(env, "FFPROBE_PATH", "ffprobe"),
        ffprobe_timeout_sec=_get_env_float(env, "FFPROBE_TIMEOUT_SEC", 300.0),
        ffmpeg_timeout_sec=_get_env_float(env, "FFMPEG_TIMEOUT_SEC", 900.0),
        upload_concurrency=_get_env_int(env, "UPLOAD_CONCURRENCY", 16),
        storage_endpoint=_get_env_str(env, "STORAGE_ENDPOINT", "s3.amazonaws.com"),
        storage_access_key=_get_optional_env(env, "STORAGE_ACCESS_KEY"),
        storage_secret_key=_get_optional_env(env, "STORAGE_SECRET_KEY"),
        storage_region=_get_optional_env(env, "STORAGE_REGION"),
        storage_secure=_get_env_bool(env, "STORAGE_SECURE", True),
        aws_region=_get_optional_env(env, "AWS_REGION"),
        input_queue_url=_get_optional_env(env, "INPUT_QUEUE_URL"),
        deadline_margin_sec=_get_env_float(env, "DEADLINE_MARGIN_SEC", 15.0),
        log_level=_get_env_str(env, "LOG_LEVEL", "INFO").upper(),
    )

    for name, value in (
        ("FRAME_RATE", config.frame_rate),
        ("BLOCK_SIZE", config.block_size),
        ("UPLOAD_CONCURRENCY", config.upload_concurrency),
    ):
        if value <= 0:
            raise ConfigurationError("environment variable must be positive: {0}={1}".format(name, value))

    return config


class EnvironmentValidator:
    """起動時に一時フォルダと ffmpeg / ffprobe の存在を確認します。"""

    def validate(self, config: ProcessingConfig) -> None:
        if config.temp_folder.is_dir() == False:
            raise EnvironmentValidationError("一時フォルダが存在しません: {0}".format(config.temp_folder))

        for name, path in (("ffmpeg", config.ffmpeg_path), ("ffprobe", config.ffprobe_path)):
            resolved = resolve_executable(path)
            if resolved is None:
                raise EnvironmentValidationError(
                    "{0} が見つかりません: {1}。インストールして PATH を通すか、フルパスを指定してください。".format(name, path)
                )

            logger.info("%s resolved to %s", name, resolved)


def resolve_executable(path: str) -> Optional[Path]:
    """実行ファイルを解決します。存在しないか空ファイルなら None です。"""

    candidate = Path(path)
    if candidate.is_absolute() == False:
        found = shutil.which(path)
        if found is None:
            return None
        candidate = Path(found)

    if candidate.is_file() == False or candidate.stat().st_size == 0:
        return None

    return candidate


def _get_required_env(env: Mapping[str, str], name: str) -> str:
    """必須環境変数を取得します。"""

    value = env.get(name)
    if value is None or value.strip() == "":
        raise ConfigurationError("environment variable is required: {0}".format(name))

    return value.strip()


def _get_optional_env(env: Mapping[str, str], name: str) -> Optional[str]:
    value = env.get(name)
    if value is None or value.strip() == "":
        return None

    return value.strip()


def _get_env_str(env: Mapping[str, str], name: str, default_value: str) -> str:
    value = _get_optional_env(env, name)
    if value is None:
        return default_value

    return value


def _get_env_int(env: Mapping[str, str], name: str, default_value: int) -> int:
    """整数の環境変数を取得します。"""

    value = _get_optional_env(env, name)
    if value is None:
        return default_value

    try:
        return int(value)
    except ValueError as ex:
        raise ConfigurationError("invalid int environment variable: {0}={1}".format(name, value)) from ex


def _get_env_float(env: Mapping[str, str], name: str, default_value: float) -> float:
    """浮動小数の環境変数を取得します。"""

    value = _get_optional_env(env, name)
    if value is None:
        return default_value

    try:
        return float(value)
    except ValueError as ex:
        raise ConfigurationError("invalid float environment variable: {0}={1}".format(name, value)) from ex


def _get_env_bool(env: Mapping[str, str], name: str, default_value: bool) -> bool:
    """真偽値環境変数を取得します。"""

    value = env.get(name)
    if value is None:
        return default_value

    normalized = value.strip().lower()
    if normalized in ("1", "true", "yes", "on"):
        return True

    if normalized in ("0", "false", "no", "off"):
        return False

    raise ConfigurationError("invalid bool environment variable: {0}={1}".format(name, value))
