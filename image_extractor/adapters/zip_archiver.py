import logging
import zipfile
from pathlib import Path

from image_extractor.application.ports import ArchiverPort, ObjectStoragePort

logger = logging.getLogger(__name__)


class ZipArchiver(ArchiverPort):
    """ディレクトリをZIPにまとめてアップロードするアダプターです。"""

    def __init__(self, object_storage: ObjectStoragePort) -> None:
        self._object_storage = object_storage

    def create_archive(self, source_dir: Path, zip_path: Path) -> Path:
        """source_dir 配下のファイルを相対パスのままZIPへ格納します。"""

        if zip_path.exists():
            logger.info("removing existing zip %s", zip_path)
            zip_path.unlink()

        zip_path.parent.mkdir(parents=True, exist_ok=True)

        files = sorted(p for p in source_dir.rglob("*") if p.is_file()) if source_dir.exists() else []

        with zipfile.ZipFile(zip_path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for path in files:
                archive.write(path, arcname=path.relative_to(source_dir).as_posix())

        logger.info("zip created path=%s files=%s size=%s", zip_path, len(files), zip_path.stat().st_size)
        return zip_path

    def upload_archive(self, bucket: str, key: str, zip_path: Path) -> None:
        """ZIPをアップロードします。"""

        self._object_storage.upload_file(
            local_path=zip_path,
            bucket=bucket,
            key=key,
            content_type="application/zip",
        )
