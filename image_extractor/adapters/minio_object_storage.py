import logging
import mimetypes
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path, PurePosixPath
from typing import Optional, Sequence, Set

from minio import Minio
from minio.credentials import ChainedProvider, EnvAWSProvider, IamAwsProvider
from minio.error import S3Error
from urllib3.exceptions import HTTPError

from image_extractor.application.ports import ObjectStoragePort
from image_extractor.domain.errors import StorageError

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENCY = 16


class MinioObjectStorageAdapter(ObjectStoragePort):
    """MinIOクライアントでS3互換ストレージを利用するアダプターです。"""

    def __init__(
        self,
        endpoint: str,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        secure: bool = True,
        region: Optional[str] = None,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        client: Optional[Minio] = None,
    ) -> None:
        if max_concurrency <= 0:
            raise ValueError("max_concurrency は 0 より大きい値を指定してください。")

        if client is None:
            client = _create_client(endpoint, access_key, secret_key, secure, region)

        self._client = client
        self._max_concurrency = max_concurrency
        self._known_buckets: Set[str] = set()
        self._bucket_lock = threading.Lock()

    def download_file(self, bucket: str, key: str, local_path: Path) -> None:
        """オブジェクトをローカルへダウンロードします。"""

        local_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            self._client.fget_object(bucket_name=bucket, object_name=key, file_path=str(local_path))
        except (S3Error, HTTPError) as ex:
            raise StorageError("ダウンロードに失敗しました: {0}/{1}: {2}".format(bucket, key, ex)) from ex

        logger.info("downloaded %s/%s size=%s", bucket, key, local_path.stat().st_size)

    def upload_file(
        self,
        local_path: Path,
        bucket: str,
        key: str,
        content_type: Optional[str] = None,
    ) -> None:
        """ローカルファイルをアップロードします。"""

        self._ensure_bucket_exists(bucket)

        if content_type is None:
            content_type = mimetypes.guess_type(local_path.name)[0] or "application/octet-stream"

        try:
            self._client.fput_object(
                bucket_name=bucket,
                object_name=key,
                file_path=str(local_path),
                content_type=content_type,
            )
        except (S3Error, HTTPError) as ex:
            raise StorageError("アップロードに失敗しました: {0}/{1}: {2}".format(bucket, key, ex)) from ex

    def upload_files(self, local_paths: Sequence[Path], bucket: str, prefix: str) -> None:
        """複数ファイルを並列アップロードします。全件の完了を待ってから戻ります。"""

        if len(local_paths) == 0:
            return

        normalized_prefix = prefix.rstrip("/")
        logger.info("uploading %s files to %s/%s", len(local_paths), bucket, normalized_prefix)

        # 並列アップロード前に作成しておく
        self._ensure_bucket_exists(bucket)

        def upload_one(path: Path) -> None:
            self.upload_file(path, bucket, "{0}/{1}".format(normalized_prefix, path.name))

        with ThreadPoolExecutor(max_workers=self._max_concurrency) as executor:
            # list() で全件待ち、最初の例外をそのまま送出する
            list(executor.map(upload_one, local_paths))

    def download_prefix(
        self,
        bucket: str,
        prefix: str,
        destination_dir: Path,
        exclude_keys: Sequence[str] = (),
    ) -> int:
        """prefix 配下のオブジェクトを destination_dir へまとめてダウンロードします。"""

        destination_dir.mkdir(parents=True, exist_ok=True)
        excluded = set(exclude_keys)

        try:
            keys = [
                obj.object_name
                for obj in self._client.list_objects(bucket_name=bucket, prefix=prefix, recursive=True)
                if obj.is_dir == False and (obj.size or 0) > 0 and obj.object_name not in excluded
            ]
        except (S3Error, HTTPError) as ex:
            raise StorageError("一覧取得に失敗しました: {0}/{1}: {2}".format(bucket, prefix, ex)) from ex

        if len(keys) == 0:
            logger.info("no objects found at %s/%s", bucket, prefix)
            return 0

        def download_one(key: str) -> None:
            self.download_file(bucket, key, destination_dir / PurePosixPath(key).name)

        with ThreadPoolExecutor(max_workers=self._max_concurrency) as executor:
            list(executor.map(download_one, keys))

        return len(keys)

    def _ensure_bucket_exists(self, bucket: str) -> None:
        """バケットの存在を確認し、なければ作成します。"""

        with self._bucket_lock:
            if bucket in self._known_buckets:
                return

            try:
                exists = self._client.bucket_exists(bucket)
                if exists == False:
                    self._client.make_bucket(bucket)
            except (S3Error, HTTPError) as ex:
                raise StorageError("バケットを確認できません: {0}: {1}".format(bucket, ex)) from ex

            self._known_buckets.add(bucket)


def _create_client(
    endpoint: str,
    access_key: Optional[str],
    secret_key: Optional[str],
    secure: bool,
    region: Optional[str],
) -> Minio:
    if access_key and secret_key:
        return Minio(
            endpoint=endpoint,
            access_key=access_key,
            secret_key=secret_key,
            secure=secure,
            region=region,
        )

    # キー未指定時は環境変数 → IAMロールの順で認証情報を解決する
    return Minio(
        endpoint=endpoint,
        secure=secure,
        region=region,
        credentials=ChainedProvider([EnvAWSProvider(), IamAwsProvider()]),
    )
