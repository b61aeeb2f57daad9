import mimetypes
import posixpath
from pathlib import Path
from typing import Any, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from imgvariants.config import (
    AWS_REGION,
    S3_BUCKET,
    STORAGE_BACKEND,
    STORAGE_ROOT,
    STORAGE_URL_PREFIX,
    logger,
)
from imgvariants.utils.errors import StorageError

# not in the default table on every platform
mimetypes.add_type("image/webp", ".webp")


class BlobStorage:
    """put / exists / delete over slash-separated keys such as ``images/abc_medium.jpg``."""

    def __init__(self, url_prefix: str = STORAGE_URL_PREFIX):
        self.url_prefix = url_prefix.rstrip("/")

    def public_url(self, key: str) -> str:
        return f"{self.url_prefix}/{key}"

    def put(self, key: str, data: bytes) -> None:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError


class LocalStorage(BlobStorage):
    def __init__(self, root: Path = STORAGE_ROOT, url_prefix: str = STORAGE_URL_PREFIX):
        super().__init__(url_prefix)
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if path != self.root and self.root not in path.parents:
            raise StorageError(f"Path escapes storage root: {key}")
        return path

    def put(self, key: str, data: bytes) -> None:
        path = self._resolve(key)
        logger.info("Storing %s (%d bytes)", key, len(data))
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            raise StorageError(f"Failed writing {key}: {e}") from e

    def exists(self, key: str) -> bool:
        return self._resolve(key).is_file()

    def delete(self, key: str) -> None:
        path = self._resolve(key)
        logger.info("Deleting %s", key)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Failed deleting {key}: {e}") from e


class S3Storage(BlobStorage):
    def __init__(
        self,
        bucket: Optional[str] = S3_BUCKET,
        region: str = AWS_REGION,
        client: Any = None,
        url_prefix: str = STORAGE_URL_PREFIX,
    ):
        super().__init__(url_prefix)
        if not bucket:
            raise RuntimeError("S3_BUCKET must be set")
        self.bucket = bucket
        self.region = region
        # Use default AWS credential resolution (env, instance profile, etc.)
        self.client = client or boto3.client("s3", region_name=region)

    def put(self, key: str, data: bytes) -> None:
        mimetype, _ = mimetypes.guess_type(posixpath.basename(key))
        logger.info("Uploading %s (%d bytes) to s3://%s", key, len(data), self.bucket)
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=mimetype or "application/octet-stream",
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed uploading {key}: {e}") from e

    def exists(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in ("404", "NoSuchKey", "NotFound"):
                return False
            raise StorageError(f"Failed checking {key}: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed checking {key}: {e}") from e
        return True

    def delete(self, key: str) -> None:
        logger.info("Deleting key=%s from S3", key)
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed deleting {key}: {e}") from e


def storage_from_env() -> BlobStorage:
    if STORAGE_BACKEND == "s3":
        return S3Storage()
    return LocalStorage()
