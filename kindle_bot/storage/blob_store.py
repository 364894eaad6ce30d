# kindle_bot/storage/blob_store.py

"""Key/value blob storage for collections and cursors."""

import hashlib
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import boto3
from botocore.exceptions import ClientError

logger = logging.getLogger("kindle_bot.storage")


class BlobNotFoundError(KeyError):
    """Raised when a key does not exist in the store."""


class BlobConflictError(Exception):
    """Raised when a conditional write loses to a concurrent writer."""


class BlobStore(ABC):
    """Whole-object read / replace store. No multi-key transactions."""

    @abstractmethod
    def get_versioned(self, key: str) -> tuple[bytes, str]:
        """Return the object body and its ETag."""
        ...

    @abstractmethod
    def put(self, key: str, data: bytes) -> None:
        """Replace the object unconditionally."""
        ...

    @abstractmethod
    def put_if_match(
        self, key: str, data: bytes, etag: str | None,
    ) -> None:
        """Replace the object only if it still has *etag*.

        ``etag=None`` means "only if the key does not exist yet".

        Raises:
            BlobConflictError: the object changed since it was read.
        """
        ...

    def get(self, key: str) -> bytes:
        """Return the object body."""
        data, _ = self.get_versioned(key)
        return data


def _etag(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()


class LocalBlobStore(BlobStore):
    """Directory-backed store used for local runs and tests."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)
        logger.debug("LocalBlobStore initialised - root=%s", self.root)

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"Key escapes storage root: {key!r}")
        return path

    def get_versioned(self, key: str) -> tuple[bytes, str]:
        path = self._path(key)
        if not path.exists():
            raise BlobNotFoundError(key)
        data = path.read_bytes()
        return data, _etag(data)

    def put(self, key: str, data: bytes) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_bytes(data)
        tmp.replace(path)
        logger.debug("Wrote %d bytes to %s", len(data), path)

    def put_if_match(
        self, key: str, data: bytes, etag: str | None,
    ) -> None:
        path = self._path(key)
        current = _etag(path.read_bytes()) if path.exists() else None
        if current != etag:
            raise BlobConflictError(
                f"{key}: expected etag {etag}, found {current}"
            )
        self.put(key, data)


class S3BlobStore(BlobStore):
    """Amazon S3 bucket store."""

    def __init__(
        self,
        bucket: str,
        region: str | None = None,
        client: Any = None,
    ) -> None:
        if client is None:
            client = boto3.client("s3", region_name=region)
        self.bucket = bucket
        self._client = client
        logger.debug("S3BlobStore initialised - bucket=%s", bucket)

    @staticmethod
    def _error_code(exc: Exception) -> str:
        response: dict[str, Any] = getattr(exc, "response", {}) or {}
        return str(response.get("Error", {}).get("Code", ""))

    def get_versioned(self, key: str) -> tuple[bytes, str]:
        try:
            resp = self._client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            if self._error_code(exc) in ("NoSuchKey", "404"):
                raise BlobNotFoundError(key) from exc
            raise
        body = resp["Body"]
        try:
            data: bytes = body.read()
        finally:
            body.close()
        return data, str(resp.get("ETag", "")).strip('"')

    def _put(self, key: str, data: bytes, **conditions: str) -> None:
        self._client.put_object(
            Bucket=self.bucket,
            Key=key,
            Body=data,
            ContentType="application/json",
            **conditions,
        )
        logger.debug(
            "Put s3://%s/%s (%d bytes)", self.bucket, key, len(data)
        )

    def put(self, key: str, data: bytes) -> None:
        self._put(key, data)

    def put_if_match(
        self, key: str, data: bytes, etag: str | None,
    ) -> None:
        condition = (
            {"IfMatch": f'"{etag}"'}
            if etag is not None
            else {"IfNoneMatch": "*"}
        )
        try:
            self._put(key, data, **condition)
        except ClientError as exc:
            if self._error_code(exc) in (
                "PreconditionFailed",
                "ConditionalRequestConflict",
                "412",
            ):
                raise BlobConflictError(
                    f"s3://{self.bucket}/{key} changed concurrently"
                ) from exc
            raise


def create_blob_store(config: Any) -> BlobStore:
    """Build the store selected by an :class:`EnvConfig`."""
    if config.storage_backend == "s3":
        return S3BlobStore(config.s3_bucket_name, config.s3_region)
    return LocalBlobStore(Path(config.local_storage_dir))
