"""Object storage backends for chat attachments.

Two implementations share the `ObjectStorage` interface:

- `LocalObjectStorage` keeps each bucket as a directory under a root path.
  Public URLs point at the `/storage` static mount of the API.
- `S3ObjectStorage` talks to any S3-compatible service through boto3.

Both raise `StorageError` on failure and `BucketAlreadyExistsError` from
`create_bucket` when the bucket is already present.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any
from urllib.parse import quote

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from clientdesk.backend.errors import BucketAlreadyExistsError, StorageError
from clientdesk.core.settings import Settings

logger = logging.getLogger(__name__)

_BUCKET_META = ".bucket.json"
_S3_EXISTS_CODES = {"BucketAlreadyOwnedByYou", "BucketAlreadyExists"}
_S3_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}


@dataclass(frozen=True)
class Bucket:
    """A storage container."""

    name: str
    public: bool = False


def _clean_key(path: str) -> str:
    key = PurePosixPath(path)
    if key.is_absolute() or ".." in key.parts or not key.parts:
        raise StorageError(f"Invalid object path {path!r}")
    return key.as_posix()


class ObjectStorage(ABC):
    """Bucket and object operations needed by the attachment uploader."""

    @abstractmethod
    async def list_buckets(self) -> list[Bucket]:
        """Return every bucket visible to this backend."""

    @abstractmethod
    async def create_bucket(self, name: str, *, public: bool = False) -> Bucket:
        """Create `name`; raise `BucketAlreadyExistsError` if it exists."""

    @abstractmethod
    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        *,
        content_type: str | None = None,
        cache_control: str | None = None,
        upsert: bool = False,
    ) -> str:
        """Store `data` at `path` in `bucket` and return the object key."""

    @abstractmethod
    def get_public_url(self, bucket: str, path: str) -> str:
        """Return the public URL of an object."""


class LocalObjectStorage(ObjectStorage):
    """Filesystem-backed storage, one directory per bucket."""

    def __init__(self, root: str | Path, public_base_url: str) -> None:
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")

    async def list_buckets(self) -> list[Bucket]:
        return await asyncio.to_thread(self._list_buckets_sync)

    async def create_bucket(self, name: str, *, public: bool = False) -> Bucket:
        return await asyncio.to_thread(self._create_bucket_sync, name, public)

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        *,
        content_type: str | None = None,
        cache_control: str | None = None,
        upsert: bool = False,
    ) -> str:
        key = _clean_key(path)
        await asyncio.to_thread(self._write_sync, bucket, key, data, upsert)
        return key

    def get_public_url(self, bucket: str, path: str) -> str:
        return f"{self.public_base_url}/{quote(bucket)}/{quote(_clean_key(path))}"

    def _list_buckets_sync(self) -> list[Bucket]:
        if not self.root.exists():
            return []
        buckets = []
        for entry in sorted(self.root.iterdir()):
            if not entry.is_dir():
                continue
            public = False
            meta = entry / _BUCKET_META
            if meta.exists():
                try:
                    public = bool(json.loads(meta.read_text(encoding="utf-8")).get("public"))
                except (OSError, ValueError) as exc:
                    logger.warning("Unreadable bucket metadata for %s: %s", entry.name, exc)
            buckets.append(Bucket(name=entry.name, public=public))
        return buckets

    def _create_bucket_sync(self, name: str, public: bool) -> Bucket:
        directory = self.root / _clean_key(name)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            directory.mkdir()
        except FileExistsError as exc:
            raise BucketAlreadyExistsError(f"Bucket {name!r} already exists") from exc
        except OSError as exc:
            raise StorageError(f"Could not create bucket {name!r}: {exc}") from exc

        try:
            (directory / _BUCKET_META).write_text(
                json.dumps({"public": public}), encoding="utf-8"
            )
        except OSError as exc:
            raise StorageError(f"Could not write metadata for bucket {name!r}: {exc}") from exc
        logger.info("Created bucket %s (public=%s)", name, public)
        return Bucket(name=name, public=public)

    def _write_sync(self, bucket: str, key: str, data: bytes, upsert: bool) -> None:
        bucket_dir = self.root / bucket
        if not bucket_dir.is_dir():
            raise StorageError(f"Bucket {bucket!r} does not exist")

        target = bucket_dir / key
        if target.exists() and not upsert:
            raise StorageError(f"Object {bucket}/{key} already exists")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            raise StorageError(f"Could not write {bucket}/{key}: {exc}") from exc


def _public_read_policy(bucket: str) -> str:
    return json.dumps(
        {
            "Version": "2012-10-17",
            "Statement": [
                {
                    "Sid": "PublicRead",
                    "Effect": "Allow",
                    "Principal": "*",
                    "Action": ["s3:GetObject"],
                    "Resource": [f"arn:aws:s3:::{bucket}/*"],
                }
            ],
        }
    )


class S3ObjectStorage(ObjectStorage):
    """S3-compatible storage through a boto3 client."""

    def __init__(
        self,
        client: Any,
        *,
        region: str | None = None,
        endpoint_url: str | None = None,
        public_url: str | None = None,
    ) -> None:
        self._client = client
        self.region = region
        self.endpoint_url = endpoint_url.rstrip("/") if endpoint_url else None
        self.public_url = public_url.rstrip("/") if public_url else None

    @classmethod
    def from_settings(cls, settings: Settings) -> S3ObjectStorage:
        client = boto3.client(
            "s3",
            endpoint_url=settings.s3_endpoint_url,
            region_name=settings.s3_region,
            aws_access_key_id=settings.s3_access_key,
            aws_secret_access_key=settings.s3_secret_key,
        )
        return cls(
            client,
            region=settings.s3_region,
            endpoint_url=settings.s3_endpoint_url,
            public_url=settings.s3_public_url,
        )

    async def list_buckets(self) -> list[Bucket]:
        try:
            response = await asyncio.to_thread(self._client.list_buckets)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Could not list buckets: {exc}") from exc
        return [Bucket(name=item["Name"]) for item in response.get("Buckets", [])]

    async def create_bucket(self, name: str, *, public: bool = False) -> Bucket:
        kwargs: dict[str, Any] = {"Bucket": name}
        if self.region and self.region != "us-east-1":
            kwargs["CreateBucketConfiguration"] = {"LocationConstraint": self.region}
        try:
            await asyncio.to_thread(self._client.create_bucket, **kwargs)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in _S3_EXISTS_CODES:
                raise BucketAlreadyExistsError(f"Bucket {name!r} already exists") from exc
            raise StorageError(f"Could not create bucket {name!r}: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"Could not create bucket {name!r}: {exc}") from exc

        if public:
            try:
                await asyncio.to_thread(
                    self._client.put_bucket_policy,
                    Bucket=name,
                    Policy=_public_read_policy(name),
                )
            except (BotoCoreError, ClientError) as exc:
                raise StorageError(f"Could not make bucket {name!r} public: {exc}") from exc
        logger.info("Created bucket %s (public=%s)", name, public)
        return Bucket(name=name, public=public)

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        *,
        content_type: str | None = None,
        cache_control: str | None = None,
        upsert: bool = False,
    ) -> str:
        key = _clean_key(path)
        if not upsert and await self._exists(bucket, key):
            raise StorageError(f"Object {bucket}/{key} already exists")

        kwargs: dict[str, Any] = {"Bucket": bucket, "Key": key, "Body": data}
        if content_type:
            kwargs["ContentType"] = content_type
        if cache_control:
            kwargs["CacheControl"] = f"max-age={cache_control}"
        try:
            await asyncio.to_thread(self._client.put_object, **kwargs)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Could not upload {bucket}/{key}: {exc}") from exc
        return key

    def get_public_url(self, bucket: str, path: str) -> str:
        key = quote(_clean_key(path))
        if self.public_url:
            return f"{self.public_url}/{bucket}/{key}"
        if self.endpoint_url:
            return f"{self.endpoint_url}/{bucket}/{key}"
        return f"https://{bucket}.s3.amazonaws.com/{key}"

    async def _exists(self, bucket: str, key: str) -> bool:
        try:
            await asyncio.to_thread(self._client.head_object, Bucket=bucket, Key=key)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in _S3_MISSING_CODES:
                return False
            raise StorageError(f"Could not inspect {bucket}/{key}: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"Could not inspect {bucket}/{key}: {exc}") from exc
        return True


def build_storage(settings: Settings) -> ObjectStorage:
    """Return the storage backend selected by `STORAGE_BACKEND`."""
    backend = settings.storage_backend.lower()
    if backend == "local":
        return LocalObjectStorage(settings.storage_root, settings.storage_public_url)
    if backend == "s3":
        return S3ObjectStorage.from_settings(settings)
    raise ValueError(f"Unsupported storage backend {settings.storage_backend!r}")
