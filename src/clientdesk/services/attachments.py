"""Chat attachment uploads to object storage."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from pathlib import PurePosixPath

from clientdesk.backend.errors import BucketAlreadyExistsError, StorageError
from clientdesk.backend.storage import ObjectStorage
from clientdesk.schemas.chat_message import AttachmentType
from clientdesk.services.errors import InvalidAttachmentError, UploadError

logger = logging.getLogger(__name__)

DEFAULT_BUCKET = "chat-attachments"
ADMIN_PREFIX = "admin-attachments"
CLIENT_PREFIX = "client-attachments"


@dataclass(frozen=True)
class AttachmentFile:
    """An uploaded file as received from the browser."""

    filename: str
    content_type: str | None
    data: bytes


@dataclass(frozen=True)
class UploadedAttachment:
    """Where an attachment landed and how to render it."""

    url: str
    type: AttachmentType
    path: str


def classify(content_type: str | None) -> AttachmentType:
    """Return "image" for image/* media types, "file" otherwise."""
    return "image" if (content_type or "").lower().startswith("image/") else "file"


def object_path(client_id: str, filename: str, *, is_admin: bool) -> str:
    """Build `<role prefix>/<client_id>/<random hex><original extension>`."""
    prefix = ADMIN_PREFIX if is_admin else CLIENT_PREFIX
    extension = PurePosixPath(filename or "").suffix.lower()
    return f"{prefix}/{client_id}/{uuid.uuid4().hex}{extension}"


class AttachmentUploader:
    """Stores chat attachments in a public bucket."""

    def __init__(
        self,
        storage: ObjectStorage,
        *,
        bucket: str = DEFAULT_BUCKET,
        max_bytes: int | None = None,
        cache_control: str | None = "3600",
    ) -> None:
        self.storage = storage
        self.bucket = bucket
        self.max_bytes = max_bytes
        self.cache_control = cache_control

    async def upload(
        self,
        file: AttachmentFile,
        client_id: str,
        is_admin: bool,
    ) -> UploadedAttachment:
        """Upload `file` into the conversation of `client_id`.

        Raises:
            InvalidAttachmentError: If the file is empty or too large.
            UploadError: If any storage call fails.
        """
        size = len(file.data)
        if size == 0:
            raise InvalidAttachmentError("Empty file")
        if self.max_bytes is not None and size > self.max_bytes:
            raise InvalidAttachmentError(
                f"File too large ({size} bytes, limit {self.max_bytes})"
            )

        path = object_path(client_id, file.filename, is_admin=is_admin)
        try:
            await self.ensure_bucket()
            await self.storage.upload(
                self.bucket,
                path,
                file.data,
                content_type=file.content_type,
                cache_control=self.cache_control,
                upsert=True,
            )
            url = self.storage.get_public_url(self.bucket, path)
        except StorageError as exc:
            logger.error("Attachment upload for client %s failed: %s", client_id, exc)
            raise UploadError(f"Could not upload {file.filename!r}") from exc

        logger.info("Uploaded attachment %s (%d bytes)", path, size)
        return UploadedAttachment(url=url, type=classify(file.content_type), path=path)

    async def ensure_bucket(self) -> None:
        """Create the attachments bucket as public when it does not exist yet."""
        buckets = await self.storage.list_buckets()
        if any(bucket.name == self.bucket for bucket in buckets):
            return
        try:
            await self.storage.create_bucket(self.bucket, public=True)
        except BucketAlreadyExistsError:
            logger.debug("Bucket %s was created concurrently", self.bucket)
