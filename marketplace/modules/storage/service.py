"""File storage collaborator backed by S3."""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import uuid
from dataclasses import dataclass
from functools import cached_property

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from marketplace.config import settings
from marketplace.exceptions import AppException

logger = logging.getLogger(__name__)


class StorageException(AppException):
    code = "STORAGE_ERROR"
    status_code = 502


@dataclass
class AttachmentUpload:
    """A file received on a request, read fully into memory."""

    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


class S3FileStorage:
    def __init__(self, bucket: str | None = None, client=None) -> None:
        self.bucket = bucket or settings.s3_bucket
        if client is not None:
            self.__dict__["client"] = client

    @cached_property
    def client(self):
        return boto3.client(
            "s3",
            region_name=settings.s3_region,
            endpoint_url=settings.s3_endpoint_url,
        )

    def _public_url(self, key: str) -> str:
        if settings.s3_public_base_url:
            return f"{settings.s3_public_base_url.rstrip('/')}/{key}"
        return f"https://{self.bucket}.s3.{settings.s3_region}.amazonaws.com/{key}"

    async def upload(self, data: bytes, folder: str, content_type: str) -> str:
        """Store ``data`` under ``folder`` and return its public URL."""
        extension = mimetypes.guess_extension(content_type or "") or ""
        key = f"{folder}/{uuid.uuid4().hex}{extension}"
        try:
            await asyncio.to_thread(
                self.client.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type or "application/octet-stream",
            )
        except (BotoCoreError, ClientError) as exc:
            logger.error("S3 upload to %s/%s failed: %s", self.bucket, key, exc)
            raise StorageException("Could not store the uploaded file") from exc
        logger.info("Stored %d bytes at s3://%s/%s", len(data), self.bucket, key)
        return self._public_url(key)


_storage: S3FileStorage | None = None


def get_file_storage() -> S3FileStorage:
    """FastAPI dependency returning the process-wide storage client."""
    global _storage
    if _storage is None:
        _storage = S3FileStorage()
    return _storage
