"""
Object storage for bulk issuance archives.
Archives are backed up to S3 under a prefix per issuance type and can be
searched by upload date.
"""

import asyncio
from datetime import timezone
from enum import IntEnum
from typing import Any, Dict, List, Optional, Set

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..core import messages
from ..core.config import Settings
from ..core.errors import PersistenceError, ValidationError
from ..utils.dates import normalize_search_date
from ..utils.logger import get_logger

logger = get_logger("storage_service")

BACKUP_ROOT = "bulkbackup/"


class IssuanceType(IntEnum):
    """Backup category of a bulk archive."""
    SINGLE = 1
    BATCH = 2


BACKUP_PREFIXES = {
    IssuanceType.SINGLE: "bulkbackup/Single Issuance/",
    IssuanceType.BATCH: "bulkbackup/Batch Issuance/",
}


def backup_prefix(issuance_type: Optional[int]) -> str:
    try:
        return BACKUP_PREFIXES[IssuanceType(issuance_type)]
    except (ValueError, KeyError):
        return BACKUP_ROOT


class StorageService:
    """S3-backed storage; blocking client calls run in worker threads."""

    def __init__(self, client: Any, bucket_name: str, signed_url_ttl: int = 3600):
        self.client = client
        self.bucket_name = bucket_name
        self.signed_url_ttl = signed_url_ttl
        self._background_tasks: Set[asyncio.Task] = set()

    @classmethod
    def from_settings(cls, settings: Settings) -> "StorageService":
        client = boto3.client(
            "s3",
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            region_name=settings.aws_region,
            config=boto3.session.Config(signature_version="s3v4")
        )
        return cls(client, settings.bucket_name, settings.signed_url_ttl)

    async def put(self, key: str, content: bytes, content_type: str = "application/zip") -> str:
        try:
            await asyncio.to_thread(
                self.client.put_object,
                Bucket=self.bucket_name,
                Key=key,
                Body=content,
                ContentType=content_type
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Upload of {key} failed: {e}")
            raise PersistenceError(messages.INTERNAL_ERROR, details=str(e))
        logger.info(f"Uploaded {key} to bucket {self.bucket_name}")
        return key

    async def signed_url(self, key: str, ttl: Optional[int] = None) -> str:
        try:
            return await asyncio.to_thread(
                self.client.generate_presigned_url,
                "get_object",
                Params={"Bucket": self.bucket_name, "Key": key},
                ExpiresIn=ttl or self.signed_url_ttl
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Signing URL for {key} failed: {e}")
            raise PersistenceError(messages.INTERNAL_ERROR, details=str(e))

    def _list_sync(self, prefix: str) -> List[Dict[str, Any]]:
        objects = []
        paginator = self.client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket_name, Prefix=prefix):
            objects.extend(page.get("Contents", []))
        return objects

    async def list(self, prefix: str) -> List[Dict[str, Any]]:
        try:
            return await asyncio.to_thread(self._list_sync, prefix)
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Listing {prefix} failed: {e}")
            raise PersistenceError(messages.INTERNAL_ERROR, details=str(e))

    async def backup_bulk_archive(self, filename: str, content: bytes, issuance_type: int) -> str:
        return await self.put(backup_prefix(issuance_type) + filename, content)

    def backup_in_background(self, filename: str, content: bytes, issuance_type: int) -> asyncio.Task:
        """Start a backup without waiting for it; failures are logged."""
        task = asyncio.create_task(self.backup_bulk_archive(filename, content, issuance_type))
        self._background_tasks.add(task)
        task.add_done_callback(self._on_backup_done)
        return task

    def _on_backup_done(self, task: asyncio.Task) -> None:
        self._background_tasks.discard(task)
        if task.cancelled():
            logger.warning("Bulk archive backup was cancelled")
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Bulk archive backup failed: {error}")

    async def search_backups(self, search_date: str, category: int) -> List[str]:
        """
        Signed URLs for backups uploaded on a given UTC date.

        Args:
            search_date: MM-DD-YYYY or MM/DD/YYYY
            category: 1 for single issuance, 2 for batch issuance

        Raises:
            ValidationError: On bad input or when nothing matches
        """
        normalized = normalize_search_date(search_date)
        if normalized is None or category not in (IssuanceType.SINGLE, IssuanceType.BATCH):
            raise ValidationError(messages.INVALID_INPUT, details=search_date)

        month, day, year = normalized.split("-")
        wanted = f"{year}-{month}-{day}"

        keys = []
        for item in await self.list(backup_prefix(category)):
            modified = item["LastModified"]
            if modified.tzinfo is not None:
                modified = modified.astimezone(timezone.utc)
            if modified.strftime("%Y-%m-%d") == wanted:
                keys.append(item["Key"])

        if not keys:
            raise ValidationError(messages.NO_MATCH_FOUND_IN_DATES, details=normalized)

        return [await self.signed_url(key) for key in keys]
