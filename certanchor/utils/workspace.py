"""
Scratch space for uploads and generated artifacts.
Each request works inside its own directory under the uploads area, which is
removed when the request finishes, whatever the outcome.
"""

import asyncio
import os
import shutil
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncIterator

import aiofiles

from .logger import get_logger

logger = get_logger("workspace")


@asynccontextmanager
async def request_workspace(uploads_dir: str) -> AsyncIterator[str]:
    """
    Create a unique working directory and delete it on exit.

    Args:
        uploads_dir: Shared uploads area

    Yields:
        Absolute path of the request directory
    """
    path = os.path.abspath(os.path.join(uploads_dir, uuid.uuid4().hex))
    os.makedirs(path, exist_ok=True)
    try:
        yield path
    finally:
        await asyncio.to_thread(shutil.rmtree, path, True)
        logger.debug(f"Removed workspace {path}")


async def write_bytes(path: str, content: bytes) -> None:
    async with aiofiles.open(path, "wb") as f:
        await f.write(content)


async def read_bytes(path: str) -> bytes:
    async with aiofiles.open(path, "rb") as f:
        return await f.read()


def sweep_uploads(uploads_dir: str) -> int:
    """
    Delete everything inside the uploads area.

    Returns:
        Number of entries removed
    """
    if not os.path.isdir(uploads_dir):
        return 0

    removed = 0
    for entry in os.listdir(uploads_dir):
        path = os.path.join(uploads_dir, entry)
        if os.path.isdir(path):
            shutil.rmtree(path, ignore_errors=True)
        else:
            os.remove(path)
        removed += 1
    logger.info(f"Upload sweep removed {removed} entries from {uploads_dir}")
    return removed


def seconds_until(hour: int, now: datetime) -> float:
    """Seconds from now until the next occurrence of the given hour."""
    target = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


async def run_upload_sweeper(uploads_dir: str, hour: int) -> None:
    """Empty the uploads area once a day at the given hour, until cancelled."""
    while True:
        await asyncio.sleep(seconds_until(hour, datetime.now()))
        try:
            await asyncio.to_thread(sweep_uploads, uploads_dir)
        except OSError as e:
            logger.error(f"Upload sweep failed: {e}")
