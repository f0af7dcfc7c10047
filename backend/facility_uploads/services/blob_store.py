"""Blob storage abstraction for upload session state.

Keys are slash-separated strings ("chunks/<upload_id>/3.part"). The session
store only needs put/exists/read/touch/delete/list, so any object store can stand
in for the local disk implementation.
"""
import logging
import os
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, List, Optional

import aiofiles
import aiofiles.os

logger = logging.getLogger(__name__)

READ_BLOCK_SIZE = 1024 * 1024

_utime = aiofiles.os.wrap(os.utime)


class BlobNotFound(Exception):
    """Raised when reading a key that does not exist."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Blob not found: {key}")


class BlobStore(ABC):
    """Minimal blob-addressable storage interface."""

    @abstractmethod
    async def put(self, key: str, data: bytes) -> None:
        """Write data under key, replacing any previous value atomically."""

    @abstractmethod
    async def get(self, key: str) -> bytes:
        """Read the whole blob. Raises BlobNotFound."""

    @abstractmethod
    def iter_blocks(self, key: str, block_size: int = READ_BLOCK_SIZE) -> AsyncIterator[bytes]:
        """Stream the blob in blocks. Raises BlobNotFound."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        pass

    @abstractmethod
    async def touch(self, key: str) -> bool:
        """Bump the modification time of an existing blob without rewriting it.

        Never creates the key. Returns False if it is absent.
        """

    @abstractmethod
    async def modified_at(self, key: str) -> Optional[datetime]:
        """Last write or touch time (UTC), or None if the key is absent."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete key. Returns False if it was already absent."""

    @abstractmethod
    async def list(self, prefix: str) -> List[str]:
        """List keys directly under a "directory" prefix ending in '/'."""

    async def delete_prefix(self, prefix: str) -> int:
        """Delete every key under prefix. Returns how many were removed."""
        removed = 0
        for key in await self.list(prefix):
            if await self.delete(key):
                removed += 1
        return removed


class LocalBlobStore(BlobStore):
    """Blob store backed by a directory on the local filesystem."""

    _TMP_SUFFIX = ".tmp"

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if path != self.root and self.root not in path.parents:
            raise ValueError(f"Blob key escapes storage root: {key}")
        return path

    async def put(self, key: str, data: bytes) -> None:
        path = self._path(key)
        await aiofiles.os.makedirs(path.parent, exist_ok=True)
        # Readers must never observe a half-written blob
        tmp_path = path.with_name(f"{path.name}.{uuid.uuid4().hex}{self._TMP_SUFFIX}")
        try:
            async with aiofiles.open(tmp_path, "wb") as f:
                await f.write(data)
            await aiofiles.os.replace(tmp_path, path)
        except BaseException:
            if await aiofiles.os.path.exists(tmp_path):
                await aiofiles.os.remove(tmp_path)
            raise

    async def get(self, key: str) -> bytes:
        path = self._path(key)
        try:
            async with aiofiles.open(path, "rb") as f:
                return await f.read()
        except FileNotFoundError:
            raise BlobNotFound(key) from None

    async def iter_blocks(self, key: str, block_size: int = READ_BLOCK_SIZE) -> AsyncIterator[bytes]:
        path = self._path(key)
        try:
            f = await aiofiles.open(path, "rb")
        except FileNotFoundError:
            raise BlobNotFound(key) from None
        async with f:
            while True:
                block = await f.read(block_size)
                if not block:
                    break
                yield block

    async def exists(self, key: str) -> bool:
        return await aiofiles.os.path.isfile(self._path(key))

    async def touch(self, key: str) -> bool:
        try:
            await _utime(self._path(key))
            return True
        except FileNotFoundError:
            return False

    async def modified_at(self, key: str) -> Optional[datetime]:
        try:
            mtime = await aiofiles.os.path.getmtime(self._path(key))
        except FileNotFoundError:
            return None
        return datetime.fromtimestamp(mtime, timezone.utc)

    async def delete(self, key: str) -> bool:
        try:
            await aiofiles.os.remove(self._path(key))
            return True
        except FileNotFoundError:
            return False

    async def list(self, prefix: str) -> List[str]:
        directory = self._path(prefix)
        try:
            names = await aiofiles.os.listdir(directory)
        except (FileNotFoundError, NotADirectoryError):
            return []
        base = prefix if prefix.endswith("/") else f"{prefix}/"
        return sorted(
            f"{base}{name}" for name in names
            if not name.endswith(self._TMP_SUFFIX) and (directory / name).is_file()
        )

    async def delete_prefix(self, prefix: str) -> int:
        removed = await super().delete_prefix(prefix)
        directory = self._path(prefix)
        try:
            await aiofiles.os.rmdir(directory)
        except FileNotFoundError:
            pass
        except OSError as e:
            # A concurrent chunk write recreated a file in the directory
            logger.warning(f"Could not remove blob directory {directory}: {e}")
        return removed
