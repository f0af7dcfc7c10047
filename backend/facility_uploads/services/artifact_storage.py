"""Final artifact storage. Assembled and single-shot dumps land here."""
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import aiofiles
import aiofiles.os
from fastapi import UploadFile

from facility_uploads.config import settings
from facility_uploads.services.upload_errors import ValidationError
from facility_uploads.services.validation import safe_path_component

logger = logging.getLogger(__name__)

DEFAULT_EXTENSION = ".sql"
COPY_BLOCK_SIZE = 1024 * 1024


class ArtifactStorage:
    """Names, writes and deletes facility dump files on local disk."""

    def __init__(self, base_path: Optional[str | Path] = None):
        self.base_path = Path(base_path or settings.UPLOAD_FOLDER)
        self.base_path.mkdir(parents=True, exist_ok=True)

    async def path_for(self, facility_code: str, original_name: str, now: Optional[datetime] = None) -> Path:
        """<code>-<timestamp><ext>, with a numeric suffix if that name is already taken."""
        now = now or datetime.now(timezone.utc)
        ext = Path(original_name).suffix.lower() or DEFAULT_EXTENSION
        if ext not in settings.allowed_extensions:
            ext = DEFAULT_EXTENSION
        stem = f"{safe_path_component(facility_code)}-{now.strftime('%Y%m%d%H%M%S%f')}"
        candidate = self.base_path / f"{stem}{ext}"
        suffix = 1
        while await aiofiles.os.path.exists(candidate):
            candidate = self.base_path / f"{stem}-{suffix}{ext}"
            suffix += 1
        return candidate

    def check_extension(self, original_name: str) -> None:
        ext = Path(original_name).suffix.lower()
        if ext not in settings.allowed_extensions:
            allowed = ", ".join(settings.allowed_extensions)
            raise ValidationError(
                f"Invalid file type. Only PostgreSQL dump files allowed ({allowed})"
            )

    async def save_upload(self, upload: UploadFile, destination: Path, max_bytes: Optional[int] = None) -> int:
        """Stream an incoming multipart file to destination. Returns bytes written."""
        max_bytes = max_bytes or settings.MAX_UPLOAD_BYTES
        written = 0
        await aiofiles.os.makedirs(destination.parent, exist_ok=True)
        try:
            async with aiofiles.open(destination, "wb") as f:
                while True:
                    block = await upload.read(COPY_BLOCK_SIZE)
                    if not block:
                        break
                    written += len(block)
                    if written > max_bytes:
                        raise ValidationError(f"File exceeds the {max_bytes} byte upload limit")
                    await f.write(block)
        except BaseException:
            await self.delete(str(destination))
            raise
        if written == 0:
            await self.delete(str(destination))
            raise ValidationError("Uploaded file is empty")
        return written

    async def delete(self, path: Optional[str]) -> bool:
        """Delete an artifact. Missing files are not an error."""
        if not path:
            return False
        try:
            await aiofiles.os.remove(path)
            logger.info(f"Deleted artifact {path}")
            return True
        except FileNotFoundError:
            return False

    async def exists(self, path: Optional[str]) -> bool:
        return bool(path) and await aiofiles.os.path.isfile(path)

    async def size(self, path: str) -> int:
        return await aiofiles.os.path.getsize(path)
