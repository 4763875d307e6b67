"""
Media storage on the local filesystem.

Files are stored under {media_root}/{folder}/{yyyy}/{mm}/{uuid}{ext} and
served from {media_base_url}/... by the web tier. Writes run in a thread
so large uploads do not block the event loop.
"""

import asyncio
import mimetypes
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from uuid import uuid4

from urbanwatch.config import get_logger
from urbanwatch.errors import UpstreamIntegrationError

logger = get_logger(__name__)


@dataclass(frozen=True)
class StoredFile:
    """Where a saved file lives."""

    storage_key: str
    url: str
    size: int


def _extension_for(filename: str | None, mime_type: str | None) -> str:
    suffix = Path(filename).suffix.lower() if filename else ""
    if suffix:
        return suffix
    return (mimetypes.guess_extension(mime_type or "") or ".bin").lower()


class LocalMediaStorage:
    """Saves uploads below a root directory."""

    def __init__(self, root: str | Path, base_url: str = "/media") -> None:
        self._root = Path(root)
        self._base_url = base_url.rstrip("/")

    def _write_sync(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    async def save(
        self,
        data: bytes,
        folder: str,
        filename: str | None = None,
        mime_type: str | None = None,
    ) -> StoredFile:
        """
        Save bytes under a folder.

        Raises:
            UpstreamIntegrationError: If the file cannot be written.
        """
        now = datetime.now(UTC)
        key = f"{folder}/{now:%Y}/{now:%m}/{uuid4().hex}{_extension_for(filename, mime_type)}"
        path = self._root / key

        try:
            await asyncio.to_thread(self._write_sync, path, data)
        except OSError as e:
            logger.error("Failed to store media", storage_key=key, error=str(e))
            raise UpstreamIntegrationError(
                "Failed to store media file",
                service="storage",
            ) from e

        logger.debug("Stored media", storage_key=key, size=len(data))
        return StoredFile(storage_key=key, url=f"{self._base_url}/{key}", size=len(data))

    async def delete(self, storage_key: str) -> None:
        """Remove a stored file; missing files are ignored."""
        path = self._root / storage_key
        await asyncio.to_thread(path.unlink, missing_ok=True)
