"""Local-disk avatar files."""

from __future__ import annotations

import asyncio
import logging
import uuid
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_EXTENSION = ".jpg"
CONTENT_TYPE_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
}


def extension_for(content_type: str | None) -> str:
    normalized = (content_type or "").strip().lower()
    return CONTENT_TYPE_EXTENSIONS.get(normalized, DEFAULT_EXTENSION)


class AvatarStore:
    """Writes avatar files under ``upload_dir`` and maps them to public URLs."""

    def __init__(self, upload_dir: Path | str, url_prefix: str = "/avatars/") -> None:
        self.upload_dir = Path(upload_dir)
        self.url_prefix = url_prefix if url_prefix.endswith("/") else f"{url_prefix}/"
        self.ensure_directory()

    def ensure_directory(self) -> None:
        self.upload_dir.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def filename_prefix(user_id: int) -> str:
        return f"avatar_{user_id}_"

    def build_filename(self, user_id: int, content_type: str | None) -> str:
        return f"{self.filename_prefix(user_id)}{uuid.uuid4()}{extension_for(content_type)}"

    def url_for(self, filename: str) -> str:
        return f"{self.url_prefix}{filename}"

    def path_for_url(self, url: str | None, owner_id: int | None = None) -> Path | None:
        """Return the file behind a URL this store issued, or None for anything else.

        With ``owner_id``, only files issued to that user resolve.
        """
        if not url or not url.startswith(self.url_prefix):
            return None
        filename = url[len(self.url_prefix):]
        if not filename or "/" in filename or "\\" in filename or filename in {".", ".."}:
            return None
        if owner_id is not None and not filename.startswith(self.filename_prefix(owner_id)):
            return None
        return self.upload_dir / filename

    def _write(self, filename: str, data: bytes) -> Path:
        self.ensure_directory()
        path = self.upload_dir / filename
        path.write_bytes(data)
        return path

    async def write(self, filename: str, data: bytes) -> str:
        """Persist ``data`` and return its public URL."""
        path = await asyncio.to_thread(self._write, filename, data)
        logger.debug("Avatar written", extra={"path": str(path), "size": len(data)})
        return self.url_for(filename)

    async def delete_url(self, url: str | None, *, owner_id: int) -> bool:
        """Best-effort removal of ``owner_id``'s avatar file; never raises on I/O errors."""
        path = self.path_for_url(url, owner_id)
        if path is None:
            if url and url.startswith(self.url_prefix):
                logger.warning(
                    "Refusing to remove avatar not owned by user",
                    extra={"user_id": owner_id, "avatar_url": url},
                )
            return False
        try:
            await asyncio.to_thread(path.unlink, missing_ok=True)
        except OSError:
            logger.warning("Failed to remove avatar file", extra={"path": str(path)}, exc_info=True)
            return False
        return True
