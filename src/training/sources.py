"""Local storage of uploaded PDF bytes.

Files land under ``{base_path}/{tenant}/{uuid}_{filename}``. The stored path
is recorded on the document so reprocessing can re-read the original bytes.
Disk I/O runs in a worker thread to keep the event loop free.
"""

from __future__ import annotations

import asyncio
import re
import uuid
from pathlib import Path

import structlog

logger = structlog.get_logger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def safe_filename(filename: str, default: str = "document.pdf") -> str:
    """Reduce an uploaded filename to a safe basename."""
    name = Path(filename or "").name
    name = _UNSAFE_CHARS.sub("_", name).strip("._")
    return name or default


class LocalSourceStorage:
    """Keeps original document bytes on the local filesystem.

    Args:
        base_path: Root directory for stored files (created on demand).
    """

    def __init__(self, base_path: str | Path) -> None:
        self._base_path = Path(base_path)

    @property
    def base_path(self) -> Path:
        return self._base_path

    async def save(self, tenant_id: str, filename: str, data: bytes) -> str:
        """Write bytes under the tenant's directory and return the stored path."""
        directory = self._base_path / safe_filename(tenant_id, default="tenant")
        path = directory / f"{uuid.uuid4()}_{safe_filename(filename)}"

        def _write() -> None:
            directory.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        await asyncio.to_thread(_write)
        logger.info("sources.saved", tenant_id=tenant_id, path=str(path), size_bytes=len(data))
        return str(path)

    async def read(self, path: str) -> bytes:
        """Read stored bytes.

        Raises:
            FileNotFoundError: The file is gone.
        """
        return await asyncio.to_thread(Path(path).read_bytes)

    async def delete(self, path: str) -> bool:
        """Delete stored bytes. Returns False if the file was already gone."""

        def _unlink() -> bool:
            try:
                Path(path).unlink()
            except FileNotFoundError:
                return False
            return True

        removed = await asyncio.to_thread(_unlink)
        logger.info("sources.deleted", path=path, removed=removed)
        return removed
