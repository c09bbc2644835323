from __future__ import annotations

import logging
from pathlib import Path, PurePosixPath
from typing import Protocol, runtime_checkable
from urllib.parse import quote

import aiofiles
import aiofiles.os

from attachment_lite.core.config import get_settings

from .errors import AttachmentValidationError

logger = logging.getLogger(__name__)


@runtime_checkable
class FileStore(Protocol):
    async def write(self, data: bytes, path: str) -> None: ...

    async def delete(self, path: str) -> None: ...

    async def exists(self, path: str) -> bool: ...

    async def url(self, path: str) -> str: ...


class LocalFileStore:
    """File store backed by a directory on local disk.

    Paths are relative, slash separated and may not escape the root. Deleting a
    missing path is not an error.
    """

    def __init__(self, root: str | Path, *, base_url: str = "/uploads"):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    @classmethod
    def from_settings(cls) -> LocalFileStore:
        settings = get_settings()
        root = Path(settings.attachment_storage_dir)
        if not root.is_absolute():
            project_root = Path(__file__).resolve().parents[3]
            root = project_root / root
        return cls(root, base_url=settings.attachment_base_url)

    def _resolve(self, path: str) -> Path:
        relative = PurePosixPath(path)
        if not path or relative.is_absolute() or ".." in relative.parts:
            raise AttachmentValidationError(f"Invalid storage path '{path}'.")
        return self.root.joinpath(*relative.parts)

    async def write(self, data: bytes, path: str) -> None:
        target = self._resolve(path)
        await aiofiles.os.makedirs(target.parent, exist_ok=True)
        async with aiofiles.open(target, "wb") as handle:
            await handle.write(data)
        logger.debug("Wrote %s bytes to %s", len(data), target)

    async def delete(self, path: str) -> None:
        target = self._resolve(path)
        try:
            await aiofiles.os.remove(target)
        except FileNotFoundError:
            return

    async def exists(self, path: str) -> bool:
        return await aiofiles.os.path.isfile(self._resolve(path))

    async def url(self, path: str) -> str:
        self._resolve(path)
        return f"{self.base_url}/{quote(path)}"
