"""Storage backends used to persist measurement and flux CSV files."""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional, Protocol, Union

logger = logging.getLogger(__name__)

FolderRef = Union[str, Path]


class Storage(Protocol):
    async def read_text_file(self, folder: FolderRef, name: str) -> Optional[str]:
        """Return the file contents, or ``None`` when the file does not exist."""

    async def write_text_file(self, folder: FolderRef, name: str, text: str) -> str:
        """Create or overwrite the file and return its path."""


class FolderStorage:
    """Plain directory on the local filesystem. Blocking I/O runs in a worker thread."""

    def __init__(self, encoding: str = "utf-8") -> None:
        self.encoding = encoding

    async def read_text_file(self, folder: FolderRef, name: str) -> Optional[str]:
        return await asyncio.to_thread(self._read, Path(folder) / name)

    async def write_text_file(self, folder: FolderRef, name: str, text: str) -> str:
        return await asyncio.to_thread(self._write, Path(folder), name, text)

    def _read(self, path: Path) -> Optional[str]:
        if not path.exists():
            return None
        return path.read_text(encoding=self.encoding)

    def _write(self, folder: Path, name: str, text: str) -> str:
        folder.mkdir(parents=True, exist_ok=True)
        path = folder / name
        path.write_text(text, encoding=self.encoding)
        logger.debug("Wrote %d characters to %s", len(text), path)
        return str(path)
