"""
ZeroVault Storage — local filesystem for encrypted blobs and the metadata document.

Blobs are opaque envelopes stored flat under ``root`` by file id. The
metadata document is replaced atomically (write temp file, fsync,
``os.replace``), so a crash mid-write leaves the previous version intact.
Blocking filesystem calls run in worker threads.
"""
import os
import re
import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import NamedTuple, Union

from .exceptions import FormatError, NotFound

logger = logging.getLogger("zerovault.storage")

_BLOB_ID = re.compile(r"^[A-Za-z0-9_-]{1,128}$")
_TMP_SUFFIX = ".tmp"


class BlobInfo(NamedTuple):
    file_id: str
    size: int
    modified_at: int  # epoch ms


class BaseStorage(ABC):
    """Byte store addressed by file id."""

    @abstractmethod
    async def write(self, file_id: str, data: bytes) -> None:
        pass

    @abstractmethod
    async def read(self, file_id: str) -> bytes:
        """Return the blob; raise NotFound if absent."""
        pass

    @abstractmethod
    async def delete(self, file_id: str) -> bool:
        """Remove the blob. Return False if it did not exist."""
        pass

    @abstractmethod
    async def exists(self, file_id: str) -> bool:
        pass

    @abstractmethod
    async def list_blobs(self) -> list[BlobInfo]:
        pass

    @abstractmethod
    async def list_partials(self) -> list[BlobInfo]:
        """Leftovers of writes that never completed, by file id."""
        pass

    @abstractmethod
    async def discard_partial(self, file_id: str) -> bool:
        pass


class LocalStorage(BaseStorage):
    """Flat directory of blobs named by file id."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)

    def _path(self, file_id: str) -> Path:
        if not _BLOB_ID.match(file_id):
            raise FormatError("Invalid file id")
        return self.root / file_id

    async def init(self) -> None:
        await asyncio.to_thread(self.root.mkdir, parents=True, exist_ok=True)

    async def write(self, file_id: str, data: bytes) -> None:
        path = self._path(file_id)
        tmp = path.with_name(path.name + _TMP_SUFFIX)

        def _write() -> None:
            self.root.mkdir(parents=True, exist_ok=True)
            try:
                with tmp.open("wb") as f:
                    f.write(data)
                os.replace(tmp, path)
            except OSError:
                tmp.unlink(missing_ok=True)
                raise
        await asyncio.to_thread(_write)

    async def read(self, file_id: str) -> bytes:
        path = self._path(file_id)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError:
            raise NotFound() from None

    async def delete(self, file_id: str) -> bool:
        path = self._path(file_id)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            return False
        return True

    async def exists(self, file_id: str) -> bool:
        return await asyncio.to_thread(self._path(file_id).is_file)

    def _scan(self, suffix: str) -> list[BlobInfo]:
        if not self.root.is_dir():
            return []
        out = []
        for entry in os.scandir(self.root):
            if not entry.is_file() or not entry.name.endswith(suffix):
                continue
            file_id = entry.name[:len(entry.name) - len(suffix)]
            if not _BLOB_ID.match(file_id):
                continue
            try:
                st = entry.stat()
            except FileNotFoundError:
                continue
            out.append(BlobInfo(file_id, st.st_size, int(st.st_mtime * 1000)))
        return out

    async def list_blobs(self) -> list[BlobInfo]:
        return await asyncio.to_thread(self._scan, "")

    async def list_partials(self) -> list[BlobInfo]:
        return await asyncio.to_thread(self._scan, _TMP_SUFFIX)

    async def discard_partial(self, file_id: str) -> bool:
        path = self._path(file_id)
        tmp = path.with_name(path.name + _TMP_SUFFIX)
        try:
            await asyncio.to_thread(tmp.unlink)
        except FileNotFoundError:
            return False
        return True


class MetadataFile:
    """Atomically replaced document holding the serialized metadata store."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    async def load(self) -> bytes | None:
        """Return the current document, or None if it was never written."""
        try:
            return await asyncio.to_thread(self.path.read_bytes)
        except FileNotFoundError:
            return None

    async def save(self, payload: bytes) -> None:
        tmp = self.path.with_name(self.path.name + _TMP_SUFFIX)

        def _write() -> None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tmp.open("wb") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path)
        await asyncio.to_thread(_write)
