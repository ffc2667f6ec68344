"""Document repository interface and a local filesystem implementation.

The retrieval engine only needs three operations from a document repository:
list the supported files under a folder, read a file as text lines and look
up a single file's modification time. Format-specific parsing stays behind
`get_text`.
"""
from __future__ import annotations

import asyncio
import csv
import io
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = [".txt", ".md", ".csv"]

# Library metadata folder that never holds user documents
EXCLUDED_FOLDERS = {"Forms"}


@dataclass(frozen=True)
class FileInfo:
    path: str
    last_modified: datetime


class DocumentStore(ABC):
    """Base contract for document repositories."""

    @abstractmethod
    async def list_supported_files(self, container: str, folder: str) -> List[FileInfo]:
        """List supported files under folder (recursively) with modification times."""
        raise NotImplementedError

    @abstractmethod
    async def get_text(self, container: str, path: str) -> List[str]:
        """Extract a file's text as a list of non-empty lines.

        Return an empty list for files without extractable text.
        """
        raise NotImplementedError

    @abstractmethod
    async def get_file_info(self, container: str, path: str) -> Optional[FileInfo]:
        """Return path and modification time for a file, or None if it does not exist."""
        raise NotImplementedError


def is_file_source(source: str) -> bool:
    """A source with a file extension is a file; anything else is a folder."""
    return bool(os.path.splitext(source.rstrip("/"))[1])


def parse_csv_lines(content: str) -> List[str]:
    """Render CSV rows as `header:value;header:value` lines.

    Headers are lower-cased, values trimmed and blank rows skipped.
    """
    reader = csv.DictReader(io.StringIO(content), skipinitialspace=True)
    if reader.fieldnames is None:
        return []
    reader.fieldnames = [name.strip().lower() for name in reader.fieldnames]

    records = []
    for row in reader:
        values = {k: (v or "").strip() for k, v in row.items() if k is not None}
        if not any(values.values()):
            continue
        records.append(";".join(f"{k}:{v}" for k, v in values.items()))
    return records


def parse_text_lines(content: str) -> List[str]:
    """Split plain text into stripped, non-empty lines."""
    return [line.strip() for line in content.splitlines() if line.strip()]


class LocalDocumentStore(DocumentStore):
    """Documents on the local filesystem.

    A container is a directory under `root`; paths are relative to the
    container, using forward slashes.

    Args:
        root: Base directory holding one sub-directory per container.
    """

    def __init__(self, root: str):
        self.root = Path(root)

    def _resolve(self, container: str, path: str = "") -> Path:
        base = (self.root / container).resolve()
        target = (base / path.lstrip("/")).resolve()
        if target != base and base not in target.parents:
            raise ValueError(f"Path escapes container: {path}")
        return target

    def _relative(self, container: str, target: Path) -> str:
        return target.relative_to(self._resolve(container)).as_posix()

    @staticmethod
    def _modified(target: Path) -> datetime:
        return datetime.fromtimestamp(target.stat().st_mtime, tz=timezone.utc)

    def _list_sync(self, container: str, folder: str) -> List[FileInfo]:
        base = self._resolve(container, folder)
        if not base.is_dir():
            logger.warning(f"[DOCUMENTS] Folder not found: {container}/{folder}")
            return []

        files = []
        for dirpath, dirnames, filenames in os.walk(base):
            dirnames[:] = sorted(d for d in dirnames if d not in EXCLUDED_FOLDERS)
            for filename in sorted(filenames):
                if os.path.splitext(filename)[1].lower() not in SUPPORTED_EXTENSIONS:
                    continue
                target = Path(dirpath) / filename
                files.append(FileInfo(
                    path=self._relative(container, target),
                    last_modified=self._modified(target),
                ))
        return files

    def _read_sync(self, container: str, path: str) -> List[str]:
        target = self._resolve(container, path)
        extension = target.suffix.lower()
        if extension not in SUPPORTED_EXTENSIONS or not target.is_file():
            return []

        content = target.read_text(encoding="utf-8", errors="replace")
        if extension == ".csv":
            return parse_csv_lines(content)
        return parse_text_lines(content)

    def _info_sync(self, container: str, path: str) -> Optional[FileInfo]:
        target = self._resolve(container, path)
        if not target.is_file():
            return None
        return FileInfo(path=self._relative(container, target), last_modified=self._modified(target))

    async def list_supported_files(self, container: str, folder: str) -> List[FileInfo]:
        return await asyncio.to_thread(self._list_sync, container, folder)

    async def get_text(self, container: str, path: str) -> List[str]:
        return await asyncio.to_thread(self._read_sync, container, path)

    async def get_file_info(self, container: str, path: str) -> Optional[FileInfo]:
        return await asyncio.to_thread(self._info_sync, container, path)
