"""
JSON and text file storage rooted at a base path.

All paths are ``(directory, filename)`` pairs relative to ``base_path``.
Reads of missing files return None; unreadable or corrupt files raise
:class:`~knoa.core.errors.StorageError`. Writes are not transactional: a crash
mid-write may leave a partial file, which the next read reports as corrupt.

File I/O runs in a worker thread via :func:`asyncio.to_thread` so the event
loop stays responsive while a repository reads or writes.

Events:
    storage:file_written   {directory, filename, type}
    storage:file_deleted   {directory, filename}
"""

from __future__ import annotations

import asyncio
import json
import re
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any

from knoa.core.errors import StorageError
from knoa.core.events.helpers import emit_standardized_event
from knoa.core.logging import get_logger

if TYPE_CHECKING:
    from knoa.core.events.bus import EventBus

__all__ = ["StorageService"]


class StorageService:
    """File-backed storage used by the repositories."""

    def __init__(
        self,
        base_path: str | Path | None = None,
        *,
        event_bus: EventBus | None = None,
        logger: Any = None,
    ) -> None:
        self.base_path = Path(base_path) if base_path is not None else Path.cwd()
        self.event_bus = event_bus
        self.logger = logger or get_logger(__name__)

    def get_file_path(self, directory: str, filename: str | None = None) -> Path:
        path = self.base_path / directory
        return path / filename if filename else path

    # ── Sync helpers ─────────────────────────────────────────────────────

    def ensure_directory_exists(self, directory: str) -> Path:
        """Create ``directory`` (and parents) below the base path if needed."""
        path = self.get_file_path(directory)
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(
                f"Failed to create directory: {directory}",
                cause=e,
                context={"directory": directory, "operation": "ensure_directory_exists"},
            ) from e
        return path

    def file_exists(self, directory: str, filename: str | None = None) -> bool:
        return self.get_file_path(directory, filename).exists()

    # ── JSON ─────────────────────────────────────────────────────────────

    async def read_json(self, directory: str, filename: str) -> Any:
        """Parse a JSON file; None when it does not exist."""
        path = self.get_file_path(directory, filename)

        def _read() -> Any:
            if not path.exists():
                return None
            return json.loads(path.read_text(encoding="utf-8"))

        try:
            return await asyncio.to_thread(_read)
        except (OSError, ValueError) as e:
            self.logger.error("storage_read_failed", path=str(path), error=str(e))
            raise StorageError(
                f"Failed to read JSON file: {directory}/{filename}",
                cause=e,
                context={"directory": directory, "filename": filename, "operation": "read_json"},
            ) from e

    async def write_json(self, directory: str, filename: str, data: Any) -> bool:
        """Serialize ``data`` with two-space indentation."""
        try:
            text = json.dumps(data, indent=2, ensure_ascii=False, default=str)
        except (TypeError, ValueError) as e:
            raise StorageError(
                f"Failed to serialize JSON for {directory}/{filename}",
                cause=e,
                context={"directory": directory, "filename": filename, "operation": "write_json"},
            ) from e
        await self._write(directory, filename, text, "json", "write_json")
        return True

    async def update_json(
        self,
        directory: str,
        filename: str,
        updater: Callable[[Any], Any],
    ) -> Any:
        """Read, transform with ``updater`` and write back. Returns the new value."""
        current = await self.read_json(directory, filename)
        updated = updater(current)
        await self.write_json(directory, filename, updated)
        return updated

    # ── Text ─────────────────────────────────────────────────────────────

    async def read_text(self, directory: str, filename: str) -> str | None:
        path = self.get_file_path(directory, filename)

        def _read() -> str | None:
            if not path.exists():
                return None
            return path.read_text(encoding="utf-8")

        try:
            return await asyncio.to_thread(_read)
        except OSError as e:
            raise StorageError(
                f"Failed to read text file: {directory}/{filename}",
                cause=e,
                context={"directory": directory, "filename": filename, "operation": "read_text"},
            ) from e

    async def write_text(self, directory: str, filename: str, content: str) -> bool:
        await self._write(directory, filename, content, "text", "write_text")
        return True

    async def _write(
        self,
        directory: str,
        filename: str,
        content: str,
        kind: str,
        operation: str,
    ) -> None:
        path = self.get_file_path(directory, filename)

        def _do_write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")

        try:
            await asyncio.to_thread(_do_write)
        except OSError as e:
            self.logger.error("storage_write_failed", path=str(path), error=str(e))
            raise StorageError(
                f"Failed to write file: {directory}/{filename}",
                cause=e,
                context={"directory": directory, "filename": filename, "operation": operation},
            ) from e

        emit_standardized_event(
            self.event_bus,
            "storage",
            "file_written",
            {"directory": directory, "filename": filename, "type": kind},
        )

    # ── Directory operations ─────────────────────────────────────────────

    async def list_files(self, directory: str, pattern: str | None = None) -> list[str]:
        """Sorted file names in ``directory`` whose name matches ``pattern`` (regex)."""
        path = self.get_file_path(directory)
        regex = re.compile(pattern) if pattern else None

        def _list() -> list[str]:
            if not path.is_dir():
                return []
            return sorted(
                p.name
                for p in path.iterdir()
                if p.is_file() and (regex is None or regex.search(p.name))
            )

        try:
            return await asyncio.to_thread(_list)
        except OSError as e:
            raise StorageError(
                f"Failed to list files: {directory}",
                cause=e,
                context={"directory": directory, "operation": "list_files"},
            ) from e

    async def delete_file(self, directory: str, filename: str) -> bool:
        """Remove a file. Returns False when it did not exist."""
        path = self.get_file_path(directory, filename)
        try:
            existed = await asyncio.to_thread(self._unlink, path)
        except OSError as e:
            raise StorageError(
                f"Failed to delete file: {directory}/{filename}",
                cause=e,
                context={"directory": directory, "filename": filename, "operation": "delete_file"},
            ) from e

        if existed:
            emit_standardized_event(
                self.event_bus,
                "storage",
                "file_deleted",
                {"directory": directory, "filename": filename},
            )
        return existed

    @staticmethod
    def _unlink(path: Path) -> bool:
        if not path.exists():
            return False
        path.unlink()
        return True
