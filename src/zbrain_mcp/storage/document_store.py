"""Path-addressed document store for the vault.

The engine only talks to the ``DocumentStore`` interface. ``FileSystemStore``
backs it with a directory of markdown files and a ``watchdog`` observer for
change notifications.
"""
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath
from typing import Callable, List, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from zbrain_mcp.exceptions import (
    DocumentExistsError,
    DocumentNotFoundError,
    ErrorCode,
    StorageError,
    ValidationError,
)
from zbrain_mcp.models.schema import ChangeEvent, ChangeKind

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[ChangeEvent], None]

# Vault folders that never hold notes
_IGNORED_DIRS = {".obsidian", ".trash", ".git"}


class StoreWatch(ABC):
    """Handle for an active change-notification subscription."""

    @abstractmethod
    def stop(self) -> None:
        """Stop delivering change events."""


class DocumentStore(ABC):
    """Interface of the durable document store."""

    @abstractmethod
    def read(self, path: str) -> str:
        """Return the text of a document; raise DocumentNotFoundError if absent."""

    @abstractmethod
    def write(self, path: str, text: str) -> None:
        """Replace the text of a document (creating it if needed)."""

    @abstractmethod
    def create(self, path: str, text: str) -> None:
        """Create a new document; raise DocumentExistsError if taken."""

    @abstractmethod
    def move(self, path: str, new_path: str) -> None:
        """Move a document; raise DocumentExistsError if the target is taken."""

    @abstractmethod
    def delete(self, path: str) -> None:
        """Delete a document; raise DocumentNotFoundError if absent."""

    @abstractmethod
    def exists(self, path: str) -> bool:
        """Whether a document exists at ``path``."""

    @abstractmethod
    def list(self, folder: str = "") -> List[str]:
        """Markdown documents under ``folder`` (recursive), sorted."""

    @abstractmethod
    def watch(self, callback: ChangeCallback) -> StoreWatch:
        """Subscribe to created/modified notifications for markdown documents."""


def normalize_store_path(path: str) -> str:
    """Normalize a store path to a relative POSIX path inside the vault.

    Raises:
        ValidationError: If the path is absolute or escapes the vault.
    """
    cleaned = path.replace("\\", "/").strip()
    pure = PurePosixPath(cleaned)
    if pure.is_absolute() or ".." in pure.parts:
        raise ValidationError(
            "Document path must stay inside the vault",
            field="path",
            value=path,
            code=ErrorCode.PATH_TRAVERSAL_DETECTED,
        )
    parts = [part for part in pure.parts if part not in ("", ".")]
    return "/".join(parts)


class _VaultEventHandler(FileSystemEventHandler):
    """Translate watchdog events into store change events."""

    def __init__(self, store: "FileSystemStore", callback: ChangeCallback):
        self._store = store
        self._callback = callback

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._emit(event.src_path, ChangeKind.CREATED)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._emit(event.src_path, ChangeKind.MODIFIED)

    def on_moved(self, event: FileSystemEvent) -> None:
        # Atomic writes land as a rename of the temp file onto the target
        if not event.is_directory:
            self._emit(event.dest_path, ChangeKind.MODIFIED)

    def _emit(self, raw_path, kind: ChangeKind) -> None:
        relative = self._store.relative_path(Path(os.fsdecode(raw_path)))
        if relative is None:
            return
        try:
            self._callback(ChangeEvent(path=relative, kind=kind))
        except Exception as e:
            # The observer thread must survive a failing subscriber
            logger.error(f"Change callback failed for {relative}: {e}", exc_info=True)


class _ObserverWatch(StoreWatch):
    def __init__(self, observer: Observer):
        self._observer = observer

    def stop(self) -> None:
        self._observer.stop()
        self._observer.join(timeout=5)


class FileSystemStore(DocumentStore):
    """Document store over a vault directory of markdown files."""

    def __init__(self, root: Path):
        self.root = Path(root).expanduser().resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        logger.info(f"FileSystemStore initialized at {self.root}")

    def _resolve(self, path: str) -> Path:
        return self.root / normalize_store_path(path)

    def relative_path(self, absolute: Path) -> Optional[str]:
        """Map an absolute path to a store path, or None if it is not a note."""
        try:
            relative = absolute.resolve().relative_to(self.root)
        except ValueError:
            return None
        if relative.suffix.lower() != ".md":
            return None
        if any(part.startswith(".") or part in _IGNORED_DIRS for part in relative.parts):
            return None
        return relative.as_posix()

    def read(self, path: str) -> str:
        file_path = self._resolve(path)
        if not file_path.is_file():
            raise DocumentNotFoundError(path)
        try:
            return file_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(
                f"Cannot read document: {e}",
                operation="read",
                path=path,
                code=ErrorCode.STORAGE_READ_FAILED,
                original_error=e,
            ) from e

    def write(self, path: str, text: str) -> None:
        file_path = self._resolve(path)
        temp_file = file_path.with_name(f".{file_path.name}.tmp")
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            # Atomic write via temp file
            temp_file.write_text(text, encoding="utf-8")
            os.replace(temp_file, file_path)
        except OSError as e:
            temp_file.unlink(missing_ok=True)
            raise StorageError(
                f"Cannot write document: {e}",
                operation="write",
                path=path,
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e

    def create(self, path: str, text: str) -> None:
        if self.exists(path):
            raise DocumentExistsError(path)
        self.write(path, text)

    def move(self, path: str, new_path: str) -> None:
        source = self._resolve(path)
        target = self._resolve(new_path)
        if not source.is_file():
            raise DocumentNotFoundError(path, operation="move")
        if source == target:
            return
        if target.exists():
            raise DocumentExistsError(new_path, operation="move")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            os.replace(source, target)
        except OSError as e:
            raise StorageError(
                f"Cannot move document: {e}",
                operation="move",
                path=path,
                code=ErrorCode.STORAGE_MOVE_FAILED,
                original_error=e,
            ) from e

    def delete(self, path: str) -> None:
        file_path = self._resolve(path)
        if not file_path.is_file():
            raise DocumentNotFoundError(path, operation="delete")
        try:
            file_path.unlink()
        except OSError as e:
            raise StorageError(
                f"Cannot delete document: {e}",
                operation="delete",
                path=path,
                code=ErrorCode.STORAGE_DELETE_FAILED,
                original_error=e,
            ) from e

    def exists(self, path: str) -> bool:
        return self._resolve(path).is_file()

    def list(self, folder: str = "") -> List[str]:
        base = self._resolve(folder) if folder else self.root
        if not base.is_dir():
            return []
        paths = []
        for file_path in base.rglob("*.md"):
            relative = self.relative_path(file_path)
            if relative is not None and file_path.is_file():
                paths.append(relative)
        return sorted(paths)

    def watch(self, callback: ChangeCallback) -> StoreWatch:
        observer = Observer()
        observer.schedule(_VaultEventHandler(self, callback), str(self.root), recursive=True)
        observer.daemon = True
        observer.start()
        logger.info(f"Watching vault for changes: {self.root}")
        return _ObserverWatch(observer)
