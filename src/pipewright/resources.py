"""Scoped ownership of temporary files, directories and closeable handles."""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from types import TracebackType
from typing import Protocol

from pipewright.errors import ResourceCleanupError

logger = logging.getLogger(__name__)

DEFAULT_TEMPORARY_PREFIX = "pipewright_"


class Closeable(Protocol):
    """Anything that releases a backing handle on close."""

    def close(self) -> None:
        """Release the handle."""
        raise NotImplementedError


def attach_cleanup_error(error: BaseException, cleanup_error: ResourceCleanupError) -> None:
    """Record a release failure on the error already propagating instead of replacing it."""

    logger.warning("%s", cleanup_error)
    error.add_note(str(cleanup_error))
    try:
        error.cleanup_error = cleanup_error  # type: ignore[attr-defined]
    except AttributeError:
        pass


def remove_tree(root: Path) -> list[tuple[Path, OSError]]:
    """Delete ``root`` deepest entry first and return the failures instead of raising.

    Entries that vanish while walking are ignored.
    """

    if not os.path.lexists(root):
        return []
    if not root.is_dir() or root.is_symlink():
        return _unlink(root)

    entries: list[Path] = []
    failures: list[tuple[Path, OSError]] = []

    def _record(error: OSError) -> None:
        if not isinstance(error, FileNotFoundError):
            failures.append((Path(error.filename or root), error))

    for current, dirnames, filenames in os.walk(root, onerror=_record):
        base = Path(current)
        entries.extend(base / name for name in filenames)
        entries.extend(base / name for name in dirnames)
    entries.append(root)
    entries.sort(key=lambda path: len(path.parts), reverse=True)

    for path in entries:
        if path.is_dir() and not path.is_symlink():
            try:
                path.rmdir()
            except FileNotFoundError:
                continue
            except OSError as error:
                failures.append((path, error))
        else:
            failures.extend(_unlink(path))
    return failures


def _unlink(path: Path) -> list[tuple[Path, OSError]]:
    try:
        path.unlink(missing_ok=True)
    except OSError as error:
        return [(path, error)]
    return []


class ResourceScope:
    """Tracks resources allocated for one task invocation and releases all of them once."""

    def __init__(self, prefix: str = DEFAULT_TEMPORARY_PREFIX) -> None:
        self.prefix = prefix
        self._directories: list[Path] = []
        self._files: list[Path] = []
        self._handles: list[Closeable] = []
        self._released = False

    @property
    def directories(self) -> tuple[Path, ...]:
        return tuple(self._directories)

    @property
    def files(self) -> tuple[Path, ...]:
        return tuple(self._files)

    def temporary_directory(self) -> Path:
        """Create a fresh temporary directory owned by this scope."""

        self._ensure_open()
        path = Path(tempfile.mkdtemp(prefix=self.prefix))
        self._directories.append(path)
        return path

    def temporary_file(self, suffix: str = ".tmp") -> Path:
        """Create an empty temporary file owned by this scope."""

        self._ensure_open()
        handle, name = tempfile.mkstemp(prefix=self.prefix, suffix=suffix)
        os.close(handle)
        path = Path(name)
        self._files.append(path)
        return path

    def adopt_directory(self, path: Path) -> Path:
        self._ensure_open()
        self._directories.append(path)
        return path

    def adopt_file(self, path: Path) -> Path:
        self._ensure_open()
        self._files.append(path)
        return path

    def push(self, handle: Closeable) -> Closeable:
        """Close ``handle`` when the scope is released."""

        self._ensure_open()
        if not any(existing is handle for existing in self._handles):
            self._handles.append(handle)
        return handle

    def release(self) -> None:
        """Release every tracked resource, raising one aggregate error for all failures."""

        if self._released:
            return
        self._released = True

        failures: list[tuple[Path | object, BaseException]] = []
        while self._handles:
            handle = self._handles.pop()
            try:
                handle.close()
            except Exception as error:  # noqa: BLE001
                failures.append((handle, error))
        while self._directories:
            failures.extend(remove_tree(self._directories.pop()))
        while self._files:
            failures.extend(_unlink(self._files.pop()))

        if failures:
            raise ResourceCleanupError(failures)

    def __enter__(self) -> ResourceScope:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        try:
            self.release()
        except ResourceCleanupError as cleanup_error:
            if exc is None:
                raise
            attach_cleanup_error(exc, cleanup_error)

    def _ensure_open(self) -> None:
        if self._released:
            raise RuntimeError("Resource scope has already been released")
