"""Throwaway cache living in a temporary directory."""

from __future__ import annotations

import tempfile
from pathlib import Path
from types import TracebackType

from pipewright.artifacts.reference import ArtifactReference
from pipewright.cache.local import LocalFileCache
from pipewright.errors import ResourceCleanupError
from pipewright.resources import DEFAULT_TEMPORARY_PREFIX, attach_cleanup_error, remove_tree


class TemporaryFileCache(LocalFileCache):
    """Flat cache that never reports hits and is deleted on close.

    Leftover entries from an earlier run are never trusted, so every task
    regenerates its output while downstream consumers still read durable copies.
    """

    def __init__(self, *, prefix: str = DEFAULT_TEMPORARY_PREFIX) -> None:
        super().__init__(Path(tempfile.mkdtemp(prefix=prefix)))
        self._closed = False

    def lookup(self, reference: ArtifactReference) -> Path | None:  # noqa: ARG002
        return None

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        failures = remove_tree(self.directory)
        if failures:
            raise ResourceCleanupError(list(failures))

    def __enter__(self) -> TemporaryFileCache:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        try:
            self.close()
        except ResourceCleanupError as cleanup_error:
            if exc is None:
                raise
            attach_cleanup_error(exc, cleanup_error)
