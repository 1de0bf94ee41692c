"""Cache backend contracts."""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import Protocol, runtime_checkable

from pipewright.artifacts.artifact import Artifact
from pipewright.artifacts.reference import ArtifactReference
from pipewright.errors import CacheWriteError
from pipewright.resources import remove_tree


class Cache(Protocol):
    """Durable storage for artifact contents."""

    def lookup(self, reference: ArtifactReference) -> Path | None:
        """Return the stored location for ``reference`` or ``None`` when absent."""
        raise NotImplementedError

    def write(self, reference: ArtifactReference, temporary_path: Path) -> Path:
        """Copy ``temporary_path`` into durable storage and return the stored location.

        The caller may delete ``temporary_path`` as soon as this returns.
        """
        raise NotImplementedError


@runtime_checkable
class ArtifactOpener(Protocol):
    """Optional hook for backends whose stored form is not a plain file or directory."""

    def open_artifact(self, reference: ArtifactReference, location: Path) -> Artifact:
        """Wrap a stored location into an artifact handle."""
        raise NotImplementedError


def replace_with_copy(source: Path, target: Path) -> Path:
    """Copy a file or directory tree over ``target``, replacing any previous entry."""

    if not source.exists():
        raise CacheWriteError(f"Cannot cache missing output {source}")
    target.parent.mkdir(parents=True, exist_ok=True)
    staging = target.with_name(f".{target.name}.partial")
    _discard(staging)
    try:
        if source.is_dir():
            shutil.copytree(source, staging, symlinks=True)
        else:
            shutil.copy2(source, staging)
        _discard(target)
        staging.rename(target)
    except OSError as error:
        remove_tree(staging)
        if isinstance(error, CacheWriteError):
            raise
        raise CacheWriteError(f"Failed to store {source} at {target}: {error}") from error
    return target


def _discard(path: Path) -> None:
    failures = remove_tree(path)
    if failures:
        failed_path, error = failures[0]
        raise CacheWriteError(f"Cannot replace cached entry {failed_path}: {error}") from error
