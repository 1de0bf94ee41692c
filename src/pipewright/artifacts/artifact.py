"""Resolved artifact handles."""

from __future__ import annotations

import tempfile
import zipfile
from datetime import UTC, datetime
from pathlib import Path
from types import TracebackType

from pipewright.artifacts.reference import ArtifactReference
from pipewright.errors import ResourceCleanupError
from pipewright.resources import DEFAULT_TEMPORARY_PREFIX, remove_tree

_EPOCH = datetime.fromtimestamp(0, tz=UTC)


class Artifact:
    """A reference resolved to a readable tree root in some storage location.

    ``open()`` yields the tree root and ``close()`` releases whatever backs it.
    Both are idempotent, and a closed artifact may be opened again.
    """

    def __init__(self, reference: ArtifactReference, location: Path) -> None:
        self.reference = reference
        self.location = Path(location)

    @property
    def path(self) -> Path:
        return self.open()

    @property
    def is_open(self) -> bool:
        return True

    def open(self) -> Path:
        return self.location

    def close(self) -> None:
        return None

    @property
    def created_at(self) -> datetime:
        stat = self.location.stat()
        birth_time = getattr(stat, "st_birthtime", None)
        if birth_time is None:
            return _EPOCH
        return datetime.fromtimestamp(birth_time, tz=UTC)

    @property
    def modified_at(self) -> datetime:
        return datetime.fromtimestamp(self.location.stat().st_mtime, tz=UTC)

    def __enter__(self) -> Artifact:
        self.open()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.reference.identifier!r}, {str(self.location)!r})"


class ArchiveArtifact(Artifact):
    """Artifact stored as a zip container and mounted as an extracted directory tree."""

    def __init__(
        self,
        reference: ArtifactReference,
        location: Path,
        *,
        temporary_prefix: str = DEFAULT_TEMPORARY_PREFIX,
    ) -> None:
        super().__init__(reference, location)
        self.temporary_prefix = temporary_prefix
        self._mount: Path | None = None

    @property
    def is_open(self) -> bool:
        return self._mount is not None

    def open(self) -> Path:
        if self._mount is not None:
            return self._mount

        mount = Path(tempfile.mkdtemp(prefix=self.temporary_prefix))
        try:
            with zipfile.ZipFile(self.location) as archive:
                archive.extractall(mount)
        except (OSError, zipfile.BadZipFile) as error:
            remove_tree(mount)
            raise OSError(
                f"Cannot mount archive {self.location} for {self.reference.identifier}: {error}",
            ) from error
        self._mount = mount
        return mount

    def close(self) -> None:
        if self._mount is None:
            return
        mount, self._mount = self._mount, None
        failures = remove_tree(mount)
        if failures:
            raise ResourceCleanupError(list(failures))
