"""Hierarchical repository-layout cache (``group/as/dirs/name/version/file``)."""

from __future__ import annotations

import tempfile
from pathlib import Path

from pipewright.archives import read_comment, write_archive
from pipewright.artifacts.artifact import ArchiveArtifact, Artifact
from pipewright.artifacts.reference import ArtifactReference
from pipewright.cache.base import replace_with_copy
from pipewright.errors import CacheWriteError
from pipewright.resources import DEFAULT_TEMPORARY_PREFIX, remove_tree

TREE_ARCHIVE_COMMENT = b"pipewright:tree"


class RepositoryFileCache:
    """Repository-style storage where directory outputs are kept as zip archives."""

    def __init__(
        self,
        directory: Path,
        *,
        temporary_prefix: str = DEFAULT_TEMPORARY_PREFIX,
    ) -> None:
        self.directory = Path(directory)
        self.temporary_prefix = temporary_prefix

    def relative_path(self, reference: ArtifactReference) -> Path:
        path = Path()
        if reference.group is not None:
            path = Path(*reference.group.split("."))
        file_name = f"{reference.name}-{reference.version}"
        if reference.classifier is not None:
            file_name = f"{file_name}-{reference.classifier}"
        return path / reference.name / reference.version / f"{file_name}.{reference.type}"

    def artifact_path(self, reference: ArtifactReference) -> Path:
        relative = self.relative_path(reference)
        if relative.is_absolute() or ".." in relative.parts:
            raise ValueError(f"Artifact {reference.identifier} escapes the repository layout")
        return self.directory / relative

    def lookup(self, reference: ArtifactReference) -> Path | None:
        path = self.artifact_path(reference)
        return path if path.is_file() else None

    def write(self, reference: ArtifactReference, temporary_path: Path) -> Path:
        source = Path(temporary_path)
        target = self.artifact_path(reference)
        if not source.is_dir():
            return replace_with_copy(source, target)

        staging = Path(tempfile.mkdtemp(prefix=self.temporary_prefix))
        try:
            archive = write_archive(
                source,
                staging / target.name,
                comment=TREE_ARCHIVE_COMMENT,
            )
            return replace_with_copy(archive, target)
        except OSError as error:
            if isinstance(error, CacheWriteError):
                raise
            raise CacheWriteError(
                f"Failed to archive {source} for {reference.identifier}: {error}",
            ) from error
        finally:
            remove_tree(staging)

    def open_artifact(self, reference: ArtifactReference, location: Path) -> Artifact:
        if read_comment(location) == TREE_ARCHIVE_COMMENT:
            return ArchiveArtifact(reference, location, temporary_prefix=self.temporary_prefix)
        return Artifact(reference, location)
