"""Flat-file cache directory."""

from __future__ import annotations

import re
from pathlib import Path

from pipewright.artifacts.reference import ArtifactReference
from pipewright.cache.base import replace_with_copy

_SPECIAL_CHARACTERS = re.compile(r"\W")


def _normalize(value: str) -> str:
    return _SPECIAL_CHARACTERS.sub("_", value)


class LocalFileCache:
    """Stores every artifact as one entry directly inside a base directory."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    def file_name(self, reference: ArtifactReference) -> str:
        name = f"{_normalize(reference.name)}-{_normalize(reference.version)}"
        if reference.group is not None:
            name = f"{_normalize(reference.group)}.{name}"
        if reference.classifier is not None:
            name = f"{name}-{_normalize(reference.classifier)}"
        return f"{name}.{_normalize(reference.type)}"

    def artifact_path(self, reference: ArtifactReference) -> Path:
        return self.directory / self.file_name(reference)

    def lookup(self, reference: ArtifactReference) -> Path | None:
        path = self.artifact_path(reference)
        return path if path.exists() else None

    def write(self, reference: ArtifactReference, temporary_path: Path) -> Path:
        return replace_with_copy(Path(temporary_path), self.artifact_path(reference))
