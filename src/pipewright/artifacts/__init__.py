"""Artifact identities and resolved handles."""

from pipewright.artifacts.artifact import ArchiveArtifact, Artifact
from pipewright.artifacts.reference import ArtifactReference

__all__ = ["ArchiveArtifact", "Artifact", "ArtifactReference"]
