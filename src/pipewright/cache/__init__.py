"""Pluggable durable storage for artifacts."""

from pipewright.cache.base import ArtifactOpener, Cache
from pipewright.cache.local import LocalFileCache
from pipewright.cache.repository import RepositoryFileCache
from pipewright.cache.temporary import TemporaryFileCache

__all__ = [
    "ArtifactOpener",
    "Cache",
    "LocalFileCache",
    "RepositoryFileCache",
    "TemporaryFileCache",
]
