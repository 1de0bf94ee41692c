"""Cache-aware task pipeline engine."""

from pipewright.artifacts import ArchiveArtifact, Artifact, ArtifactReference
from pipewright.artifacts.manager import ArtifactManager
from pipewright.cache import LocalFileCache, RepositoryFileCache, TemporaryFileCache
from pipewright.errors import (
    CacheWriteError,
    ResourceCleanupError,
    TaskDependencyError,
    TaskError,
    TaskExecutionError,
    TaskParameterError,
)
from pipewright.pipeline import Pipeline, PipelineBuilder, PipelineResult, TaskRegistration
from pipewright.resources import ResourceScope
from pipewright.tasks import FunctionTask, Task, TaskContext

__version__ = "0.1.0"

__all__ = [
    "ArchiveArtifact",
    "Artifact",
    "ArtifactManager",
    "ArtifactReference",
    "CacheWriteError",
    "FunctionTask",
    "LocalFileCache",
    "Pipeline",
    "PipelineBuilder",
    "PipelineResult",
    "RepositoryFileCache",
    "ResourceCleanupError",
    "ResourceScope",
    "Task",
    "TaskContext",
    "TaskDependencyError",
    "TaskError",
    "TaskExecutionError",
    "TaskParameterError",
    "TaskRegistration",
    "TemporaryFileCache",
    "__version__",
]
