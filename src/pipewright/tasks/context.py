"""Per-invocation view a task gets of its inputs, outputs and scratch space."""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING

from pipewright.errors import TaskParameterError
from pipewright.resources import ResourceScope

if TYPE_CHECKING:
    from pipewright.artifacts.manager import ArtifactManager


class TaskContext:
    """Resolved paths for one task invocation.

    Temporary files and directories handed out here belong to the invocation
    scope and are removed when the invocation ends, whatever its outcome.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        task_name: str,
        scope: ResourceScope,
        input_path: Path | None = None,
        output_path: Path | None = None,
        parameters: Mapping[str, Path] | None = None,
        artifact_manager: ArtifactManager | None = None,
    ) -> None:
        self.task_name = task_name
        self.input_path = input_path
        self.output_path = output_path
        self.artifact_manager = artifact_manager
        self._parameters = dict(parameters or {})
        self._scope = scope

    @property
    def parameter_names(self) -> frozenset[str]:
        return frozenset(self._parameters)

    def parameter_path(self, name: str) -> Path | None:
        return self._parameters.get(name)

    @property
    def required_input_path(self) -> Path:
        if self.input_path is None:
            raise TaskParameterError(
                f"Task {self.task_name} requires an input path",
                task_name=self.task_name,
            )
        return self.input_path

    @property
    def required_output_path(self) -> Path:
        if self.output_path is None:
            raise TaskParameterError(
                f"Task {self.task_name} requires an output path",
                task_name=self.task_name,
            )
        return self.output_path

    def required_parameter_path(self, name: str) -> Path:
        path = self._parameters.get(name)
        if path is None:
            raise TaskParameterError(
                f"Task {self.task_name} requires parameter {name!r}",
                task_name=self.task_name,
            )
        return path

    @property
    def required_artifact_manager(self) -> ArtifactManager:
        if self.artifact_manager is None:
            raise TaskParameterError(
                f"Task {self.task_name} requires an artifact manager",
                task_name=self.task_name,
            )
        return self.artifact_manager

    def allocate_temporary_file(self, suffix: str = ".tmp") -> Path:
        return self._scope.temporary_file(suffix)

    def allocate_temporary_directory(self) -> Path:
        return self._scope.temporary_directory()
