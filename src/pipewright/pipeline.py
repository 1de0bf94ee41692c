"""Pipeline assembly and the sequential execution engine."""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING

from pipewright.artifacts.reference import ArtifactReference
from pipewright.errors import (
    ResourceCleanupError,
    TaskDependencyError,
    TaskError,
    TaskExecutionError,
    TaskParameterError,
)
from pipewright.resources import DEFAULT_TEMPORARY_PREFIX, ResourceScope
from pipewright.scheduler import Scheduler
from pipewright.tasks.base import Task
from pipewright.tasks.context import TaskContext

if TYPE_CHECKING:
    from pipewright.artifacts.manager import ArtifactManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TaskRegistration:
    """One task bound to its input, output and named parameters."""

    task: Task
    input_artifact: ArtifactReference | None = None
    input_file: Path | None = None
    output_artifact: ArtifactReference | None = None
    output_file: Path | None = None
    forced: bool = False
    artifact_parameters: Mapping[str, ArtifactReference] = field(
        default_factory=lambda: MappingProxyType({}),
    )
    path_parameters: Mapping[str, Path] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def produced_artifacts(self) -> frozenset[ArtifactReference]:
        produced = set(self.task.created_artifacts)
        if self.output_artifact is not None:
            produced.add(self.output_artifact)
        return frozenset(produced)

    @property
    def consumed_artifacts(self) -> frozenset[ArtifactReference]:
        consumed = set(self.artifact_parameters.values())
        if self.input_artifact is not None:
            consumed.add(self.input_artifact)
        return frozenset(consumed)

    @property
    def bound_artifacts(self) -> tuple[ArtifactReference, ...]:
        """Every artifact binding that needs an artifact manager to resolve."""

        bound = [self.input_artifact, self.output_artifact, *self.artifact_parameters.values()]
        return tuple(reference for reference in bound if reference is not None)


@dataclass(slots=True)
class PipelineResult:
    """Outcome of one successful pipeline run."""

    executed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0


class TaskRegistrationBuilder:
    """Collects the bindings of one task before handing it to the pipeline builder.

    Input and output each take either an artifact or a file; binding one
    replaces the other.
    """

    def __init__(self, pipeline_builder: PipelineBuilder, task: Task) -> None:
        self._pipeline_builder = pipeline_builder
        self._task = task
        self._input_artifact: ArtifactReference | None = None
        self._input_file: Path | None = None
        self._output_artifact: ArtifactReference | None = None
        self._output_file: Path | None = None
        self._forced = False
        self._artifact_parameters: dict[str, ArtifactReference] = {}
        self._path_parameters: dict[str, Path] = {}

    def with_input_artifact(self, reference: ArtifactReference) -> TaskRegistrationBuilder:
        self._input_artifact = reference
        self._input_file = None
        return self

    def with_input_file(self, path: str | os.PathLike[str]) -> TaskRegistrationBuilder:
        self._input_file = Path(path)
        self._input_artifact = None
        return self

    def with_output_artifact(self, reference: ArtifactReference) -> TaskRegistrationBuilder:
        self._output_artifact = reference
        self._output_file = None
        return self

    def with_output_file(self, path: str | os.PathLike[str]) -> TaskRegistrationBuilder:
        self._output_file = Path(path)
        self._output_artifact = None
        return self

    def with_parameter(
        self,
        name: str,
        value: ArtifactReference | str | os.PathLike[str],
    ) -> TaskRegistrationBuilder:
        """Bind a named parameter to an artifact or a file path."""

        if name not in self._task.available_parameters:
            accepted = ", ".join(sorted(self._task.available_parameters)) or "none"
            raise TaskParameterError(
                f"Task {self._task.name} does not accept parameter {name!r}"
                f" (accepted: {accepted})",
                task_name=self._task.name,
            )
        if isinstance(value, ArtifactReference):
            self._artifact_parameters[name] = value
            self._path_parameters.pop(name, None)
        else:
            self._path_parameters[name] = Path(value)
            self._artifact_parameters.pop(name, None)
        return self

    def with_forced_execution(self, value: bool = True) -> TaskRegistrationBuilder:  # noqa: FBT001, FBT002
        self._forced = value
        return self

    def apply(
        self,
        configure: Callable[[TaskRegistrationBuilder], object],
    ) -> TaskRegistrationBuilder:
        configure(self)
        return self

    def register(self) -> PipelineBuilder:
        """Check the task's binding contract and add the registration to the pipeline."""

        task = self._task
        missing: list[str] = []
        if task.requires_input and self._input_artifact is None and self._input_file is None:
            missing.append("input")
        if task.requires_output and self._output_artifact is None and self._output_file is None:
            missing.append("output")
        bound = set(self._artifact_parameters) | set(self._path_parameters)
        missing.extend(
            f"parameter {name!r}" for name in sorted(task.required_parameters - bound)
        )
        if missing:
            raise TaskDependencyError(
                f"Task {task.name} cannot be registered, unbound: {', '.join(missing)}",
                task_name=task.name,
            )

        self._pipeline_builder._add(  # noqa: SLF001
            TaskRegistration(
                task=task,
                input_artifact=self._input_artifact,
                input_file=self._input_file,
                output_artifact=self._output_artifact,
                output_file=self._output_file,
                forced=self._forced,
                artifact_parameters=MappingProxyType(dict(self._artifact_parameters)),
                path_parameters=MappingProxyType(dict(self._path_parameters)),
            ),
        )
        return self._pipeline_builder


class PipelineBuilder:
    """Fluent assembly of a pipeline."""

    def __init__(self) -> None:
        self._registrations: list[TaskRegistration] = []
        self._artifact_manager: ArtifactManager | None = None
        self._temporary_prefix = DEFAULT_TEMPORARY_PREFIX

    def with_artifact_manager(self, manager: ArtifactManager | None) -> PipelineBuilder:
        self._artifact_manager = manager
        return self

    def with_temporary_prefix(self, prefix: str) -> PipelineBuilder:
        if not prefix:
            raise ValueError("Temporary prefix must not be empty")
        self._temporary_prefix = prefix
        return self

    def apply(self, configure: Callable[[PipelineBuilder], object]) -> PipelineBuilder:
        configure(self)
        return self

    def with_task(self, task: Task) -> TaskRegistrationBuilder:
        return TaskRegistrationBuilder(self, task)

    def build(self) -> Pipeline:
        return Pipeline(
            self._registrations,
            artifact_manager=self._artifact_manager,
            temporary_prefix=self._temporary_prefix,
        )

    def _add(self, registration: TaskRegistration) -> None:
        self._registrations.append(registration)


class Pipeline:
    """Validated, ordered set of task registrations executed one at a time.

    The pipeline never closes the artifact manager it was given; the caller owns it.
    """

    def __init__(
        self,
        registrations: list[TaskRegistration],
        *,
        artifact_manager: ArtifactManager | None = None,
        temporary_prefix: str = DEFAULT_TEMPORARY_PREFIX,
    ) -> None:
        self._registrations = tuple(registrations)
        self.artifact_manager = artifact_manager
        self.temporary_prefix = temporary_prefix

    @staticmethod
    def builder() -> PipelineBuilder:
        return PipelineBuilder()

    @property
    def registrations(self) -> tuple[TaskRegistration, ...]:
        return self._registrations

    def validate(self) -> None:
        self._scheduler().validate()

    def plan(self) -> list[TaskRegistration]:
        """Validate and return registrations in execution order."""

        scheduler = self._scheduler()
        scheduler.validate()
        return scheduler.order()

    def execute(self) -> PipelineResult:
        """Run every task in order; the first failure aborts the run."""

        started = time.monotonic()
        result = PipelineResult()
        for registration in self.plan():
            if self._run(registration):
                result.executed.append(registration.task.name)
            else:
                result.skipped.append(registration.task.name)
        result.duration_seconds = time.monotonic() - started
        logger.info(
            "Pipeline finished in %.2fs: %d executed, %d skipped",
            result.duration_seconds,
            len(result.executed),
            len(result.skipped),
        )
        return result

    def _scheduler(self) -> Scheduler:
        return Scheduler(
            self._registrations,
            has_artifact_manager=self.artifact_manager is not None,
        )

    def _run(self, registration: TaskRegistration) -> bool:
        task_name = registration.task.name
        logger.info("--- Task %s ---", task_name)
        try:
            with ResourceScope(self.temporary_prefix) as scope:
                return self._invoke(registration, scope)
        except TaskError as error:
            error.attach_task(task_name)
            raise
        except ResourceCleanupError as error:
            error.add_note(f"while releasing temporary resources of task {task_name}")
            raise

    def _invoke(self, registration: TaskRegistration, scope: ResourceScope) -> bool:
        task = registration.task
        manager = self.artifact_manager

        input_path = registration.input_file
        if registration.input_artifact is not None:
            input_path = self._resolve(task, registration.input_artifact, scope, "input")

        parameters = dict(registration.path_parameters)
        for name, reference in registration.artifact_parameters.items():
            parameters[name] = self._resolve(task, reference, scope, f"parameter {name!r}")

        output_path = registration.output_file
        reference = registration.output_artifact
        if reference is not None:
            manager = self._require_manager(task, reference, "output")
            output_path = scope.temporary_directory() / "output"
            if registration.forced:
                logger.info("Forced execution of %s, cache check skipped", task.name)
            elif self._cached_output_is_valid(task, reference, scope):
                logger.info("Skipping %s: artifact %s is up to date", task.name, reference)
                return False

        context = TaskContext(
            task_name=task.name,
            scope=scope,
            input_path=input_path,
            output_path=output_path,
            parameters=parameters,
            artifact_manager=manager,
        )
        try:
            task.execute(context)
        except TaskError:
            raise
        except Exception as error:
            raise TaskExecutionError(
                f"Task {task.name} failed: {error}",
                task_name=task.name,
            ) from error

        if reference is not None and output_path is not None:
            if not os.path.lexists(output_path):
                raise TaskExecutionError(
                    f"Task {task.name} did not produce output for artifact {reference}",
                    task_name=task.name,
                )
            try:
                artifact = manager.register_artifact(reference, output_path)
            except OSError as error:
                raise TaskExecutionError(
                    f"Task {task.name} cannot register output artifact {reference}: {error}",
                    task_name=task.name,
                ) from error
            logger.info("Registered artifact %s at %s", reference, artifact.location)
        return True

    def _cached_output_is_valid(
        self,
        task: Task,
        reference: ArtifactReference,
        scope: ResourceScope,
    ) -> bool:
        manager = self._require_manager(task, reference, "output")
        try:
            existing = manager.get_artifact(reference)
        except OSError as error:
            logger.warning("Cannot look up cached artifact %s: %s", reference, error)
            return False
        if existing is None:
            return False
        scope.push(existing)
        try:
            valid = task.is_valid_artifact(existing)
        except OSError as error:
            logger.warning("Cannot check cached artifact %s: %s", reference, error)
            return False
        except TaskError:
            raise
        except Exception as error:
            raise TaskExecutionError(
                f"Task {task.name} failed to check cached artifact {reference}: {error}",
                task_name=task.name,
            ) from error
        if valid:
            return True
        logger.info("Cached artifact %s rejected by %s, running again", reference, task.name)
        return False

    def _resolve(
        self,
        task: Task,
        reference: ArtifactReference,
        scope: ResourceScope,
        role: str,
    ) -> Path:
        manager = self._require_manager(task, reference, role)
        try:
            artifact = manager.get_artifact(reference)
        except OSError as error:
            raise TaskDependencyError(
                f"Task {task.name} cannot read {role} artifact {reference}: {error}",
                task_name=task.name,
                missing_artifacts=[(task.name, reference.identifier)],
            ) from error
        if artifact is None:
            raise TaskDependencyError(
                f"Task {task.name} requires {role} artifact {reference} but it is not available",
                task_name=task.name,
                missing_artifacts=[(task.name, reference.identifier)],
            )
        scope.push(artifact)
        try:
            return artifact.open()
        except OSError as error:
            raise TaskDependencyError(
                f"Task {task.name} cannot open {role} artifact {reference}: {error}",
                task_name=task.name,
                missing_artifacts=[(task.name, reference.identifier)],
            ) from error

    def _require_manager(
        self,
        task: Task,
        reference: ArtifactReference,
        role: str,
    ) -> ArtifactManager:
        if self.artifact_manager is None:
            raise TaskDependencyError(
                f"Task {task.name} binds {role} artifact {reference}"
                " but the pipeline has no artifact manager",
                task_name=task.name,
            )
        return self.artifact_manager
