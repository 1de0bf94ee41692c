"""Task contract consumed by the scheduler and the execution engine."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING

from pipewright.artifacts.artifact import Artifact
from pipewright.artifacts.reference import ArtifactReference

if TYPE_CHECKING:
    from pipewright.tasks.context import TaskContext


class Task:
    """A unit of pipeline work.

    Subclasses implement ``execute`` and override whichever declarations apply.
    Other tasks depend on a task through the capability identifiers in ``kinds``
    rather than through its class. Declarations must not change once the task
    has been registered with a pipeline.
    """

    kinds: frozenset[str] = frozenset()
    required_tasks: frozenset[str] = frozenset()
    optional_tasks: frozenset[str] = frozenset()
    required_artifacts: frozenset[ArtifactReference] = frozenset()
    created_artifacts: frozenset[ArtifactReference] = frozenset()
    available_parameters: frozenset[str] = frozenset()
    requires_input: bool = False
    requires_output: bool = False

    @property
    def name(self) -> str:
        return type(self).__name__

    @property
    def required_parameters(self) -> frozenset[str]:
        return self.available_parameters

    def execute(self, context: TaskContext) -> None:
        """Do the work, reaching inputs and outputs only through ``context``."""
        raise NotImplementedError

    def is_valid_artifact(self, artifact: Artifact) -> bool:  # noqa: ARG002
        """Decide whether a cached output may stand in for running the task again."""

        return True

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name!r}>"


class FunctionTask(Task):
    """Adapts a plain callable to the task contract."""

    def __init__(  # noqa: PLR0913
        self,
        function: Callable[[TaskContext], object],
        *,
        name: str | None = None,
        kinds: Iterable[str] = (),
        required_tasks: Iterable[str] = (),
        optional_tasks: Iterable[str] = (),
        required_artifacts: Iterable[ArtifactReference] = (),
        created_artifacts: Iterable[ArtifactReference] = (),
        available_parameters: Iterable[str] = (),
        required_parameters: Iterable[str] | None = None,
        requires_input: bool = False,
        requires_output: bool = False,
        validator: Callable[[Artifact], bool] | None = None,
    ) -> None:
        self.function = function
        self._name = name or getattr(function, "__name__", type(self).__name__)
        self.kinds = frozenset(kinds)
        self.required_tasks = frozenset(required_tasks)
        self.optional_tasks = frozenset(optional_tasks)
        self.required_artifacts = frozenset(required_artifacts)
        self.created_artifacts = frozenset(created_artifacts)
        self.available_parameters = frozenset(available_parameters)
        self._required_parameters = (
            frozenset(required_parameters) if required_parameters is not None else None
        )
        self.requires_input = requires_input
        self.requires_output = requires_output
        self.validator = validator

    @property
    def name(self) -> str:
        return self._name

    @property
    def required_parameters(self) -> frozenset[str]:
        if self._required_parameters is None:
            return self.available_parameters
        return self._required_parameters

    def execute(self, context: TaskContext) -> None:
        self.function(context)

    def is_valid_artifact(self, artifact: Artifact) -> bool:
        if self.validator is None:
            return True
        return self.validator(artifact)
