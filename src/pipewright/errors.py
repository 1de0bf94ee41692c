"""Error taxonomy shared by the scheduler, execution engine and tasks."""

from __future__ import annotations

from pathlib import Path


class TaskError(RuntimeError):
    """Base error for everything that aborts a pipeline run."""

    def __init__(self, message: str, *, task_name: str | None = None) -> None:
        super().__init__(message)
        self.task_name = task_name
        self.cleanup_error: ResourceCleanupError | None = None

    def attach_task(self, task_name: str) -> None:
        """Record the failing task unless an inner frame already did."""

        if self.task_name is None:
            self.task_name = task_name


class TaskDependencyError(TaskError):
    """A required task, artifact, parameter or binding is missing or unresolvable."""

    def __init__(  # noqa: PLR0913
        self,
        message: str,
        *,
        task_name: str | None = None,
        missing_tasks: list[tuple[str, str]] | None = None,
        missing_artifacts: list[tuple[str, str]] | None = None,
        conflicts: list[tuple[str, list[str]]] | None = None,
        cycles: list[list[str]] | None = None,
    ) -> None:
        super().__init__(message, task_name=task_name)
        self.missing_tasks = missing_tasks or []
        self.missing_artifacts = missing_artifacts or []
        self.conflicts = conflicts or []
        self.cycles = cycles or []


class TaskExecutionError(TaskError):
    """A task failed while executing."""


class TaskParameterError(TaskExecutionError):
    """A task precondition on its context or configuration was violated."""


class ResourceCleanupError(OSError):
    """One or more temporary resources could not be released."""

    def __init__(self, failures: list[tuple[Path | object, BaseException]]) -> None:
        self.failures = list(failures)
        lines = [f"Failed to release {len(self.failures)} temporary resource(s):"]
        lines.extend(f" * {target}: {error}" for target, error in self.failures)
        super().__init__("\n".join(lines))


class CacheWriteError(OSError):
    """A cache backend could not durably persist an artifact."""
