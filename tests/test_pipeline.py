from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

import allure
import pytest

from pipewright.artifacts import Artifact, ArtifactReference
from pipewright.artifacts.manager import ArtifactManager
from pipewright.cache import LocalFileCache, RepositoryFileCache
from pipewright.errors import (
    ResourceCleanupError,
    TaskDependencyError,
    TaskExecutionError,
    TaskParameterError,
)
from pipewright.pipeline import Pipeline, PipelineBuilder
from pipewright.tasks.base import FunctionTask, Task
from pipewright.tasks.context import TaskContext

pytestmark = [
    allure.epic("Pipeline Engine"),
    allure.feature("Execution"),
]

Writer = Callable[..., FunctionTask]


class _ParameterTask(Task):
    available_parameters = frozenset({"config", "extra"})
    required_parameters = frozenset({"config"})

    def __init__(self) -> None:
        self.seen: dict[str, Path | None] = {}

    def execute(self, context: TaskContext) -> None:
        self.seen["config"] = context.required_parameter_path("config")
        self.seen["extra"] = context.parameter_path("extra")


def test_producer_output_becomes_consumer_input(
    manager: ArtifactManager,
    writer: Writer,
    reference: ArtifactReference,
    calls: list[str],
) -> None:
    seen: list[str] = []

    def _consume(context: TaskContext) -> None:
        calls.append("Task2")
        seen.append(context.required_input_path.read_text("utf-8"))

    pipeline = (
        Pipeline.builder()
        .with_artifact_manager(manager)
        .with_task(FunctionTask(_consume, name="Task2"))
        .with_input_artifact(reference)
        .register()
        .with_task(writer("Task1", content="from task one"))
        .with_output_artifact(reference)
        .register()
        .build()
    )

    assert [registration.task.name for registration in pipeline.plan()] == ["Task1", "Task2"]
    result = pipeline.execute()

    assert calls == ["Task1", "Task2"]
    assert seen == ["from task one"]
    assert result.executed == ["Task1", "Task2"]
    assert result.skipped == []
    assert result.duration_seconds >= 0


def test_output_artifact_without_manager_fails_before_running(
    writer: Writer,
    reference: ArtifactReference,
    calls: list[str],
) -> None:
    pipeline = (
        Pipeline.builder()
        .with_task(writer("Task1"))
        .with_output_artifact(reference)
        .register()
        .build()
    )

    with pytest.raises(TaskDependencyError, match="Task1"):
        pipeline.execute()
    assert calls == []


def test_failing_task_aborts_remaining_tasks(calls: list[str], writer: Writer) -> None:
    def _fail(context: TaskContext) -> None:
        calls.append("Task1")
        raise RuntimeError("compiler crashed")

    pipeline = (
        Pipeline.builder()
        .with_task(FunctionTask(_fail, name="Task1"))
        .register()
        .with_task(writer("Task2"))
        .register()
        .build()
    )

    with pytest.raises(TaskExecutionError, match="Task Task1 failed: compiler crashed") as info:
        pipeline.execute()

    assert info.value.task_name == "Task1"
    assert isinstance(info.value.__cause__, RuntimeError)
    assert calls == ["Task1"]


def test_parameter_errors_keep_their_type_and_gain_task_name() -> None:
    def _needs_input(context: TaskContext) -> None:
        context.required_input_path  # noqa: B018

    builder = Pipeline.builder().with_task(FunctionTask(_needs_input, name="Reader")).register()

    with pytest.raises(TaskParameterError, match="Reader requires an input path") as info:
        builder.build().execute()
    assert info.value.task_name == "Reader"


def test_valid_cached_artifact_skips_second_run(
    cache_dir: Path,
    writer: Writer,
    reference: ArtifactReference,
    calls: list[str],
) -> None:
    def _configure(builder: PipelineBuilder) -> None:
        builder.with_task(writer("Producer")).with_output_artifact(reference).register()

    for _ in range(2):
        with ArtifactManager(LocalFileCache(cache_dir)) as manager:
            builder = Pipeline.builder().with_artifact_manager(manager).apply(_configure)
            result = builder.build().execute()

    assert calls == ["Producer"]
    assert result.skipped == ["Producer"]
    assert result.executed == []


def test_rejected_cached_artifact_runs_again(
    cache_dir: Path,
    writer: Writer,
    reference: ArtifactReference,
    calls: list[str],
) -> None:
    checked: list[Artifact] = []

    def _reject(artifact: Artifact) -> bool:
        checked.append(artifact)
        return False

    for content in ("v1", "v2"):
        with ArtifactManager(LocalFileCache(cache_dir)) as manager:
            (
                Pipeline.builder()
                .with_artifact_manager(manager)
                .with_task(writer("Producer", content=content, validator=_reject))
                .with_output_artifact(reference)
                .register()
                .build()
                .execute()
            )

    assert calls == ["Producer", "Producer"]
    assert len(checked) == 1
    assert (cache_dir / "dataset-1_0.txt").read_text("utf-8") == "v2"


def test_forced_execution_bypasses_valid_cache_and_still_updates_it(
    cache_dir: Path,
    writer: Writer,
    reference: ArtifactReference,
    calls: list[str],
) -> None:
    cached = cache_dir / "dataset-1_0.txt"
    cached.write_text("stale", "utf-8")

    with ArtifactManager(LocalFileCache(cache_dir)) as manager:
        result = (
            Pipeline.builder()
            .with_artifact_manager(manager)
            .with_task(writer("Producer", content="fresh", validator=lambda artifact: True))
            .with_output_artifact(reference)
            .with_forced_execution()
            .register()
            .build()
            .execute()
        )

    assert calls == ["Producer"]
    assert result.executed == ["Producer"]
    assert cached.read_text("utf-8") == "fresh"


def test_missing_input_artifact_is_dependency_error(
    manager: ArtifactManager,
    writer: Writer,
    reference: ArtifactReference,
    calls: list[str],
) -> None:
    pipeline = (
        Pipeline.builder()
        .with_artifact_manager(manager)
        .with_task(writer("Reader"))
        .with_input_artifact(reference)
        .register()
        .build()
    )

    with pytest.raises(TaskDependencyError, match="Reader requires input artifact dataset:1.0:txt"):
        pipeline.execute()
    assert calls == []


def test_prepopulated_cache_satisfies_input_binding(
    manager: ArtifactManager,
    cache_dir: Path,
    reference: ArtifactReference,
) -> None:
    (cache_dir / "dataset-1_0.txt").write_text("seeded", "utf-8")
    seen: list[str] = []

    def _read(context: TaskContext) -> None:
        seen.append(context.required_input_path.read_text("utf-8"))

    (
        Pipeline.builder()
        .with_artifact_manager(manager)
        .with_task(FunctionTask(_read, name="Reader"))
        .with_input_artifact(reference)
        .register()
        .build()
        .execute()
    )

    assert seen == ["seeded"]


def test_task_output_missing_is_execution_error(
    manager: ArtifactManager,
    reference: ArtifactReference,
) -> None:
    pipeline = (
        Pipeline.builder()
        .with_artifact_manager(manager)
        .with_task(FunctionTask(lambda context: None, name="Lazy"))
        .with_output_artifact(reference)
        .register()
        .build()
    )

    with pytest.raises(TaskExecutionError, match="Lazy did not produce output"):
        pipeline.execute()


def test_temporary_allocations_are_released_on_success_and_failure(scratch_dir: Path) -> None:
    allocated: list[Path] = []

    def _allocate(context: TaskContext) -> None:
        directory = context.allocate_temporary_directory()
        (directory / "inner.txt").write_text("x", "utf-8")
        allocated.extend([directory, context.allocate_temporary_file(".log")])

    def _allocate_and_fail(context: TaskContext) -> None:
        _allocate(context)
        raise ValueError("bad input")

    Pipeline.builder().with_task(FunctionTask(_allocate, name="Ok")).register().build().execute()
    with pytest.raises(TaskExecutionError):
        (
            Pipeline.builder()
            .with_task(FunctionTask(_allocate_and_fail, name="Broken"))
            .register()
            .build()
            .execute()
        )

    assert len(allocated) == 4
    assert not any(path.exists() for path in allocated)
    assert list(scratch_dir.iterdir()) == []


def test_cleanup_failure_is_attached_to_task_failure(
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
) -> None:
    def _fail_release(path: Path) -> list[tuple[Path, OSError]]:
        return [(path, PermissionError("locked"))]

    monkeypatch.setattr("pipewright.resources.remove_tree", _fail_release)

    def _allocate_and_fail(context: TaskContext) -> None:
        context.allocate_temporary_directory()
        raise RuntimeError("primary failure")

    pipeline = (
        Pipeline.builder()
        .with_task(FunctionTask(_allocate_and_fail, name="Broken"))
        .register()
        .build()
    )

    with caplog.at_level(logging.WARNING), pytest.raises(TaskExecutionError) as info:
        pipeline.execute()

    assert "primary failure" in str(info.value)
    assert isinstance(info.value.cleanup_error, ResourceCleanupError)
    assert "locked" in caplog.text


def test_cleanup_failure_after_success_names_the_task(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        "pipewright.resources.remove_tree",
        lambda path: [(path, PermissionError("locked"))],
    )
    pipeline = (
        Pipeline.builder()
        .with_task(FunctionTask(lambda context: context.allocate_temporary_directory(), name="Ok"))
        .register()
        .build()
    )

    with pytest.raises(ResourceCleanupError) as info:
        pipeline.execute()
    assert any("task Ok" in note for note in info.value.__notes__)


def test_named_parameters_resolve_paths_and_artifacts(
    manager: ArtifactManager,
    cache_dir: Path,
    tmp_path: Path,
    reference: ArtifactReference,
) -> None:
    (cache_dir / "dataset-1_0.txt").write_text("config", "utf-8")
    extra = tmp_path / "extra.txt"
    task = _ParameterTask()

    (
        Pipeline.builder()
        .with_artifact_manager(manager)
        .with_task(task)
        .with_parameter("config", reference)
        .with_parameter("extra", extra)
        .register()
        .build()
        .execute()
    )

    assert task.seen["config"].read_text("utf-8") == "config"
    assert task.seen["extra"] == extra


def test_missing_artifact_parameter_names_parameter(manager: ArtifactManager) -> None:
    pipeline = (
        Pipeline.builder()
        .with_artifact_manager(manager)
        .with_task(_ParameterTask())
        .with_parameter("config", ArtifactReference(name="absent", version="1"))
        .register()
        .build()
    )

    with pytest.raises(TaskDependencyError, match="parameter 'config' artifact absent:1:bin"):
        pipeline.execute()


def test_register_lists_every_unbound_requirement() -> None:
    class _Strict(_ParameterTask):
        requires_input = True
        requires_output = True
        available_parameters = frozenset({"config", "schema"})
        required_parameters = frozenset({"config", "schema"})

    with pytest.raises(TaskDependencyError) as info:
        Pipeline.builder().with_task(_Strict()).register()

    message = str(info.value)
    assert "_Strict" in message
    for expected in ("input", "output", "'config'", "'schema'"):
        assert expected in message


def test_unknown_parameter_name_is_rejected() -> None:
    with pytest.raises(TaskParameterError, match="does not accept parameter 'bogus'"):
        Pipeline.builder().with_task(_ParameterTask()).with_parameter("bogus", "x.txt")


def test_validation_runs_before_any_task(writer: Writer, calls: list[str]) -> None:
    pipeline = (
        Pipeline.builder()
        .with_task(writer("First"))
        .register()
        .with_task(writer("Second", required_tasks={"missing"}))
        .register()
        .build()
    )

    with pytest.raises(TaskDependencyError, match="Second requires task 'missing'"):
        pipeline.execute()
    assert calls == []


def test_fixed_file_bindings_are_used_as_is(tmp_path: Path) -> None:
    source = tmp_path / "in.txt"
    source.write_text("raw", "utf-8")
    target = tmp_path / "out.txt"

    def _upper(context: TaskContext) -> None:
        text = context.required_input_path.read_text("utf-8")
        context.required_output_path.write_text(text.upper(), "utf-8")

    (
        Pipeline.builder()
        .with_task(FunctionTask(_upper, name="Upper"))
        .with_input_file(source)
        .with_output_file(target)
        .register()
        .build()
        .execute()
    )

    assert target.read_text("utf-8") == "RAW"
    assert source.exists()


def test_directory_outputs_flow_through_archive_cache(tmp_path: Path) -> None:
    site = ArtifactReference(name="site", version="1", type="zip")
    pages: list[str] = []

    def _render(context: TaskContext) -> None:
        output = context.required_output_path
        output.mkdir()
        (output / "index.html").write_text("<h1>hi</h1>", "utf-8")

    def _publish(context: TaskContext) -> None:
        pages.extend(sorted(path.name for path in context.required_input_path.iterdir()))

    with ArtifactManager(RepositoryFileCache(tmp_path / "repo")) as manager:
        (
            Pipeline.builder()
            .with_artifact_manager(manager)
            .with_task(FunctionTask(_render, name="Render"))
            .with_output_artifact(site)
            .register()
            .with_task(FunctionTask(_publish, name="Publish"))
            .with_input_artifact(site)
            .register()
            .build()
            .execute()
        )

    assert pages == ["index.html"]
    assert (tmp_path / "repo" / "site" / "1" / "site-1.zip").is_file()


def test_apply_and_temporary_prefix() -> None:
    prefixes: list[str] = []

    def _record(context: TaskContext) -> None:
        prefixes.append(context.allocate_temporary_directory().name)

    pipeline = (
        Pipeline.builder()
        .with_temporary_prefix("job_")
        .with_task(FunctionTask(_record, name="Recorder"))
        .apply(lambda registration: registration.with_forced_execution(False))
        .register()
        .build()
    )
    pipeline.execute()

    assert prefixes[0].startswith("job_")
    assert pipeline.registrations[0].forced is False


def test_unreadable_cached_archive_runs_task_again(
    tmp_path: Path,
    caplog: pytest.LogCaptureFixture,
) -> None:
    site = ArtifactReference(name="site", version="1", type="zip")
    renders: list[str] = []

    def _render(context: TaskContext) -> None:
        renders.append("Render")
        output = context.required_output_path
        output.mkdir()
        (output / "index.html").write_text("<h1>hi</h1>", "utf-8")

    def _mounts(artifact: Artifact) -> bool:
        return artifact.path.is_dir()

    def _build(manager: ArtifactManager) -> Pipeline:
        return (
            Pipeline.builder()
            .with_artifact_manager(manager)
            .with_task(FunctionTask(_render, name="Render", validator=_mounts))
            .with_output_artifact(site)
            .register()
            .build()
        )

    archive = tmp_path / "repo" / "site" / "1" / "site-1.zip"
    with ArtifactManager(RepositoryFileCache(tmp_path / "repo")) as manager:
        _build(manager).execute()
    data = bytearray(archive.read_bytes())
    data[0:4] = b"XXXX"
    archive.write_bytes(bytes(data))

    with caplog.at_level(logging.WARNING):
        with ArtifactManager(RepositoryFileCache(tmp_path / "repo")) as manager:
            result = _build(manager).execute()

    assert renders == ["Render", "Render"]
    assert result.executed == ["Render"]
    assert "Cannot check cached artifact site:1:zip" in caplog.text
    assert archive.read_bytes()[:4] == b"PK\x03\x04"


def test_validator_crash_is_execution_error_naming_task(
    cache_dir: Path,
    writer: Writer,
    reference: ArtifactReference,
) -> None:
    (cache_dir / "dataset-1_0.txt").write_text("cached", "utf-8")

    def _explode(artifact: Artifact) -> bool:
        raise ValueError("unsupported format")

    with ArtifactManager(LocalFileCache(cache_dir)) as manager:
        pipeline = (
            Pipeline.builder()
            .with_artifact_manager(manager)
            .with_task(writer("Checker", validator=_explode))
            .with_output_artifact(reference)
            .register()
            .build()
        )
        with pytest.raises(TaskExecutionError, match="unsupported format") as info:
            pipeline.execute()

    assert info.value.task_name == "Checker"
    assert isinstance(info.value.__cause__, ValueError)


def test_output_registration_failure_names_task(
    monkeypatch: pytest.MonkeyPatch,
    writer: Writer,
    reference: ArtifactReference,
) -> None:
    def _no_space(source: str, target: object) -> None:
        raise OSError("No space left on device")

    monkeypatch.setattr("pipewright.artifacts.manager.shutil.move", _no_space)

    with ArtifactManager() as manager:
        pipeline = (
            Pipeline.builder()
            .with_artifact_manager(manager)
            .with_task(writer("Producer"))
            .with_output_artifact(reference)
            .register()
            .build()
        )
        with pytest.raises(TaskExecutionError, match="cannot register output artifact") as info:
            pipeline.execute()

    assert info.value.task_name == "Producer"
    assert "No space left" in str(info.value)
