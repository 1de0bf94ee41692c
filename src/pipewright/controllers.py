"""Controllers for pipeline CLI commands."""

from __future__ import annotations

import importlib
import importlib.util
import logging
import sys
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from pipewright.artifacts.manager import ArtifactManager
from pipewright.cache.temporary import TemporaryFileCache
from pipewright.config import Settings
from pipewright.pipeline import Pipeline, PipelineBuilder

logger = logging.getLogger(__name__)

PipelineFactory = Callable[[PipelineBuilder], object]


@dataclass(slots=True)
class PlanCommand:
    """CLI inputs for plan command."""

    target: str
    cache_dir: Path | None = None
    cache_layout: str | None = None


@dataclass(slots=True)
class RunCommand:
    """CLI inputs for run command."""

    target: str
    cache_dir: Path | None = None
    cache_layout: str | None = None
    verbose: bool = False


class PipelineCliController:
    """Coordinates pipeline command execution."""

    def plan(self, command: PlanCommand) -> list[str]:
        settings = _settings(command.cache_dir, command.cache_layout)
        factory = load_pipeline_factory(command.target)
        with _artifact_manager(settings) as manager:
            pipeline = _build(factory, manager, settings)
            ordered = pipeline.plan()

        lines = [f"Execution plan for {command.target}: {len(ordered)} task(s)"]
        for position, registration in enumerate(ordered, start=1):
            flags = " (forced)" if registration.forced else ""
            output = registration.output_artifact or registration.output_file
            target = f" -> {output}" if output is not None else ""
            lines.append(f"{position}. {registration.task.name}{target}{flags}")
        return lines

    def run(self, command: RunCommand) -> list[str]:
        settings = _settings(command.cache_dir, command.cache_layout)
        _configure_logging(logging.DEBUG if command.verbose else settings.logging_level)
        factory = load_pipeline_factory(command.target)
        with _artifact_manager(settings) as manager:
            pipeline = _build(factory, manager, settings)
            result = pipeline.execute()

        return [
            "Pipeline run completed: "
            f"executed={len(result.executed)} skipped={len(result.skipped)} "
            f"duration={result.duration_seconds:.2f}s",
            f"Executed: {', '.join(result.executed) or '-'}",
            f"Skipped: {', '.join(result.skipped) or '-'}",
        ]


def load_pipeline_factory(target: str) -> PipelineFactory:
    """Resolve ``module:function`` or ``path/to/file.py:function`` to a callable."""

    location, separator, attribute = target.rpartition(":")
    if not separator or not location or not attribute:
        raise ValueError(f"Pipeline target must look like module:function, got {target!r}")

    if location.endswith(".py"):
        path = Path(location).expanduser()
        if not path.is_file():
            raise ValueError(f"Pipeline file not found: {path}")
        module_name = f"_pipewright_target_{path.stem}"
        spec = importlib.util.spec_from_file_location(module_name, path)
        if spec is None or spec.loader is None:
            raise ValueError(f"Cannot load pipeline file: {path}")
        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        spec.loader.exec_module(module)
    else:
        try:
            module = importlib.import_module(location)
        except ImportError as error:
            raise ValueError(f"Cannot import pipeline module {location!r}: {error}") from error

    factory = getattr(module, attribute, None)
    if not callable(factory):
        raise ValueError(f"Pipeline target {target!r} is not a callable")
    return factory


def _settings(cache_dir: Path | None, cache_layout: str | None) -> Settings:
    settings = Settings.from_env(cache_dir=cache_dir, cache_layout=cache_layout)
    settings.validate()
    return settings


def _configure_logging(level: int) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("pipewright").setLevel(level)


def _build(factory: PipelineFactory, manager: ArtifactManager, settings: Settings) -> Pipeline:
    builder = (
        Pipeline.builder()
        .with_artifact_manager(manager)
        .with_temporary_prefix(settings.temporary_prefix)
    )
    factory(builder)
    return builder.build()


@contextmanager
def _artifact_manager(settings: Settings) -> Iterator[ArtifactManager]:
    cache = settings.create_cache()
    if cache is None:
        logger.info("Artifact caching disabled")
    manager = ArtifactManager(cache, temporary_prefix=settings.temporary_prefix)
    if isinstance(cache, TemporaryFileCache):
        with cache, manager:
            yield manager
        return
    with manager:
        yield manager
