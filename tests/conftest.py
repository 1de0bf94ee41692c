"""Shared test fixtures."""

from __future__ import annotations

import os
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from pipewright.artifacts.manager import ArtifactManager
from pipewright.artifacts.reference import ArtifactReference
from pipewright.cache.local import LocalFileCache
from pipewright.tasks.base import FunctionTask
from pipewright.tasks.context import TaskContext


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path: Path) -> None:
    """Drop PIPEWRIGHT_* variables and keep temporary files inside the test directory."""
    for name in list(os.environ):
        if name.startswith("PIPEWRIGHT_"):
            monkeypatch.delenv(name, raising=False)
    scratch = tmp_path / "tmp"
    scratch.mkdir()
    monkeypatch.setenv("TMPDIR", str(scratch))
    monkeypatch.setattr("tempfile.tempdir", None)


@pytest.fixture()
def scratch_dir(tmp_path: Path) -> Path:
    return tmp_path / "tmp"


@pytest.fixture()
def cache_dir(tmp_path: Path) -> Path:
    path = tmp_path / "cache"
    path.mkdir()
    return path


@pytest.fixture()
def manager(cache_dir: Path) -> Iterator[ArtifactManager]:
    with ArtifactManager(LocalFileCache(cache_dir)) as artifact_manager:
        yield artifact_manager


@pytest.fixture()
def calls() -> list[str]:
    return []


@pytest.fixture()
def writer(calls: list[str]) -> Callable[..., FunctionTask]:
    """Build tasks that record their name and write ``content`` to the output path."""

    def _make(name: str, content: str = "payload", **declarations) -> FunctionTask:
        def _execute(context: TaskContext) -> None:
            calls.append(name)
            if context.output_path is not None:
                context.output_path.write_text(content, "utf-8")

        return FunctionTask(_execute, name=name, **declarations)

    return _make


@pytest.fixture()
def reference() -> ArtifactReference:
    return ArtifactReference(name="dataset", version="1.0", type="txt")
