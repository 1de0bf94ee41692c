"""Subprocess-backed task with live output relaying."""

from __future__ import annotations

import logging
import os
import re
import shlex
import subprocess
import threading
from collections import deque
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from types import TracebackType
from typing import IO

from pipewright.artifacts.reference import ArtifactReference
from pipewright.config import Settings
from pipewright.errors import TaskExecutionError
from pipewright.tasks.base import Task
from pipewright.tasks.context import TaskContext

logger = logging.getLogger(__name__)

STDERR_TAIL_LINES = 20

_PLACEHOLDER = re.compile(r"\{(input|output|parameter:[A-Za-z0-9_.-]+)\}")


class ProcessOutputRelay:
    """Forwards a child process's stdout and stderr to a logger line by line.

    One daemon thread per stream; ``join()`` waits for both, which happens once
    the child closes its pipes. The last stderr lines are kept for error messages.
    """

    def __init__(self, process: subprocess.Popen[str], target: logging.Logger) -> None:
        self.process = process
        self.target = target
        self.stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        self._threads: list[threading.Thread] = []

    def start(self) -> None:
        streams = [
            (self.process.stdout, logging.INFO, None),
            (self.process.stderr, logging.WARNING, self.stderr_tail),
        ]
        for stream, level, tail in streams:
            if stream is None:
                continue
            thread = threading.Thread(
                target=self._pump,
                args=(stream, level, tail),
                name=f"relay-{self.process.pid}-{logging.getLevelName(level).lower()}",
                daemon=True,
            )
            thread.start()
            self._threads.append(thread)

    def join(self) -> None:
        while self._threads:
            self._threads.pop().join()

    def __enter__(self) -> ProcessOutputRelay:
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.join()

    def _pump(self, stream: IO[str], level: int, tail: deque[str] | None) -> None:
        with stream:
            for raw_line in stream:
                line = raw_line.rstrip("\r\n")
                if tail is not None:
                    tail.append(line)
                self.target.log(level, "%s", line)


@dataclass(slots=True)
class ProcessOutcome:
    """Exit status of a finished child process."""

    exit_code: int
    stderr_tail: list[str] = field(default_factory=list)

    def describe_failure(self, executable: str) -> str:
        message = f"Command {executable} exited with code {self.exit_code}"
        if self.stderr_tail:
            message = f"{message}:\n" + "\n".join(self.stderr_tail)
        return message


def run_process(  # noqa: PLR0913
    argv: Sequence[str],
    *,
    task_name: str,
    timeout_seconds: float,
    target: logging.Logger,
    cwd: Path | None = None,
    environment: Mapping[str, str] | None = None,
) -> ProcessOutcome:
    """Run ``argv`` to completion, relaying its output to ``target``.

    Launch failures and timeouts raise ``TaskExecutionError`` for ``task_name``;
    the exit code is returned for the caller to judge.
    """

    env = os.environ.copy()
    env.update(environment or {})
    logger.info("Running %s", shlex.join(argv))
    try:
        process = subprocess.Popen(  # noqa: S603
            list(argv),
            cwd=cwd,
            env=env,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
    except FileNotFoundError as error:
        raise TaskExecutionError(f"Command not found: {argv[0]}", task_name=task_name) from error
    except OSError as error:
        raise TaskExecutionError(
            f"Command {argv[0]} failed to start: {error}",
            task_name=task_name,
        ) from error

    with ProcessOutputRelay(process, target) as relay:
        try:
            exit_code = process.wait(timeout=timeout_seconds)
        except subprocess.TimeoutExpired as error:
            process.kill()
            process.wait()
            raise TaskExecutionError(
                f"Command {argv[0]} timed out after {timeout_seconds:g}s",
                task_name=task_name,
            ) from error
    return ProcessOutcome(exit_code, list(relay.stderr_tail))


class CommandTask(Task):
    """Runs an external command and fails on timeout or an unexpected exit code.

    Arguments may contain ``{input}``, ``{output}`` and ``{parameter:NAME}``
    placeholders, replaced with the paths resolved for the invocation. Other
    braces are passed through untouched. The timeout defaults to
    ``PIPEWRIGHT_COMMAND_TIMEOUT_SECONDS``. The working directory defaults to the
    input path (its parent when the input is a file).
    """

    def __init__(  # noqa: PLR0913
        self,
        command: str | Sequence[str],
        *,
        name: str | None = None,
        working_directory: str | os.PathLike[str] | None = None,
        environment: Mapping[str, str] | None = None,
        timeout_seconds: float | None = None,
        accepted_exit_codes: Iterable[int] = (0,),
        kinds: Iterable[str] = (),
        required_tasks: Iterable[str] = (),
        optional_tasks: Iterable[str] = (),
        required_artifacts: Iterable[ArtifactReference] = (),
        created_artifacts: Iterable[ArtifactReference] = (),
        parameters: Iterable[str] = (),
        requires_input: bool = False,
        requires_output: bool = False,
    ) -> None:
        argv = shlex.split(command) if isinstance(command, str) else list(command)
        if not argv:
            raise ValueError("Command must not be empty")
        if timeout_seconds is None:
            timeout_seconds = Settings.from_env().command_timeout_seconds
        if timeout_seconds <= 0:
            raise ValueError("Command timeout must be positive")
        self.argv = argv
        self._name = name or Path(argv[0]).name
        self.working_directory = Path(working_directory) if working_directory else None
        self.environment = dict(environment or {})
        self.timeout_seconds = timeout_seconds
        self.accepted_exit_codes = frozenset(accepted_exit_codes)
        self.kinds = frozenset(kinds)
        self.required_tasks = frozenset(required_tasks)
        self.optional_tasks = frozenset(optional_tasks)
        self.required_artifacts = frozenset(required_artifacts)
        self.created_artifacts = frozenset(created_artifacts)
        self.available_parameters = frozenset(parameters)
        self.requires_input = requires_input
        self.requires_output = requires_output

    @property
    def name(self) -> str:
        return self._name

    def execute(self, context: TaskContext) -> None:
        run_args = self.render_arguments(context)
        if context.output_path is not None:
            context.output_path.parent.mkdir(parents=True, exist_ok=True)

        outcome = run_process(
            run_args,
            task_name=self.name,
            timeout_seconds=self.timeout_seconds,
            target=logging.getLogger(f"{__name__}.{self.name}"),
            cwd=self._working_directory(context),
            environment=self.environment,
        )
        if outcome.exit_code not in self.accepted_exit_codes:
            raise TaskExecutionError(outcome.describe_failure(run_args[0]), task_name=self.name)

    def render_arguments(self, context: TaskContext) -> list[str]:
        def substitute(match: re.Match[str]) -> str:
            key = match.group(1)
            if key == "input":
                return str(context.required_input_path)
            if key == "output":
                return str(context.required_output_path)
            return str(context.required_parameter_path(key.removeprefix("parameter:")))

        return [_PLACEHOLDER.sub(substitute, argument) for argument in self.argv]

    def _working_directory(self, context: TaskContext) -> Path | None:
        if self.working_directory is not None:
            return self.working_directory
        if context.input_path is None:
            return None
        if context.input_path.is_dir():
            return context.input_path
        return context.input_path.parent
