"""CLI entrypoint for pipewright."""

from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from pipewright import __version__
from pipewright.config import CACHE_LAYOUTS
from pipewright.controllers import PipelineCliController, PlanCommand, RunCommand
from pipewright.errors import ResourceCleanupError, TaskError

click.rich_click.USE_MARKDOWN = True
PIPELINE_CONTROLLER = PipelineCliController()

CommandT = TypeVar("CommandT", PlanCommand, RunCommand)


@click.group()
@click.version_option(version=__version__, prog_name="pipewright")
def pipewright() -> None:
    """Cache-aware task pipeline runner."""


@pipewright.command("plan")
@click.argument("target")
@click.option(
    "--cache-dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Artifact cache directory.",
)
@click.option(
    "--cache-layout",
    type=click.Choice(CACHE_LAYOUTS),
    default=None,
    help="Artifact cache layout.",
)
def plan(target: str, cache_dir: Path | None, cache_layout: str | None) -> None:
    """Validate a pipeline and print its execution order.

    TARGET is a `module:function` or `path/to/file.py:function` receiving the pipeline builder.
    """

    _emit_lines(
        _invoke(
            PIPELINE_CONTROLLER.plan,
            PlanCommand(target=target, cache_dir=cache_dir, cache_layout=cache_layout),
        ),
    )


@pipewright.command("run")
@click.argument("target")
@click.option(
    "--cache-dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Artifact cache directory.",
)
@click.option(
    "--cache-layout",
    type=click.Choice(CACHE_LAYOUTS),
    default=None,
    help="Artifact cache layout.",
)
@click.option("--verbose", is_flag=True, default=False, help="Log at DEBUG level.")
def run(target: str, cache_dir: Path | None, cache_layout: str | None, verbose: bool) -> None:
    """Execute a pipeline, skipping tasks whose cached output is still valid.

    TARGET is a `module:function` or `path/to/file.py:function` receiving the pipeline builder.
    """

    _emit_lines(
        _invoke(
            PIPELINE_CONTROLLER.run,
            RunCommand(
                target=target,
                cache_dir=cache_dir,
                cache_layout=cache_layout,
                verbose=verbose,
            ),
        ),
    )


def _invoke(handler: Callable[[CommandT], list[str]], command: CommandT) -> list[str]:
    try:
        return handler(command)
    except (TaskError, ResourceCleanupError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    pipewright()
