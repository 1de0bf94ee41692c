"""File system and network tasks bundled with the engine."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

import httpx

from pipewright.archives import write_archive
from pipewright.config import Settings
from pipewright.errors import TaskExecutionError
from pipewright.tasks.base import Task
from pipewright.tasks.context import TaskContext

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_CHUNK_SIZE = 64 * 1024


class CopyTask(Task):
    """Copies the input file or directory tree to the output location."""

    requires_input = True
    requires_output = True

    def execute(self, context: TaskContext) -> None:
        source = context.required_input_path
        target = context.required_output_path
        if not source.exists():
            raise TaskExecutionError(f"Input {source} does not exist", task_name=self.name)

        target.parent.mkdir(parents=True, exist_ok=True)
        if source.is_dir():
            shutil.copytree(source, target, symlinks=True, dirs_exist_ok=True)
        else:
            shutil.copy2(source, target)
        logger.debug("Copied %s to %s", source, target)


class CreateArchiveTask(Task):
    """Packs the input file or directory tree into a zip archive at the output location."""

    requires_input = True
    requires_output = True

    def execute(self, context: TaskContext) -> None:
        source = context.required_input_path
        target = context.required_output_path
        if not source.exists():
            raise TaskExecutionError(f"Input {source} does not exist", task_name=self.name)
        if target.exists():
            target.unlink()
        write_archive(source, target)
        logger.debug("Archived %s into %s", source, target)


class DownloadFileTask(Task):
    """Streams a URL to the output location.

    The timeout defaults to ``PIPEWRIGHT_DOWNLOAD_TIMEOUT_SECONDS``.
    """

    requires_output = True

    def __init__(
        self,
        url: str,
        *,
        client: httpx.Client | None = None,
        timeout_seconds: float | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> None:
        self.url = url
        self._client = client
        if timeout_seconds is None:
            timeout_seconds = Settings.from_env().download_timeout_seconds
        self._timeout = httpx.Timeout(timeout_seconds, connect=10.0)
        self._max_retries = max_retries

    def execute(self, context: TaskContext) -> None:
        target = context.required_output_path
        target.parent.mkdir(parents=True, exist_ok=True)

        if self._client is not None:
            self._download(self._client, target)
            return
        transport = httpx.HTTPTransport(retries=self._max_retries)
        with httpx.Client(
            timeout=self._timeout,
            transport=transport,
            follow_redirects=True,
        ) as client:
            self._download(client, target)

    def _download(self, client: httpx.Client, target: Path) -> None:
        try:
            with client.stream("GET", self.url) as response:
                if not response.is_success:
                    raise TaskExecutionError(
                        f"Download of {self.url} failed: HTTP {response.status_code}",
                        task_name=self.name,
                    )
                with target.open("wb") as handle:
                    for chunk in response.iter_bytes(DEFAULT_CHUNK_SIZE):
                        handle.write(chunk)
        except httpx.TimeoutException as error:
            raise TaskExecutionError(
                f"Download of {self.url} timed out",
                task_name=self.name,
            ) from error
        except httpx.HTTPError as error:
            raise TaskExecutionError(
                f"Download of {self.url} failed: {error}",
                task_name=self.name,
            ) from error
        logger.info("Downloaded %s to %s", self.url, target)
