"""Version-control tasks driving the ``git`` executable.

Every task works on a plain directory work tree resolved from the invocation
context. Steps that are already satisfied (an existing repository or branch)
are logged and skipped so that pipelines can be re-run against the same tree.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Mapping
from pathlib import Path

from pipewright.config import Settings
from pipewright.errors import TaskExecutionError
from pipewright.tasks.base import Task
from pipewright.tasks.command import ProcessOutcome, run_process
from pipewright.tasks.context import TaskContext

logger = logging.getLogger(__name__)

GIT_EXECUTABLE = "git"
PATCH_FILE_PATTERN = re.compile(r"^(\d{4,})-([\w.-]+)$")


class GitTask(Task):
    """Shared plumbing: runs ``git`` inside a work tree with the task's logger."""

    default_name = "git"

    def __init__(
        self,
        *,
        name: str | None = None,
        executable: str = GIT_EXECUTABLE,
        environment: Mapping[str, str] | None = None,
        timeout_seconds: float | None = None,
        kinds: Iterable[str] = (),
        required_tasks: Iterable[str] = (),
        optional_tasks: Iterable[str] = (),
    ) -> None:
        if timeout_seconds is None:
            timeout_seconds = Settings.from_env().command_timeout_seconds
        self._name = name or self.default_name
        self.executable = executable
        self.environment = dict(environment or {})
        self.timeout_seconds = timeout_seconds
        self.kinds = frozenset(kinds)
        self.required_tasks = frozenset(required_tasks)
        self.optional_tasks = frozenset(optional_tasks)

    @property
    def name(self) -> str:
        return self._name

    def git(self, work_tree: Path, *arguments: str) -> ProcessOutcome:
        return run_process(
            [self.executable, *arguments],
            task_name=self.name,
            timeout_seconds=self.timeout_seconds,
            target=logging.getLogger(f"{__name__}.{self.name}"),
            cwd=work_tree,
            environment=self.environment,
        )

    def require_git(self, work_tree: Path, *arguments: str, action: str) -> None:
        outcome = self.git(work_tree, *arguments)
        if outcome.exit_code != 0:
            raise TaskExecutionError(
                f"Failed to {action}: {outcome.describe_failure(self.executable)}",
                task_name=self.name,
            )

    def require_repository(self, work_tree: Path, role: str) -> None:
        if not (work_tree / ".git").exists():
            raise TaskExecutionError(
                f"No repository at {role} path {work_tree}",
                task_name=self.name,
            )


class GitInitTask(GitTask):
    """Creates an empty repository at the input path unless one already exists."""

    default_name = "git-init"
    requires_input = True

    def execute(self, context: TaskContext) -> None:
        work_tree = context.required_input_path
        if (work_tree / ".git").exists():
            logger.info("Repository exists at %s, skipping", work_tree)
            return
        work_tree.mkdir(parents=True, exist_ok=True)
        self.require_git(work_tree, "init", "--quiet", action="create repository")


class GitAddTask(GitTask):
    """Stages every regular file of the input work tree accepted by ``file_filter``.

    The filter receives paths relative to the work tree.
    """

    default_name = "git-add"
    requires_input = True

    def __init__(
        self,
        file_filter: Callable[[Path], bool] | None = None,
        **options,
    ) -> None:
        super().__init__(**options)
        self.file_filter = file_filter

    def execute(self, context: TaskContext) -> None:
        work_tree = context.required_input_path
        self.require_repository(work_tree, "input")

        candidates = [
            path.relative_to(work_tree)
            for path in work_tree.rglob("*")
            if path.is_file() and path.relative_to(work_tree).parts[0] != ".git"
        ]
        candidates.sort(key=lambda path: (len(path.parts), str(path)))
        selected = [
            str(path)
            for path in candidates
            if self.file_filter is None or self.file_filter(path)
        ]
        if not selected:
            logger.info("Nothing to stage in %s", work_tree)
            return
        self.require_git(work_tree, "add", "--", *selected, action="add files to repository")


class GitCommitTask(GitTask):
    """Commits the staged changes of the input work tree; empty commits fail."""

    default_name = "git-commit"
    requires_input = True

    def __init__(
        self,
        message: str,
        *,
        author_name: str,
        author_email: str,
        **options,
    ) -> None:
        super().__init__(**options)
        self.message = message
        self.environment.update(
            {
                "GIT_AUTHOR_NAME": author_name,
                "GIT_AUTHOR_EMAIL": author_email,
                "GIT_COMMITTER_NAME": author_name,
                "GIT_COMMITTER_EMAIL": author_email,
            },
        )

    def execute(self, context: TaskContext) -> None:
        work_tree = context.required_input_path
        self.require_repository(work_tree, "input")
        self.require_git(work_tree, "commit", "--quiet", "-m", self.message, action="commit")


class GitCreateBranchTask(GitTask):
    """Creates ``branch`` at the current head unless it already exists."""

    default_name = "git-create-branch"
    requires_input = True

    def __init__(self, branch: str, **options) -> None:
        super().__init__(**options)
        self.branch = branch

    def execute(self, context: TaskContext) -> None:
        work_tree = context.required_input_path
        self.require_repository(work_tree, "input")
        ref = f"refs/heads/{self.branch}"
        if self.git(work_tree, "rev-parse", "--verify", "--quiet", ref).exit_code == 0:
            logger.info("Branch %s exists, skipping", self.branch)
            return
        self.require_git(work_tree, "branch", self.branch, action=f"create branch {self.branch!r}")
        logger.info("Created branch %s", self.branch)


class GitFormatPatchTask(GitTask):
    """Writes one mail-formatted patch per commit since ``reference_branch`` to the output."""

    default_name = "git-format-patch"
    requires_input = True
    requires_output = True

    def __init__(self, reference_branch: str, **options) -> None:
        super().__init__(**options)
        self.reference_branch = reference_branch

    def execute(self, context: TaskContext) -> None:
        work_tree = context.required_input_path
        self.require_repository(work_tree, "input")
        output = context.required_output_path

        if self.git(work_tree, "diff", "--quiet", "HEAD").exit_code != 0:
            logger.warning("Repository %s has uncommitted changes; they are omitted", work_tree)

        output.mkdir(parents=True, exist_ok=True)
        logger.info("Generating patches against %s", self.reference_branch)
        self.require_git(
            work_tree,
            "format-patch",
            "-p",
            "--minimal",
            "-N",
            "-o",
            str(output),
            self.reference_branch,
            action="generate patches",
        )


class GitApplyMailArchiveTask(GitTask):
    """Applies the numbered patches of the input directory to the output work tree.

    Pending ``am`` and merge sessions are aborted first. With a ``reference_branch``
    the work tree is hard-reset to it before any patch is applied.
    """

    default_name = "git-apply-mail-archive"
    requires_input = True
    requires_output = True

    def __init__(self, reference_branch: str | None = None, **options) -> None:
        super().__init__(**options)
        self.reference_branch = reference_branch

    def execute(self, context: TaskContext) -> None:
        patches = context.required_input_path
        work_tree = context.required_output_path
        self.require_repository(work_tree, "output")

        if self.git(work_tree, "am", "--abort").exit_code == 0:
            logger.warning("Aborted a pending mail archive merge in %s", work_tree)
        if self.git(work_tree, "merge", "--abort").exit_code == 0:
            logger.warning("Aborted a pending merge in %s", work_tree)

        if self.reference_branch is not None:
            self.require_git(
                work_tree,
                "reset",
                "--hard",
                self.reference_branch,
                action=f"revert to reference branch {self.reference_branch!r}",
            )

        if not patches.exists():
            logger.warning("Patch directory %s is missing, nothing to apply", patches)
            return
        for patch in numbered_patches(patches):
            logger.info("Applying %s", patch.name)
            self.require_git(
                work_tree,
                "am",
                "--ignore-whitespace",
                "--3way",
                str(patch.resolve()),
                action=f"apply patch {patch.name}",
            )


def numbered_patches(directory: Path) -> list[Path]:
    """Patch files directly inside ``directory`` ordered by their numeric prefix."""

    numbered: list[tuple[int, str, Path]] = []
    for path in directory.iterdir():
        match = PATCH_FILE_PATTERN.match(path.name)
        if match is not None and path.is_file():
            numbered.append((int(match.group(1)), path.name, path))
    numbered.sort()
    return [path for _, _, path in numbered]
