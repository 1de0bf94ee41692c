"""Task contract and bundled task implementations."""

from pipewright.tasks.base import FunctionTask, Task
from pipewright.tasks.command import CommandTask, ProcessOutcome, ProcessOutputRelay, run_process
from pipewright.tasks.context import TaskContext
from pipewright.tasks.git import (
    GitAddTask,
    GitApplyMailArchiveTask,
    GitCommitTask,
    GitCreateBranchTask,
    GitFormatPatchTask,
    GitInitTask,
)
from pipewright.tasks.io import CopyTask, CreateArchiveTask, DownloadFileTask

__all__ = [
    "CommandTask",
    "CopyTask",
    "CreateArchiveTask",
    "DownloadFileTask",
    "FunctionTask",
    "GitAddTask",
    "GitApplyMailArchiveTask",
    "GitCommitTask",
    "GitCreateBranchTask",
    "GitFormatPatchTask",
    "GitInitTask",
    "ProcessOutcome",
    "ProcessOutputRelay",
    "Task",
    "TaskContext",
    "run_process",
]
