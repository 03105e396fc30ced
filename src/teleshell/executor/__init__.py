"""Command execution exports."""

from teleshell.executor.models import Classification, CommandOutcome, CommandSpec, ExecutionReport
from teleshell.executor.pipeline import ExecutionPipeline
from teleshell.executor.runner import CommandRunner

__all__ = [
    "Classification",
    "CommandOutcome",
    "CommandRunner",
    "CommandSpec",
    "ExecutionPipeline",
    "ExecutionReport",
]
