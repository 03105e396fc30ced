"""Sequential stop-on-failure execution of a command list."""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

from loguru import logger

from teleshell.executor.models import CommandOutcome, CommandSpec, ExecutionReport
from teleshell.executor.runner import CommandRunner


class ExecutionPipeline:
    """Run commands left to right and stop at the first one that does not succeed.

    Commands from the tool server may depend on each other (``mkdir`` before
    ``cp``), so nothing runs after a failure.
    """

    def __init__(self, runner: CommandRunner | None = None) -> None:
        self.runner = runner or CommandRunner()

    async def run_all(
        self,
        commands: Sequence[CommandSpec],
        working_dir: Path | str | None,
        per_command_timeout: float,
    ) -> ExecutionReport:
        outcomes: list[CommandOutcome] = []
        for index, spec in enumerate(commands, start=1):
            logger.info(
                "executor.pipeline.step index={}/{} description={} command={}",
                index,
                len(commands),
                spec.description or "-",
                spec.command,
            )
            timeout = spec.timeout_secs if spec.timeout_secs is not None else per_command_timeout
            cwd = _resolve_cwd(spec.working_dir, working_dir)
            outcome = await self.runner.run(spec, cwd, timeout)
            outcomes.append(outcome)
            if not outcome.succeeded:
                logger.info(
                    "executor.pipeline.stopped index={}/{} classification={}",
                    index,
                    len(commands),
                    outcome.classification.value,
                )
                break
        return ExecutionReport(outcomes=tuple(outcomes), requested=len(commands))


def _resolve_cwd(override: str | None, working_dir: Path | str | None) -> Path | str | None:
    """Relative overrides are taken relative to the configured working directory."""
    if override is None:
        return working_dir
    if working_dir is None or Path(override).is_absolute():
        return override
    return Path(working_dir) / override
