"""Execution dataclasses."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class Classification(str, Enum):
    """Outcome class of one command or one command sequence."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    SPAWN_ERROR = "spawn_error"


@dataclass(frozen=True)
class CommandSpec:
    """One shell command returned by the tool server."""

    command: str
    description: str = ""
    timeout_secs: float | None = None
    working_dir: str | None = None


@dataclass(frozen=True)
class CommandOutcome:
    """Result of running one command to completion."""

    command: str
    classification: Classification
    exit_code: int | None = None
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0
    description: str = ""

    @property
    def succeeded(self) -> bool:
        return self.classification is Classification.SUCCEEDED


@dataclass(frozen=True)
class ExecutionReport:
    """Attempted prefix of a command sequence and where it stopped."""

    outcomes: tuple[CommandOutcome, ...] = field(default_factory=tuple)
    requested: int = 0

    @property
    def attempted(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded_count(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.succeeded)

    @property
    def stopped_at(self) -> CommandOutcome | None:
        """First outcome that did not succeed, if any."""
        for outcome in self.outcomes:
            if not outcome.succeeded:
                return outcome
        return None

    @property
    def complete(self) -> bool:
        return self.attempted == self.requested and self.stopped_at is None

    @property
    def classification(self) -> Classification:
        stopped = self.stopped_at
        if stopped is not None:
            return stopped.classification
        if self.attempted != self.requested:
            # Only reachable for reports assembled by hand.
            return Classification.FAILED
        return Classification.SUCCEEDED

    @property
    def succeeded(self) -> bool:
        return self.classification is Classification.SUCCEEDED
