from __future__ import annotations

import os
from pathlib import Path

import pytest

from teleshell.executor.models import Classification, CommandOutcome, CommandSpec
from teleshell.executor.pipeline import ExecutionPipeline


class ScriptedRunner:
    """Classify commands by name without spawning anything."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, object, float]] = []

    async def run(self, spec: CommandSpec, working_dir: object, timeout: float) -> CommandOutcome:
        self.calls.append((spec.command, working_dir, timeout))
        classification = {
            "fail": Classification.FAILED,
            "hang": Classification.TIMED_OUT,
            "missing": Classification.SPAWN_ERROR,
        }.get(spec.command, Classification.SUCCEEDED)
        return CommandOutcome(command=spec.command, classification=classification)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "commands",
    [
        ["ok", "ok", "ok"],
        ["fail", "ok", "ok"],
        ["ok", "fail", "ok"],
        ["ok", "ok", "hang"],
        ["missing"],
        ["ok", "hang", "fail", "ok"],
    ],
)
async def test_attempts_prefix_up_to_first_non_success(commands: list[str]) -> None:
    runner = ScriptedRunner()
    pipeline = ExecutionPipeline(runner)  # type: ignore[arg-type]

    report = await pipeline.run_all([CommandSpec(command=name) for name in commands], None, 10)

    failures = [index for index, name in enumerate(commands) if name != "ok"]
    expected = failures[0] + 1 if failures else len(commands)
    assert report.attempted == expected
    assert [call[0] for call in runner.calls] == commands[:expected]
    assert report.requested == len(commands)
    if failures:
        assert report.stopped_at is not None
        assert report.classification is report.stopped_at.classification
        assert not report.complete
    else:
        assert report.classification is Classification.SUCCEEDED
        assert report.complete


@pytest.mark.asyncio
async def test_empty_list_succeeds_without_attempts() -> None:
    runner = ScriptedRunner()

    report = await ExecutionPipeline(runner).run_all([], None, 10)  # type: ignore[arg-type]

    assert report.attempted == 0
    assert report.classification is Classification.SUCCEEDED
    assert runner.calls == []


@pytest.mark.asyncio
async def test_per_command_overrides(tmp_path: Path) -> None:
    runner = ScriptedRunner()
    commands = [
        CommandSpec(command="first"),
        CommandSpec(command="second", timeout_secs=3, working_dir="/srv"),
        CommandSpec(command="third", working_dir="sub"),
    ]

    await ExecutionPipeline(runner).run_all(commands, tmp_path, 10)  # type: ignore[arg-type]

    assert runner.calls == [
        ("first", tmp_path, 10),
        ("second", "/srv", 3),
        ("third", tmp_path / "sub", 10),
    ]


@pytest.mark.asyncio
async def test_dependent_commands_stop_after_failure(tmp_path: Path) -> None:
    target = tmp_path / "x"
    commands = [
        CommandSpec(command=f"mkdir {target}"),
        CommandSpec(command="false"),
        CommandSpec(command=f"rm -rf {target}"),
    ]

    report = await ExecutionPipeline().run_all(commands, tmp_path, 5)

    assert report.attempted == 2
    assert report.classification is Classification.FAILED
    assert [outcome.classification for outcome in report.outcomes] == [
        Classification.SUCCEEDED,
        Classification.FAILED,
    ]
    assert target.is_dir()


@pytest.mark.asyncio
async def test_list_files_scenario(tmp_path: Path) -> None:
    (tmp_path / "notes.txt").write_text("hi", encoding="utf-8")

    report = await ExecutionPipeline().run_all([CommandSpec(command="ls -la")], tmp_path, 5)

    assert report.succeeded
    assert report.outcomes[0].exit_code == 0
    assert "notes.txt" in report.outcomes[0].stdout


@pytest.mark.asyncio
async def test_relative_working_dir_is_under_configured_dir(tmp_path: Path) -> None:
    work = tmp_path / "work"
    (work / "sub").mkdir(parents=True)

    report = await ExecutionPipeline().run_all([CommandSpec(command="pwd", working_dir="sub")], work, 5)

    assert report.classification is Classification.SUCCEEDED
    assert os.path.realpath(report.outcomes[0].stdout.strip()) == os.path.realpath(work / "sub")
