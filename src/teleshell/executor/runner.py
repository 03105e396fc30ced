"""Single command runner with deadline and bounded output capture."""

from __future__ import annotations

import asyncio
import os
import signal
import time
from pathlib import Path

from loguru import logger

from teleshell.executor.models import Classification, CommandOutcome, CommandSpec

DEFAULT_SHELL = "sh"
DEFAULT_OUTPUT_LIMIT = 64 * 1024
DEFAULT_KILL_GRACE_SECONDS = 2.0
READ_CHUNK_SIZE = 4096


class OutputBuffer:
    """Byte buffer that keeps the first ``limit`` bytes and counts the rest."""

    def __init__(self, limit: int) -> None:
        self._limit = limit
        self._data = bytearray()
        self.dropped = 0

    def feed(self, chunk: bytes) -> None:
        room = self._limit - len(self._data)
        if room > 0:
            self._data.extend(chunk[:room])
        self.dropped += max(0, len(chunk) - max(room, 0))

    def text(self) -> str:
        text = bytes(self._data).decode("utf-8", errors="replace")
        if self.dropped:
            text += f"\n...[truncated {self.dropped} bytes]"
        return text


async def _drain(stream: asyncio.StreamReader | None, buffer: OutputBuffer) -> None:
    if stream is None:
        return
    while chunk := await stream.read(READ_CHUNK_SIZE):
        buffer.feed(chunk)


def _signal_group(process: asyncio.subprocess.Process, sig: signal.Signals) -> None:
    try:
        os.killpg(process.pid, sig)
    except ProcessLookupError:
        return
    except OSError:
        # Group already gone or not ours; fall back to the direct child.
        try:
            process.send_signal(sig)
        except ProcessLookupError:
            return


class CommandRunner:
    """Run one shell command as an independent process.

    Every path resolves to a :class:`CommandOutcome`; spawn failures,
    non-zero exits and deadlines are classified instead of raised.
    """

    def __init__(
        self,
        *,
        shell: str = DEFAULT_SHELL,
        output_limit: int = DEFAULT_OUTPUT_LIMIT,
        kill_grace: float = DEFAULT_KILL_GRACE_SECONDS,
    ) -> None:
        self.shell = shell
        self.output_limit = output_limit
        self.kill_grace = kill_grace

    async def run(self, spec: CommandSpec, working_dir: Path | str | None, timeout: float) -> CommandOutcome:
        cwd = str(working_dir) if working_dir is not None else None
        started = time.monotonic()
        logger.info("executor.command.start command={} cwd={} timeout={}", spec.command, cwd or ".", timeout)
        try:
            process = await asyncio.create_subprocess_exec(
                self.shell,
                "-c",
                spec.command,
                cwd=cwd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except (OSError, ValueError) as exc:
            logger.error("executor.command.spawn_error command={} error={}", spec.command, exc)
            return CommandOutcome(
                command=spec.command,
                description=spec.description,
                classification=Classification.SPAWN_ERROR,
                stderr=str(exc),
                duration=time.monotonic() - started,
            )

        stdout = OutputBuffer(self.output_limit)
        stderr = OutputBuffer(self.output_limit)
        readers = [
            asyncio.create_task(_drain(process.stdout, stdout)),
            asyncio.create_task(_drain(process.stderr, stderr)),
        ]
        timed_out = False
        try:
            try:
                async with asyncio.timeout(timeout):
                    await process.wait()
            except TimeoutError:
                timed_out = True
                logger.warning("executor.command.timeout command={} pid={}", spec.command, process.pid)
                await self._terminate(process)
            await self._collect(readers)
        except asyncio.CancelledError:
            _signal_group(process, signal.SIGKILL)
            for reader in readers:
                reader.cancel()
            raise
        except Exception as exc:
            logger.exception("executor.command.error command={}", spec.command)
            if process.returncode is None:
                await self._terminate(process)
            for reader in readers:
                reader.cancel()
            return CommandOutcome(
                command=spec.command,
                description=spec.description,
                classification=Classification.FAILED,
                exit_code=process.returncode,
                stdout=stdout.text(),
                stderr=f"{stderr.text()}\n{exc!s}".strip(),
                duration=time.monotonic() - started,
            )

        duration = time.monotonic() - started
        if timed_out:
            classification = Classification.TIMED_OUT
        elif process.returncode == 0:
            classification = Classification.SUCCEEDED
        else:
            classification = Classification.FAILED

        outcome = CommandOutcome(
            command=spec.command,
            description=spec.description,
            classification=classification,
            exit_code=process.returncode,
            stdout=stdout.text(),
            stderr=stderr.text(),
            duration=duration,
        )
        if outcome.succeeded:
            logger.info("executor.command.done command={} elapsed_ms={}", spec.command, int(duration * 1000))
        else:
            logger.error(
                "executor.command.failed command={} classification={} exit_code={} stderr={}",
                spec.command,
                classification.value,
                process.returncode,
                outcome.stderr[:200],
            )
        return outcome

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        """Stop the process group, escalating to SIGKILL, and reap the child."""
        _signal_group(process, signal.SIGTERM)
        try:
            async with asyncio.timeout(self.kill_grace):
                await process.wait()
            return
        except TimeoutError:
            logger.warning("executor.command.kill pid={}", process.pid)
        _signal_group(process, signal.SIGKILL)
        await process.wait()

    async def _collect(self, readers: list[asyncio.Task[None]]) -> None:
        # A detached grandchild can hold the pipes open after the child exits.
        done, pending = await asyncio.wait(readers, timeout=self.kill_grace)
        for task in pending:
            task.cancel()
        for task in done:
            task.result()
