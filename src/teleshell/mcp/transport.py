"""Line-framed stdio transport to a child process."""

from __future__ import annotations

import asyncio
import os
import shlex
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger

from teleshell.errors import SpawnError, TransportEOF, TransportReadError, TransportTimeout, TransportWriteError

MAX_FRAME_BYTES = 16 * 1024 * 1024
DEFAULT_STOP_GRACE_SECONDS = 5.0


@dataclass(frozen=True)
class LaunchSpec:
    """How to spawn the tool server."""

    command: str
    args: tuple[str, ...] = ()
    env: Mapping[str, str] = field(default_factory=dict)
    working_dir: Path | None = None

    def render(self) -> str:
        return shlex.join([self.command, *self.args])


class ProcessTransport:
    """Own one child process and exchange newline-delimited frames with it.

    One writer and one reader may be active at the same time; writes are
    serialized so frames never interleave. After the child closes its stdout,
    ``recv_line`` raises :class:`TransportEOF` once and
    :class:`TransportReadError` afterwards. The process is never respawned.
    """

    def __init__(self, spec: LaunchSpec) -> None:
        self.spec = spec
        self._process: asyncio.subprocess.Process | None = None
        self._write_lock = asyncio.Lock()
        self._read_lock = asyncio.Lock()
        self._eof_seen = False
        self._stderr_task: asyncio.Task[None] | None = None

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    @property
    def returncode(self) -> int | None:
        return self._process.returncode if self._process is not None else None

    @property
    def running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    async def start(self) -> None:
        if self._process is not None:
            raise RuntimeError("transport already started")
        env = {**os.environ, **self.spec.env}
        cwd = str(self.spec.working_dir) if self.spec.working_dir is not None else None
        try:
            self._process = await asyncio.create_subprocess_exec(
                self.spec.command,
                *self.spec.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                cwd=cwd,
                limit=MAX_FRAME_BYTES,
            )
        except (OSError, ValueError) as exc:
            raise SpawnError(f"cannot start {self.spec.render()}: {exc}") from exc
        logger.info("mcp.transport.started pid={} command={}", self._process.pid, self.spec.render())
        self._stderr_task = asyncio.create_task(self._drain_stderr(self._process))

    async def send_line(self, payload: bytes) -> None:
        if b"\n" in payload:
            raise ValueError("frame payload must not contain a raw newline")
        process = self._process
        if process is None or process.stdin is None:
            raise TransportWriteError("transport is not started")
        async with self._write_lock:
            if process.stdin.is_closing():
                raise TransportWriteError("stdin is closed")
            try:
                process.stdin.write(payload + b"\n")
                await process.stdin.drain()
            except (OSError, RuntimeError) as exc:
                raise TransportWriteError(f"write failed: {exc}") from exc

    async def recv_line(self, timeout: float | None = None) -> bytes:
        process = self._process
        if process is None or process.stdout is None:
            raise TransportReadError("transport is not started")
        async with self._read_lock:
            # Checked under the lock so a queued reader sees EOF from the one before it.
            if self._eof_seen:
                raise TransportReadError("closed")
            try:
                async with asyncio.timeout(timeout):
                    line = await process.stdout.readline()
            except TimeoutError:
                raise TransportTimeout(f"no frame within {timeout}s") from None
            except ValueError as exc:
                raise TransportReadError(f"frame exceeds {MAX_FRAME_BYTES} bytes: {exc}") from exc
            except OSError as exc:
                raise TransportReadError(f"read failed: {exc}") from exc
            if not line:
                self._eof_seen = True
                raise TransportEOF("tool server closed its stdout")
        return line.rstrip(b"\r\n")

    async def stop(self, grace: float = DEFAULT_STOP_GRACE_SECONDS) -> None:
        process = self._process
        if process is None:
            return
        if process.stdin is not None and not process.stdin.is_closing():
            process.stdin.close()
        if process.returncode is None:
            try:
                async with asyncio.timeout(grace):
                    await process.wait()
            except TimeoutError:
                logger.warning("mcp.transport.terminate pid={}", process.pid)
                await self._terminate(process, grace)
        if self._stderr_task is not None:
            try:
                async with asyncio.timeout(grace):
                    await self._stderr_task
            except TimeoutError:
                self._stderr_task.cancel()
        logger.info("mcp.transport.stopped pid={} returncode={}", process.pid, process.returncode)

    @staticmethod
    async def _terminate(process: asyncio.subprocess.Process, grace: float) -> None:
        try:
            process.terminate()
        except ProcessLookupError:
            return
        try:
            async with asyncio.timeout(grace):
                await process.wait()
            return
        except TimeoutError:
            logger.warning("mcp.transport.kill pid={}", process.pid)
        try:
            process.kill()
        except ProcessLookupError:
            return
        await process.wait()

    @staticmethod
    async def _drain_stderr(process: asyncio.subprocess.Process) -> None:
        if process.stderr is None:
            return
        try:
            while line := await process.stderr.readline():
                text = line.decode("utf-8", errors="replace").rstrip()
                if text:
                    logger.debug("mcp.server.stderr pid={} line={}", process.pid, text[:500])
        except (OSError, ValueError) as exc:
            logger.debug("mcp.server.stderr.closed pid={} error={}", process.pid, exc)
