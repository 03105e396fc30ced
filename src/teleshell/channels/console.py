"""Local stdin/stdout gateway."""

from __future__ import annotations

import asyncio
import sys
from collections.abc import Iterable
from typing import TextIO

from rich.console import Console

from teleshell.channels.base import BaseGateway
from teleshell.channels.events import InboundMessage, OutboundMessage, PollBatch

LOCAL_CHAT_ID = "local"


class ConsoleGateway(BaseGateway):
    """Read messages from stdin (or a fixed list) and print replies.

    The gateway closes itself when input is exhausted.
    """

    name = "console"

    def __init__(
        self,
        *,
        lines: Iterable[str] | None = None,
        stdin: TextIO | None = None,
        console: Console | None = None,
    ) -> None:
        self._lines = list(lines) if lines is not None else None
        self._stdin = stdin or sys.stdin
        self._console = console or Console(highlight=False)
        self._next_offset = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def fetch_next(self, cursor: int | None) -> PollBatch:
        if self._closed:
            return PollBatch(cursor=cursor)
        if self._lines is not None:
            texts = [line for line in self._lines if line.strip()]
            self._closed = True
        else:
            raw = await asyncio.to_thread(self._stdin.readline)
            if not raw:
                self._closed = True
                return PollBatch(cursor=cursor)
            texts = [raw.strip()] if raw.strip() else []

        messages = []
        for text in texts:
            messages.append(
                InboundMessage(
                    channel=self.name,
                    chat_id=LOCAL_CHAT_ID,
                    sender_id="human",
                    text=text,
                    offset=self._next_offset,
                )
            )
            self._next_offset += 1
        return PollBatch(messages=tuple(messages), cursor=self._next_offset)

    async def send(self, message: OutboundMessage) -> None:
        self._console.print(f"[{message.channel}:{message.chat_id}] {message.content}", markup=False)
