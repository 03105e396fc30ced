"""Runtime logging helpers."""

from __future__ import annotations

import os
import sys
from logging import Handler
from typing import Literal, TextIO

import loguru
from loguru import logger
from rich import get_console
from rich.logging import RichHandler

LogProfile = Literal["default", "console"]

_PROFILE_FORMATS: dict[LogProfile, str] = {
    "console": "{message}",
    "default": "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<7} | {name}:{function}:{line} | {extra[chat]} | {message}",
}
_CONFIGURED: tuple[LogProfile, str] | None = None


def _sink(profile: LogProfile) -> Handler | TextIO:
    if profile == "console":
        # Log lines share the terminal with printed reports.
        return RichHandler(
            console=get_console(),
            show_level=True,
            show_time=False,
            show_path=False,
            markup=False,
            rich_tracebacks=False,
        )
    return sys.stderr


def configure_logging(*, profile: LogProfile = "default", level: str | None = None) -> None:
    """Configure process-level logging once per profile and level.

    The level comes from ``level`` or ``TELESHELL_LOG_LEVEL``. Every record
    carries ``extra["chat"]``, the chat id being processed or ``-``.
    """
    from teleshell.core.orchestrator import current_chat

    def inject_context(record: loguru.Record) -> None:
        record["extra"]["chat"] = current_chat()

    global _CONFIGURED
    resolved_level = (level or os.getenv("TELESHELL_LOG_LEVEL", "INFO")).upper()
    if _CONFIGURED == (profile, resolved_level):
        return

    logger.remove()
    logger.add(
        _sink(profile),
        level=resolved_level,
        format=_PROFILE_FORMATS[profile],
        backtrace=False,
        diagnose=False,
    )
    logger.configure(patcher=inject_context)
    _CONFIGURED = (profile, resolved_level)
