"""Channel gateways and message models."""

from teleshell.channels.base import BaseGateway
from teleshell.channels.console import ConsoleGateway
from teleshell.channels.events import InboundMessage, OutboundMessage, PollBatch
from teleshell.channels.telegram import TelegramConfig, TelegramGateway

__all__ = [
    "BaseGateway",
    "ConsoleGateway",
    "InboundMessage",
    "OutboundMessage",
    "PollBatch",
    "TelegramConfig",
    "TelegramGateway",
]
