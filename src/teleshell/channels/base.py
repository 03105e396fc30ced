"""Base channel gateway interface."""

from __future__ import annotations

from abc import ABC, abstractmethod

from teleshell.channels.events import OutboundMessage, PollBatch


class BaseGateway(ABC):
    """Abstract boundary to a messaging channel.

    The gateway never stores the read cursor; the orchestrator passes the
    last committed cursor to every ``fetch_next`` call.
    """

    name: str = "base"

    @property
    def closed(self) -> bool:
        """True once the channel will never deliver another message."""
        return False

    async def start(self) -> None:
        """Prepare the underlying transport."""

    async def stop(self) -> None:
        """Release the underlying transport."""

    @abstractmethod
    async def fetch_next(self, cursor: int | None) -> PollBatch:
        """Wait for the next batch of inbound messages after ``cursor``.

        Returns an empty batch when the poll interval elapses without messages.
        """

    @abstractmethod
    async def send(self, message: OutboundMessage) -> None:
        """Deliver one outbound message.

        Raises:
            DeliveryError: The message could not be delivered.
        """
