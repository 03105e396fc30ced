"""Telegram channel gateway."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import timedelta

from loguru import logger
from telegram import Bot, Message, ReplyParameters, Update
from telegram.error import BadRequest, RetryAfter, TelegramError, TimedOut
from telegramify_markdown import markdownify as md

from teleshell.channels.base import BaseGateway
from teleshell.channels.events import InboundMessage, OutboundMessage, PollBatch
from teleshell.errors import ConfigurationError, DeliveryError

ALLOWED_UPDATES = ["message", "channel_post"]
# Telegram allows 4096 characters; MarkdownV2 escaping needs headroom.
MAX_CHUNK_LENGTH = 3500


@dataclass(frozen=True)
class TelegramConfig:
    """Telegram gateway config."""

    token: str
    poll_timeout: int = 30
    drop_pending_updates: bool = True
    retry_delay: float = 3.0


def split_text(text: str, limit: int = MAX_CHUNK_LENGTH) -> list[str]:
    """Split text into chunks of at most ``limit`` characters, preferring line breaks."""
    chunks: list[str] = []
    rest = text
    while len(rest) > limit:
        cut = rest.rfind("\n", 0, limit)
        if cut <= 0:
            cut = limit
        chunks.append(rest[:cut])
        rest = rest[cut:].lstrip("\n")
    if rest:
        chunks.append(rest)
    return chunks


def _chat_ref(chat_id: str) -> int | str:
    return int(chat_id) if chat_id.lstrip("-").isdigit() else chat_id


def _sender_id(message: Message) -> str:
    if message.from_user is not None:
        return str(message.from_user.id)
    if message.sender_chat is not None:
        return str(message.sender_chat.id)
    return ""


class TelegramGateway(BaseGateway):
    """Telegram gateway using Bot API long polling."""

    name = "telegram"

    def __init__(self, config: TelegramConfig, *, bot: Bot | None = None) -> None:
        self._config = config
        self._bot = bot

    async def start(self) -> None:
        if not self._config.token:
            raise ConfigurationError("telegram token is empty")
        if self._bot is None:
            self._bot = Bot(token=self._config.token)
        await self._bot.initialize()
        # Long polling does not work while a webhook is registered.
        await self._bot.delete_webhook(drop_pending_updates=self._config.drop_pending_updates)
        logger.info(
            "telegram.channel.start username={} drop_pending={}",
            self._bot.username,
            self._config.drop_pending_updates,
        )

    async def stop(self) -> None:
        if self._bot is None:
            return
        await self._bot.shutdown()
        logger.info("telegram.channel.stopped")

    async def fetch_next(self, cursor: int | None) -> PollBatch:
        bot = self._require_bot()
        try:
            updates = await bot.get_updates(
                offset=cursor,
                timeout=self._config.poll_timeout,
                allowed_updates=ALLOWED_UPDATES,
            )
        except TimedOut:
            return PollBatch(cursor=cursor)
        except RetryAfter as exc:
            delay = exc.retry_after
            seconds = delay.total_seconds() if isinstance(delay, timedelta) else float(delay)
            logger.warning("telegram.channel.flood_wait seconds={}", seconds)
            await asyncio.sleep(seconds)
            return PollBatch(cursor=cursor)
        except TelegramError as exc:
            logger.warning("telegram.channel.poll_error error={}", exc)
            await asyncio.sleep(self._config.retry_delay)
            return PollBatch(cursor=cursor)
        return self._to_batch(updates, cursor)

    def _to_batch(self, updates: tuple[Update, ...] | list[Update], cursor: int | None) -> PollBatch:
        messages: list[InboundMessage] = []
        next_cursor = cursor
        for update in updates:
            next_cursor = max(next_cursor or 0, update.update_id + 1)
            message = update.effective_message
            if message is None or not message.text:
                logger.debug("telegram.channel.skip update_id={} reason=non_text", update.update_id)
                continue
            chat_id = str(message.chat_id)
            sender_id = _sender_id(message)
            logger.info(
                "telegram.channel.inbound chat_id={} sender_id={} content={}",
                chat_id,
                sender_id,
                message.text[:100],
            )
            messages.append(
                InboundMessage(
                    channel=self.name,
                    chat_id=chat_id,
                    sender_id=sender_id,
                    text=message.text,
                    message_id=message.message_id,
                    offset=update.update_id,
                    metadata={
                        "chat_type": message.chat.type,
                        "username": (message.from_user.username or "") if message.from_user else "",
                    },
                )
            )
        return PollBatch(messages=tuple(messages), cursor=next_cursor)

    async def send(self, message: OutboundMessage) -> None:
        bot = self._require_bot()
        reply_to = message.reply_to_message_id
        for chunk in split_text(message.content):
            await self._send_chunk(bot, message.chat_id, chunk, reply_to)
            reply_to = None

    async def _send_chunk(self, bot: Bot, chat_id: str, chunk: str, reply_to: int | None) -> None:
        reply_parameters = (
            ReplyParameters(message_id=reply_to, allow_sending_without_reply=True) if reply_to is not None else None
        )
        try:
            await bot.send_message(
                chat_id=_chat_ref(chat_id),
                text=md(chunk),
                parse_mode="MarkdownV2",
                reply_parameters=reply_parameters,
            )
            return
        except BadRequest as exc:
            logger.warning("telegram.channel.markdown_rejected chat_id={} error={}", chat_id, exc)
        except TelegramError as exc:
            raise DeliveryError(f"telegram send to {chat_id} failed: {exc}") from exc

        try:
            await bot.send_message(
                chat_id=_chat_ref(chat_id),
                text=chunk,
                parse_mode=None,
                reply_parameters=reply_parameters,
            )
        except TelegramError as exc:
            raise DeliveryError(f"telegram send to {chat_id} failed: {exc}") from exc

    def _require_bot(self) -> Bot:
        if self._bot is None:
            raise DeliveryError("telegram gateway is not started")
        return self._bot
