"""Narrow messaging gateway over the aiogram Bot."""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable, List, Optional, Protocol, Sequence

from aiogram import Bot
from aiogram.enums import ParseMode
from aiogram.exceptions import TelegramBadRequest, TelegramForbiddenError, TelegramRetryAfter
from aiogram.types import BufferedInputFile, InlineKeyboardMarkup

logger = logging.getLogger(__name__)

DELIVERY_ERRORS = (TelegramBadRequest, TelegramForbiddenError)


class Messenger(Protocol):
    async def send_message(
        self,
        chat_id: int,
        text: str,
        reply_markup: Optional[InlineKeyboardMarkup] = None,
    ) -> int: ...

    async def send_poll(self, chat_id: int, question: str, options: Sequence[str]) -> str: ...

    async def delete_message(self, chat_id: int, message_id: int) -> None: ...

    async def fetch_file(self, file_id: str) -> bytes: ...

    async def send_document(self, chat_id: int, filename: str, content: bytes, caption: str = "") -> None: ...


class AiogramMessenger:
    def __init__(self, bot: Bot):
        self.bot = bot

    async def send_message(self, chat_id, text, reply_markup=None) -> int:
        message = await self.bot.send_message(
            chat_id,
            text,
            reply_markup=reply_markup,
            parse_mode=ParseMode.HTML,
        )
        return message.message_id

    async def send_poll(self, chat_id, question, options) -> str:
        # Regular polls keep the correct option hidden until results are published.
        poll = dict(
            chat_id=chat_id,
            question=question,
            options=list(options),
            type="regular",
            is_anonymous=False,
            allows_multiple_answers=False,
        )
        try:
            message = await self.bot.send_poll(**poll)
        except TelegramRetryAfter as e:
            await asyncio.sleep(e.retry_after)
            message = await self.bot.send_poll(**poll)
        return message.poll.id

    async def delete_message(self, chat_id, message_id) -> None:
        try:
            await self.bot.delete_message(chat_id, message_id)
        except TelegramBadRequest:
            pass

    async def fetch_file(self, file_id) -> bytes:
        file = await self.bot.get_file(file_id)
        buffer = await self.bot.download_file(file.file_path)
        return buffer.read()

    async def send_document(self, chat_id, filename, content, caption="") -> None:
        await self.bot.send_document(
            chat_id,
            BufferedInputFile(content, filename=filename),
            caption=caption,
            parse_mode=ParseMode.HTML,
        )


async def broadcast(
    messenger: Messenger,
    chat_ids: Iterable[int],
    text: str,
    reply_markup: Optional[InlineKeyboardMarkup] = None,
) -> List[int]:
    """Send ``text`` to every chat, skipping the ones that cannot be reached.

    Returns the chat ids that received the message.
    """
    delivered = []
    for chat_id in chat_ids:
        try:
            await messenger.send_message(chat_id, text, reply_markup=reply_markup)
        except DELIVERY_ERRORS as e:
            logger.warning("Delivery to %s skipped: %s", chat_id, e)
            continue
        delivered.append(chat_id)
    return delivered
