from __future__ import annotations

import logging
from typing import Protocol

from aiogram import Bot
from aiogram.exceptions import TelegramAPIError

from event_reminder.core.errors import NotifyError

logger = logging.getLogger(__name__)

REMINDER_PREFIX = "🔔 Напоминание: "


class Notifier(Protocol):
    async def deliver(self, chat_id: int, text: str) -> None: ...


def render_reminder_text(text: str) -> str:
    return f"{REMINDER_PREFIX}{text}"


class TelegramNotifier:
    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def send(self, chat_id: int, text: str) -> None:
        try:
            await self._bot.send_message(chat_id=chat_id, text=text)
        except TelegramAPIError as exc:
            raise NotifyError(f"Telegram delivery to chat_id={chat_id} failed") from exc

    async def deliver(self, chat_id: int, text: str) -> None:
        await self.send(chat_id, render_reminder_text(text))
        logger.debug("Reminder delivered: chat_id=%s", chat_id)
