import pytest
from aiogram.exceptions import TelegramBadRequest
from aiogram.methods import SendMessage

from event_reminder.core.errors import NotifyError
from event_reminder.services.notifier import TelegramNotifier


class FakeBot:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[tuple[int, str]] = []

    async def send_message(self, chat_id: int, text: str):
        if self.fail:
            raise TelegramBadRequest(method=SendMessage(chat_id=chat_id, text=text), message="chat not found")
        self.sent.append((chat_id, text))


@pytest.mark.asyncio
async def test_deliver_renders_reminder_prefix() -> None:
    bot = FakeBot()
    notifier = TelegramNotifier(bot)  # type: ignore[arg-type]

    await notifier.deliver(42, "buy milk")

    assert bot.sent == [(42, "🔔 Напоминание: buy milk")]


@pytest.mark.asyncio
async def test_deliver_wraps_telegram_errors() -> None:
    notifier = TelegramNotifier(FakeBot(fail=True))  # type: ignore[arg-type]

    with pytest.raises(NotifyError):
        await notifier.deliver(42, "buy milk")
