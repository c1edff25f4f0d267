"""
Alert delivery for extreme volume anomalies.
Sends formatted messages to a Telegram chat with rate limiting.
"""
import asyncio
import logging
from typing import Callable, Optional, Tuple

from aiogram import Bot
from aiogram.exceptions import TelegramForbiddenError, TelegramRetryAfter

from core.models import VolumeEvent
from utils.formatting import format_alert_notification

logger = logging.getLogger(__name__)


def parse_chat_destination(chat_config: Optional[str]) -> Tuple[Optional[int], Optional[int]]:
    """
    Parse chat destination from config string.

    Args:
        chat_config: Either "chat_id" or "chat_id:thread_id"

    Returns:
        Tuple of (chat_id, message_thread_id)
    """
    if not chat_config:
        return None, None

    try:
        if ':' in chat_config:
            chat_id_str, thread_id_str = chat_config.split(':', 1)
            return int(chat_id_str), int(thread_id_str)
        return int(chat_config), None
    except ValueError:
        logger.error(f"Invalid chat destination format: {chat_config}")
        return None, None


class AlertNotifier:
    """
    Receives the scanner's alert signal for extreme anomalies.

    Every alert is logged; when a bot and a chat are configured the alert is
    also sent to Telegram.
    """

    def __init__(
        self,
        bot: Optional[Bot] = None,
        chat_config: Optional[str] = None,
        timezone_provider: Callable[[], str] = lambda: "UTC"
    ):
        """Initialize notifier with an optional bot instance."""
        self.bot = bot
        self.chat_id, self.thread_id = parse_chat_destination(chat_config)
        self.timezone_provider = timezone_provider
        self._rate_limit_delay = 0.05  # 50ms between messages
        self._disabled = False
        self.sent_count = 0

    @property
    def enabled(self) -> bool:
        return self.bot is not None and self.chat_id is not None and not self._disabled

    async def notify_alert(self, event: VolumeEvent):
        """Deliver an alert for an extreme volume event."""
        logger.warning(f"ALERT {event.symbol} {event.timeframe.label} z={event.z_score:.2f}")

        if not self.enabled:
            return

        text = format_alert_notification(event, self.timezone_provider())
        try:
            if await self._deliver(text):
                self.sent_count += 1
        except Exception as e:
            logger.error(f"Error sending alert for {event.id}: {e}")

    async def _post(self, text: str):
        await self.bot.send_message(
            chat_id=self.chat_id,
            text=text,
            message_thread_id=self.thread_id,
            parse_mode=None,
            disable_web_page_preview=True
        )

    async def _deliver(self, text: str) -> bool:
        """
        Send one alert to the configured chat.

        Waits the rate-limit delay first. A flood-control reply is honoured and
        the send retried once; a forbidden reply disables further alerts.

        Returns:
            True if Telegram accepted the message
        """
        await asyncio.sleep(self._rate_limit_delay)

        try:
            await self._post(text)
        except TelegramRetryAfter as e:
            logger.warning(f"Telegram flood control for chat {self.chat_id}, retrying in {e.retry_after}s")
            await asyncio.sleep(e.retry_after)
            await self._post(text)
        except TelegramForbiddenError:
            logger.warning(f"Bot cannot post to chat {self.chat_id} anymore, alerts now log-only")
            self._disabled = True
            return False
        return True

    async def close(self):
        if self.bot:
            await self.bot.session.close()
