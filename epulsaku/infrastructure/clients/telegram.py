"""Telegram Bot API client for operator notifications"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from epulsaku.config import settings

logger = logging.getLogger(__name__)


@dataclass
class SendResult:
    success: bool
    message: Optional[str] = None


class TelegramClient:
    """Sends MarkdownV2 messages through sendMessage"""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url or settings.telegram_api_base
        self.timeout = timeout or settings.http_timeout_seconds
        self.transport = transport

    async def send_message(self, bot_token: str, chat_id: str, text: str) -> SendResult:
        """Never raises; failures come back as SendResult(success=False)"""
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.post(
                    f"{self.base_url}/bot{bot_token}/sendMessage",
                    json={"chat_id": chat_id, "text": text, "parse_mode": "MarkdownV2"},
                )
                data = response.json()
            except httpx.HTTPError as e:
                return SendResult(success=False, message=f"Failed to send message: {e}")
            except ValueError as e:
                return SendResult(success=False, message=f"Invalid Telegram response: {e}")

        if data.get("ok"):
            return SendResult(success=True, message="Message sent successfully.")
        logger.error(f"Telegram API error: {data}")
        return SendResult(
            success=False,
            message=f"Telegram API error: {data.get('description') or response.reason_phrase}",
        )
