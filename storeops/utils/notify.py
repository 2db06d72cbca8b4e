"""Operator notification helpers."""

from __future__ import annotations

import logging
import os

import httpx

logger = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org"


class Notifier:
    """Sends plain-text messages to the configured provider.

    ``send`` raises on delivery errors; callers that treat notification as
    best-effort are expected to catch and log.
    """

    def __init__(self, *, session: httpx.AsyncClient | None = None) -> None:
        self.provider = os.environ.get("NOTIFY_PROVIDER", "log")
        self.telegram_token = os.environ.get("TELEGRAM_BOT_TOKEN")
        self.telegram_chat_id = os.environ.get("TELEGRAM_CHAT_ID")
        self.webhook_url = os.environ.get("BACKUP_WEBHOOK_URL")
        self.timeout = float(os.environ.get("NOTIFY_TIMEOUT", "10"))
        self._session = session

    async def send(self, text: str) -> None:
        if self.provider == "telegram" and self.telegram_token and self.telegram_chat_id:
            await self._send_telegram(text)
        elif self.provider == "webhook" and self.webhook_url:
            await self._post(self.webhook_url, {"text": text})
        else:
            logger.info("Notification (log): %s", text)

    async def _send_telegram(self, text: str) -> None:
        url = f"{TELEGRAM_API}/bot{self.telegram_token}/sendMessage"
        await self._post(url, {"chat_id": self.telegram_chat_id, "text": text})

    async def _post(self, url: str, payload: dict[str, object]) -> None:
        if self._session is not None:
            response = await self._session.post(url, json=payload)
            response.raise_for_status()
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(url, json=payload)
            response.raise_for_status()
