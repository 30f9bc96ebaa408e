from __future__ import annotations

import asyncio
import logging
from typing import Protocol

import aiohttp

from core.config import NotificationConfig

LOGGER = logging.getLogger(__name__)


class NotificationSink(Protocol):
    async def send(self, recipient: str, subject: str, body: str) -> bool: ...
    async def close(self) -> None: ...


class LogSink(NotificationSink):
    """Writes the message to the log instead of delivering it."""

    def __init__(self, delay_seconds: float = 0.0) -> None:
        self.delay_seconds = delay_seconds

    async def send(self, recipient: str, subject: str, body: str) -> bool:
        if self.delay_seconds > 0:
            await asyncio.sleep(self.delay_seconds)
        LOGGER.info("Email sent. to=%s subject=%s", recipient, subject)
        LOGGER.debug("Email body for %s:\n%s", recipient, body)
        return True

    async def close(self) -> None:
        return None


class WebhookSink(NotificationSink):
    """POSTs each message as JSON to a webhook endpoint."""

    def __init__(self, url: str, timeout_seconds: int = 10) -> None:
        self.url = url
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session: aiohttp.ClientSession | None = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def send(self, recipient: str, subject: str, body: str) -> bool:
        try:
            async with self._get_session().post(
                self.url,
                json={"to": recipient, "subject": subject, "body": body},
            ) as response:
                if response.status >= 400:
                    LOGGER.warning(
                        "Notification webhook rejected message. status=%s to=%s subject=%s",
                        response.status,
                        recipient,
                        subject,
                    )
                    return False
        except (aiohttp.ClientError, asyncio.TimeoutError):
            LOGGER.exception("Failed to deliver notification webhook. to=%s", recipient)
            return False
        return True

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None


def build_sink(config: NotificationConfig) -> NotificationSink:
    if config.sink == "webhook":
        return WebhookSink(config.webhook_url, timeout_seconds=config.webhook_timeout_seconds)
    return LogSink(delay_seconds=config.send_delay_ms / 1000)
