"""
Lark (Feishu) webhook notifications.

Delivers alert text to a custom bot webhook. Transient failures (network
errors, HTTP 429 and 5xx) are retried with exponential backoff; any other
failure is final.
"""

import asyncio
import json
import logging
from typing import Optional

import aiohttp

from config import settings

logger = logging.getLogger(__name__)


class NotificationError(Exception):
    """Raised for a single failed delivery attempt."""

    def __init__(self, message: str, retryable: bool):
        self.retryable = retryable
        super().__init__(message)


class LarkNotifier:
    """
    Sends text messages to a Lark webhook.

    Owns its aiohttp session, created lazily and closed with close().
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        max_retries: Optional[int] = None,
        backoff: Optional[float] = None,
        timeout: Optional[float] = None,
    ):
        """
        Args:
            webhook_url: Lark custom bot webhook (defaults to settings)
            max_retries: Retries after the first attempt for transient failures
            backoff: Base delay in seconds, doubled on each retry
            timeout: Per-request timeout in seconds
        """
        self.webhook_url = webhook_url if webhook_url is not None else settings.lark_webhook_url
        self.max_retries = settings.notifier_max_retries if max_retries is None else max_retries
        self.backoff = settings.notifier_backoff_seconds if backoff is None else backoff
        self.timeout = settings.notifier_timeout_seconds if timeout is None else timeout
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self._session

    async def close(self):
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def send(self, text: str) -> bool:
        """
        Deliver a message.

        Returns:
            True if Lark accepted the message, False otherwise
        """
        if not self.webhook_url:
            logger.warning("LARK_WEBHOOK_URL is not set; notification skipped")
            return False

        attempts = self.max_retries + 1
        for attempt in range(attempts):
            try:
                await self._post(text)
                logger.info(f"Notification sent: {text}")
                return True
            except NotificationError as e:
                if not e.retryable or attempt == attempts - 1:
                    logger.error(f"Failed to send Lark notification: {e}")
                    return False
                delay = self.backoff * (2 ** attempt)
                logger.warning(f"Lark notification failed, retrying in {delay}s ({attempt + 1}/{self.max_retries}): {e}")
                await asyncio.sleep(delay)
        return False

    async def _post(self, text: str):
        payload = {"msg_type": "text", "content": {"text": text}}
        session = await self._get_session()
        try:
            async with session.post(self.webhook_url, json=payload) as response:
                if response.status == 429 or response.status >= 500:
                    raise NotificationError(f"HTTP {response.status}", retryable=True)
                if response.status >= 400:
                    raise NotificationError(f"HTTP {response.status}", retryable=False)
                raw_body = await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NotificationError(f"{type(e).__name__}: {e}", retryable=True) from e

        # Lark reports application errors in the body with HTTP 200
        try:
            body = json.loads(raw_body) if raw_body else {}
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        code = body.get("code", body.get("StatusCode", 0))
        if code:
            raise NotificationError(f"Lark error {code}: {body.get('msg')}", retryable=False)
