"""Telegram Bot API notification channel."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from photo_jobs.notifications.base import compose_text

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://api.telegram.org"
DEFAULT_TIMEOUT_SECONDS = 60.0
DEFAULT_MAX_RETRIES = 5


class TelegramNotifier:
    """Sends task outcomes to a Telegram chat.

    Successful tasks with a result URL are delivered as a photo with a
    caption; everything else is a plain text message.
    """

    def __init__(
        self,
        *,
        bot_token: str,
        api_base: str = DEFAULT_API_BASE,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not bot_token:
            raise ValueError("Telegram bot token is required.")
        self._base_url = f"{api_base.rstrip('/')}/bot{bot_token}"
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            transport=transport or httpx.HTTPTransport(retries=max_retries),
        )

    def notify(
        self,
        *,
        recipient_id: str,
        task_type: str,
        result_locator: str | None,
        success: bool,
        message: str | None = None,
    ) -> bool:
        text = compose_text(task_type=task_type, success=success, message=message)
        if success and result_locator:
            return self._call(
                "sendPhoto",
                {"chat_id": recipient_id, "photo": result_locator, "caption": text},
            )
        return self._call("sendMessage", {"chat_id": recipient_id, "text": text})

    def _call(self, method: str, payload: dict[str, Any]) -> bool:
        try:
            response = self._client.post(f"{self._base_url}/{method}", json=payload)
        except httpx.TimeoutException:
            logger.warning("Timeout calling Telegram %s for chat %s", method, payload["chat_id"])
            return False
        except httpx.HTTPError as exc:
            logger.warning("HTTP error calling Telegram %s: %s", method, exc)
            return False

        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.is_success and isinstance(body, dict) and body.get("ok"):
            return True
        description = body.get("description") if isinstance(body, dict) else None
        logger.warning(
            "Telegram %s rejected for chat %s: HTTP %s %s",
            method,
            payload["chat_id"],
            response.status_code,
            description or "",
        )
        return False

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> TelegramNotifier:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
