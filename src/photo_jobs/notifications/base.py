"""Notification capability shared by all channels."""

from __future__ import annotations

import logging
from typing import Protocol

logger = logging.getLogger(__name__)

_SUCCESS_TEXT = {
    "restore": "Your restored photo is ready.",
    "stylize": "Your stylized photo is ready.",
    "era_style": "Your era-styled photo is ready.",
    "poet_style": "Your photo with the poet is ready.",
    "generate": "Your generated image is ready.",
}


class Notifier(Protocol):
    """Delivers a terminal task outcome to its recipient."""

    def notify(
        self,
        *,
        recipient_id: str,
        task_type: str,
        result_locator: str | None,
        success: bool,
        message: str | None = None,
    ) -> bool: ...


def compose_text(*, task_type: str, success: bool, message: str | None) -> str:
    """Human-readable notification body."""

    if success:
        return _SUCCESS_TEXT.get(task_type, "Your image is ready.")
    reason = message or "Unknown error."
    return f"Processing failed: {reason}"


class LoggingNotifier:
    """Fallback channel that only writes the notification to the log."""

    def notify(
        self,
        *,
        recipient_id: str,
        task_type: str,
        result_locator: str | None,
        success: bool,
        message: str | None = None,
    ) -> bool:
        logger.info(
            "Notification for %s (%s, success=%s): %s %s",
            recipient_id,
            task_type,
            success,
            compose_text(task_type=task_type, success=success, message=message),
            result_locator or "",
        )
        return True
