"""Deterministic local handler for smoke runs without vendor access."""

from __future__ import annotations

import hashlib
import json

from photo_jobs.queue.handlers.base import HandlerResult
from photo_jobs.queue.payloads import TaskPayload, payload_to_dict


class EchoHandler:
    """Succeeds with a locator derived from the payload contents."""

    def __init__(self, *, base_url: str = "https://echo.invalid/results") -> None:
        self.base_url = base_url.rstrip("/")

    def execute(self, payload: TaskPayload) -> HandlerResult:
        digest = hashlib.sha256(
            json.dumps(payload_to_dict(payload), sort_keys=True).encode("utf-8"),
        ).hexdigest()[:16]
        return HandlerResult.ok(f"{self.base_url}/{type(payload).__name__.lower()}/{digest}.png")
