"""HTTP handler for external image processing vendors."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from photo_jobs.queue.handlers.base import HandlerResult
from photo_jobs.queue.models import ErrorKind
from photo_jobs.queue.payloads import TaskPayload, payload_to_dict

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 120.0
DEFAULT_MAX_RETRIES = 2
DEFAULT_LOCATOR_KEYS: tuple[str, ...] = ("result_url", "output_url", "url")

_RETRYABLE_CLIENT_STATUSES = frozenset({408, 409, 425, 429})


class HttpVendorHandler:
    """Posts the typed payload to a vendor endpoint and extracts the result URL."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        endpoint_url: str,
        api_key: str | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        locator_keys: tuple[str, ...] = DEFAULT_LOCATOR_KEYS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.endpoint_url = endpoint_url
        self.locator_keys = locator_keys
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            headers=headers,
            transport=transport or httpx.HTTPTransport(retries=max_retries),
        )

    def execute(self, payload: TaskPayload) -> HandlerResult:
        try:
            response = self._client.post(self.endpoint_url, json=payload_to_dict(payload))
        except httpx.TimeoutException:
            logger.warning("Timeout calling vendor %s", self.endpoint_url)
            return HandlerResult.failure("API_TIMEOUT: vendor request timed out")
        except httpx.HTTPError as exc:
            logger.warning("HTTP error calling vendor %s: %s", self.endpoint_url, exc)
            return HandlerResult.failure(f"SERVICE_UNAVAILABLE: {exc}")

        body = _json_object(response)
        vendor_error = _vendor_error(body)

        if not response.is_success:
            detail = vendor_error or f"HTTP {response.status_code} from vendor"
            if response.status_code == 429:
                detail = f"API_QUOTA_EXCEEDED: {detail}"
            if (
                400 <= response.status_code < 500
                and response.status_code not in _RETRYABLE_CLIENT_STATUSES
            ):
                return HandlerResult.failure(detail, error_kind=ErrorKind.PROGRAMMER)
            return HandlerResult.failure(detail)

        if vendor_error is not None:
            return HandlerResult.failure(vendor_error)

        for key in self.locator_keys:
            value = body.get(key)
            if isinstance(value, str) and value.strip():
                return HandlerResult.ok(value)
        return HandlerResult.failure("Vendor response did not include a result URL.")

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HttpVendorHandler:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def _json_object(response: httpx.Response) -> dict[str, Any]:
    try:
        parsed = response.json()
    except ValueError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _vendor_error(body: dict[str, Any]) -> str | None:
    if body.get("success") is not False and not body.get("error") and not body.get("error_code"):
        return None
    code = body.get("error_code")
    message = body.get("error") or body.get("message")
    parts = [str(part) for part in (code, message) if part]
    return ": ".join(parts) if parts else "Vendor reported failure without details."
