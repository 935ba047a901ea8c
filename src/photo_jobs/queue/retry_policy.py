"""Deterministic failure classification and retry decisions for task execution."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from photo_jobs.queue.models import ErrorKind

RETRY_POLICY_VERSION = 1

DEFAULT_BACKOFF_SECONDS: tuple[float, ...] = (1.0, 5.0, 15.0, 60.0, 300.0)

_POLICY_BLOCK_PATTERNS: tuple[str, ...] = (
    "content_safety_violation",
    "copyright_violation",
    "safety_agreement_required",
)


class RetryAction(str, Enum):
    RETRY = "retry"
    FAIL = "fail"
    BLOCK = "block"


@dataclass(slots=True, frozen=True)
class ErrorClassification:
    """Normalized classification of one handler error."""

    error_kind: ErrorKind
    matched_rule: str
    matched_pattern: str | None


@dataclass(slots=True, frozen=True)
class RetryDecision:
    """What to do with a task after a failed attempt."""

    action: RetryAction
    reason_code: str
    delay_seconds: float | None = None


def classify_error(
    detail: str | None,
    reported_kind: ErrorKind | None = None,
) -> ErrorClassification:
    """Classify a handler error; policy markers in the text always win."""

    haystack = (detail or "").lower()
    for pattern in _POLICY_BLOCK_PATTERNS:
        if pattern in haystack:
            return ErrorClassification(
                error_kind=ErrorKind.POLICY_BLOCK,
                matched_rule="policy_marker",
                matched_pattern=pattern,
            )

    if reported_kind is not None:
        return ErrorClassification(
            error_kind=reported_kind,
            matched_rule="reported_by_handler",
            matched_pattern=None,
        )

    return ErrorClassification(
        error_kind=ErrorKind.TRANSIENT,
        matched_rule="fallback_transient",
        matched_pattern=None,
    )


def backoff_delay(attempt: int, backoff_table: Sequence[float] = DEFAULT_BACKOFF_SECONDS) -> float:
    """Delay after attempt N (1-based), clamped to the last table entry."""

    if not backoff_table:
        raise ValueError("Backoff table must contain at least one delay.")
    index = min(max(attempt, 1) - 1, len(backoff_table) - 1)
    return float(backoff_table[index])


def decide_retry(
    *,
    attempt_count: int,
    max_attempts: int,
    error_kind: ErrorKind,
    backoff_table: Sequence[float] = DEFAULT_BACKOFF_SECONDS,
) -> RetryDecision:
    """Decide between retry, terminal failure and terminal block."""

    if error_kind == ErrorKind.POLICY_BLOCK:
        return RetryDecision(action=RetryAction.BLOCK, reason_code="policy_block")
    if error_kind == ErrorKind.PROGRAMMER:
        return RetryDecision(action=RetryAction.FAIL, reason_code="programmer_error")
    if attempt_count < max_attempts:
        return RetryDecision(
            action=RetryAction.RETRY,
            reason_code="transient_retry",
            delay_seconds=backoff_delay(attempt_count, backoff_table),
        )
    return RetryDecision(action=RetryAction.FAIL, reason_code="attempts_exhausted")
