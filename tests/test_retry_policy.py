from __future__ import annotations

import allure
import pytest

from photo_jobs.queue.models import ErrorKind
from photo_jobs.queue.retry_policy import (
    DEFAULT_BACKOFF_SECONDS,
    RETRY_POLICY_VERSION,
    RetryAction,
    backoff_delay,
    classify_error,
    decide_retry,
)

pytestmark = [
    allure.epic("Task Queue"),
    allure.feature("Retry Policy"),
]


def test_retry_policy_version_is_stable() -> None:
    assert RETRY_POLICY_VERSION == 1


def test_default_backoff_table() -> None:
    assert DEFAULT_BACKOFF_SECONDS == (1.0, 5.0, 15.0, 60.0, 300.0)


@pytest.mark.parametrize(
    ("attempt", "expected"),
    [(1, 1.0), (2, 5.0), (3, 15.0), (4, 60.0), (5, 300.0), (6, 300.0), (42, 300.0)],
)
def test_backoff_delay_is_indexed_by_attempt_and_clamped(attempt: int, expected: float) -> None:
    assert backoff_delay(attempt) == expected


def test_backoff_delay_requires_non_empty_table() -> None:
    with pytest.raises(ValueError, match="at least one delay"):
        backoff_delay(1, ())


@pytest.mark.parametrize(
    ("detail", "pattern"),
    [
        ("CONTENT_SAFETY_VIOLATION: nudity detected", "content_safety_violation"),
        ("vendor said copyright_violation", "copyright_violation"),
        ("Safety_Agreement_Required for this user", "safety_agreement_required"),
    ],
)
def test_policy_markers_classify_as_block(detail: str, pattern: str) -> None:
    classified = classify_error(detail)
    assert classified.error_kind == ErrorKind.POLICY_BLOCK
    assert classified.matched_rule == "policy_marker"
    assert classified.matched_pattern == pattern


def test_policy_marker_overrides_handler_reported_kind() -> None:
    classified = classify_error("COPYRIGHT_VIOLATION", ErrorKind.TRANSIENT)
    assert classified.error_kind == ErrorKind.POLICY_BLOCK


def test_reported_kind_is_used_without_marker() -> None:
    classified = classify_error("Unsupported task type: x", ErrorKind.PROGRAMMER)
    assert classified.error_kind == ErrorKind.PROGRAMMER
    assert classified.matched_rule == "reported_by_handler"


def test_unknown_errors_fall_back_to_transient() -> None:
    classified = classify_error("connection reset by peer")
    assert classified.error_kind == ErrorKind.TRANSIENT
    assert classified.matched_rule == "fallback_transient"
    assert classified.matched_pattern is None
    assert classify_error(None).error_kind == ErrorKind.TRANSIENT


def test_transient_failure_with_attempts_left_is_retried_with_table_delay() -> None:
    decision = decide_retry(attempt_count=2, max_attempts=3, error_kind=ErrorKind.TRANSIENT)
    assert decision.action == RetryAction.RETRY
    assert decision.reason_code == "transient_retry"
    assert decision.delay_seconds == 5.0


def test_transient_failure_on_last_attempt_fails() -> None:
    decision = decide_retry(attempt_count=3, max_attempts=3, error_kind=ErrorKind.TRANSIENT)
    assert decision.action == RetryAction.FAIL
    assert decision.reason_code == "attempts_exhausted"
    assert decision.delay_seconds is None


def test_policy_block_is_never_retried() -> None:
    decision = decide_retry(attempt_count=1, max_attempts=5, error_kind=ErrorKind.POLICY_BLOCK)
    assert decision.action == RetryAction.BLOCK


def test_programmer_error_fails_on_first_attempt() -> None:
    decision = decide_retry(attempt_count=1, max_attempts=5, error_kind=ErrorKind.PROGRAMMER)
    assert decision.action == RetryAction.FAIL
    assert decision.reason_code == "programmer_error"


def test_custom_backoff_table_is_honored() -> None:
    decision = decide_retry(
        attempt_count=4,
        max_attempts=10,
        error_kind=ErrorKind.TRANSIENT,
        backoff_table=(2.0, 4.0),
    )
    assert decision.delay_seconds == 4.0
