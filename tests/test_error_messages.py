from __future__ import annotations

import allure
import pytest

from photo_jobs.queue.error_messages import (
    GENERIC_FAILURE_MESSAGE,
    POLICY_BLOCK_MESSAGE,
    TECHNICAL_ERROR_CODES,
    extract_error_code,
    friendly_error_message,
    policy_block_message,
    translate_error_code,
)

pytestmark = [
    allure.epic("Task Queue"),
    allure.feature("User-Facing Errors"),
]


def test_every_code_has_a_distinct_friendly_message() -> None:
    messages = [translate_error_code(code) for code in TECHNICAL_ERROR_CODES]
    assert len(TECHNICAL_ERROR_CODES) == 14
    assert len(set(messages)) == len(messages)
    assert all("_" not in message for message in messages)


def test_code_embedded_in_raw_error_is_translated() -> None:
    message = friendly_error_message("API_TIMEOUT: vendor request timed out")
    assert message == translate_error_code("API_TIMEOUT")
    assert "API_TIMEOUT" not in message


def test_extract_error_code_finds_first_known_code() -> None:
    assert extract_error_code("upstream: HEIC_NOT_SUPPORTED (image/heic)") == "HEIC_NOT_SUPPORTED"
    assert extract_error_code("plain failure") is None


def test_human_readable_message_is_passed_through() -> None:
    assert friendly_error_message("Vendor response did not include a result URL.") == (
        "Vendor response did not include a result URL."
    )


@pytest.mark.parametrize("raw", [None, "", "   ", "some_internal_error", "KeyError"])
def test_technical_or_empty_errors_become_generic(raw: str | None) -> None:
    assert friendly_error_message(raw) == GENERIC_FAILURE_MESSAGE


def test_extract_error_code_ignores_case() -> None:
    assert extract_error_code("copyright_violation: logo") == "COPYRIGHT_VIOLATION"
    assert friendly_error_message("api_timeout after 120s") == translate_error_code("API_TIMEOUT")


def test_policy_block_message_prefers_matched_code() -> None:
    assert policy_block_message("safety_agreement_required") == translate_error_code(
        "SAFETY_AGREEMENT_REQUIRED",
    )
    assert policy_block_message(None) == POLICY_BLOCK_MESSAGE
    assert policy_block_message("unknown_marker") == POLICY_BLOCK_MESSAGE
