"""Translate technical error codes into messages shown to end users."""

from __future__ import annotations

GENERIC_FAILURE_MESSAGE = "Something went wrong while processing your image. Please try again."
POLICY_BLOCK_MESSAGE = (
    "This image cannot be processed because it breaks the content rules. "
    "Please choose another photo."
)

_FRIENDLY_MESSAGES: dict[str, str] = {
    "CONTENT_SAFETY_VIOLATION": (
        "Unfortunately this image cannot be processed for safety reasons. "
        "Please choose another photo."
    ),
    "COPYRIGHT_VIOLATION": (
        "This image cannot be processed because of a copyright restriction. "
        "Please use another image."
    ),
    "SAFETY_AGREEMENT_REQUIRED": (
        "You need to accept the safety rules first. Please review the rules and confirm."
    ),
    "HEIC_NOT_SUPPORTED": "HEIC/HEIF images are not supported. Please use JPEG or PNG.",
    "INVALID_IMAGE_FORMAT": "Unsupported image format. Please use JPEG or PNG.",
    "IMAGE_TOO_LARGE": "The image is too large. The maximum size is 10MB.",
    "INVALID_IMAGE_URL": "The image link is invalid. Please upload the file again.",
    "API_TIMEOUT": "The processing service took too long to respond. Please try again.",
    "API_QUOTA_EXCEEDED": "The request quota is exhausted. Please try again later.",
    "INSUFFICIENT_BALANCE": "Your balance is too low. Please top up to continue.",
    "USER_NOT_FOUND": "User not found. Please sign in again.",
    "INVALID_REQUEST_DATA": "The request data is invalid. Please try again.",
    "SERVICE_UNAVAILABLE": "The service is temporarily unavailable. Please try again later.",
    "UNKNOWN_ERROR": "An unknown error occurred. Please try again.",
}

TECHNICAL_ERROR_CODES: tuple[str, ...] = tuple(_FRIENDLY_MESSAGES)


def translate_error_code(code: str) -> str:
    """Map one technical code to its friendly message."""

    message = _FRIENDLY_MESSAGES.get(code)
    if message is not None:
        return message
    if _looks_human_readable(code):
        return code
    return GENERIC_FAILURE_MESSAGE


def extract_error_code(message: str) -> str | None:
    haystack = message.upper()
    for code in TECHNICAL_ERROR_CODES:
        if code in haystack:
            return code
    return None


def friendly_error_message(message: str | None) -> str:
    """Return a user-facing message for a raw handler error."""

    if not message or not message.strip():
        return GENERIC_FAILURE_MESSAGE
    code = extract_error_code(message)
    if code is not None:
        return _FRIENDLY_MESSAGES[code]
    return translate_error_code(message.strip())


def _looks_human_readable(message: str) -> bool:
    return " " in message and "_" not in message


def policy_block_message(matched_pattern: str | None) -> str:
    """Message for a blocked task; never suggests retrying."""

    if matched_pattern:
        message = _FRIENDLY_MESSAGES.get(matched_pattern.upper())
        if message is not None:
            return message
    return POLICY_BLOCK_MESSAGE
