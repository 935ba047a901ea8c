"""Typed task payloads, one variant per task type."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from photo_jobs.queue.models import TaskType


class PayloadError(ValueError):
    """Raised when a stored payload does not match its task type."""


@dataclass(slots=True, frozen=True)
class RestorePayload:
    image_url: str
    enhance_face: bool = False
    scratch_removal: bool = False
    color_correction: bool = False


@dataclass(slots=True, frozen=True)
class StylizePayload:
    image_url: str
    style_id: str
    prompt: str = ""
    original_filename: str | None = None


@dataclass(slots=True, frozen=True)
class EraStylePayload:
    image_url: str
    era_id: str
    prompt: str = ""
    original_filename: str | None = None


@dataclass(slots=True, frozen=True)
class PoetStylePayload:
    image_url: str
    poet_id: str
    prompt: str = ""
    original_filename: str | None = None


@dataclass(slots=True, frozen=True)
class GeneratePayload:
    prompt: str
    reference_image_urls: tuple[str, ...] = ()
    options: dict[str, Any] = field(default_factory=dict)


TaskPayload = RestorePayload | StylizePayload | EraStylePayload | PoetStylePayload | GeneratePayload


def parse_payload(task_type: str, raw: dict[str, Any]) -> TaskPayload:
    """Deserialize and validate a raw payload for its task type."""

    try:
        kind = TaskType(task_type)
    except ValueError as error:
        raise PayloadError(f"Unsupported task type: {task_type!r}") from error
    if not isinstance(raw, dict):
        raise PayloadError(f"{kind.value} payload must be an object")

    if kind == TaskType.RESTORE:
        return RestorePayload(
            image_url=_required_str(raw, "image_url", kind),
            enhance_face=_optional_bool(raw, "enhance_face", kind),
            scratch_removal=_optional_bool(raw, "scratch_removal", kind),
            color_correction=_optional_bool(raw, "color_correction", kind),
        )
    if kind == TaskType.STYLIZE:
        return StylizePayload(
            image_url=_required_str(raw, "image_url", kind),
            style_id=_required_str(raw, "style_id", kind),
            prompt=_optional_str(raw, "prompt", kind) or "",
            original_filename=_optional_str(raw, "original_filename", kind),
        )
    if kind == TaskType.ERA_STYLE:
        return EraStylePayload(
            image_url=_required_str(raw, "image_url", kind),
            era_id=_required_str(raw, "era_id", kind),
            prompt=_optional_str(raw, "prompt", kind) or "",
            original_filename=_optional_str(raw, "original_filename", kind),
        )
    if kind == TaskType.POET_STYLE:
        return PoetStylePayload(
            image_url=_required_str(raw, "image_url", kind),
            poet_id=_required_str(raw, "poet_id", kind),
            prompt=_optional_str(raw, "prompt", kind) or "",
            original_filename=_optional_str(raw, "original_filename", kind),
        )

    references = raw.get("reference_image_urls", [])
    if not isinstance(references, list) or not all(
        isinstance(item, str) and item.strip() for item in references
    ):
        raise PayloadError("generate.reference_image_urls must be an array of strings")
    options = raw.get("options", {})
    if not isinstance(options, dict):
        raise PayloadError("generate.options must be an object")
    return GeneratePayload(
        prompt=_required_str(raw, "prompt", kind),
        reference_image_urls=tuple(references),
        options=options,
    )


def payload_to_dict(payload: TaskPayload) -> dict[str, Any]:
    """Serialize a typed payload into JSON-compatible data."""

    data = asdict(payload)
    if isinstance(payload, GeneratePayload):
        data["reference_image_urls"] = list(payload.reference_image_urls)
    return data


def _required_str(raw: dict[str, Any], key: str, kind: TaskType) -> str:
    value = raw.get(key)
    if not isinstance(value, str) or not value.strip():
        raise PayloadError(f"{kind.value}.{key} must be a non-empty string")
    return value


def _optional_str(raw: dict[str, Any], key: str, kind: TaskType) -> str | None:
    value = raw.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise PayloadError(f"{kind.value}.{key} must be a string")
    return value


def _optional_bool(raw: dict[str, Any], key: str, kind: TaskType) -> bool:
    value = raw.get(key, False)
    if not isinstance(value, bool):
        raise PayloadError(f"{kind.value}.{key} must be a boolean")
    return value
