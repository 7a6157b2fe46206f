"""Blob key conventions for raw inference outputs and legacy editor files."""

from libs.errors import InputValidationError

__all__ = [
    "assert_safe_segment",
    "inference_raw_path",
    "editor_latest_path",
    "editor_history_path",
    "safe_timestamp",
]


def assert_safe_segment(name: str, value) -> str:
    """Reject empty values and anything that could alter a key's path."""
    if not isinstance(value, str) or not value.strip():
        raise InputValidationError(f"{name} must be a non-empty string")
    v = value.strip()
    if "/" in v or "\\" in v or ".." in v:
        raise InputValidationError(f"{name} contains invalid path characters: {value!r}")
    return v


def inference_raw_path(slug: str, floor_id: str) -> str:
    slug = assert_safe_segment("slug", slug)
    floor_id = assert_safe_segment("floor_id", floor_id)
    return f"projects/{slug}/inference/{floor_id}/score.raw.json"


def editor_latest_path(slug: str, floor_id: str) -> str:
    slug = assert_safe_segment("slug", slug)
    floor_id = assert_safe_segment("floor_id", floor_id)
    return f"projects/{slug}/editor/{floor_id}/latest.json"


def editor_history_path(slug: str, floor_id: str, stamp: str) -> str:
    # stamp must already be key-safe, see safe_timestamp
    slug = assert_safe_segment("slug", slug)
    floor_id = assert_safe_segment("floor_id", floor_id)
    stamp = assert_safe_segment("stamp", stamp)
    return f"projects/{slug}/editor/{floor_id}/history/{stamp}.json"


def safe_timestamp(iso: str) -> str:
    return str(iso).replace(":", "-").replace(".", "-")
