"""
Test helpers: fakes for the blob store and the inference endpoint, a
deterministic clock, and raw inference response builders.
"""

from datetime import datetime, timedelta, timezone

import httpx


CLIENT_NAME = "acme"
SLUG = "tower-a"
PROJECT_ID = "proj-001"
FLOOR_IDS = ("f1", "f2", "f3")


class FakeClock:
    """Deterministic UTC clock; advance() doubles as the retry sleep."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)
        self.sleeps: list[float] = []

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now = self.now + timedelta(seconds=seconds)


class FakeBlobStore:
    """Blob store that keeps everything in dictionaries."""

    def __init__(self):
        self.read_urls: list[tuple[str, int]] = []
        self.raw: dict[str, object] = {}
        self.editor_json: dict[str, dict] = {}
        self.fail_history_writes = False

    def issue_read_url(self, key: str, ttl_seconds: int) -> str:
        self.read_urls.append((key, ttl_seconds))
        return f"https://blobs.test/uploads/{key}?se={ttl_seconds}&sig=abc123"

    def write_raw(self, key: str, payload) -> str:
        self.raw[key] = payload
        return key

    def write_editor_json(self, key: str, payload: dict) -> str:
        if self.fail_history_writes and "/history/" in key:
            raise OSError("history bucket unavailable")
        self.editor_json[key] = payload
        return key


class FakeInference:
    """
    Inference client keyed by floor id.

    A floor's entry may be a response dict, an exception instance, or a list
    of those consumed one per call (the last entry repeats).
    """

    model = "floorplan-detector-v2"

    def __init__(self, responses: dict):
        self.responses = responses
        self.calls: list[tuple[str, dict]] = []

    def infer(self, image_url: str, meta: dict):
        self.calls.append((image_url, dict(meta)))
        floor_id = meta["floorId"]
        entry = self.responses[floor_id]
        if isinstance(entry, list):
            calls_for_floor = sum(1 for _, m in self.calls if m["floorId"] == floor_id)
            entry = entry[min(calls_for_floor, len(entry)) - 1]
        if isinstance(entry, BaseException):
            raise entry
        return entry

    def calls_for(self, floor_id: str) -> int:
        return sum(1 for _, meta in self.calls if meta["floorId"] == floor_id)


def http_error(status_code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://aml.test/score")
    response = httpx.Response(status_code, request=request)
    return httpx.HTTPStatusError(f"HTTP {status_code}", request=request, response=response)


def detection_response(columns: int = 0, staircases: int = 0, plate_openings: int = 0) -> dict:
    """Raw inference response with the requested number of detections per class."""
    detections = []
    for i in range(columns):
        detections.append({"cls": 0, "score": 0.9, "box": [10 + i * 100, 10, 50 + i * 100, 50]})
    for i in range(staircases):
        detections.append({"cls": 1, "score": 0.8, "box": [200, 200 + i * 100, 260, 280 + i * 100]})
    for i in range(plate_openings):
        detections.append({"cls": 2, "score": 0.7, "box": [400, 400 + i * 100, 480, 460 + i * 100]})
    return {"results": [{"detections": detections}]}


