"""Bounded log of requests the stub server received."""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .request import StubRequest

DEFAULT_CAPACITY = 40


class CapturedRequest(BaseModel):
    """A received request, shaped like a rule so it can be edited into one."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    method: str
    path: str
    params: dict[str, list[str]] = Field(default_factory=dict)
    headers: dict[str, list[str]] = Field(default_factory=dict)
    body_string: str = Field("", alias="bodyString")
    captured_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), alias="capturedAt"
    )

    @classmethod
    def from_request(cls, request: StubRequest) -> "CapturedRequest":
        return cls(
            method=request.method,
            path=request.path,
            params={key: list(values) for key, values in request.params.items()},
            headers={key: list(values) for key, values in request.headers.items()},
            body_string=request.body.decode("utf-8", errors="replace"),
        )

    def as_serializable(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class RequestLog:
    """Fixed-size ring buffer; once full, each new entry overwrites the oldest."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._slots: list[CapturedRequest | None] = [None] * capacity
        self._cursor = 0
        self._size = 0
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return len(self._slots)

    def record(self, entry: CapturedRequest) -> None:
        with self._lock:
            self._slots[self._cursor] = entry
            self._cursor = (self._cursor + 1) % self.capacity
            self._size = min(self._size + 1, self.capacity)

    def snapshot(self) -> list[CapturedRequest]:
        """Entries oldest first."""

        with self._lock:
            start = (self._cursor - self._size) % self.capacity
            entries = [self._slots[(start + offset) % self.capacity] for offset in range(self._size)]
        return [entry for entry in entries if entry is not None]

    def __len__(self) -> int:
        with self._lock:
            return self._size
