from __future__ import annotations

import pytest

from stub_server.request import StubRequest
from stub_server.request_log import CapturedRequest, RequestLog


def _captured(path: str) -> CapturedRequest:
    return CapturedRequest(method="GET", path=path)


def test_snapshot_is_oldest_first() -> None:
    log = RequestLog(capacity=3)
    for path in ("/a", "/b"):
        log.record(_captured(path))

    assert [entry.path for entry in log.snapshot()] == ["/a", "/b"]
    assert len(log) == 2


def test_full_log_overwrites_the_oldest_entry() -> None:
    log = RequestLog(capacity=3)
    for path in ("/a", "/b", "/c", "/d", "/e"):
        log.record(_captured(path))

    assert [entry.path for entry in log.snapshot()] == ["/c", "/d", "/e"]
    assert len(log) == 3


def test_capacity_must_be_positive() -> None:
    with pytest.raises(ValueError):
        RequestLog(capacity=0)


def test_captured_request_uses_rule_field_names() -> None:
    request = StubRequest.build(
        method="POST",
        target="/orders?id=7",
        headers=[("content-type", "application/json")],
        body=b'{"a": 1}',
    )

    payload = CapturedRequest.from_request(request).as_serializable()

    assert payload["method"] == "POST"
    assert payload["path"] == "/orders"
    assert payload["params"] == {"id": ["7"]}
    assert payload["headers"] == {"Content-Type": ["application/json"]}
    assert payload["bodyString"] == '{"a": 1}'
    assert "capturedAt" in payload
