from __future__ import annotations

import json
import socket
from http.client import HTTPConnection

import pytest

from stub_server.models import RuleDefinition
from stub_server.request_log import RequestLog
from stub_server.rule import Rule
from stub_server.selector import RuleSelector
from stub_server.server import StubServerRunner
from stub_server.storage import InMemoryRuleStore

RULES = [
    {
        "name": "get_foo",
        "method": "GET",
        "path": "/foo",
        "response": {"statusCode": 200, "bodyString": "bar", "headers": {"X-Stub": ["foo"]}},
    },
    {
        "name": "create_order",
        "method": "POST",
        "path": "/orders",
        "body": {"item": ".*", "quantity": 1},
        "response": {"statusCode": 201, "bodyJson": {"id": "ord-1"}},
    },
]


class _BrokenStore:
    def list_rules(self, *, timeout=None):
        raise ConnectionError("backend down")

    def save_rule(self, rule, *, timeout=None):
        raise ConnectionError("backend down")


@pytest.fixture
def runner():
    rules = [Rule.from_definition(RuleDefinition.model_validate(rule)) for rule in RULES]
    runner = StubServerRunner(
        RuleSelector(InMemoryRuleStore(rules)),
        request_log=RequestLog(capacity=5),
        host="127.0.0.1",
        port=0,
    )
    runner.start()
    assert runner.wait_until_ready()
    try:
        yield runner
    finally:
        runner.stop()


def _call(runner: StubServerRunner, method: str, path: str, body: bytes | None = None):
    host, port = runner.server_address
    connection = HTTPConnection(host, port, timeout=2)
    try:
        connection.request(method, path, body=body)
        response = connection.getresponse()
        return response.status, dict(response.getheaders()), response.read()
    finally:
        connection.close()


def _send_raw(runner: StubServerRunner, payload: bytes) -> tuple[int, bytes, bytes]:
    host, port = runner.server_address
    with socket.create_connection((host, port), timeout=2) as sock:
        sock.sendall(payload)
        received = b""
        while chunk := sock.recv(4096):
            received += chunk
    head, _, body = received.partition(b"\r\n\r\n")
    status = int(head.split(b" ", 2)[1])
    return status, head, body


def test_runtime_serves_matching_rule(runner: StubServerRunner) -> None:
    status, headers, body = _call(runner, "GET", "/foo?x=1")

    assert status == 200
    assert body == b"bar"
    assert headers["X-Stub"] == "foo"
    assert headers["Content-Type"].startswith("text/plain")


def test_runtime_matches_json_body(runner: StubServerRunner) -> None:
    payload = json.dumps({"quantity": 1, "item": {"sku": "abc"}}).encode("utf-8")

    status, headers, body = _call(runner, "POST", "/orders", payload)

    assert status == 201
    assert headers["Content-Type"] == "application/json"
    assert json.loads(body) == {"id": "ord-1"}


def test_runtime_falls_back_when_nothing_matches(runner: StubServerRunner) -> None:
    status, _, body = _call(runner, "GET", "/moo")

    assert status == 501
    assert body == b"no response for request"


def test_head_request_has_no_body(runner: StubServerRunner) -> None:
    host, port = runner.server_address
    connection = HTTPConnection(host, port, timeout=2)
    try:
        connection.request("HEAD", "/foo")
        response = connection.getresponse()
        assert response.status == 501
        assert response.read() == b""
    finally:
        connection.close()


def test_admin_registers_rule_and_lists_requests(runner: StubServerRunner) -> None:
    definition = {"method": "DELETE", "path": "/foo", "response": {"statusCode": 204}}

    status, _, body = _call(runner, "POST", "/_stub/rules", json.dumps(definition).encode("utf-8"))
    assert status == 201
    assert json.loads(body)["method"] == "DELETE"

    status, _, _ = _call(runner, "DELETE", "/foo")
    assert status == 204

    status, _, body = _call(runner, "GET", "/_stub/requests")
    assert status == 200
    requests = json.loads(body)["requests"]
    assert [(entry["method"], entry["path"]) for entry in requests] == [("DELETE", "/foo")]


def test_admin_rejects_invalid_rules(runner: StubServerRunner) -> None:
    status, _, body = _call(runner, "POST", "/_stub/rules", b'{"pathRegex": "("}')
    assert status == 400
    assert b"pathRegex" in body

    status, _, _ = _call(runner, "POST", "/_stub/rules", b"not json")
    assert status == 400


def test_admin_unknown_path_and_method(runner: StubServerRunner) -> None:
    assert _call(runner, "GET", "/_stub/nothing")[0] == 404
    assert _call(runner, "GET", "/_stub/rules")[0] == 405
    assert _call(runner, "POST", "/_stub/requests")[0] == 405


def test_storage_failure_returns_server_error() -> None:
    runner = StubServerRunner(RuleSelector(_BrokenStore()), host="127.0.0.1", port=0)
    runner.start()
    try:
        status, _, body = _call(runner, "GET", "/foo")
    finally:
        runner.stop()

    assert status == 500
    assert body.startswith(b"error:")


def test_runtime_reads_chunked_json_body(runner: StubServerRunner) -> None:
    request = (
        b"POST /orders HTTP/1.1\r\n"
        b"Host: localhost\r\n"
        b"Content-Type: application/json\r\n"
        b"Transfer-Encoding: chunked\r\n"
        b"Connection: close\r\n"
        b"\r\n"
        b"a\r\n{\"item\": \"\r\n"
        b"12;ext=1\r\nx\", \"quantity\": 1}\r\n"
        b"0\r\n"
        b"\r\n"
    )

    status, _, body = _send_raw(runner, request)

    assert status == 201
    assert json.loads(body) == {"id": "ord-1"}


@pytest.mark.parametrize("length", ["abc", "-1"])
def test_runtime_rejects_invalid_content_length(runner: StubServerRunner, length: str) -> None:
    request = f"POST /orders HTTP/1.1\r\nHost: localhost\r\nContent-Length: {length}\r\n\r\n".encode("ascii")

    status, _, body = _send_raw(runner, request)

    assert status == 400
    assert b"invalid Content-Length" in body
    assert runner.request_log.snapshot() == []


def test_runtime_rejects_invalid_chunk_size(runner: StubServerRunner) -> None:
    request = b"POST /orders HTTP/1.1\r\nHost: localhost\r\nTransfer-Encoding: chunked\r\n\r\nzz\r\n"

    status, _, body = _send_raw(runner, request)

    assert status == 400
    assert b"invalid chunk size" in body


def test_admin_head_request_has_no_body(runner: StubServerRunner) -> None:
    _call(runner, "GET", "/foo")

    status, head, body = _send_raw(
        runner, b"HEAD /_stub/requests HTTP/1.1\r\nHost: localhost\r\nConnection: close\r\n\r\n"
    )

    assert status == 200
    assert b"Content-Type: application/json" in head
    assert body == b""


def test_rule_content_length_header_is_not_duplicated(runner: StubServerRunner) -> None:
    rule = {
        "name": "sized",
        "method": "GET",
        "path": "/sized",
        "response": {"statusCode": 200, "bodyString": "bar", "headers": {"Content-Length": ["999"]}},
    }
    status, _, _ = _call(runner, "POST", "/_stub/rules", json.dumps(rule).encode("utf-8"))
    assert status == 201

    host, port = runner.server_address
    connection = HTTPConnection(host, port, timeout=2)
    try:
        connection.request("GET", "/sized")
        response = connection.getresponse()
        assert response.msg.get_all("Content-Length") == ["3"]
        assert response.read() == b"bar"
    finally:
        connection.close()
