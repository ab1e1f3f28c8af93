"""HTTP runtime answering requests with the best matching stub rule."""

from __future__ import annotations

import json
import socketserver
import threading
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any

import structlog

from .errors import InvalidPatternError, MalformedRuleError, StorageUnavailableError
from .models import ResponseDefinition
from .request import StubRequest
from .request_log import CapturedRequest, RequestLog
from .rule import NOT_FOUND, Rule
from .selector import RuleSelector

LOGGER = structlog.get_logger("stub_server")

ADMIN_PREFIX = "/_stub/"
REQUESTS_PATH = ADMIN_PREFIX + "requests"
RULES_PATH = ADMIN_PREFIX + "rules"

_MAX_LINE = 65536


class BadRequestBody(ValueError):
    """Raised when the request body framing cannot be read."""


class ThreadedHTTPServer(socketserver.ThreadingMixIn, HTTPServer):
    daemon_threads = True


class StubServerRunner:
    """Runs one HTTP server instance backed by a rule selector."""

    def __init__(
        self,
        selector: RuleSelector,
        *,
        request_log: RequestLog | None = None,
        host: str = "127.0.0.1",
        port: int = 0,
    ) -> None:
        self._selector = selector
        self._request_log = request_log if request_log is not None else RequestLog()
        self._host = host
        self._port = port
        self._httpd: ThreadedHTTPServer | None = None
        self._thread: threading.Thread | None = None
        self._ready = threading.Event()
        self._logger = LOGGER.bind(component="runtime")

    @property
    def server_address(self) -> tuple[str, int]:
        if self._httpd is None:
            return self._host, self._port
        host, port = self._httpd.server_address[:2]
        return str(host), int(port)

    @property
    def request_log(self) -> RequestLog:
        return self._request_log

    def start(self) -> None:
        self._logger.info("server_starting", host=self._host, port=self._port)
        httpd = ThreadedHTTPServer((self._host, self._port), self._build_handler_factory())
        self._httpd = httpd
        self._thread = threading.Thread(target=httpd.serve_forever, daemon=True)
        self._thread.start()
        self._ready.set()
        host, port = self.server_address
        self._logger = self._logger.bind(host=host, port=port)
        self._logger.info("server_started")

    def stop(self) -> None:
        if not self._httpd:
            return
        self._logger.info("server_stopping")
        try:
            self._httpd.shutdown()
            self._httpd.server_close()
        finally:
            if self._thread:
                self._thread.join(timeout=2)
            self._httpd = None
            self._ready.clear()
        self._logger.info("server_stopped")

    def wait_until_ready(self, timeout: float = 1.0) -> bool:
        return self._ready.wait(timeout=timeout)

    def __enter__(self) -> "StubServerRunner":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # pragma: no cover - context helper
        self.stop()

    def _build_handler_factory(self) -> type[BaseHTTPRequestHandler]:
        selector = self._selector
        request_log = self._request_log
        handler_logger = self._logger

        class Handler(BaseHTTPRequestHandler):
            def log_message(self, format: str, *args: Any) -> None:  # pragma: no cover - avoid stderr
                handler_logger.debug(
                    "http_trace",
                    client_ip=self.client_address[0],
                    message=format % args,
                )

            def do_GET(self) -> None:  # noqa: N802 (BaseHTTPRequestHandler requirement)
                self._handle()

            def do_POST(self) -> None:  # noqa: N802
                self._handle()

            def do_PUT(self) -> None:  # noqa: N802
                self._handle()

            def do_DELETE(self) -> None:  # noqa: N802
                self._handle()

            def do_PATCH(self) -> None:  # noqa: N802
                self._handle()

            def do_HEAD(self) -> None:  # noqa: N802
                self._handle(head_only=True)

            def do_OPTIONS(self) -> None:  # noqa: N802
                self._handle()

            def _handle(self, *, head_only: bool = False) -> None:
                try:
                    body = self._read_body()
                except BadRequestBody as exc:
                    handler_logger.warning("request_rejected", method=self.command, target=self.path, error=str(exc))
                    self.close_connection = True
                    self._respond_text(HTTPStatus.BAD_REQUEST, str(exc), head_only=head_only)
                    return
                request = StubRequest.build(
                    method=self.command,
                    target=self.path,
                    headers=self.headers.items(),
                    body=body,
                )
                if request.path.startswith(ADMIN_PREFIX):
                    self._handle_admin(request, head_only=head_only)
                    return

                request_log.record(CapturedRequest.from_request(request))
                handler_logger.info(
                    "request_received",
                    method=request.method,
                    target=request.target,
                    content_length=len(request.body),
                )
                try:
                    rule = selector.select_rule(request)
                except StorageUnavailableError as exc:
                    handler_logger.error(
                        "request_failed",
                        method=request.method,
                        path=request.path,
                        error=str(exc),
                    )
                    self._respond_text(HTTPStatus.INTERNAL_SERVER_ERROR, f"error: {exc}", head_only=head_only)
                    return
                except Exception as exc:  # pragma: no cover - resilience path
                    handler_logger.exception("request_failed", method=request.method, path=request.path)
                    self._respond_text(HTTPStatus.INTERNAL_SERVER_ERROR, f"error: {exc}", head_only=head_only)
                    return
                self._respond_with_rule(rule, request, head_only=head_only)

            def _read_body(self) -> bytes:
                if "chunked" in self.headers.get("Transfer-Encoding", "").lower():
                    return self._read_chunked_body()
                raw_length = (self.headers.get("Content-Length") or "").strip()
                if not raw_length:
                    return b""
                if not (raw_length.isascii() and raw_length.isdigit()):
                    raise BadRequestBody(f"invalid Content-Length: {raw_length!r}")
                return self.rfile.read(int(raw_length))

            def _read_chunked_body(self) -> bytes:
                chunks: list[bytes] = []
                while True:
                    line = self.rfile.readline(_MAX_LINE)
                    size_text = line.split(b";", 1)[0].strip()
                    try:
                        size = int(size_text, 16)
                    except ValueError as exc:
                        raise BadRequestBody(f"invalid chunk size: {size_text!r}") from exc
                    if size < 0:
                        raise BadRequestBody(f"invalid chunk size: {size_text!r}")
                    if size == 0:
                        # Skip trailers up to the terminating empty line.
                        while self.rfile.readline(_MAX_LINE) not in (b"\r\n", b"\n", b""):
                            pass
                        return b"".join(chunks)
                    chunk = self.rfile.read(size)
                    if len(chunk) != size:
                        raise BadRequestBody("truncated chunked body")
                    chunks.append(chunk)
                    self.rfile.readline(_MAX_LINE)

            def _respond_with_rule(self, rule: Rule, request: StubRequest, *, head_only: bool = False) -> None:
                response = rule.response
                body_bytes, content_type = render_body(response)
                self.send_response(response.status_code)
                if content_type and not _has_header(response, "Content-Type"):
                    self.send_header("Content-Type", content_type)
                for key, values in response.headers.items():
                    if key.lower() == "content-length":
                        continue
                    for value in values:
                        self.send_header(key, value)
                self.send_header("Content-Length", str(len(body_bytes)))
                self.end_headers()
                if not head_only:
                    self.wfile.write(body_bytes)
                event = "request_unmatched" if rule is NOT_FOUND else "request_served"
                handler_logger.info(
                    event,
                    method=request.method,
                    target=request.target,
                    rule=rule.name,
                    status=response.status_code,
                    response_length=len(body_bytes),
                )

            def _handle_admin(self, request: StubRequest, *, head_only: bool = False) -> None:
                handler_logger.info("admin_request", method=request.method, path=request.path)
                if request.path == REQUESTS_PATH:
                    if request.method not in ("GET", "HEAD"):
                        self._respond_text(HTTPStatus.METHOD_NOT_ALLOWED, "method not allowed", head_only=head_only)
                        return
                    entries = [entry.as_serializable() for entry in request_log.snapshot()]
                    self._respond_json(HTTPStatus.OK, {"requests": entries}, head_only=head_only)
                    return
                if request.path == RULES_PATH:
                    if request.method != "POST":
                        self._respond_text(HTTPStatus.METHOD_NOT_ALLOWED, "method not allowed", head_only=head_only)
                        return
                    self._register_rule(request)
                    return
                self._respond_text(HTTPStatus.NOT_FOUND, "not found", head_only=head_only)

            def _register_rule(self, request: StubRequest) -> None:
                try:
                    rule = selector.register_rule(request.body)
                except (MalformedRuleError, InvalidPatternError) as exc:
                    handler_logger.warning("rule_rejected", error=str(exc))
                    self._respond_text(HTTPStatus.BAD_REQUEST, str(exc))
                    return
                except StorageUnavailableError as exc:
                    handler_logger.error("rule_rejected", error=str(exc))
                    self._respond_text(HTTPStatus.INTERNAL_SERVER_ERROR, f"error: {exc}")
                    return
                self._respond_json(HTTPStatus.CREATED, rule.to_definition().as_serializable())

            def _respond_json(self, status: HTTPStatus, payload: Any, *, head_only: bool = False) -> None:
                self._respond_bytes(status, json.dumps(payload).encode("utf-8"), "application/json", head_only=head_only)

            def _respond_text(self, status: HTTPStatus, text: str, *, head_only: bool = False) -> None:
                self._respond_bytes(status, text.encode("utf-8"), "text/plain; charset=utf-8", head_only=head_only)

            def _respond_bytes(
                self,
                status: HTTPStatus,
                body: bytes,
                content_type: str,
                *,
                head_only: bool = False,
            ) -> None:
                self.send_response(status)
                self.send_header("Content-Type", content_type)
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                if not head_only:
                    self.wfile.write(body)

        return Handler


def render_body(response: ResponseDefinition) -> tuple[bytes, str | None]:
    """Encode a response body, returning it with its default content type."""

    if response.body_string:
        return response.body_string.encode("utf-8"), "text/plain; charset=utf-8"
    if response.body_json is not None:
        return json.dumps(response.body_json).encode("utf-8"), "application/json"
    return b"", None


def _has_header(response: ResponseDefinition, name: str) -> bool:
    return any(key.lower() == name.lower() for key in response.headers)


def describe_rule(rule: Rule) -> str:
    method = rule.method or "*"
    if rule.path:
        target = rule.path
    elif rule.path_pattern is not None:
        target = f"~{rule.path_pattern.pattern}"
    else:
        target = "/*"
    label = f"{method} {target}"
    if rule.body_json is not None or rule.body_string_pattern is not None:
        label += " (body)"
    return f"{label} -> {rule.response.status_code} [{rule.name or 'unnamed'}]"


def server_console_summary(runner: StubServerRunner, rules: list[Rule]) -> list[str]:
    host, port = runner.server_address
    header = f"[stub-server] listening on {host}:{port} (admin under {ADMIN_PREFIX})"
    rule_lines = ["    rules:"]
    if rules:
        rule_lines.extend(f"      - {describe_rule(rule)}" for rule in rules)
    else:
        rule_lines.append("      (no rules configured)")
    return [header, *rule_lines]
