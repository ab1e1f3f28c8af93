"""Transport independent view of an inbound HTTP request."""

from __future__ import annotations

import json
import string
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any
from urllib.parse import parse_qs, unquote, urlsplit

_TOKEN_CHARS = frozenset(string.ascii_letters + string.digits + "!#$%&'*+-.^_`|~")


def canonical_header_key(name: str) -> str:
    """Return the MIME canonical form of a header name (``content-type`` -> ``Content-Type``).

    Names holding characters outside the HTTP token alphabet are returned as-is.
    """

    if not name or any(char not in _TOKEN_CHARS for char in name):
        return name
    parts = name.split("-")
    return "-".join(part[:1].upper() + part[1:].lower() for part in parts)


def canonical_headers(pairs: Iterable[tuple[str, str]]) -> dict[str, list[str]]:
    headers: dict[str, list[str]] = {}
    for key, value in pairs:
        headers.setdefault(canonical_header_key(key), []).append(value)
    return headers


@dataclass(frozen=True)
class StubRequest:
    """Request fields consumed by rule matching."""

    method: str
    path: str
    params: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    headers: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    body: bytes = b""
    target: str = ""

    @classmethod
    def build(
        cls,
        method: str,
        target: str,
        headers: Iterable[tuple[str, str]] = (),
        body: bytes = b"",
    ) -> "StubRequest":
        """Build a request from a raw request target (path plus optional query).

        Origin-form targets (``/a//b?x=1``) are split on the first ``?`` only, so
        a leading ``//`` stays part of the path. The decoded path is cut at
        ``?`` again, which drops an escaped ``%3F`` and what follows it.
        """

        if target.startswith("/") or target == "*":
            raw_path, _, raw_query = target.partition("?")
        else:
            split = urlsplit(target)
            raw_path, raw_query = split.path, split.query
        query = parse_qs(raw_query, keep_blank_values=True)
        return cls(
            method=method,
            path=unquote(raw_path).partition("?")[0] or "/",
            params=MappingProxyType({key: tuple(values) for key, values in query.items()}),
            headers=MappingProxyType(
                {key: tuple(values) for key, values in canonical_headers(headers).items()}
            ),
            body=body,
            target=target,
        )

    @property
    def json(self) -> Any:
        """Parsed JSON body, ``None`` when absent or not valid JSON."""

        if not self.body:
            return None
        try:
            return json.loads(self.body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return None
