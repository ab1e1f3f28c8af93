"""Stub rules and the scoring used to rank them against a request.

Every criterion a rule declares contributes to a single integer score:

* a satisfied criterion adds ``1`` (one per matched value for parameters and
  headers), so rules that declare more win over vaguer ones;
* a failed hard criterion (method, path, path pattern, parameters, headers)
  adds ``MISMATCH``, which no combination of satisfied criteria can offset;
* body criteria are best effort and only ever add to the score.

Criteria a rule does not declare contribute nothing.
"""

from __future__ import annotations

import copy
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from .errors import InvalidPatternError
from .models import ResponseDefinition, RuleDefinition
from .request import StubRequest, canonical_header_key

MISMATCH = -1000

# Matches any JSON value at its position in a body template. Not a regex.
BODY_WILDCARD = ".*"


@dataclass(frozen=True)
class Rule:
    """A matcher plus the response to emit when it wins."""

    name: str = ""
    description: str = ""
    method: str = ""
    path: str = ""
    path_pattern: re.Pattern[str] | None = None
    params: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    headers: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    body_string: str = ""
    body_string_pattern: re.Pattern[bytes] | None = None
    body_json: Any = None
    response: ResponseDefinition = field(default_factory=ResponseDefinition)

    @classmethod
    def from_definition(cls, definition: RuleDefinition) -> "Rule":
        """Compile patterns and normalise criteria of a parsed definition.

        Raises:
            InvalidPatternError: if ``pathRegex`` or ``bodyStringRegex`` does not compile.
        """

        path_pattern = None
        if definition.path_regex:
            try:
                path_pattern = re.compile(definition.path_regex)
            except re.error as exc:
                raise InvalidPatternError("pathRegex", exc) from exc
        body_string_pattern = None
        if definition.body_string_regex:
            try:
                body_string_pattern = re.compile(definition.body_string_regex.encode("utf-8"))
            except re.error as exc:
                raise InvalidPatternError("bodyStringRegex", exc) from exc

        headers: dict[str, list[str]] = {}
        for key, values in definition.headers.items():
            headers.setdefault(canonical_header_key(key), []).extend(values)

        return cls(
            name=definition.name,
            description=definition.description,
            method=definition.method,
            path=definition.path,
            path_pattern=path_pattern,
            params=_sorted_values(definition.params),
            headers=_sorted_values(headers),
            body_string=definition.body_string,
            body_string_pattern=body_string_pattern,
            body_json=copy.deepcopy(definition.body),
            response=definition.response,
        )

    def to_definition(self) -> RuleDefinition:
        """Return the wire representation of this rule."""

        return RuleDefinition(
            name=self.name,
            description=self.description,
            method=self.method,
            path=self.path,
            path_regex=self.path_pattern.pattern if self.path_pattern else "",
            params={key: list(values) for key, values in self.params.items()},
            headers={key: list(values) for key, values in self.headers.items()},
            body_string=self.body_string,
            body_string_regex=(
                self.body_string_pattern.pattern.decode("utf-8") if self.body_string_pattern else ""
            ),
            body=copy.deepcopy(self.body_json),
            response=self.response,
        )

    def match(self, request: StubRequest) -> int:
        """Score this rule against ``request``; higher is a better fit."""

        return (
            self._match_method(request)
            + self._match_path(request)
            + self._match_path_pattern(request)
            + _match_values(self.params, request.params)
            + _match_values(self.headers, request.headers)
            + self._match_body_string_pattern(request)
            + self._match_body_json(request)
        )

    def equal_match(self, other: "Rule") -> bool:
        """Whether both rules declare the same criteria, whatever they respond."""

        return (
            self.method == other.method
            and self.path == other.path
            and _pattern_source(self.path_pattern) == _pattern_source(other.path_pattern)
            and dict(self.params) == dict(other.params)
            and dict(self.headers) == dict(other.headers)
            and self.body_string == other.body_string
            and _pattern_source(self.body_string_pattern) == _pattern_source(other.body_string_pattern)
            and json_equal(self.body_json, other.body_json)
        )

    def _match_method(self, request: StubRequest) -> int:
        if not self.method:
            return 0
        return 1 if self.method == request.method else MISMATCH

    def _match_path(self, request: StubRequest) -> int:
        if not self.path:
            return 0
        return 1 if self.path == request.path else MISMATCH

    def _match_path_pattern(self, request: StubRequest) -> int:
        if self.path_pattern is None:
            return 0
        return 1 if self.path_pattern.search(request.path) else MISMATCH

    def _match_body_string_pattern(self, request: StubRequest) -> int:
        if self.body_string_pattern is not None and self.body_string_pattern.search(request.body):
            return 1
        return 0

    def _match_body_json(self, request: StubRequest) -> int:
        if self.body_json is None:
            return 0
        actual = request.json
        if actual is None:
            return 0
        if json_equal(self.body_json, actual):
            return 1
        both_arrays = isinstance(self.body_json, list) and isinstance(actual, list)
        both_objects = isinstance(self.body_json, dict) and isinstance(actual, dict)
        if (both_arrays or both_objects) and match_json(self.body_json, actual):
            return 1
        return 0


def match_json(template: Any, actual: Any) -> bool:
    """Compare a body template against a parsed JSON value.

    ``BODY_WILDCARD`` matches anything. Arrays match position by position and
    objects key by key; both must have the same size as the template.
    """

    if isinstance(template, str) and template == BODY_WILDCARD:
        return True
    if isinstance(template, list):
        if not isinstance(actual, list) or len(template) != len(actual):
            return False
        return all(match_json(want, got) for want, got in zip(template, actual))
    if isinstance(template, dict):
        if not isinstance(actual, dict) or len(template) != len(actual):
            return False
        return all(key in actual and match_json(want, actual[key]) for key, want in template.items())
    return json_equal(template, actual)


def json_equal(left: Any, right: Any) -> bool:
    """Deep equality over JSON values; numbers compare by value, booleans are not numbers."""

    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if isinstance(left, (int, float)) and isinstance(right, (int, float)):
        return left == right
    if isinstance(left, dict) and isinstance(right, dict):
        return left.keys() == right.keys() and all(json_equal(left[key], right[key]) for key in left)
    if isinstance(left, list) and isinstance(right, list):
        return len(left) == len(right) and all(json_equal(a, b) for a, b in zip(left, right))
    if type(left) is not type(right):
        return False
    return left == right


def _match_values(wanted: Mapping[str, tuple[str, ...]], actual: Mapping[str, tuple[str, ...]]) -> int:
    if not wanted:
        return 0
    score = 0
    for key, values in wanted.items():
        got = actual.get(key)
        if got is None:
            return MISMATCH
        if not values:
            score += 1
            continue
        matched = _score_sorted_subset(values, sorted(got))
        if matched == MISMATCH:
            return MISMATCH
        score += matched
    return score


def _score_sorted_subset(wanted: tuple[str, ...], got: list[str]) -> int:
    # Both sides sorted; every wanted value must consume a distinct equal value in got.
    score = 0
    index = 0
    for value in wanted:
        while index < len(got) and got[index] < value:
            index += 1
        if index == len(got) or got[index] != value:
            return MISMATCH
        score += 1
        index += 1
    return score


def _sorted_values(values: Mapping[str, list[str]]) -> Mapping[str, tuple[str, ...]]:
    return MappingProxyType({key: tuple(sorted(items)) for key, items in values.items()})


def _pattern_source(pattern: re.Pattern[Any] | None) -> Any:
    return pattern.pattern if pattern is not None else None


NOT_FOUND = Rule(
    name="no_match",
    response=ResponseDefinition(status_code=501, body_string="no response for request"),
)
"""Selected when no rule scores above zero.

A 5xx keeps it apart from a 404 that a rule may legitimately return.
"""
