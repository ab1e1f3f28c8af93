"""Rule file loading utilities."""

from __future__ import annotations

import json
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog
import yaml

from .errors import MalformedRuleError, StubServerError
from .models import parse_definition
from .rule import Rule

LOGGER = structlog.get_logger("stub_server")

YAML_SUFFIXES = {".yaml", ".yml"}


@dataclass
class LoadError:
    """A rule (or whole file) that could not be admitted."""

    source: str
    error: StubServerError

    def __str__(self) -> str:
        return f"{self.source}: {self.error}"


@dataclass
class LoadResult:
    rules: list[Rule] = field(default_factory=list)
    errors: list[LoadError] = field(default_factory=list)

    def extend(self, other: "LoadResult") -> None:
        self.rules.extend(other.rules)
        self.errors.extend(other.errors)


def load_rules(paths: Iterable[Path]) -> LoadResult:
    """Load every rule file in order; invalid rules are skipped and reported."""

    result = LoadResult()
    for path in paths:
        result.extend(load_rule_file(path))
    LOGGER.info("rules_loaded", rules=len(result.rules), errors=len(result.errors))
    return result


def load_rule_file(path: Path) -> LoadResult:
    """Load a JSON stream (concatenated or newline-delimited objects) or YAML rule file.

    Unknown fields are rejected. A rule that fails validation or pattern
    compilation is skipped; a syntax error ends the file.
    """

    result = LoadResult()
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        _skip(result, str(path), MalformedRuleError(f"cannot read rule file: {exc}"))
        return result

    if path.suffix.lower() in YAML_SUFFIXES:
        documents = _iter_yaml_documents(text, path)
    else:
        documents = _iter_json_documents(text, path)

    try:
        for source, payload in documents:
            if not isinstance(payload, dict):
                _skip(result, source, MalformedRuleError("rule definition must be a mapping"))
                continue
            try:
                rule = Rule.from_definition(parse_definition(payload, strict=True))
            except StubServerError as exc:
                _skip(result, source, exc)
                continue
            result.rules.append(rule)
    except MalformedRuleError as exc:
        _skip(result, str(path), exc)
    return result


def _iter_json_documents(text: str, path: Path) -> Iterator[tuple[str, Any]]:
    decoder = json.JSONDecoder()
    index = 0
    while True:
        while index < len(text) and text[index].isspace():
            index += 1
        if index >= len(text):
            return
        line = text.count("\n", 0, index) + 1
        try:
            payload, index = decoder.raw_decode(text, index)
        except json.JSONDecodeError as exc:
            raise MalformedRuleError(f"invalid JSON at line {exc.lineno}: {exc.msg}") from exc
        yield f"{path}:{line}", payload


def _iter_yaml_documents(text: str, path: Path) -> Iterator[tuple[str, Any]]:
    try:
        documents = list(yaml.safe_load_all(text))
    except yaml.YAMLError as exc:
        raise MalformedRuleError(f"invalid YAML: {exc}") from exc
    for doc_index, document in enumerate(documents, start=1):
        if document is None:
            continue
        if isinstance(document, list):
            for item_index, item in enumerate(document, start=1):
                yield f"{path}#{doc_index}[{item_index}]", item
        else:
            yield f"{path}#{doc_index}", document


def _skip(result: LoadResult, source: str, error: StubServerError) -> None:
    LOGGER.warning("rule_skipped", source=source, error=str(error))
    result.errors.append(LoadError(source=source, error=error))
