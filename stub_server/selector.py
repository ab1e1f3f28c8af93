"""Selection of the best matching rule for a request."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import structlog

from .errors import StorageUnavailableError
from .models import parse_definition
from .request import StubRequest
from .rule import NOT_FOUND, Rule
from .storage import RuleStore

LOGGER = structlog.get_logger("stub_server")

DEFAULT_STORAGE_TIMEOUT = 5.0


class RuleSelector:
    """Picks responses for requests from the rules held by a store."""

    def __init__(self, store: RuleStore, *, storage_timeout: float = DEFAULT_STORAGE_TIMEOUT) -> None:
        self._store = store
        self._timeout = storage_timeout
        self._logger = LOGGER.bind(component="selector")

    @property
    def store(self) -> RuleStore:
        return self._store

    def select_rule(self, request: StubRequest) -> Rule:
        """Return the highest scoring rule, or ``NOT_FOUND`` when none scores above zero.

        Ties go to the rule the store lists first.

        Raises:
            StorageUnavailableError: if the store fails or times out.
        """

        try:
            rules = self._store.list_rules(timeout=self._timeout)
        except Exception as exc:
            raise StorageUnavailableError(f"could not list rules: {exc}") from exc

        best = NOT_FOUND
        best_score = 0
        for rule in rules:
            score = rule.match(request)
            if score > best_score:
                best = rule
                best_score = score
        self._logger.debug(
            "rule_selected",
            rule=best.name,
            score=best_score,
            candidates=len(rules),
            method=request.method,
            path=request.path,
        )
        return best

    def register_rule(self, raw: bytes | str | Mapping[str, Any]) -> Rule:
        """Parse, compile and upsert a rule definition; unknown fields are ignored.

        Raises:
            MalformedRuleError: if the definition cannot be decoded.
            InvalidPatternError: if one of its patterns does not compile.
            StorageUnavailableError: if the store fails or times out.
        """

        definition = parse_definition(raw)
        rule = Rule.from_definition(definition)
        try:
            self._store.save_rule(rule, timeout=self._timeout)
        except Exception as exc:
            raise StorageUnavailableError(f"could not save rule: {exc}") from exc
        self._logger.info("rule_registered", rule=rule.name, method=rule.method, path=rule.path)
        return rule

