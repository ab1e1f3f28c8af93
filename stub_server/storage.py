"""Rule storage backends."""

from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from typing import Protocol

from .rule import Rule


class RuleStore(Protocol):
    """Capability the selector needs from a rule backend.

    Implementations must make both operations atomic with respect to each other.
    """

    def list_rules(self, *, timeout: float | None = None) -> list[Rule]:
        """Return a copy of all rules in their stored order."""

    def save_rule(self, rule: Rule, *, timeout: float | None = None) -> None:
        """Replace the rule with equal criteria, or append ``rule``."""


class InMemoryRuleStore:
    """Process-local rule list guarded by a single lock."""

    def __init__(self, rules: Iterable[Rule] = ()) -> None:
        self._rules: list[Rule] = list(rules)
        self._lock = threading.Lock()

    def list_rules(self, *, timeout: float | None = None) -> list[Rule]:
        with self._locked(timeout):
            return list(self._rules)

    def save_rule(self, rule: Rule, *, timeout: float | None = None) -> None:
        with self._locked(timeout):
            for index, existing in enumerate(self._rules):
                if rule.equal_match(existing):
                    self._rules[index] = rule
                    return
            self._rules.append(rule)

    def __len__(self) -> int:
        with self._lock:
            return len(self._rules)

    @contextmanager
    def _locked(self, timeout: float | None) -> Iterator[None]:
        acquired = self._lock.acquire(timeout=-1 if timeout is None else timeout)
        if not acquired:
            raise TimeoutError(f"rule store lock not acquired within {timeout}s")
        try:
            yield
        finally:
            self._lock.release()
