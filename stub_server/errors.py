"""Exceptions raised by the stub server."""

from __future__ import annotations


class StubServerError(RuntimeError):
    """Base class for stub server failures."""


class InvalidPatternError(StubServerError):
    """Raised when a rule declares a regular expression that does not compile."""

    def __init__(self, field: str, error: Exception) -> None:
        super().__init__(f"invalid {field}: {error}")
        self.field = field
        self.error = error


class MalformedRuleError(StubServerError):
    """Raised when a rule definition cannot be decoded or validated."""


class StorageUnavailableError(StubServerError):
    """Raised when the rule store fails or does not answer in time."""
