"""Pydantic models describing the rule wire format."""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, ValidationInfo, model_validator

from .errors import MalformedRuleError


class _WireModel(BaseModel):
    """Base for wire models.

    Unknown fields are ignored unless validation runs with
    ``context={"strict": True}``, in which case they are rejected at every
    nesting level.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @model_validator(mode="before")
    @classmethod
    def _reject_unknown_fields(cls, data: Any, info: ValidationInfo) -> Any:
        if not (info.context or {}).get("strict") or not isinstance(data, dict):
            return data
        known: set[str] = set()
        for name, field in cls.model_fields.items():
            known.add(name)
            if field.alias:
                known.add(field.alias)
        unknown = sorted(str(key) for key in data if key not in known)
        if unknown:
            raise ValueError(f"unknown field(s): {', '.join(unknown)}")
        return data


class ResponseDefinition(_WireModel):
    """Response emitted when a rule wins."""

    status_code: int = Field(200, alias="statusCode")
    body_string: str = Field("", alias="bodyString")
    body_json: Any = Field(None, alias="bodyJson")
    headers: dict[str, list[str]] = Field(default_factory=dict)


class RuleDefinition(_WireModel):
    """External representation of a rule, as found in rule files and admin requests."""

    name: str = ""
    description: str = ""
    method: str = ""
    path: str = ""
    path_regex: str = Field("", alias="pathRegex")
    params: dict[str, list[str]] = Field(default_factory=dict)
    headers: dict[str, list[str]] = Field(default_factory=dict)
    body_string: str = Field("", alias="bodyString")
    body_string_regex: str = Field("", alias="bodyStringRegex")
    body: Any = None
    response: ResponseDefinition = Field(default_factory=ResponseDefinition)

    def as_serializable(self) -> dict[str, Any]:
        """Return a JSON friendly payload using wire field names."""

        return self.model_dump(mode="json", by_alias=True)


def parse_definition(raw: bytes | str | Mapping[str, Any], *, strict: bool = False) -> RuleDefinition:
    """Validate one rule definition.

    ``strict`` rejects unknown fields, as rule files require; admin
    registrations are parsed leniently.

    Raises:
        MalformedRuleError: if ``raw`` is not a valid rule definition.
    """

    context = {"strict": strict}
    try:
        if isinstance(raw, Mapping):
            return RuleDefinition.model_validate(dict(raw), context=context)
        payload = json.loads(raw)
        if not isinstance(payload, dict):
            raise MalformedRuleError("rule definition must be a JSON object")
        return RuleDefinition.model_validate(payload, context=context)
    except (json.JSONDecodeError, UnicodeDecodeError, ValidationError) as exc:
        raise MalformedRuleError(f"error parsing rule: {exc}") from exc
