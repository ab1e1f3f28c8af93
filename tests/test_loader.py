from __future__ import annotations

import json
from pathlib import Path

import yaml

from stub_server.errors import InvalidPatternError, MalformedRuleError
from stub_server.loader import load_rule_file, load_rules

EXAMPLE_RULES = [
    {"name": "get_fallback", "method": "GET", "path": "/", "response": {"statusCode": 200, "bodyString": "hello world"}},
    {"name": "get_foo", "method": "GET", "path": "/foo", "response": {"statusCode": 200, "bodyString": "hello foo"}},
    {
        "name": "match_body",
        "body": {"number": 123, "text": ".*"},
        "response": {"statusCode": 200, "bodyString": "hello body"},
    },
    {
        "name": "match_other_body",
        "body": {"answer": 42},
        "response": {"statusCode": 200, "bodyJson": {"foo": "bar", "bla": "vla"}},
    },
]


def test_ndjson_rule_file(tmp_path: Path) -> None:
    path = tmp_path / "rules.ndjson"
    path.write_text("\n".join(json.dumps(rule) for rule in EXAMPLE_RULES) + "\n", encoding="utf-8")

    result = load_rule_file(path)

    assert result.errors == []
    assert [rule.name for rule in result.rules] == ["get_fallback", "get_foo", "match_body", "match_other_body"]
    assert result.rules[2].body_json == {"number": 123, "text": ".*"}
    assert result.rules[3].response.body_json == {"foo": "bar", "bla": "vla"}


def test_concatenated_json_objects(tmp_path: Path) -> None:
    path = tmp_path / "rules.json"
    path.write_text(
        json.dumps(EXAMPLE_RULES[0], indent=2) + json.dumps(EXAMPLE_RULES[1]),
        encoding="utf-8",
    )

    result = load_rule_file(path)

    assert [rule.name for rule in result.rules] == ["get_fallback", "get_foo"]


def test_invalid_rules_are_skipped(tmp_path: Path) -> None:
    path = tmp_path / "rules.json"
    lines = [
        json.dumps({"name": "bad_regex", "pathRegex": "("}),
        json.dumps({"name": "unknown_field", "colour": "blue"}),
        json.dumps({"name": "unknown_nested", "response": {"statusCode": 200, "delay": 5}}),
        json.dumps(["not", "a", "rule"]),
        json.dumps({"name": "good", "method": "GET"}),
    ]
    path.write_text("\n".join(lines), encoding="utf-8")

    result = load_rule_file(path)

    assert [rule.name for rule in result.rules] == ["good"]
    assert len(result.errors) == 4
    assert isinstance(result.errors[0].error, InvalidPatternError)
    assert result.errors[0].source == f"{path}:1"
    assert all(isinstance(item.error, MalformedRuleError) for item in result.errors[1:])
    assert "colour" in str(result.errors[1])


def test_json_syntax_error_stops_the_file(tmp_path: Path) -> None:
    path = tmp_path / "rules.json"
    path.write_text('{"name": "first"}\n{"name": oops}\n{"name": "third"}\n', encoding="utf-8")

    result = load_rule_file(path)

    assert [rule.name for rule in result.rules] == ["first"]
    assert len(result.errors) == 1
    assert "line 2" in str(result.errors[0])


def test_yaml_rule_file(tmp_path: Path) -> None:
    path = tmp_path / "rules.yaml"
    path.write_text(
        yaml.safe_dump(EXAMPLE_RULES[0]) + "---\n" + yaml.safe_dump(EXAMPLE_RULES[1:]),
        encoding="utf-8",
    )

    result = load_rule_file(path)

    assert result.errors == []
    assert len(result.rules) == 4


def test_load_rules_combines_files(tmp_path: Path) -> None:
    first = tmp_path / "a.json"
    first.write_text(json.dumps(EXAMPLE_RULES[0]), encoding="utf-8")
    missing = tmp_path / "missing.json"

    result = load_rules([first, missing])

    assert len(result.rules) == 1
    assert len(result.errors) == 1
    assert isinstance(result.errors[0].error, MalformedRuleError)


def test_bundled_example_rules() -> None:
    path = Path(__file__).resolve().parents[1] / "examples" / "rules.ndjson"

    result = load_rule_file(path)

    assert result.errors == []
    assert [rule.name for rule in result.rules] == [rule["name"] for rule in EXAMPLE_RULES]
