from __future__ import annotations

import json

import allure
import pytest

from applykit.errors import RepairError
from applykit.llm.repair import (
    close_open_containers,
    close_open_string,
    drop_trailing_commas,
    extract_known_fields,
    insert_missing_commas,
    normalize_quotes,
    parse_model_json,
    repair_json,
    slice_json_object,
    strip_code_fences,
)

pytestmark = [
    allure.epic("LLM Orchestration"),
    allure.feature("Structured Output Repair"),
]


def test_valid_json_is_returned_unchanged() -> None:
    text = '{"name": "Ada, \\"the\\" Countess", "skills": ["math", "poetry"], "n": 1}'

    result = repair_json(text)

    assert result.stage == "direct"
    assert result.text == text
    assert result.value == json.loads(text)


def test_repair_is_idempotent() -> None:
    first = repair_json('```json\n{"a": 1, "b": [1, 2,],}\n```')
    second = repair_json(first.text)

    assert second.stage == "direct"
    assert second.text == first.text
    assert second.value == first.value == {"a": 1, "b": [1, 2]}


@pytest.mark.parametrize(
    ("raw", "stage", "expected"),
    [
        ('```json\n{"a": 1}\n```', "strip_fences", {"a": 1}),
        ('```\n{"a": 1}\n```', "strip_fences", {"a": 1}),
        ('```js\n[1, 2]\n```', "strip_fences", [1, 2]),
        ('```python\n"done"\n```', "strip_fences", "done"),
        ('```js\n[1, 2]', "strip_fences", [1, 2]),
        ('Here you go: {"a": 1} hope this helps', "slice_object", {"a": 1}),
        ('{"a":1,"b":2,}', "trailing_commas", {"a": 1, "b": 2}),
        ('{"a": "x" "b": "y"}', "missing_commas", {"a": "x", "b": "y"}),
        ('{"items": [{"a": 1}{"a": 2}]}', "missing_commas", {"items": [{"a": 1}, {"a": 2}]}),
        ('{\\"a\\": \\"b\\"}', "quotes", {"a": "b"}),
        ('{"name": "Ada', "unclosed_containers", {"name": "Ada"}),
        ('{"a": [1, 2', "unclosed_containers", {"a": [1, 2]}),
        ('{"a": {"b": [1, 2],', "unclosed_containers", {"a": {"b": [1, 2]}}),
    ],
)
def test_repair_stages(raw: str, stage: str, expected: object) -> None:
    result = repair_json(raw)

    assert result.stage == stage
    assert result.value == expected


def test_unrecoverable_text_raises_with_attempted_stages() -> None:
    with pytest.raises(RepairError) as excinfo:
        repair_json("not json at all")

    assert excinfo.value.stages == (
        "direct",
        "strip_fences",
        "slice_object",
        "trailing_commas",
        "missing_commas",
        "quotes",
        "unterminated_string",
        "unclosed_containers",
    )


def test_large_unparseable_document_falls_back_to_field_extraction() -> None:
    raw = (
        "garbage " * 2000
        + '"fullName": "Ada Lovelace", "email": "ada@example.com", '
        + '"skills": ["Python", "Math"] !!! trailing noise'
    )

    result = repair_json(raw)

    assert result.stage == "field_extraction"
    assert result.value == {
        "fullName": "Ada Lovelace",
        "contactInfo": {"email": "ada@example.com"},
        "skills": ["Python", "Math"],
    }
    assert json.loads(result.text) == result.value


def test_field_extraction_keeps_values_as_sent() -> None:
    raw = "garbage " * 2000 + '"summary": "Led the \\"Atlas\\" launch" !!!'

    result = repair_json(raw)

    assert result.stage == "field_extraction"
    assert result.value == {"summary": 'Led the "Atlas" launch'}


def test_field_extraction_reads_fully_escaped_documents() -> None:
    raw = "garbage " * 2000 + '{\\"fullName\\": \\"Ada Lovelace\\" !!!'

    result = repair_json(raw)

    assert result.stage == "field_extraction"
    assert result.value == {"fullName": "Ada Lovelace"}


def test_small_unparseable_document_does_not_use_field_extraction() -> None:
    with pytest.raises(RepairError):
        repair_json('"fullName": "Ada Lovelace" !!!')


def test_large_document_without_known_fields_still_fails() -> None:
    with pytest.raises(RepairError) as excinfo:
        repair_json("garbage " * 2000)

    assert excinfo.value.stages[-1] == "field_extraction"


def test_parse_model_json_returns_value() -> None:
    assert parse_model_json('```json\n{"ok": true}\n```') == {"ok": True}


def test_stage_functions_ignore_string_contents() -> None:
    assert drop_trailing_commas('{"a": "x,}", }') == '{"a": "x,}" }'
    assert insert_missing_commas('{"a": "}{"}') == '{"a": "}{"}'
    assert close_open_containers('{"a": "[{"') == '{"a": "[{"}'
    assert close_open_string('{"a": "it\\"s') == '{"a": "it\\"s"'
    assert close_open_string('{"a": "b"}') == '{"a": "b"}'


def test_simple_stage_functions() -> None:
    assert strip_code_fences("no fences") == "no fences"
    assert slice_json_object("x {1} y") == "{1}"
    assert slice_json_object("no braces") == "no braces"
    assert close_open_containers('{"a": [1,') == '{"a": [1]}'
    assert normalize_quotes('{"title": "The "Best" Role"}') == '{"title": "The \'Best\' Role"}'


def test_extract_known_fields_prefers_full_name() -> None:
    extracted = extract_known_fields('"name": "A", "fullName": "Ada L", "summary": "Hi"')

    assert extracted == {"fullName": "Ada L", "summary": "Hi"}
