"""Best-effort recovery of structured JSON from raw model output.

Each stage is a pure ``text -> text`` transform. After every stage the candidate is
parsed; the first candidate that parses wins. Valid input is returned unchanged.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any

from applykit.errors import RepairError

logger = logging.getLogger(__name__)

LARGE_DOCUMENT_CHARS = 10_000

_FENCE_BLOCK = re.compile(r"```[ \t]*[A-Za-z0-9_+-]*[ \t]*\r?\n?(.*?)\r?\n?[ \t]*```", re.DOTALL)
_STRAY_FENCE = re.compile(r"```[ \t]*[A-Za-z0-9_+-]*")
_DOUBLE_ESCAPED_OPEN = re.compile(r'^\s*[{\[]\s*\\"')
_INNER_QUOTES = re.compile(r'"([^":{}\[\],]+)"([^":{}\[\],]+)"([^":{}\[\],]*)"')
_STRING_FIELD_TEMPLATE = r'"{key}"\s*:\s*"((?:[^"\\]|\\.)*)"'
_ARRAY_FIELD_TEMPLATE = r'"{key}"\s*:\s*\['

_CODE = "code"
_OPEN = "open"
_STRING = "string"
_CLOSE = "close"

_MISSING = object()

Stage = Callable[[str], str]


@dataclass(frozen=True, slots=True)
class RepairResult:
    """Parsed value with the exact JSON text it came from."""

    text: str
    value: Any
    stage: str


def strip_code_fences(text: str) -> str:
    """Remove markdown code fences with or without a language tag."""

    if "```" not in text:
        return text
    block = _FENCE_BLOCK.search(text)
    if block is not None:
        return block.group(1).strip()
    return _STRAY_FENCE.sub("", text).strip()


def slice_json_object(text: str) -> str:
    """Cut everything outside the first ``{`` and the last ``}``."""

    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return text
    return text[start : end + 1]


def drop_trailing_commas(text: str) -> str:
    """Remove commas directly before a closing brace or bracket."""

    out: list[str] = []
    last_significant = -1
    for char, state in _scan(text):
        code = state == _CODE
        if code and char in "}]" and last_significant >= 0 and out[last_significant] == ",":
            del out[last_significant]
        out.append(char)
        if not code or not char.isspace():
            last_significant = len(out) - 1
    return "".join(out)


def insert_missing_commas(text: str) -> str:
    """Insert commas between adjacent values such as ``}{`` or ``" "``."""

    out: list[str] = []
    after_value = False
    for char, state in _scan(text):
        opens_value = state == _OPEN or (state == _CODE and char in "{[")
        if opens_value and after_value:
            out.append(",")
        out.append(char)
        if state == _CLOSE or (state == _CODE and char in "}]"):
            after_value = True
        elif state == _OPEN or (state == _CODE and not char.isspace()):
            after_value = False
    return "".join(out)


def normalize_quotes(text: str) -> str:
    """Undo whole-document quote escaping and neutralize stray inner quotes."""

    if _DOUBLE_ESCAPED_OPEN.match(text):
        text = text.replace('\\"', '"')
    return _INNER_QUOTES.sub(
        lambda match: f"\"{match.group(1)}'{match.group(2)}'{match.group(3)}\"",
        text,
    )


def close_open_string(text: str) -> str:
    """Append a quote when the number of unescaped quotes is odd."""

    last_state = _CODE
    for _char, state in _scan(text):
        last_state = state
    if last_state in (_OPEN, _STRING):
        return f'{text}"'
    return text


def close_open_containers(text: str) -> str:
    """Append the closing ``}``/``]`` for every container left open."""

    stack: list[str] = []
    for char, state in _scan(text):
        if state != _CODE:
            continue
        if char in "{[":
            stack.append("}" if char == "{" else "]")
        elif char in "}]" and stack and stack[-1] == char:
            stack.pop()
    if not stack:
        return text
    stripped = text.rstrip()
    if stripped.endswith(","):
        stripped = stripped[:-1]
    return stripped + "".join(reversed(stack))


PRE_PARSE_STAGES: tuple[tuple[str, Stage], ...] = (
    ("direct", lambda text: text),
    ("strip_fences", strip_code_fences),
    ("slice_object", slice_json_object),
)
SYNTACTIC_STAGES: tuple[tuple[str, Stage], ...] = (
    ("trailing_commas", drop_trailing_commas),
    ("missing_commas", insert_missing_commas),
    ("quotes", normalize_quotes),
    ("unterminated_string", close_open_string),
    ("unclosed_containers", close_open_containers),
)


def repair_json(text: str, *, large_document_chars: int = LARGE_DOCUMENT_CHARS) -> RepairResult:
    """Run the staged repair ladder and return the first parseable candidate.

    Raises:
        RepairError: when no stage yields parseable JSON and field extraction either
            does not apply or finds nothing.
    """

    attempted: list[str] = []
    candidate = text
    unrepaired = text
    for name, stage in PRE_PARSE_STAGES + SYNTACTIC_STAGES:
        candidate = stage(candidate)
        attempted.append(name)
        if name == PRE_PARSE_STAGES[-1][0]:
            unrepaired = candidate
        value = _try_parse(candidate)
        if value is not _MISSING:
            if name != "direct":
                logger.info("Recovered JSON at repair stage %s", name)
            return RepairResult(text=candidate, value=value, stage=name)

    if len(text) > large_document_chars:
        attempted.append("field_extraction")
        extracted = extract_known_fields(unrepaired) or extract_known_fields(candidate)
        if extracted:
            logger.warning(
                "Fell back to field extraction for %d-char response, recovered keys: %s",
                len(text),
                sorted(extracted),
            )
            return RepairResult(
                text=json.dumps(extracted, ensure_ascii=False),
                value=extracted,
                stage="field_extraction",
            )

    raise RepairError(
        f"Model output is not valid JSON after {len(attempted)} repair stages.",
        stages=tuple(attempted),
    )


def parse_model_json(text: str) -> Any:
    """Shortcut returning only the repaired value."""

    return repair_json(text).value


def extract_known_fields(text: str) -> dict[str, Any]:
    """Pull well-known resume keys out of otherwise unparseable text.

    Only values literally present in the text are returned; nothing is invented.
    """

    extracted: dict[str, Any] = {}
    name = _extract_string(text, "fullName") or _extract_string(text, "name")
    if name:
        extracted["fullName"] = name

    contact: dict[str, str] = {}
    for key in ("email", "phone"):
        value = _extract_string(text, key)
        if value:
            contact[key] = value
    if contact:
        extracted["contactInfo"] = contact

    summary = _extract_string(text, "summary")
    if summary:
        extracted["summary"] = summary

    for key in ("experience", "education", "skills"):
        items = _extract_array(text, key)
        if items:
            extracted[key] = items
    return extracted


def _extract_string(text: str, key: str) -> str | None:
    match = re.search(_STRING_FIELD_TEMPLATE.format(key=re.escape(key)), text)
    if match is None:
        return None
    try:
        return json.loads(f'"{match.group(1)}"')
    except json.JSONDecodeError:
        return match.group(1)


def _extract_array(text: str, key: str) -> list[Any] | None:
    match = re.search(_ARRAY_FIELD_TEMPLATE.format(key=re.escape(key)), text)
    if match is None:
        return None
    start = match.end() - 1
    depth = 0
    for offset, (char, state) in enumerate(_scan(text[start:])):
        if state != _CODE:
            continue
        if char in "[{":
            depth += 1
        elif char in "]}":
            depth -= 1
            if depth == 0:
                parsed = _try_parse(text[start : start + offset + 1])
                if isinstance(parsed, list):
                    return parsed
                return None
    return None


def _scan(text: str) -> Iterator[tuple[str, str]]:
    """Yield ``(char, state)`` with state one of code, open, string, close."""

    in_string = False
    escaped = False
    for char in text:
        if not in_string:
            if char == '"':
                in_string = True
                yield char, _OPEN
            else:
                yield char, _CODE
        elif escaped:
            escaped = False
            yield char, _STRING
        elif char == "\\":
            escaped = True
            yield char, _STRING
        elif char == '"':
            in_string = False
            yield char, _CLOSE
        else:
            yield char, _STRING


def _try_parse(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return _MISSING
