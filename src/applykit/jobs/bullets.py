"""Turn free-text resume descriptions into bullet lists."""

from __future__ import annotations

import re
from typing import Any

MIN_BULLET_CHARS = 6
LONG_DESCRIPTION_CHARS = 100

_BULLET_MARKER = re.compile(r"^[-•*→▪▸◦‣⁃]\s*")
_NUMBERING = re.compile(r"^\d+[.)]\s*")
_SENTENCE = re.compile(r"[^.!?]+[.!?]+")
_TRAILING_CONJUNCTION = re.compile(r"\s+(and|or)\s*$", re.IGNORECASE)
_CURLY_DOUBLE = re.compile(r"[“”]")
_CURLY_SINGLE = re.compile(r"[‘’]")


def text_to_bullets(text: str) -> list[str]:
    """Split a description on newlines, pipes, sentences, or semicolons.

    The first separator yielding more than one bullet wins. Text that cannot be
    split comes back as a single formatted bullet.
    """

    if not text or not text.strip():
        return []

    if "\n" in text:
        bullets = _format_all(
            _strip_markers(line) for line in re.split(r"\n+", text) if len(line.strip()) >= MIN_BULLET_CHARS
        )
        if len(bullets) > 1:
            return bullets

    if " | " in text and len(text.split(" | ")) > 2:
        bullets = _format_all(text.split(" | "))
        if len(bullets) > 1:
            return bullets

    sentences = _SENTENCE.findall(text)
    if len(sentences) > 1:
        bullets = _format_all(
            sentence
            for sentence in sentences
            if len(sentence.split()) > 3 or len(sentence.strip()) > 20
        )
        if len(bullets) > 1:
            return bullets

    if ";" in text and len(text.split(";")) > 2:
        bullets = _format_all(text.split(";"))
        if len(bullets) > 1:
            return bullets

    return [format_bullet(text)]


def format_bullet(text: str) -> str:
    cleaned = _CURLY_DOUBLE.sub('"', text.strip())
    cleaned = _CURLY_SINGLE.sub("'", cleaned)
    cleaned = _TRAILING_CONJUNCTION.sub("", cleaned)
    if cleaned and cleaned[0].islower():
        cleaned = cleaned[0].upper() + cleaned[1:]
    if cleaned and cleaned[-1] not in ".!?":
        cleaned += "."
    return cleaned


def normalize_resume_descriptions(data: dict[str, Any]) -> dict[str, Any]:
    """Convert string descriptions in place.

    Experience descriptions always become lists. Project and volunteer descriptions
    are converted only when long and when they split into several bullets.
    """

    for entry in _dict_items(data.get("experience")):
        description = entry.get("description")
        if isinstance(description, str):
            entry["description"] = text_to_bullets(description)

    for section in ("projects", "volunteer"):
        for entry in _dict_items(data.get(section)):
            description = entry.get("description")
            if isinstance(description, str) and len(description) > LONG_DESCRIPTION_CHARS:
                bullets = text_to_bullets(description)
                if len(bullets) > 1:
                    entry["description"] = bullets
    return data


def _strip_markers(line: str) -> str:
    return _NUMBERING.sub("", _BULLET_MARKER.sub("", line.strip()))


def _format_all(parts) -> list[str]:
    bullets: list[str] = []
    for part in parts:
        if len(part.strip()) < MIN_BULLET_CHARS:
            continue
        bullets.append(format_bullet(part))
    return bullets


def _dict_items(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]
