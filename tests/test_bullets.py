from __future__ import annotations

import allure

from applykit.jobs.bullets import format_bullet, normalize_resume_descriptions, text_to_bullets

pytestmark = [
    allure.epic("Job Pipeline"),
    allure.feature("Resume Normalization"),
]


def test_newline_separated_description_with_markers() -> None:
    text = "- built the analytical engine notes\n• translated the Menabrea memoir\n1. wrote programs"

    assert text_to_bullets(text) == [
        "Built the analytical engine notes.",
        "Translated the Menabrea memoir.",
        "Wrote programs.",
    ]


def test_pipe_separated_description() -> None:
    assert text_to_bullets("Led team of five | Shipped billing v2 | Cut costs by 20%") == [
        "Led team of five.",
        "Shipped billing v2.",
        "Cut costs by 20%.",
    ]


def test_sentence_separated_description() -> None:
    text = "Designed the first algorithm for the engine. Published extensive notes on its use!"

    assert text_to_bullets(text) == [
        "Designed the first algorithm for the engine.",
        "Published extensive notes on its use!",
    ]


def test_semicolon_separated_description() -> None:
    assert text_to_bullets("managed budgets; hired engineers; ran audits") == [
        "Managed budgets.",
        "Hired engineers.",
        "Ran audits.",
    ]


def test_unsplittable_description_becomes_single_bullet() -> None:
    assert text_to_bullets("responsible for payroll and") == ["Responsible for payroll."]
    assert text_to_bullets("   ") == []


def test_format_bullet_normalizes_curly_quotes() -> None:
    assert format_bullet("“quoted” and ‘single’") == "\"quoted\" and 'single'."
    assert format_bullet("led the team or") == "Led the team."


def test_normalize_converts_experience_always_and_projects_when_long() -> None:
    long_project = (
        "Built a compiler for a toy language with a full test suite. "
        "Added an optimizer that removed dead code and folded constants."
    )
    data = {
        "experience": [{"description": "maintained the analytical engine"}],
        "projects": [
            {"description": "Short project blurb. Another sentence here."},
            {"description": long_project},
        ],
        "volunteer": [{"description": ["already", "a list"]}],
    }

    normalized = normalize_resume_descriptions(data)

    assert normalized["experience"][0]["description"] == ["Maintained the analytical engine."]
    assert normalized["projects"][0]["description"] == "Short project blurb. Another sentence here."
    assert normalized["projects"][1]["description"] == [
        "Built a compiler for a toy language with a full test suite.",
        "Added an optimizer that removed dead code and folded constants.",
    ]
    assert normalized["volunteer"][0]["description"] == ["already", "a list"]


def test_normalize_tolerates_missing_sections() -> None:
    assert normalize_resume_descriptions({"name": "Ada"}) == {"name": "Ada"}
