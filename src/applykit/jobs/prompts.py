"""Prompt templates for each document job type."""

from __future__ import annotations

import json
from typing import Any

_JSON_OUTPUT_RULES = """
CRITICAL JSON FORMATTING REQUIREMENTS:
- Return ONLY valid JSON. No markdown code blocks, no text before or after.
- Start directly with { and end with }.
- Terminate every string and close every object and array.
- No trailing commas.
"""

RESUME_PARSE_SYSTEM_PROMPT = """\
You are a resume parsing expert. Extract ALL structured information from the resume
text and return it as JSON with these fields:
{
  "name": "Full name",
  "email": "Email address",
  "phone": "Phone number",
  "address": "Complete address if available",
  "linkedin": "LinkedIn profile URL if available",
  "website": "Personal website/portfolio URL if available",
  "summary": "Professional summary/objective",
  "experience": [{"title": "", "company": "", "location": "", "duration": "",
                  "description": ["Bullet 1", "Bullet 2"], "technologies": [""]}],
  "education": [{"degree": "", "school": "", "location": "", "year": "", "gpa": ""}],
  "skills": ["skill1", "skill2"],
  "certifications": [{"name": "", "issuer": "", "date": "", "expiry": "", "credential_id": ""}],
  "training": [{"name": "", "provider": "", "date": "", "duration": ""}],
  "projects": [{"name": "", "description": "", "technologies": [""], "date": "", "url": ""}],
  "languages": [{"language": "", "proficiency": ""}],
  "references": [{"name": "", "title": "", "company": "", "phone": "", "email": ""}],
  "volunteer": [{"organization": "", "role": "", "duration": "", "description": ""}],
  "additional_sections": [{"section_title": "", "content": ""}]
}

Instructions:
- Extract ALL information present in the resume; omit fields that are absent.
- Preserve the original date formats.
- Experience "description" MUST be an array of strings, one responsibility or
  achievement per element.
- "skills" MUST be a flat array of individual skill strings.
""" + _JSON_OUTPUT_RULES

RESUME_PARSE_USER_PROMPT = "Parse this resume text:\n\n{resume_text}"

RESUME_GENERATE_SYSTEM_PROMPT = """\
You are an expert resume writer who tailors resumes for applicant tracking systems.
Use ONLY facts present in the candidate's resume. Never invent experience, skills,
metrics, titles, companies, or dates.
""" + _JSON_OUTPUT_RULES

RESUME_GENERATE_USER_PROMPT = """\
Create an ATS-optimized resume for a job application.

Candidate information:
{resume_json}

Job description:
{job_description_json}

STRICT RULES:
- Use ONLY the information provided in the candidate's resume above.
- DO NOT change job titles, company names, dates, or locations.
- Preserve the exact date formats from the source resume; use "Present" for current roles.
- Incorporate keywords from the job description naturally while staying truthful.

Return a JSON object with this structure:
{{
  "fullName": "",
  "jobTitle": "",
  "contactInfo": {{"email": "", "phone": "", "location": "", "linkedin": ""}},
  "summary": "",
  "experience": [{{"title": "", "company": "", "location": "", "startDate": "",
                  "endDate": "", "summary": "", "description": ["", ""]}}],
  "education": [{{"institution": "", "degree": "", "field": "", "graduationDate": ""}}],
  "skills": ["", ""],
  "certifications": [{{"name": "", "issuer": "", "date": ""}}],
  "projects": [{{"name": "", "description": ""}}]
}}
"""

COVER_LETTER_SYSTEM_PROMPT = """\
You are an expert cover letter writer. Highlight the candidate's most relevant
qualifications for the specific role and company. Use ONLY information from the
candidate's resume; never claim a requirement the candidate does not meet.
""" + _JSON_OUTPUT_RULES

COVER_LETTER_USER_PROMPT = """\
Create a personalized cover letter for a job application.

Candidate information:
{resume_json}

Job description:
{job_description_json}

The letter should express interest in the role, highlight 2-3 relevant
qualifications from the resume, explain the fit, and end with a call to action.

Return a JSON object with this structure:
{{
  "fullName": "",
  "contactInfo": {{"email": "", "phone": "", "location": ""}},
  "date": "{today}",
  "recipient": {{"name": "Hiring Manager", "title": "Hiring Manager", "company": "{company_name}"}},
  "jobTitle": "",
  "paragraphs": ["", "", ""],
  "closing": "Sincerely,"
}}
"""


def build_resume_parse_prompt(resume_text: str) -> str:
    return RESUME_PARSE_USER_PROMPT.format(resume_text=resume_text)


def build_resume_generate_prompt(
    resume: dict[str, Any],
    job_description: dict[str, Any],
) -> str:
    return RESUME_GENERATE_USER_PROMPT.format(
        resume_json=_pretty(resume),
        job_description_json=_pretty(job_description),
    )


def build_cover_letter_prompt(
    resume: dict[str, Any],
    job_description: dict[str, Any],
    *,
    company_name: str,
    today: str,
) -> str:
    return COVER_LETTER_USER_PROMPT.format(
        resume_json=_pretty(resume),
        job_description_json=_pretty(job_description),
        company_name=company_name,
        today=today,
    )


def _pretty(value: dict[str, Any]) -> str:
    return json.dumps(value, ensure_ascii=False, indent=2)
