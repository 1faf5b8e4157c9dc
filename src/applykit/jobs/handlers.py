"""Per-type job handlers.

Every handler receives a ``processing`` record and ends by calling exactly one of
``JobStore.complete`` or ``JobStore.fail``. Errors from the model call, repair, or
artifact storage are caught here and turned into ``fail``.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Protocol
from uuid import uuid4

from applykit.errors import (
    ConfigurationError,
    InvalidJobInputError,
    PersistenceError,
    RepairError,
    describe_failure,
)
from applykit.jobs.bullets import normalize_resume_descriptions
from applykit.jobs.collaborators import (
    BlobStorage,
    Notifier,
    RenderedDocument,
    Renderer,
    SettingsProvider,
    sanitize_file_part,
)
from applykit.jobs.models import JobRecord, JobType, NotificationRecord, NotificationType
from applykit.jobs.prompts import (
    COVER_LETTER_SYSTEM_PROMPT,
    RESUME_GENERATE_SYSTEM_PROMPT,
    RESUME_PARSE_SYSTEM_PROMPT,
    build_cover_letter_prompt,
    build_resume_generate_prompt,
    build_resume_parse_prompt,
)
from applykit.jobs.repository import JobStore
from applykit.jobs.retry import RetryPolicies
from applykit.llm.failure_classifier import classify_error
from applykit.llm.models import AskResult, ProviderSettings
from applykit.llm.orchestrator import ProviderOrchestrator

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class HandlerContext:
    """Everything a handler needs, shared across jobs of one processor."""

    store: JobStore
    orchestrator: ProviderOrchestrator
    renderer: Renderer
    storage: BlobStorage
    settings_provider: SettingsProvider
    notifier: Notifier
    default_settings: ProviderSettings = field(default_factory=ProviderSettings.free_tier)
    retry_policies: RetryPolicies = field(default_factory=RetryPolicies)
    sleep: Callable[[float], None] = time.sleep

    def resolve_settings(self, owner_id: str) -> ProviderSettings:
        """Owner settings, or the free-tier default when none are stored."""

        return self.settings_provider.get_settings(owner_id) or self.default_settings

    def notify(self, notification: NotificationRecord) -> None:
        """Deliver a notification; a failing notifier never fails the job."""

        try:
            self.notifier.notify(notification)
        except Exception:
            logger.exception("Failed to record notification for job %s", notification.job_id)


class JobHandler(Protocol):
    def __call__(self, job: JobRecord, context: HandlerContext) -> None: ...


@dataclass(slots=True)
class _Outcome:
    result: dict[str, Any]
    notification_message: str
    notification_metadata: dict[str, Any]


@dataclass(frozen=True, slots=True)
class _Titles:
    success: str
    failure: str
    failure_message: str


_PARSE_TITLES = _Titles(
    success="Resume Parsed Successfully",
    failure="Resume Parsing Failed",
    failure_message="There was an error processing your resume. Please try again.",
)
_RESUME_TITLES = _Titles(
    success="Resume Generated Successfully",
    failure="Resume Generation Failed",
    failure_message="There was an error generating your resume. Please try again.",
)
_COVER_LETTER_TITLES = _Titles(
    success="Cover Letter Generated Successfully",
    failure="Cover Letter Generation Failed",
    failure_message="There was an error generating your cover letter. Please try again.",
)


def handle_parse_resume(job: JobRecord, context: HandlerContext) -> None:
    """Parse raw resume text into structured data and store it as an artifact."""

    def work(settings: ProviderSettings) -> _Outcome:
        content = _require_str(job.input, "content", "text", "resume_text")
        filename = _optional_str(job.input, "filename") or "resume"
        answer = context.orchestrator.ask(
            build_resume_parse_prompt(content),
            RESUME_PARSE_SYSTEM_PROMPT,
            settings,
            "resume_parsing",
            _bypass_flag(job.input),
        )
        parsed = normalize_resume_descriptions(_require_object(answer))

        resume_id = str(uuid4())
        stem = sanitize_file_part(filename.rsplit(".", 1)[0]) or "resume"
        path = f"resumes/{job.owner_id}/{job.job_id}/{stem}_parsed.json"
        rendered = _render(
            context,
            "ParsedResume",
            parsed,
            company_name="",
            user_name=str(parsed.get("name") or ""),
        )
        stored_path = _store(context, path, rendered)
        return _Outcome(
            result={
                **parsed,
                "resume_id": resume_id,
                "resume_path": stored_path,
                "llm": _llm_summary(answer),
            },
            notification_message="Your resume has been processed and is ready to view.",
            notification_metadata={"filename": filename, "resume_id": resume_id},
        )

    _run_job(job, context, work=work, titles=_PARSE_TITLES)


def handle_generate_resume(job: JobRecord, context: HandlerContext) -> None:
    """Tailor a parsed resume to a job description and store the rendered document."""

    def work(settings: ProviderSettings) -> _Outcome:
        resume, job_description, user_name, company_name = _generation_inputs(job.input)
        answer = context.orchestrator.ask(
            build_resume_generate_prompt(resume, job_description),
            RESUME_GENERATE_SYSTEM_PROMPT,
            settings,
            "resume_generation",
            _bypass_flag(job.input),
        )
        document = normalize_resume_descriptions(_require_object(answer))
        return _store_document(
            job,
            context,
            answer=answer,
            document=document,
            document_type="Resume",
            folder="resumes",
            user_name=user_name,
            company_name=company_name,
            message=f"Your tailored resume for {company_name} is ready to download.",
        )

    _run_job(job, context, work=work, titles=_RESUME_TITLES)


def handle_generate_cover_letter(job: JobRecord, context: HandlerContext) -> None:
    """Write a cover letter for a job description and store the rendered document."""

    def work(settings: ProviderSettings) -> _Outcome:
        resume, job_description, user_name, company_name = _generation_inputs(job.input)
        answer = context.orchestrator.ask(
            build_cover_letter_prompt(
                resume,
                job_description,
                company_name=company_name,
                today=date.today().strftime("%B %d, %Y"),
            ),
            COVER_LETTER_SYSTEM_PROMPT,
            settings,
            "cover_letter",
            _bypass_flag(job.input),
        )
        letter = _require_object(answer)
        if not isinstance(letter.get("paragraphs"), list) or not letter["paragraphs"]:
            raise RepairError("Cover letter response has no paragraphs.")
        return _store_document(
            job,
            context,
            answer=answer,
            document=letter,
            document_type="CoverLetter",
            folder="cover-letters",
            user_name=user_name,
            company_name=company_name,
            message=f"Your cover letter for {company_name} is ready to download.",
        )

    _run_job(job, context, work=work, titles=_COVER_LETTER_TITLES)


HANDLERS: dict[str, JobHandler] = {
    JobType.PARSE_RESUME.value: handle_parse_resume,
    JobType.GENERATE_RESUME.value: handle_generate_resume,
    JobType.GENERATE_COVER_LETTER.value: handle_generate_cover_letter,
}


def get_handler(job_type: str, handlers: dict[str, JobHandler] | None = None) -> JobHandler:
    """Return the handler registered for ``job_type``.

    Raises:
        ConfigurationError: for job types with no handler.
    """

    handler = (handlers if handlers is not None else HANDLERS).get(job_type)
    if handler is None:
        raise ConfigurationError(f"Unknown job type: {job_type!r}")
    return handler


def _run_job(
    job: JobRecord,
    context: HandlerContext,
    *,
    work: Callable[[ProviderSettings], _Outcome],
    titles: _Titles,
) -> None:
    try:
        settings = context.resolve_settings(job.owner_id)
        policy = context.retry_policies.for_type(job.job_type)
        outcome = policy.run(lambda: work(settings), sleep=context.sleep)
    except Exception as error:
        message = describe_failure(error)
        classification = classify_error(error)
        details: dict[str, object] = {"error_type": type(error).__name__}
        if classification is not None:
            details.update(classification.to_event_details())
        logger.warning("Job %s (%s) failed: %s", job.job_id, job.job_type, message)
        context.store.fail(job.job_id, message, details=details)
        context.notify(
            NotificationRecord(
                job_id=job.job_id,
                owner_id=job.owner_id,
                notification_type=NotificationType.FAILED,
                title=titles.failure,
                message=titles.failure_message,
                metadata={"error": message},
            ),
        )
        return

    context.store.complete(job.job_id, outcome.result)
    logger.info("Job %s (%s) completed", job.job_id, job.job_type)
    context.notify(
        NotificationRecord(
            job_id=job.job_id,
            owner_id=job.owner_id,
            notification_type=NotificationType.COMPLETED,
            title=titles.success,
            message=outcome.notification_message,
            metadata=outcome.notification_metadata,
        ),
    )


def _store_document(  # noqa: PLR0913
    job: JobRecord,
    context: HandlerContext,
    *,
    answer: AskResult,
    document: dict[str, Any],
    document_type: str,
    folder: str,
    user_name: str,
    company_name: str,
    message: str,
) -> _Outcome:
    rendered = _render(
        context,
        document_type,
        document,
        company_name=company_name,
        user_name=user_name,
    )
    stored_path = _store(
        context,
        f"{folder}/{job.owner_id}/{job.job_id}/{rendered.file_name}",
        rendered,
    )
    return _Outcome(
        result={
            "file_name": rendered.file_name,
            "file_path": stored_path,
            "company_name": company_name,
            "llm": _llm_summary(answer),
        },
        notification_message=message,
        notification_metadata={"file_name": rendered.file_name, "company_name": company_name},
    )


def _render(
    context: HandlerContext,
    document_type: str,
    data: dict[str, Any],
    *,
    company_name: str,
    user_name: str,
) -> RenderedDocument:
    try:
        return context.renderer.render(
            document_type,
            data,
            company_name=company_name,
            user_name=user_name,
        )
    except PersistenceError:
        raise
    except Exception as exc:
        raise PersistenceError(f"Rendering {document_type} failed: {exc}") from exc


def _store(context: HandlerContext, path: str, rendered: RenderedDocument) -> str:
    try:
        return context.storage.store(path, rendered.content, content_type=rendered.content_type)
    except PersistenceError:
        raise
    except Exception as exc:
        raise PersistenceError(f"Storing {path} failed: {exc}") from exc


def _generation_inputs(payload: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any], str, str]:
    resume = _require_dict(payload, "resume_data", "resumeData")
    job_description = _require_dict(payload, "job_description", "jobDescription")
    user_name = _optional_str(payload, "user_name", "userName") or str(resume.get("name") or "")
    company_name = _require_str(payload, "company_name", "companyName")
    return resume, job_description, user_name, company_name


def _require_object(answer: AskResult) -> dict[str, Any]:
    if not isinstance(answer.value, dict):
        raise RepairError(f"Expected a JSON object, got {type(answer.value).__name__}.")
    return answer.value


def _llm_summary(answer: AskResult) -> dict[str, Any]:
    return {
        "provider": answer.provider,
        "model": answer.model,
        "used_fallback": answer.used_fallback,
        "truncated": answer.truncated,
        "repair_stage": answer.repair_stage,
    }


def _bypass_flag(payload: dict[str, Any]) -> bool | None:
    value = payload.get("bypass_token_limits", payload.get("bypassTokenLimits"))
    return value if isinstance(value, bool) else None


def _lookup(payload: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        if key in payload:
            return payload[key]
    return None


def _require_str(payload: dict[str, Any], *keys: str) -> str:
    value = _lookup(payload, keys)
    if not isinstance(value, str) or not value.strip():
        raise InvalidJobInputError(f"Missing required field {keys[0]!r}.")
    return value


def _optional_str(payload: dict[str, Any], *keys: str) -> str | None:
    value = _lookup(payload, keys)
    return value if isinstance(value, str) and value.strip() else None


def _require_dict(payload: dict[str, Any], *keys: str) -> dict[str, Any]:
    value = _lookup(payload, keys)
    if not isinstance(value, dict):
        raise InvalidJobInputError(f"Missing required object {keys[0]!r}.")
    return value
