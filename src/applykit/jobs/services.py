"""Use-case services wiring the store, processor, and provider stack together."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx

from applykit.config import Settings
from applykit.jobs.collaborators import (
    BlobStorage,
    JsonDocumentRenderer,
    LocalBlobStorage,
    Notifier,
    Renderer,
    SettingsProvider,
    StaticSettingsProvider,
    StoreNotifier,
)
from applykit.jobs.handlers import HandlerContext
from applykit.jobs.models import JobRecord, JobType
from applykit.jobs.processor import InlineRunResult, JobProcessor
from applykit.jobs.repository import JobStore
from applykit.jobs.retry import RetryPolicies, RetryPolicy
from applykit.llm.orchestrator import ProviderOrchestrator
from applykit.llm.providers import ProviderRegistry


@dataclass(slots=True)
class SubmitJob:
    """High-level command to enqueue one document job."""

    owner_id: str
    job_type: JobType | str
    input: dict[str, Any]
    metadata: dict[str, Any] | None = None
    inline: bool = False
    inline_timeout_seconds: float | None = None


@dataclass(slots=True)
class SubmitResult:
    job_id: str
    job: JobRecord | None
    inline: InlineRunResult | None = None


@dataclass(slots=True)
class PipelineRuntime:
    """Fully wired store, provider registry, and processor."""

    settings: Settings
    store: JobStore
    registry: ProviderRegistry
    processor: JobProcessor

    def close(self) -> None:
        self.registry.close()
        self.store.close()


def build_runtime(  # noqa: PLR0913
    settings: Settings,
    *,
    renderer: Renderer | None = None,
    storage: BlobStorage | None = None,
    settings_provider: SettingsProvider | None = None,
    notifier: Notifier | None = None,
    registry: ProviderRegistry | None = None,
    retry_policies: RetryPolicies | None = None,
    transport: httpx.BaseTransport | None = None,
) -> PipelineRuntime:
    """Build the runtime from settings, with injectable collaborators."""

    store = JobStore(settings.db_path)
    store.init_schema()
    registry = registry or ProviderRegistry.from_settings(settings.llm, transport=transport)
    orchestrator = ProviderOrchestrator(
        registry,
        fallback_provider=settings.llm.fallback_provider,
        fallback_model=settings.llm.fallback_model,
    )
    context = HandlerContext(
        store=store,
        orchestrator=orchestrator,
        renderer=renderer or JsonDocumentRenderer(),
        storage=storage or LocalBlobStorage(settings.storage.output_dir),
        settings_provider=settings_provider or StaticSettingsProvider(),
        notifier=notifier or StoreNotifier(store),
        default_settings=settings.llm.default_provider_settings(),
        retry_policies=retry_policies
        or RetryPolicies(
            default=RetryPolicy(
                max_attempts=settings.retry.max_attempts,
                base_seconds=settings.retry.base_seconds,
                max_seconds=settings.retry.max_seconds,
            ),
        ),
    )
    processor = JobProcessor(
        store=store,
        context=context,
        worker_id=settings.worker.worker_id,
        batch_size=settings.worker.batch_size,
        poll_interval_seconds=settings.worker.poll_interval_seconds,
    )
    return PipelineRuntime(settings=settings, store=store, registry=registry, processor=processor)


class JobService:
    """Enqueue jobs, optionally processing them inline right away."""

    def __init__(self, runtime: PipelineRuntime) -> None:
        self.runtime = runtime

    def submit(self, command: SubmitJob) -> SubmitResult:
        job_id = self.runtime.store.enqueue(
            command.owner_id,
            command.job_type,
            command.input,
            command.metadata,
        )
        if not command.inline:
            return SubmitResult(job_id=job_id, job=self.runtime.store.get(job_id))

        timeout = (
            command.inline_timeout_seconds
            if command.inline_timeout_seconds is not None
            else self.runtime.settings.worker.inline_timeout_seconds
        )
        inline = self.runtime.processor.process_inline(job_id, timeout)
        return SubmitResult(job_id=job_id, job=inline.job, inline=inline)
