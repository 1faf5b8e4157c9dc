"""Shared test fixtures."""

from __future__ import annotations

import json
import threading
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from applykit.jobs.collaborators import (
    JsonDocumentRenderer,
    LocalBlobStorage,
    Notifier,
    StaticSettingsProvider,
    StoreNotifier,
)
from applykit.jobs.handlers import HandlerContext
from applykit.jobs.processor import JobProcessor
from applykit.jobs.repository import JobStore
from applykit.jobs.retry import RetryPolicies
from applykit.llm.models import ProviderRequest, ProviderResponse
from applykit.llm.orchestrator import ProviderOrchestrator
from applykit.llm.providers import ProviderRegistry

_APPLYKIT_ENV_VARS = (
    "APPLYKIT_DB_PATH",
    "APPLYKIT_POLL_INTERVAL_SECONDS",
    "APPLYKIT_BATCH_SIZE",
    "APPLYKIT_INLINE_TIMEOUT_SECONDS",
    "APPLYKIT_WORKER_ID",
    "APPLYKIT_DEFAULT_PROVIDER",
    "APPLYKIT_DEFAULT_MODEL",
    "APPLYKIT_FALLBACK_PROVIDER",
    "APPLYKIT_FALLBACK_MODEL",
    "APPLYKIT_PROVIDER_TIMEOUT_SECONDS",
    "APPLYKIT_BYPASS_TOKEN_LIMITS",
    "APPLYKIT_TOKEN_LIMITS",
    "APPLYKIT_OUTPUT_DIR",
    "APPLYKIT_RETRY_MAX_ATTEMPTS",
    "APPLYKIT_RETRY_BASE_SECONDS",
    "APPLYKIT_RETRY_MAX_SECONDS",
    "OPENROUTER_API_KEY",
    "ROUTER_API_KEY",
    "OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
    "GEMINI_API_KEY",
)


class StubProviderClient:
    """Provider client replaying scripted replies; exceptions in the script are raised."""

    def __init__(self, name: str, replies: list[str | Exception] | None = None) -> None:
        self.name = name
        self.replies = list(replies or [])
        self.requests: list[ProviderRequest] = []
        self._lock = threading.Lock()

    def complete(self, request: ProviderRequest) -> ProviderResponse:
        with self._lock:
            self.requests.append(request)
            reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        return ProviderResponse(text=reply, provider=self.name, model=request.model)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch) -> None:
    """Keep developer environment variables out of settings under test."""

    for name in _APPLYKIT_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def store(tmp_path: Path) -> Iterator[JobStore]:
    job_store = JobStore(tmp_path / "jobs.db")
    job_store.init_schema()
    yield job_store
    job_store.close()


@pytest.fixture()
def build_context(tmp_path: Path) -> Callable[..., HandlerContext]:
    """Factory for a handler context whose providers are stubs."""

    def _build(
        store: JobStore,
        *clients: StubProviderClient,
        notifier: Notifier | None = None,
        retry_policies: RetryPolicies | None = None,
        sleeps: list[float] | None = None,
    ) -> HandlerContext:
        registry = ProviderRegistry(api_keys={})
        for client in clients:
            registry.register(client.name, client)
        recorded = sleeps if sleeps is not None else []
        return HandlerContext(
            store=store,
            orchestrator=ProviderOrchestrator(registry),
            renderer=JsonDocumentRenderer(),
            storage=LocalBlobStorage(tmp_path / "artifacts"),
            settings_provider=StaticSettingsProvider(),
            notifier=notifier or StoreNotifier(store),
            retry_policies=retry_policies or RetryPolicies(),
            sleep=recorded.append,
        )

    return _build


@pytest.fixture()
def build_processor() -> Callable[..., JobProcessor]:
    def _build(store: JobStore, context: HandlerContext, **kwargs) -> JobProcessor:
        return JobProcessor(
            store=store,
            context=context,
            worker_id="test-worker",
            poll_interval_seconds=0.01,
            **kwargs,
        )

    return _build


def fenced_json(value: object) -> str:
    return f"Sure! Here it is:\n```json\n{json.dumps(value)}\n```"
