"""Value types shared by provider clients and the orchestrator."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

FREE_TIER_PROVIDER = "openrouter"
FREE_TIER_MODEL = "mistralai/devstral-small-2505:free"
FALLBACK_PROVIDER = "openrouter"
FALLBACK_MODEL = "anthropic/claude-sonnet-4"


class FailureClass(str, Enum):
    """Normalized provider failure classes used by the retry policy."""

    TIMEOUT = "timeout"
    PROVIDER_TRANSIENT = "provider_transient"
    PROVIDER_NON_RETRYABLE = "provider_non_retryable"
    BILLING_OR_QUOTA = "billing_or_quota"
    ACCESS_OR_AUTH = "access_or_auth"
    MODEL_NOT_AVAILABLE = "model_not_available"

    @property
    def is_transient(self) -> bool:
        return self in {FailureClass.TIMEOUT, FailureClass.PROVIDER_TRANSIENT}


@dataclass(frozen=True, slots=True)
class ProviderSettings:
    """Per-owner provider choice, resolved once per job and passed to every call."""

    provider: str = FREE_TIER_PROVIDER
    model: str = FREE_TIER_MODEL
    token_limits: dict[str, int] = field(default_factory=dict)
    bypass_token_limits: bool = False

    @classmethod
    def free_tier(cls) -> ProviderSettings:
        return cls()

    def token_limit_for(self, use_case: str) -> int | None:
        limit = self.token_limits.get(use_case)
        if limit is None or limit <= 0:
            return None
        return limit


@dataclass(slots=True)
class ProviderRequest:
    """One chat-style completion request."""

    model: str
    prompt: str
    system_prompt: str | None
    max_output_tokens: int
    temperature: float | None = None


@dataclass(slots=True)
class ProviderResponse:
    """Raw completion text and usage reported by the provider."""

    text: str
    provider: str
    model: str
    input_tokens: int | None = None
    output_tokens: int | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class AskResult:
    """Outcome of one orchestrated model call."""

    text: str
    provider: str
    model: str
    used_fallback: bool
    truncated: bool
    input_tokens_estimate: int
    max_output_tokens: int
    value: Any = None
    repair_stage: str | None = None
    cost_estimate_usd: float | None = None
