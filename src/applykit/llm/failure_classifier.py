"""Deterministic provider failure classification for the job retry policy."""

from __future__ import annotations

from dataclasses import dataclass

from applykit.errors import ProviderError
from applykit.llm.models import FailureClass

PROVIDER_FAILURE_CLASSIFIER_VERSION = 1

TRANSIENT_STATUS_CODES: frozenset[int] = frozenset({408, 425, 429, 500, 502, 503, 504, 529})

_BILLING_OR_QUOTA_PATTERNS: tuple[str, ...] = (
    "quota",
    "resource_exhausted",
    "insufficient",
    "billing",
    "payment",
    "credits",
    "usage limit",
    "exceeded",
)
_ACCESS_OR_AUTH_PATTERNS: tuple[str, ...] = (
    "unauthorized",
    "forbidden",
    "permission denied",
    "invalid api key",
    "invalid x-api-key",
    "authentication",
    "no auth credentials",
)
_MODEL_NOT_AVAILABLE_PATTERNS: tuple[str, ...] = (
    "model not found",
    "unknown model",
    "unsupported model",
    "invalid model",
    "is not a valid model",
    "model is not available",
    "not available in your region",
)
_RATE_LIMIT_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "too many requests",
    "rate limit",
    "429",
    "please retry",
    "try again later",
    "overloaded",
)
_GENERIC_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "temporarily unavailable",
    "temporary failure",
    "connection reset",
    "connection refused",
    "network error",
    "could not resolve host",
    "bad gateway",
    "dns",
)
_TIMEOUT_PATTERNS: tuple[str, ...] = (
    "timed out",
    "timeout",
)


@dataclass(slots=True)
class ProviderFailureClassification:
    """Normalized failure classification result."""

    failure_class: FailureClass
    reason_code: str
    matched_rule: str
    matched_pattern: str | None

    @property
    def is_transient(self) -> bool:
        return self.failure_class.is_transient

    def to_event_details(self) -> dict[str, object]:
        """Serialize classifier diagnostics for job events."""

        return {
            "classifier_version": PROVIDER_FAILURE_CLASSIFIER_VERSION,
            "failure_class": self.failure_class.value,
            "reason_code": self.reason_code,
            "matched_rule": self.matched_rule,
            "matched_pattern": self.matched_pattern,
        }


def classify_provider_failure(
    *,
    provider: str,
    message: str,
    status_code: int | None = None,
) -> ProviderFailureClassification:
    """Classify one failed provider call into a deterministic retry class."""

    haystack = message.lower()

    pattern = _first_match(haystack, _BILLING_OR_QUOTA_PATTERNS)
    if pattern is not None or status_code == 402:
        return ProviderFailureClassification(
            failure_class=FailureClass.BILLING_OR_QUOTA,
            reason_code=f"{provider}_billing_or_quota",
            matched_rule="billing_or_quota",
            matched_pattern=pattern,
        )

    pattern = _first_match(haystack, _ACCESS_OR_AUTH_PATTERNS)
    if pattern is not None or status_code in (401, 403):
        return ProviderFailureClassification(
            failure_class=FailureClass.ACCESS_OR_AUTH,
            reason_code=f"{provider}_access_or_auth",
            matched_rule="access_or_auth",
            matched_pattern=pattern,
        )

    pattern = _first_match(haystack, _MODEL_NOT_AVAILABLE_PATTERNS)
    if pattern is not None:
        return ProviderFailureClassification(
            failure_class=FailureClass.MODEL_NOT_AVAILABLE,
            reason_code=f"{provider}_model_not_available",
            matched_rule="model_not_available",
            matched_pattern=pattern,
        )

    pattern = _first_match(haystack, _TIMEOUT_PATTERNS)
    if pattern is not None:
        return ProviderFailureClassification(
            failure_class=FailureClass.TIMEOUT,
            reason_code=f"{provider}_timeout",
            matched_rule="timeout",
            matched_pattern=pattern,
        )

    pattern = _first_match(haystack, _RATE_LIMIT_TRANSIENT_PATTERNS)
    if pattern is not None or status_code == 429:
        return ProviderFailureClassification(
            failure_class=FailureClass.PROVIDER_TRANSIENT,
            reason_code=f"{provider}_rate_limit_transient",
            matched_rule="rate_limit_transient",
            matched_pattern=pattern,
        )

    pattern = _first_match(haystack, _GENERIC_TRANSIENT_PATTERNS)
    transient_status = status_code in TRANSIENT_STATUS_CODES
    if pattern is not None or transient_status:
        return ProviderFailureClassification(
            failure_class=FailureClass.PROVIDER_TRANSIENT,
            reason_code=f"{provider}_provider_transient",
            matched_rule=(
                "transient_status_code" if transient_status and pattern is None else "generic_transient"
            ),
            matched_pattern=pattern,
        )

    return ProviderFailureClassification(
        failure_class=FailureClass.PROVIDER_NON_RETRYABLE,
        reason_code=f"{provider}_provider_non_retryable",
        matched_rule="fallback_non_retryable",
        matched_pattern=None,
    )


def classify_error(error: BaseException) -> ProviderFailureClassification | None:
    """Classify a provider error, or return ``None`` for any other exception."""

    if not isinstance(error, ProviderError):
        return None
    return classify_provider_failure(
        provider=error.provider,
        message=str(error),
        status_code=error.status_code,
    )


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
