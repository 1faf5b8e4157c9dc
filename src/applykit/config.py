"""Runtime configuration for the job pipeline and provider orchestration."""

from __future__ import annotations

import os
import socket
from dataclasses import dataclass, field
from pathlib import Path

from applykit.llm.models import (
    FALLBACK_MODEL,
    FALLBACK_PROVIDER,
    FREE_TIER_MODEL,
    FREE_TIER_PROVIDER,
    ProviderSettings,
)

API_KEY_ENV_VARS: dict[str, str] = {
    "openrouter": "OPENROUTER_API_KEY",
    "requesty": "ROUTER_API_KEY",
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "google": "GEMINI_API_KEY",
}


@dataclass(slots=True)
class WorkerSettings:
    """Poll loop and inline execution settings."""

    poll_interval_seconds: float = 5.0
    batch_size: int = 5
    inline_timeout_seconds: float = 60.0
    worker_id: str = field(default_factory=lambda: f"{socket.gethostname()}:{os.getpid()}")


@dataclass(slots=True)
class LlmSettings:
    """Provider selection, credentials, and HTTP behavior."""

    default_provider: str = FREE_TIER_PROVIDER
    default_model: str = FREE_TIER_MODEL
    fallback_provider: str = FALLBACK_PROVIDER
    fallback_model: str = FALLBACK_MODEL
    api_keys: dict[str, str] = field(default_factory=dict)
    timeout_seconds: float = 0.0
    bypass_token_limits: bool = False
    token_limits: dict[str, int] = field(default_factory=dict)

    def default_provider_settings(self) -> ProviderSettings:
        """Provider settings used when an owner has none stored."""

        return ProviderSettings(
            provider=self.default_provider,
            model=self.default_model,
            token_limits=dict(self.token_limits),
            bypass_token_limits=self.bypass_token_limits,
        )


@dataclass(slots=True)
class StorageSettings:
    """Local artifact output settings."""

    output_dir: Path = Path("applykit-output")


@dataclass(slots=True)
class RetrySettings:
    """Default in-claim retry policy for transient provider failures."""

    max_attempts: int = 1
    base_seconds: float = 2.0
    max_seconds: float = 60.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".applykit.db")
    worker: WorkerSettings = field(default_factory=WorkerSettings)
    llm: LlmSettings = field(default_factory=LlmSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("APPLYKIT_DB_PATH", ".applykit.db")),
            worker=WorkerSettings(
                poll_interval_seconds=float(
                    os.getenv("APPLYKIT_POLL_INTERVAL_SECONDS", "5.0"),
                ),
                batch_size=int(os.getenv("APPLYKIT_BATCH_SIZE", "5")),
                inline_timeout_seconds=float(
                    os.getenv("APPLYKIT_INLINE_TIMEOUT_SECONDS", "60"),
                ),
                worker_id=os.getenv("APPLYKIT_WORKER_ID", "").strip()
                or f"{socket.gethostname()}:{os.getpid()}",
            ),
            llm=LlmSettings(
                default_provider=os.getenv("APPLYKIT_DEFAULT_PROVIDER", FREE_TIER_PROVIDER),
                default_model=os.getenv("APPLYKIT_DEFAULT_MODEL", FREE_TIER_MODEL),
                fallback_provider=os.getenv("APPLYKIT_FALLBACK_PROVIDER", FALLBACK_PROVIDER),
                fallback_model=os.getenv("APPLYKIT_FALLBACK_MODEL", FALLBACK_MODEL),
                api_keys=_collect_api_keys(),
                timeout_seconds=float(os.getenv("APPLYKIT_PROVIDER_TIMEOUT_SECONDS", "0")),
                bypass_token_limits=_env_bool("APPLYKIT_BYPASS_TOKEN_LIMITS", default=False),
                token_limits=_collect_token_limit_overrides(),
            ),
            storage=StorageSettings(
                output_dir=Path(os.getenv("APPLYKIT_OUTPUT_DIR", "applykit-output")),
            ),
            retry=RetrySettings(
                max_attempts=int(os.getenv("APPLYKIT_RETRY_MAX_ATTEMPTS", "1")),
                base_seconds=float(os.getenv("APPLYKIT_RETRY_BASE_SECONDS", "2.0")),
                max_seconds=float(os.getenv("APPLYKIT_RETRY_MAX_SECONDS", "60.0")),
            ),
        )

    def validate(self) -> None:
        """Raise ``ValueError`` naming the offending variable for invalid values."""

        if self.worker.poll_interval_seconds <= 0:
            raise ValueError("APPLYKIT_POLL_INTERVAL_SECONDS must be > 0.")
        if self.worker.batch_size <= 0:
            raise ValueError("APPLYKIT_BATCH_SIZE must be a positive integer.")
        if self.worker.inline_timeout_seconds <= 0:
            raise ValueError("APPLYKIT_INLINE_TIMEOUT_SECONDS must be > 0.")
        if not self.worker.worker_id:
            raise ValueError("APPLYKIT_WORKER_ID must not be empty.")
        if not self.llm.default_provider.strip() or not self.llm.default_model.strip():
            raise ValueError("APPLYKIT_DEFAULT_PROVIDER and APPLYKIT_DEFAULT_MODEL are required.")
        if not self.llm.fallback_provider.strip() or not self.llm.fallback_model.strip():
            raise ValueError(
                "APPLYKIT_FALLBACK_PROVIDER and APPLYKIT_FALLBACK_MODEL are required.",
            )
        if self.llm.timeout_seconds < 0:
            raise ValueError("APPLYKIT_PROVIDER_TIMEOUT_SECONDS must be >= 0 (0 disables it).")
        if self.retry.max_attempts < 1:
            raise ValueError("APPLYKIT_RETRY_MAX_ATTEMPTS must be >= 1.")
        if self.retry.base_seconds < 0:
            raise ValueError("APPLYKIT_RETRY_BASE_SECONDS must be >= 0.")
        if self.retry.max_seconds < self.retry.base_seconds:
            raise ValueError("APPLYKIT_RETRY_MAX_SECONDS must be >= APPLYKIT_RETRY_BASE_SECONDS.")


def _collect_api_keys() -> dict[str, str]:
    keys: dict[str, str] = {}
    for provider, env_name in API_KEY_ENV_VARS.items():
        value = os.getenv(env_name, "").strip()
        if value:
            keys[provider] = value
    return keys


def _collect_token_limit_overrides() -> dict[str, int]:
    raw = os.getenv("APPLYKIT_TOKEN_LIMITS", "").strip()
    if not raw:
        return {}

    overrides: dict[str, int] = {}
    for part in raw.split(","):
        token = part.strip()
        if not token:
            continue
        if "|" not in token:
            raise ValueError(
                "Invalid APPLYKIT_TOKEN_LIMITS entry: "
                f"{token!r}. Expected format '<use_case>|<tokens>'.",
            )
        use_case, tokens_raw = token.rsplit("|", 1)
        use_case = use_case.strip()
        tokens_raw = tokens_raw.strip()
        try:
            tokens = int(tokens_raw)
        except ValueError as error:
            raise ValueError(
                f"Invalid APPLYKIT_TOKEN_LIMITS value for {use_case!r}: {tokens_raw!r}",
            ) from error
        if tokens <= 0:
            raise ValueError(
                f"Invalid APPLYKIT_TOKEN_LIMITS value for {use_case!r}: {tokens!r} (must be > 0)",
            )
        overrides[use_case] = tokens
    return overrides


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
