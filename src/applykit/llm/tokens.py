"""Token budgeting: estimation, per-model ceilings, truncation, and output sizing."""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 3.5
SYSTEM_PROMPT_RESERVE_TOKENS = 150
PROMPT_TEMPLATE_RESERVE_TOKENS = 850
PROMPT_RESERVE_TOKENS = SYSTEM_PROMPT_RESERVE_TOKENS + PROMPT_TEMPLATE_RESERVE_TOKENS
OUTPUT_SAFETY_BUFFER_TOKENS = 1000
TOKEN_WARNING_THRESHOLD = 25_000

TRUNCATION_MARKER = "[...content truncated to meet token limits...]"
_TRUNCATION_JOINER = f"\n\n{TRUNCATION_MARKER}\n\n"
HEAD_SHARE = 0.7

_PUNCTUATION = re.compile(r"[.,!?;:]")
_WHITESPACE_RUN = re.compile(r"\s+")
_NUMBER_RUN = re.compile(r"\d+")
_MODEL_KEY_CHARS = re.compile(r"[^a-z0-9-]")


@dataclass(frozen=True, slots=True)
class ModelTokenConfig:
    """Output floor and combined context ceiling for one model family."""

    base_tokens: int
    max_tokens: int
    cost_per_1k_tokens: float | None = None
    supports_long_context: bool = False


DEFAULT_MODEL_KEY = "default"
ABSOLUTE_DEFAULT_CONFIG = ModelTokenConfig(base_tokens=4096, max_tokens=32_000)

MODEL_TOKEN_CONFIGS: dict[str, ModelTokenConfig] = {
    "claude-opus-4": ModelTokenConfig(4096, 200_000, 0.015, True),
    "claude-sonnet-4": ModelTokenConfig(4096, 200_000, 0.003, True),
    "claude-3-5-sonnet": ModelTokenConfig(4096, 200_000, 0.003, True),
    "claude-3-opus": ModelTokenConfig(4096, 200_000, 0.015, True),
    "claude-3-sonnet": ModelTokenConfig(4096, 200_000, 0.003, True),
    "claude-3-haiku": ModelTokenConfig(4096, 200_000, 0.00025, True),
    "gpt-4": ModelTokenConfig(4096, 8192, 0.03),
    "gpt-4-turbo": ModelTokenConfig(4096, 128_000, 0.01, True),
    "gpt-4o": ModelTokenConfig(4096, 128_000, 0.005, True),
    "gpt-3.5-turbo": ModelTokenConfig(4096, 16_384, 0.0005),
    "gemini-pro": ModelTokenConfig(4096, 32_000, 0.0005),
    "gemini-1.5-pro": ModelTokenConfig(8192, 1_048_576, 0.00125, True),
    "gemini-1.5-flash": ModelTokenConfig(8192, 1_048_576, 0.00025, True),
    "gemini-2.5-flash": ModelTokenConfig(8192, 1_048_576, 0.0003, True),
    "devstral-small": ModelTokenConfig(4096, 128_000, 0.0, True),
    "kimi-k2": ModelTokenConfig(4096, 64_000, 0.0),
    DEFAULT_MODEL_KEY: ABSOLUTE_DEFAULT_CONFIG,
}

USE_CASE_MULTIPLIERS: dict[str, float] = {
    "resume_parsing": 2.5,
    "resumeParsing": 2.5,
    "resume_generation": 2.0,
    "resumeGeneration": 2.0,
    "cover_letter": 1.5,
    "coverLetter": 1.5,
    "job_matching": 1.2,
    "jobMatching": 1.2,
    "document_summary": 0.8,
    "profile_optimization": 1.8,
    "application_qa": 1.3,
    "suggested_questions": 0.5,
    "general": 1.0,
    "default": 1.0,
}


def estimate_tokens(text: str) -> int:
    """Conservative token estimate for mixed prose.

    Punctuation, whitespace runs, and numbers over-segment in most tokenizers, so each
    adds a fraction of a token on top of the plain character ratio.
    """

    if not text:
        return 0
    base = math.ceil(len(text) / CHARS_PER_TOKEN)
    adjusted = (
        base
        + len(_PUNCTUATION.findall(text)) * 0.3
        + len(_WHITESPACE_RUN.findall(text)) * 0.2
        + len(_NUMBER_RUN.findall(text)) * 0.3
    )
    return math.ceil(adjusted)


def log_token_usage(source: str, text: str, overhead_tokens: int = 0) -> int:
    """Log an estimate for ``text`` plus fixed overhead and return the total."""

    text_tokens = estimate_tokens(text)
    total = text_tokens + overhead_tokens
    logger.debug(
        "%s: ~%d tokens (text) + %d tokens (overhead) = ~%d tokens, %d chars",
        source,
        text_tokens,
        overhead_tokens,
        total,
        len(text),
    )
    if total > TOKEN_WARNING_THRESHOLD:
        logger.warning("%s is using ~%d tokens, approaching model limits", source, total)
    return total


def get_model_token_config(model: str) -> ModelTokenConfig:
    """Resolve the token table entry for a model id.

    Exact key first, then the longest table key contained in the model id, then the
    table's default entry.
    """

    normalized = _normalize_model_key(model)
    keyed = {_normalize_model_key(key): config for key, config in MODEL_TOKEN_CONFIGS.items()}
    exact = keyed.get(normalized)
    if exact is not None and normalized != DEFAULT_MODEL_KEY:
        return exact
    matches = [key for key in keyed if key != DEFAULT_MODEL_KEY and key in normalized]
    if matches:
        return keyed[max(matches, key=len)]
    return MODEL_TOKEN_CONFIGS.get(DEFAULT_MODEL_KEY, ABSOLUTE_DEFAULT_CONFIG)


def model_token_ceiling(model: str) -> int:
    return get_model_token_config(model).max_tokens


def input_token_limit(model: str) -> int:
    """Tokens available to the prompt text once the fixed reserve is taken."""

    return model_token_ceiling(model) - PROMPT_RESERVE_TOKENS


def needs_truncation(text: str, model: str) -> bool:
    return estimate_tokens(text) + PROMPT_RESERVE_TOKENS > model_token_ceiling(model)


def truncate_middle_out(text: str, max_tokens: int) -> str:
    """Keep the head and tail of ``text`` so its estimate fits ``max_tokens``.

    The head gets 70% of the character budget and the tail the rest, joined by
    ``TRUNCATION_MARKER``. Text that already fits is returned unchanged.
    """

    if estimate_tokens(text) <= max_tokens:
        return text
    budget_tokens = max_tokens - estimate_tokens(_TRUNCATION_JOINER)
    if budget_tokens <= 0:
        raise ValueError(f"Token limit {max_tokens} is too small to hold the truncation marker.")

    char_budget = min(int(budget_tokens * CHARS_PER_TOKEN), len(text) - 1)
    while True:
        head_chars = int(char_budget * HEAD_SHARE)
        tail_chars = char_budget - head_chars
        tail = text[len(text) - tail_chars :] if tail_chars > 0 else ""
        candidate = text[:head_chars] + _TRUNCATION_JOINER + tail
        estimated = estimate_tokens(candidate)
        if estimated <= max_tokens or char_budget <= 0:
            logger.info(
                "Truncated text from %d to %d chars (~%d tokens, limit %d)",
                len(text),
                len(candidate),
                estimated,
                max_tokens,
            )
            return candidate
        char_budget = max(0, min(char_budget - 1, int(char_budget * max_tokens / estimated)))


def fit_prompt(text: str, model: str, *, bypass_limits: bool = False) -> str:
    """Truncate a prompt to the model ceiling minus the fixed prompt reserve."""

    if bypass_limits:
        log_token_usage("Input text (no truncation)", text)
        return text
    log_token_usage("Input text", text, PROMPT_RESERVE_TOKENS)
    if not needs_truncation(text, model):
        return text
    truncated = truncate_middle_out(text, input_token_limit(model))
    log_token_usage("Truncated text", truncated, PROMPT_RESERVE_TOKENS)
    return truncated


def calculate_output_tokens(
    model: str,
    input_tokens: int,
    use_case: str = "default",
    *,
    user_preference: int | None = None,
    bypass_limits: bool = False,
) -> int:
    """Output-token budget for one request."""

    config = get_model_token_config(model)
    if bypass_limits:
        return max(1, config.max_tokens - input_tokens - OUTPUT_SAFETY_BUFFER_TOKENS)
    if user_preference is not None and user_preference > 0:
        return min(user_preference, config.max_tokens)

    multiplier = USE_CASE_MULTIPLIERS.get(use_case, USE_CASE_MULTIPLIERS["default"])
    desired = math.ceil(max(config.base_tokens, input_tokens) * multiplier)
    desired = min(config.max_tokens, max(config.base_tokens, desired))
    if config.supports_long_context and desired < config.max_tokens * 0.5:
        desired = min(math.ceil(desired * 1.5), config.max_tokens)
    return desired


def estimate_cost(model: str, input_tokens: int, output_tokens: int) -> float | None:
    """USD estimate, or ``None`` when the model has no known price."""

    config = get_model_token_config(model)
    if config.cost_per_1k_tokens is None:
        return None
    return (input_tokens + output_tokens) / 1000 * config.cost_per_1k_tokens


def _normalize_model_key(model: str) -> str:
    return _MODEL_KEY_CHARS.sub("", model.strip().lower())
