"""One logical "ask the model" call with truncation, fallback, and repair."""

from __future__ import annotations

import logging

from applykit.llm.models import (
    FALLBACK_MODEL,
    FALLBACK_PROVIDER,
    AskResult,
    ProviderRequest,
    ProviderSettings,
)
from applykit.llm.providers import ProviderRegistry
from applykit.llm.repair import repair_json
from applykit.llm.tokens import (
    calculate_output_tokens,
    estimate_cost,
    estimate_tokens,
    fit_prompt,
)

logger = logging.getLogger(__name__)

DEFAULT_TEMPERATURE = 0.2


class ProviderOrchestrator:
    """Size, send, and normalize one model request.

    The primary provider comes from the caller's ``ProviderSettings``. Any failure there
    triggers exactly one attempt against the fixed fallback provider; when that fails
    too, the primary error is raised.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        *,
        fallback_provider: str = FALLBACK_PROVIDER,
        fallback_model: str = FALLBACK_MODEL,
        temperature: float | None = DEFAULT_TEMPERATURE,
    ) -> None:
        self.registry = registry
        self.fallback_provider = fallback_provider
        self.fallback_model = fallback_model
        self.temperature = temperature

    def ask(  # noqa: PLR0913
        self,
        prompt: str,
        system_prompt: str | None = None,
        settings: ProviderSettings | None = None,
        use_case: str = "default",
        bypass_limits: bool | None = None,
        *,
        expect_json: bool = True,
    ) -> AskResult:
        """Run the prompt and return the normalized response.

        ``bypass_limits`` defaults to the flag carried by ``settings``. With
        ``expect_json`` the text goes through the repair ladder and ``RepairError``
        propagates when it cannot be recovered.
        """

        settings = settings or ProviderSettings.free_tier()
        bypass = settings.bypass_token_limits if bypass_limits is None else bypass_limits

        try:
            result = self._attempt(
                provider=settings.provider,
                model=settings.model,
                prompt=prompt,
                system_prompt=system_prompt,
                settings=settings,
                use_case=use_case,
                bypass=bypass,
                used_fallback=False,
            )
        except Exception as primary_error:
            logger.warning(
                "Primary provider %s/%s failed (%s); retrying with fallback %s/%s",
                settings.provider,
                settings.model,
                primary_error,
                self.fallback_provider,
                self.fallback_model,
            )
            try:
                result = self._attempt(
                    provider=self.fallback_provider,
                    model=self.fallback_model,
                    prompt=prompt,
                    system_prompt=system_prompt,
                    settings=settings,
                    use_case=use_case,
                    bypass=bypass,
                    used_fallback=True,
                )
            except Exception as fallback_error:
                logger.error(
                    "Fallback provider %s/%s failed too: %s",
                    self.fallback_provider,
                    self.fallback_model,
                    fallback_error,
                )
                raise primary_error from fallback_error

        if expect_json:
            repaired = repair_json(result.text)
            result.text = repaired.text
            result.value = repaired.value
            result.repair_stage = repaired.stage
        return result

    def _attempt(  # noqa: PLR0913
        self,
        *,
        provider: str,
        model: str,
        prompt: str,
        system_prompt: str | None,
        settings: ProviderSettings,
        use_case: str,
        bypass: bool,
        used_fallback: bool,
    ) -> AskResult:
        client = self.registry.get(provider)
        fitted = fit_prompt(prompt, model, bypass_limits=bypass)
        input_tokens = estimate_tokens(fitted) + estimate_tokens(system_prompt or "")
        max_output_tokens = calculate_output_tokens(
            model,
            input_tokens,
            use_case,
            user_preference=settings.token_limit_for(use_case),
            bypass_limits=bypass,
        )
        logger.info(
            "Calling %s/%s for %s: ~%d input tokens, %d max output tokens",
            provider,
            model,
            use_case,
            input_tokens,
            max_output_tokens,
        )
        response = client.complete(
            ProviderRequest(
                model=model,
                prompt=fitted,
                system_prompt=system_prompt,
                max_output_tokens=max_output_tokens,
                temperature=self.temperature,
            ),
        )
        output_tokens = (
            response.output_tokens
            if response.output_tokens is not None
            else estimate_tokens(response.text)
        )
        return AskResult(
            text=response.text,
            provider=response.provider,
            model=model,
            used_fallback=used_fallback,
            truncated=fitted != prompt,
            input_tokens_estimate=input_tokens,
            max_output_tokens=max_output_tokens,
            cost_estimate_usd=estimate_cost(
                model,
                response.input_tokens if response.input_tokens is not None else input_tokens,
                output_tokens,
            ),
        )
