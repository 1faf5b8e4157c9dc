"""Exception hierarchy for the job pipeline and provider orchestration."""

from __future__ import annotations


class ApplykitError(Exception):
    """Base class for pipeline errors."""


class ConfigurationError(ApplykitError):
    """Unknown job type, unknown provider, or other setup problem."""


class GenerationError(ApplykitError):
    """The model could not be reached on the primary or the fallback provider."""


class PersistenceError(ApplykitError):
    """Rendering or blob storage failed; always fatal to the job."""


class InvalidTransitionError(ApplykitError):
    """A status transition was requested from a state that does not allow it."""


class JobNotFoundError(ApplykitError):
    pass


class InvalidJobInputError(ApplykitError):
    """The job input payload is missing a required field."""


class ProviderError(GenerationError):
    """One provider call failed."""

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        model: str,
        status_code: int | None = None,
        transient: bool = False,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.model = model
        self.status_code = status_code
        self.transient = transient


class RepairError(ApplykitError):
    """Every repair stage failed to produce parseable structured output."""

    def __init__(self, message: str, *, stages: tuple[str, ...] = ()) -> None:
        super().__init__(message)
        self.stages = stages


def describe_failure(error: BaseException) -> str:
    """Human-readable job error message prefixed by its category."""

    message = str(error).strip() or type(error).__name__
    if isinstance(error, RepairError):
        return f"Parse failed: {message}"
    if isinstance(error, GenerationError):
        return f"Generation failed: {message}"
    if isinstance(error, PersistenceError):
        return f"Persistence failed: {message}"
    if isinstance(error, ConfigurationError):
        return f"Configuration error: {message}"
    if isinstance(error, InvalidJobInputError):
        return f"Invalid input: {message}"
    return f"Unexpected error: {message}"
