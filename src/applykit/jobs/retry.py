"""Per-job-type retry policy for transient provider failures.

Retries happen inside one claim: the job stays ``processing`` between attempts, so
the store's state machine never gains a failed -> pending edge.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

from applykit.jobs.models import JobType
from applykit.llm.failure_classifier import classify_error

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Bounded exponential backoff with full jitter.

    ``max_attempts=1`` means exactly one attempt.
    """

    max_attempts: int = 1
    base_seconds: float = 2.0
    max_seconds: float = 60.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    def delay_for(self, retry_number: int, rng: random.Random | None = None) -> float:
        """Sleep before retry ``retry_number`` (1-based)."""

        ceiling = min(self.max_seconds, self.base_seconds * (2 ** max(retry_number - 1, 0)))
        return (rng or random).uniform(0, ceiling)

    def should_retry(self, error: BaseException, attempt: int) -> bool:
        """Only provider errors classified transient are retried."""

        if attempt >= self.max_attempts:
            return False
        classification = classify_error(error)
        return classification is not None and classification.is_transient

    def run(
        self,
        operation: Callable[[], T],
        *,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
    ) -> T:
        attempt = 1
        while True:
            try:
                return operation()
            except Exception as error:
                if not self.should_retry(error, attempt):
                    raise
                delay = self.delay_for(attempt, rng)
                logger.warning(
                    "Transient failure on attempt %d/%d, retrying in %.1fs: %s",
                    attempt,
                    self.max_attempts,
                    delay,
                    error,
                )
                sleep(delay)
                attempt += 1


EXACTLY_ONCE = RetryPolicy()


@dataclass(slots=True)
class RetryPolicies:
    """Retry policy lookup by job type with a shared default."""

    default: RetryPolicy = EXACTLY_ONCE
    overrides: dict[str, RetryPolicy] = field(default_factory=dict)

    def for_type(self, job_type: JobType | str) -> RetryPolicy:
        key = job_type.value if isinstance(job_type, JobType) else job_type
        return self.overrides.get(key, self.default)
