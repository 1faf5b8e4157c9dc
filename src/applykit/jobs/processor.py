"""Poll loop that claims pending jobs and runs their handlers."""

from __future__ import annotations

import logging
import signal
import threading
import time
from collections.abc import Iterator
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass

from applykit.errors import InvalidTransitionError, describe_failure
from applykit.jobs.handlers import HANDLERS, HandlerContext, JobHandler, get_handler
from applykit.jobs.models import JobRecord, JobStatus, NotificationRecord, NotificationType
from applykit.jobs.repository import JobStore

logger = logging.getLogger(__name__)

UNFINISHED_HANDLER_ERROR = "Unexpected error: handler returned without completing the job"


@dataclass(slots=True)
class WorkerRunSummary:
    """Aggregate processor counters for CLI reporting."""

    cycles: int = 0
    skipped_cycles: int = 0
    claimed: int = 0
    completed: int = 0
    failed: int = 0
    idle_polls: int = 0

    def add(self, other: WorkerRunSummary) -> None:
        self.cycles += other.cycles
        self.skipped_cycles += other.skipped_cycles
        self.claimed += other.claimed
        self.completed += other.completed
        self.failed += other.failed
        self.idle_polls += other.idle_polls


@dataclass(slots=True)
class InlineRunResult:
    """Outcome of ``JobProcessor.process_inline``."""

    job: JobRecord | None
    claimed: bool
    timed_out: bool


class JobProcessor:
    """Claims bounded batches and fans handlers out on a thread pool.

    A cycle never overlaps another cycle of the same processor. Several processors
    (threads or processes) may share one store; the store's conditional claim keeps
    them from running the same job twice.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        store: JobStore,
        context: HandlerContext,
        worker_id: str,
        batch_size: int = 5,
        poll_interval_seconds: float = 5.0,
        handlers: dict[str, JobHandler] | None = None,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be > 0")
        self.store = store
        self.context = context
        self.worker_id = worker_id
        self.batch_size = batch_size
        self.poll_interval_seconds = poll_interval_seconds
        self.handlers = handlers if handlers is not None else dict(HANDLERS)
        self._cycle_lock = threading.Lock()
        self._stop_requested = False

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def request_stop(self, *, reason: str = "requested") -> None:
        """Ask the loop to exit after the current cycle."""

        self._stop_requested = True
        logger.info("Worker %s stop requested (%s)", self.worker_id, reason)

    def poll_once(self) -> WorkerRunSummary:
        """Run one claim-and-dispatch cycle, or skip it if a cycle is in progress."""

        summary = WorkerRunSummary()
        if not self._cycle_lock.acquire(blocking=False):
            logger.debug("Previous poll cycle still running; skipping tick")
            summary.skipped_cycles = 1
            return summary

        try:
            summary.cycles = 1
            jobs = self.store.claim_batch(self.batch_size, worker_id=self.worker_id)
            if not jobs:
                summary.idle_polls = 1
                return summary

            summary.claimed = len(jobs)
            logger.info("Worker %s claimed %d job(s)", self.worker_id, len(jobs))
            with ThreadPoolExecutor(
                max_workers=len(jobs),
                thread_name_prefix="applykit-job",
            ) as pool:
                statuses = list(pool.map(self.process_job, jobs))
            for status in statuses:
                if status == JobStatus.COMPLETED:
                    summary.completed += 1
                elif status == JobStatus.FAILED:
                    summary.failed += 1
            return summary
        finally:
            self._cycle_lock.release()

    def process_job(self, job: JobRecord) -> JobStatus | None:
        """Run the handler for one claimed job and guarantee it leaves ``processing``."""

        try:
            handler = get_handler(job.job_type, self.handlers)
            handler(job, self.context)
        except Exception as error:
            logger.exception("Handler for job %s (%s) raised", job.job_id, job.job_type)
            return self._fail_unfinished(job, describe_failure(error), error_type=type(error).__name__)

        current = self.store.get(job.job_id)
        if current is None:
            return None
        if current.status == JobStatus.PROCESSING:
            logger.error("Handler for job %s returned without completing it", job.job_id)
            return self._fail_unfinished(job, UNFINISHED_HANDLER_ERROR, error_type="UnfinishedHandler")
        return current.status

    def run_loop(self, *, max_cycles: int | None = None) -> WorkerRunSummary:
        """Poll on a fixed interval until stopped or ``max_cycles`` cycles ran.

        Ticks that fall while a cycle is still running are skipped, not queued.
        """

        aggregate = WorkerRunSummary()
        next_tick = time.monotonic()
        with self._signal_handlers():
            while not self._stop_requested:
                aggregate.add(self.poll_once())
                if max_cycles is not None and aggregate.cycles >= max_cycles:
                    break
                if self._stop_requested:
                    break

                next_tick += self.poll_interval_seconds
                now = time.monotonic()
                if now > next_tick:
                    missed = int((now - next_tick) // self.poll_interval_seconds) + 1
                    aggregate.skipped_cycles += missed
                    logger.debug("Poll cycle overran; skipping %d tick(s)", missed)
                    next_tick += missed * self.poll_interval_seconds
                self._sleep_with_stop(next_tick - now)

        logger.info(
            "Worker %s stopped: cycles=%d claimed=%d completed=%d failed=%d",
            self.worker_id,
            aggregate.cycles,
            aggregate.claimed,
            aggregate.completed,
            aggregate.failed,
        )
        return aggregate

    def process_inline(self, job_id: str, timeout_seconds: float) -> InlineRunResult:
        """Claim and run one specific job now, waiting at most ``timeout_seconds``.

        On timeout the job is left as it is (normally ``processing``) and the handler
        thread keeps running in the background.
        """

        outcome: dict[str, object] = {"claimed": False}

        def _target() -> None:
            try:
                record = self.store.claim(job_id, worker_id=self.worker_id)
                if record is None:
                    return
                outcome["claimed"] = True
                self.process_job(record)
            except Exception as error:  # re-raised in the caller thread
                outcome["error"] = error

        thread = threading.Thread(
            target=_target,
            name=f"applykit-inline-{job_id[:8]}",
            daemon=True,
        )
        thread.start()
        thread.join(timeout_seconds)
        if thread.is_alive():
            logger.warning(
                "Inline processing of job %s exceeded %.1fs; leaving it as-is",
                job_id,
                timeout_seconds,
            )
            return InlineRunResult(
                job=self.store.get(job_id),
                claimed=bool(outcome["claimed"]),
                timed_out=True,
            )

        error = outcome.get("error")
        if isinstance(error, Exception):
            raise error
        return InlineRunResult(
            job=self.store.get(job_id),
            claimed=bool(outcome["claimed"]),
            timed_out=False,
        )

    def _fail_unfinished(self, job: JobRecord, message: str, *, error_type: str) -> JobStatus | None:
        try:
            self.store.fail(job.job_id, message, details={"error_type": error_type, "implicit": True})
        except InvalidTransitionError:
            current = self.store.get(job.job_id)
            logger.warning(
                "Job %s already left processing (%s); not failing it",
                job.job_id,
                current.status.value if current else "missing",
            )
            return current.status if current else None
        self.context.notify(
            NotificationRecord(
                job_id=job.job_id,
                owner_id=job.owner_id,
                notification_type=NotificationType.FAILED,
                title="Job Failed",
                message=f"Your {job.job_type} job could not be completed. Please try again.",
                metadata={"error": message},
            ),
        )
        return JobStatus.FAILED

    def _sleep_with_stop(self, seconds: float) -> None:
        deadline = time.monotonic() + seconds
        while not self._stop_requested and time.monotonic() < deadline:
            time.sleep(min(0.1, max(0.0, deadline - time.monotonic())))

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if threading.current_thread() is not threading.main_thread():
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            self.request_stop(reason=name)

        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)
