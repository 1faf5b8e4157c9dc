"""Controllers for job queue and worker CLI commands."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any

from applykit.config import Settings
from applykit.jobs.models import JobRecord, JobStatus
from applykit.jobs.repository import JobStore
from applykit.jobs.services import JobService, PipelineRuntime, SubmitJob, build_runtime


@dataclass(slots=True)
class JobsEnqueueCommand:
    """CLI input for job enqueue."""

    db_path: Path | None
    owner_id: str
    job_type: str
    input_json: str | None
    input_file: Path | None
    metadata_json: str | None
    inline: bool = False
    timeout_seconds: float | None = None


@dataclass(slots=True)
class JobsInspectCommand:
    """CLI input for single-job inspection."""

    db_path: Path | None
    job_id: str


@dataclass(slots=True)
class JobsListCommand:
    """CLI input for job listing."""

    db_path: Path | None
    status: str | None
    owner_id: str | None
    limit: int


@dataclass(slots=True)
class JobsStaleCommand:
    """CLI input for listing jobs stuck in processing."""

    db_path: Path | None
    older_than_minutes: int


@dataclass(slots=True)
class WorkerRunCommand:
    """CLI input for worker execution."""

    db_path: Path | None
    once: bool
    max_cycles: int | None


@dataclass(slots=True)
class WorkerInlineCommand:
    """CLI input for processing one job immediately."""

    db_path: Path | None
    job_id: str
    timeout_seconds: float | None


class JobsCliController:
    """Coordinates queue, worker, and inspection CLI operations."""

    def enqueue(self, command: JobsEnqueueCommand) -> list[str]:
        payload = _load_input(command.input_json, command.input_file)
        metadata = (
            _parse_json_object(command.metadata_json, label="--metadata")
            if command.metadata_json
            else None
        )
        settings = _settings(command.db_path)
        with _runtime(settings) as runtime:
            result = JobService(runtime).submit(
                SubmitJob(
                    owner_id=command.owner_id,
                    job_type=command.job_type,
                    input=payload,
                    metadata=metadata,
                    inline=command.inline,
                    inline_timeout_seconds=command.timeout_seconds,
                ),
            )

        lines = [f"Job enqueued: job_id={result.job_id} type={command.job_type}"]
        if result.inline is not None and result.inline.timed_out:
            lines.append("Inline processing timed out; the job was left as-is.")
        if result.job is not None:
            lines.append(f"Status: {result.job.status.value}")
        return lines

    def status(self, command: JobsInspectCommand) -> list[str]:
        with _store(_settings(command.db_path)) as store:
            job = store.get(command.job_id)
            notifications = store.list_notifications(job_id=command.job_id) if job else []
        if job is None:
            return [f"Job not found: {command.job_id}"]

        lines = [
            f"Job: {job.job_id}",
            f"Owner: {job.owner_id}",
            f"Type: {job.job_type}",
            f"Status: {job.status.value}",
            f"Worker: {job.worker_id or '-'}",
            f"Created: {job.created_at.isoformat()}",
            f"Started: {_iso(job)}",
            f"Completed: {job.completed_at.isoformat() if job.completed_at else '-'}",
            f"Error: {job.error or '-'}",
        ]
        if job.result is not None:
            lines.append(f"Result: {json.dumps(job.result, ensure_ascii=False, sort_keys=True)}")
        for notification in notifications:
            lines.append(
                f"  notification {notification.notification_type.value}: "
                f"{notification.title} - {notification.message}",
            )
        return lines

    def list_jobs(self, command: JobsListCommand) -> list[str]:
        status_filter = _parse_status(command.status)
        with _store(_settings(command.db_path)) as store:
            jobs = store.list_jobs(
                status=status_filter,
                owner_id=command.owner_id,
                limit=command.limit,
            )

        lines = [f"Jobs: {len(jobs)}"]
        for job in jobs:
            lines.append(
                f"  {job.job_id} type={job.job_type} status={job.status.value} "
                f"owner={job.owner_id} created={job.created_at.isoformat()}",
            )
        return lines

    def events(self, command: JobsInspectCommand) -> list[str]:
        with _store(_settings(command.db_path)) as store:
            events = store.list_events(command.job_id)
        if not events:
            return [f"No events for job: {command.job_id}"]

        lines = [f"Events: {len(events)}"]
        for event in events:
            lines.append(
                f"  {event.created_at.isoformat()} {event.event_type} "
                f"{event.status_from.value if event.status_from else '-'} -> "
                f"{event.status_to.value if event.status_to else '-'}",
            )
        return lines

    def reset(self, command: JobsInspectCommand) -> list[str]:
        with _store(_settings(command.db_path)) as store:
            job = store.reset_job(command.job_id)
        return [f"Job reset to {job.status.value}: {job.job_id}"]

    def stale(self, command: JobsStaleCommand) -> list[str]:
        with _store(_settings(command.db_path)) as store:
            jobs = store.list_stale(older_than=timedelta(minutes=command.older_than_minutes))

        lines = [f"Stale processing jobs: {len(jobs)}"]
        for job in jobs:
            lines.append(
                f"  {job.job_id} type={job.job_type} worker={job.worker_id or '-'} "
                f"started={_iso(job)}",
            )
        return lines

    def run_worker(self, command: WorkerRunCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _runtime(settings) as runtime:
            summary = (
                runtime.processor.poll_once()
                if command.once
                else runtime.processor.run_loop(max_cycles=command.max_cycles)
            )

        return [
            "Worker summary: "
            f"cycles={summary.cycles} skipped={summary.skipped_cycles} "
            f"claimed={summary.claimed} completed={summary.completed} "
            f"failed={summary.failed} idle_polls={summary.idle_polls}",
        ]

    def run_inline(self, command: WorkerInlineCommand) -> list[str]:
        settings = _settings(command.db_path)
        timeout = (
            command.timeout_seconds
            if command.timeout_seconds is not None
            else settings.worker.inline_timeout_seconds
        )
        with _runtime(settings) as runtime:
            result = runtime.processor.process_inline(command.job_id, timeout)

        if result.job is None:
            return [f"Job not found: {command.job_id}"]
        if result.timed_out:
            return [
                f"Inline processing timed out after {timeout:g}s: "
                f"{command.job_id} status={result.job.status.value}",
            ]
        if not result.claimed:
            return [f"Job was not pending: {command.job_id} status={result.job.status.value}"]
        return [f"Job processed: {command.job_id} status={result.job.status.value}"]


def _settings(db_path: Path | None) -> Settings:
    settings = Settings.from_env(db_path=db_path)
    settings.validate()
    return settings


def _parse_status(raw: str | None) -> JobStatus | None:
    if raw is None:
        return None
    try:
        return JobStatus(raw.lower())
    except ValueError as error:
        raise ValueError(f"Unsupported job status: {raw!r}") from error


def _load_input(input_json: str | None, input_file: Path | None) -> dict[str, Any]:
    if input_file is not None:
        return _parse_json_object(input_file.read_text(encoding="utf-8"), label=str(input_file))
    if input_json is not None:
        return _parse_json_object(input_json, label="--input")
    raise ValueError("Job input is required: pass --input or --input-file.")


def _parse_json_object(raw: str, *, label: str) -> dict[str, Any]:
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as error:
        raise ValueError(f"{label} is not valid JSON: {error}") from error
    if not isinstance(value, dict):
        raise ValueError(f"{label} must be a JSON object.")
    return value


def _iso(job: JobRecord) -> str:
    return job.started_at.isoformat() if job.started_at else "-"


@contextmanager
def _store(settings: Settings) -> Iterator[JobStore]:
    store = JobStore(settings.db_path)
    store.init_schema()
    try:
        yield store
    finally:
        store.close()


@contextmanager
def _runtime(settings: Settings) -> Iterator[PipelineRuntime]:
    runtime = build_runtime(settings)
    try:
        yield runtime
    finally:
        runtime.close()
