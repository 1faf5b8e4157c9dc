"""Persistent job store backed by SQLModel + SQLite."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import literal_column
from sqlalchemy import update as sa_update
from sqlmodel import Session, col, select

from applykit.errors import InvalidTransitionError, JobNotFoundError
from applykit.jobs.models import (
    JobEventView,
    JobRecord,
    JobStatus,
    JobType,
    NotificationRecord,
    NotificationType,
)
from applykit.storage.alembic_runner import upgrade_head
from applykit.storage.common import (
    build_sqlite_engine,
    dump_json,
    load_json,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from applykit.storage.sqlmodel_models import JobEventRow, JobRow, NotificationRow

logger = logging.getLogger(__name__)

DEFAULT_BUSY_TIMEOUT_MS = 5000


class JobStore:
    """Durable job lifecycle store.

    Every status transition is a conditional update on the current status, so the
    store stays consistent when several worker processes share one database.
    """

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def enqueue(
        self,
        owner_id: str,
        job_type: JobType | str,
        input_payload: dict[str, Any],
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Create a pending job and return its id.

        The type is stored as given; unknown types are rejected by the processor
        when it dispatches the job, not here.
        """

        now = utc_now()
        job_id = str(uuid4())
        type_value = job_type.value if isinstance(job_type, JobType) else str(job_type)
        with Session(self.engine) as session:
            session.add(
                JobRow(
                    job_id=job_id,
                    owner_id=owner_id,
                    job_type=type_value,
                    status=JobStatus.PENDING.value,
                    input_json=dump_json(input_payload) or "{}",
                    metadata_json=dump_json(metadata),
                    created_at=to_db_datetime(now),
                    updated_at=to_db_datetime(now),
                ),
            )
            session.flush()
            self._add_event(
                session=session,
                job_id=job_id,
                event_type="enqueued",
                status_from=None,
                status_to=JobStatus.PENDING,
                details={"job_type": type_value, "owner_id": owner_id},
            )
            session.commit()
        logger.info("Enqueued job %s type=%s owner=%s", job_id, type_value, owner_id)
        return job_id

    def claim_batch(self, limit: int, *, worker_id: str | None = None) -> list[JobRecord]:
        """Atomically claim up to ``limit`` pending jobs, oldest first."""

        claimed: list[JobRecord] = []
        if limit <= 0:
            return claimed

        while len(claimed) < limit:
            with Session(self.engine) as session:
                candidates = session.exec(
                    select(JobRow.job_id)
                    .where(JobRow.status == JobStatus.PENDING.value)
                    .order_by(col(JobRow.created_at).asc(), literal_column("jobs.rowid").asc())
                    .limit(limit - len(claimed)),
                ).all()
            if not candidates:
                break
            for job_id in candidates:
                record = self.claim(job_id, worker_id=worker_id)
                if record is not None:
                    claimed.append(record)
        return claimed

    def claim(self, job_id: str, *, worker_id: str | None = None) -> JobRecord | None:
        """Claim one specific job; ``None`` when it is no longer pending."""

        now = utc_now()
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(JobRow)
                .where(
                    col(JobRow.job_id) == job_id,
                    col(JobRow.status) == JobStatus.PENDING.value,
                )
                .values(
                    status=JobStatus.PROCESSING.value,
                    started_at=to_db_datetime(now),
                    worker_id=worker_id,
                    updated_at=to_db_datetime(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return None
            self._add_event(
                session=session,
                job_id=job_id,
                event_type="claimed",
                status_from=JobStatus.PENDING,
                status_to=JobStatus.PROCESSING,
                details={"worker_id": worker_id},
            )
            session.commit()
            row = session.exec(select(JobRow).where(JobRow.job_id == job_id)).one()
            return _to_job_record(row)

    def complete(self, job_id: str, result: dict[str, Any]) -> JobRecord:
        """Mark a processing job as completed with its result payload."""

        return self._finish(
            job_id=job_id,
            status_to=JobStatus.COMPLETED,
            values={"result_json": dump_json(result) or "{}", "error": None},
            details={},
        )

    def fail(
        self,
        job_id: str,
        error: str,
        *,
        details: dict[str, object] | None = None,
    ) -> JobRecord:
        """Mark a processing job as failed with a human-readable error.

        ``details`` (e.g. failure classification) is recorded on the audit event only.
        """

        message = error.strip() or "Unknown error"
        return self._finish(
            job_id=job_id,
            status_to=JobStatus.FAILED,
            values={"error": message, "result_json": None},
            details={**(details or {}), "error": message},
        )

    def get(self, job_id: str) -> JobRecord | None:
        with Session(self.engine) as session:
            row = session.exec(select(JobRow).where(JobRow.job_id == job_id)).one_or_none()
        return _to_job_record(row) if row is not None else None

    def list_jobs(
        self,
        *,
        status: JobStatus | None = None,
        owner_id: str | None = None,
        limit: int = 50,
    ) -> list[JobRecord]:
        """List recent jobs, newest first."""

        with Session(self.engine) as session:
            statement = select(JobRow).order_by(col(JobRow.created_at).desc()).limit(limit)
            if status is not None:
                statement = statement.where(JobRow.status == status.value)
            if owner_id is not None:
                statement = statement.where(JobRow.owner_id == owner_id)
            rows = session.exec(statement).all()
        return [_to_job_record(row) for row in rows]

    def list_stale(self, *, older_than: timedelta) -> list[JobRecord]:
        """Jobs still processing after ``older_than``; candidates for a manual reset."""

        cutoff = to_db_datetime(utc_now() - older_than)
        with Session(self.engine) as session:
            rows = session.exec(
                select(JobRow)
                .where(
                    JobRow.status == JobStatus.PROCESSING.value,
                    col(JobRow.started_at) < cutoff,
                )
                .order_by(col(JobRow.started_at).asc()),
            ).all()
        return [_to_job_record(row) for row in rows]

    def reset_job(self, job_id: str) -> JobRecord:
        """Operator reset of a processing/failed job back to pending.

        The processor never calls this; it exists for jobs left behind by a crashed
        worker or for explicit resubmission.
        """

        now = utc_now()
        with Session(self.engine) as session:
            row = session.exec(select(JobRow).where(JobRow.job_id == job_id)).one_or_none()
            if row is None:
                raise JobNotFoundError(f"Job not found: {job_id}")
            previous = JobStatus(row.status)
            if previous not in {JobStatus.PROCESSING, JobStatus.FAILED}:
                raise InvalidTransitionError(
                    f"Only processing/failed jobs can be reset, got {previous.value}.",
                )
            result = session.exec(
                sa_update(JobRow)
                .where(
                    col(JobRow.job_id) == job_id,
                    col(JobRow.status) == previous.value,
                )
                .values(
                    status=JobStatus.PENDING.value,
                    started_at=None,
                    completed_at=None,
                    result_json=None,
                    error=None,
                    worker_id=None,
                    updated_at=to_db_datetime(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                raise InvalidTransitionError(
                    "Job state changed concurrently while resetting; "
                    f"please retry command (job_id={job_id}).",
                )
            self._add_event(
                session=session,
                job_id=job_id,
                event_type="manual_reset",
                status_from=previous,
                status_to=JobStatus.PENDING,
                details={},
            )
            session.commit()
            refreshed = session.exec(select(JobRow).where(JobRow.job_id == job_id)).one()
            logger.warning("Job %s reset from %s to pending", job_id, previous.value)
            return _to_job_record(refreshed)

    def list_events(self, job_id: str) -> list[JobEventView]:
        """Return the transition audit trail of one job, oldest first."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(JobEventRow)
                .where(JobEventRow.job_id == job_id)
                .order_by(col(JobEventRow.created_at).asc(), col(JobEventRow.id).asc()),
            ).all()

        events: list[JobEventView] = []
        for row in rows:
            details = {}
            if row.details_json:
                parsed = json.loads(row.details_json)
                if isinstance(parsed, dict):
                    details = parsed
            events.append(
                JobEventView(
                    event_id=row.id or 0,
                    job_id=row.job_id,
                    event_type=row.event_type,
                    status_from=JobStatus(row.status_from) if row.status_from else None,
                    status_to=JobStatus(row.status_to) if row.status_to else None,
                    created_at=to_utc_aware_datetime(row.created_at),
                    details=details,
                ),
            )
        return events

    def add_notification(self, notification: NotificationRecord) -> None:
        """Append one notification row."""

        with Session(self.engine) as session:
            session.add(
                NotificationRow(
                    job_id=notification.job_id,
                    owner_id=notification.owner_id,
                    notification_type=notification.notification_type.value,
                    title=notification.title,
                    message=notification.message,
                    metadata_json=dump_json(notification.metadata),
                    created_at=to_db_datetime(notification.created_at or utc_now()),
                ),
            )
            session.commit()

    def list_notifications(
        self,
        *,
        job_id: str | None = None,
        owner_id: str | None = None,
    ) -> list[NotificationRecord]:
        with Session(self.engine) as session:
            statement = select(NotificationRow).order_by(col(NotificationRow.id).asc())
            if job_id is not None:
                statement = statement.where(NotificationRow.job_id == job_id)
            if owner_id is not None:
                statement = statement.where(NotificationRow.owner_id == owner_id)
            rows = session.exec(statement).all()
        return [
            NotificationRecord(
                job_id=row.job_id,
                owner_id=row.owner_id,
                notification_type=NotificationType(row.notification_type),
                title=row.title,
                message=row.message,
                metadata=load_json(row.metadata_json) or {},
                created_at=to_utc_aware_datetime(row.created_at),
            )
            for row in rows
        ]

    def _finish(
        self,
        *,
        job_id: str,
        status_to: JobStatus,
        values: dict[str, Any],
        details: dict[str, object],
    ) -> JobRecord:
        now = utc_now()
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(JobRow)
                .where(
                    col(JobRow.job_id) == job_id,
                    col(JobRow.status) == JobStatus.PROCESSING.value,
                )
                .values(
                    status=status_to.value,
                    completed_at=to_db_datetime(now),
                    updated_at=to_db_datetime(now),
                    **values,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                row = session.exec(select(JobRow).where(JobRow.job_id == job_id)).one_or_none()
                if row is None:
                    raise JobNotFoundError(f"Job not found: {job_id}")
                raise InvalidTransitionError(
                    f"Cannot move job {job_id} to {status_to.value}: "
                    f"status is {row.status}, expected {JobStatus.PROCESSING.value}.",
                )
            self._add_event(
                session=session,
                job_id=job_id,
                event_type=status_to.value,
                status_from=JobStatus.PROCESSING,
                status_to=status_to,
                details=details,
            )
            session.commit()
            row = session.exec(select(JobRow).where(JobRow.job_id == job_id)).one()
            return _to_job_record(row)

    def _add_event(  # noqa: PLR0913
        self,
        *,
        session: Session,
        job_id: str,
        event_type: str,
        status_from: JobStatus | None,
        status_to: JobStatus | None,
        details: dict[str, object],
    ) -> None:
        session.add(
            JobEventRow(
                job_id=job_id,
                event_type=event_type,
                status_from=status_from.value if status_from is not None else None,
                status_to=status_to.value if status_to is not None else None,
                details_json=json.dumps(details, ensure_ascii=False, sort_keys=True)
                if details
                else None,
                created_at=to_db_datetime(utc_now()),
            ),
        )


def _optional_aware(value: datetime | None) -> datetime | None:
    return to_utc_aware_datetime(value) if value is not None else None


def _to_job_record(row: JobRow) -> JobRecord:
    return JobRecord(
        job_id=row.job_id,
        owner_id=row.owner_id,
        job_type=row.job_type,
        status=JobStatus(row.status),
        input=load_json(row.input_json) or {},
        result=load_json(row.result_json),
        error=row.error,
        metadata=load_json(row.metadata_json),
        worker_id=row.worker_id,
        created_at=to_utc_aware_datetime(row.created_at),
        started_at=_optional_aware(row.started_at),
        completed_at=_optional_aware(row.completed_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
