"""Domain models for the document-generation job queue."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class JobType(str, Enum):
    """Closed set of job kinds the processor knows how to run."""

    PARSE_RESUME = "parse-resume"
    GENERATE_RESUME = "generate-resume"
    GENERATE_COVER_LETTER = "generate-cover-letter"


class JobStatus(str, Enum):
    """Durable job lifecycle states."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in {JobStatus.COMPLETED, JobStatus.FAILED}


class NotificationType(str, Enum):
    COMPLETED = "job_completed"
    FAILED = "job_failed"


@dataclass(slots=True)
class JobRecord:
    """Readable job view for processor, handlers, and CLI."""

    job_id: str
    owner_id: str
    job_type: str
    status: JobStatus
    input: dict[str, Any]
    result: dict[str, Any] | None
    error: str | None
    metadata: dict[str, Any] | None
    worker_id: str | None
    created_at: datetime
    started_at: datetime | None
    completed_at: datetime | None
    updated_at: datetime


@dataclass(slots=True)
class JobEventView:
    """Transition audit entry."""

    event_id: int
    job_id: str
    event_type: str
    status_from: JobStatus | None
    status_to: JobStatus | None
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class NotificationRecord:
    """Human-readable message recorded for one terminal transition."""

    job_id: str
    owner_id: str
    notification_type: NotificationType
    title: str
    message: str
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
