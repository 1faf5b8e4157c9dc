"""Collaborator interfaces used by job handlers, with local default implementations."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from applykit.errors import PersistenceError
from applykit.llm.models import ProviderSettings

if TYPE_CHECKING:
    from applykit.jobs.models import NotificationRecord
    from applykit.jobs.repository import JobStore

logger = logging.getLogger(__name__)

_FILE_NAME_UNSAFE = re.compile(r"[^a-zA-Z0-9_]")


@dataclass(slots=True)
class RenderedDocument:
    """Rendered artifact bytes and the file name they should be stored under."""

    content: bytes
    file_name: str
    content_type: str


class Renderer(Protocol):
    """Turns structured document data into bytes."""

    def render(
        self,
        document_type: str,
        data: dict[str, Any],
        *,
        company_name: str,
        user_name: str,
    ) -> RenderedDocument:
        """Render one document."""


class BlobStorage(Protocol):
    """Persists rendered bytes; failures are fatal to the job."""

    def store(self, path: str, content: bytes, *, content_type: str) -> str:
        """Persist ``content`` at ``path`` and return the stored location."""


class SettingsProvider(Protocol):
    """Looks up an owner's provider settings."""

    def get_settings(self, owner_id: str) -> ProviderSettings | None:
        """Return stored settings or ``None`` when the owner has none."""


class Notifier(Protocol):
    """Receives one human-readable message per terminal job transition."""

    def notify(self, notification: NotificationRecord) -> None:
        """Deliver a notification."""


def build_file_name(
    *,
    company_name: str,
    user_name: str,
    document_type: str,
    extension: str,
    job_title: str | None = None,
    today: date | None = None,
) -> str:
    """``<Company>_<FirstName>[_<JobTitle>]_<type>_<YYYY-MM-DD>.<ext>``."""

    first_name = user_name.split(" ")[0] if user_name else ""
    parts = [sanitize_file_part(company_name), sanitize_file_part(first_name)]
    if job_title:
        parts.append(sanitize_file_part(job_title))
    parts.append(document_type.lower())
    parts.append((today or date.today()).isoformat())
    return f"{'_'.join(part for part in parts if part)}.{extension}"


class JsonDocumentRenderer:
    """UTF-8 renderer: resumes as JSON, cover letters as plain text."""

    def render(
        self,
        document_type: str,
        data: dict[str, Any],
        *,
        company_name: str,
        user_name: str,
    ) -> RenderedDocument:
        job_title = data.get("jobTitle") if isinstance(data.get("jobTitle"), str) else None
        if document_type == "CoverLetter":
            return RenderedDocument(
                content=_cover_letter_text(data).encode("utf-8"),
                file_name=build_file_name(
                    company_name=company_name,
                    user_name=user_name,
                    document_type=document_type,
                    extension="txt",
                    job_title=job_title,
                ),
                content_type="text/plain; charset=utf-8",
            )
        return RenderedDocument(
            content=json.dumps(data, ensure_ascii=False, indent=2).encode("utf-8"),
            file_name=build_file_name(
                company_name=company_name,
                user_name=user_name,
                document_type=document_type,
                extension="json",
                job_title=job_title,
            ),
            content_type="application/json",
        )


class LocalBlobStorage:
    """Filesystem storage rooted at one directory; never overwrites."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def store(self, path: str, content: bytes, *, content_type: str) -> str:
        target = (self.root / path).resolve()
        root = self.root.resolve()
        if root not in target.parents:
            raise PersistenceError(f"Refusing to store outside {root}: {path!r}")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with target.open("xb") as handle:
                handle.write(content)
        except FileExistsError as exc:
            raise PersistenceError(f"Artifact already exists: {path}") from exc
        except OSError as exc:
            raise PersistenceError(f"Failed to store artifact {path}: {exc}") from exc
        logger.debug("Stored %d bytes (%s) at %s", len(content), content_type, target)
        return str(target)


class StaticSettingsProvider:
    """In-memory per-owner settings map."""

    def __init__(self, settings: dict[str, ProviderSettings] | None = None) -> None:
        self._settings = dict(settings or {})

    def set(self, owner_id: str, settings: ProviderSettings) -> None:
        self._settings[owner_id] = settings

    def get_settings(self, owner_id: str) -> ProviderSettings | None:
        return self._settings.get(owner_id)


class StoreNotifier:
    """Writes notifications into the job store's ``notifications`` table."""

    def __init__(self, store: JobStore) -> None:
        self.store = store

    def notify(self, notification: NotificationRecord) -> None:
        self.store.add_notification(notification)


def sanitize_file_part(value: str) -> str:
    return _FILE_NAME_UNSAFE.sub("", re.sub(r"\s+", "_", value.strip()))


def _cover_letter_text(data: dict[str, Any]) -> str:
    lines: list[str] = []
    full_name = data.get("fullName")
    if isinstance(full_name, str) and full_name:
        lines.append(full_name)
    contact = data.get("contactInfo")
    if isinstance(contact, dict):
        lines.extend(str(value) for value in contact.values() if value)
    if isinstance(data.get("date"), str):
        lines.extend(["", data["date"]])
    recipient = data.get("recipient")
    if isinstance(recipient, dict):
        lines.append("")
        lines.extend(str(value) for value in recipient.values() if value)
    paragraphs = data.get("paragraphs")
    if isinstance(paragraphs, list):
        for paragraph in paragraphs:
            lines.extend(["", str(paragraph)])
    closing = data.get("closing")
    if isinstance(closing, str) and closing:
        lines.extend(["", closing])
        if isinstance(full_name, str) and full_name:
            lines.append(full_name)
    return "\n".join(lines).strip() + "\n"
