"""CLI entrypoint for applykit."""

import logging
from pathlib import Path

import rich_click as click

from applykit import __version__
from applykit.errors import ApplykitError
from applykit.jobs.controllers import (
    JobsCliController,
    JobsEnqueueCommand,
    JobsInspectCommand,
    JobsListCommand,
    JobsStaleCommand,
    WorkerInlineCommand,
    WorkerRunCommand,
)
from applykit.jobs.models import JobStatus, JobType

click.rich_click.USE_MARKDOWN = True
JOBS_CONTROLLER = JobsCliController()

_DB_PATH_OPTION = click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite DB path.",
)


@click.group()
@click.version_option(version=__version__, prog_name="applykit")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging.")
def applykit(verbose: bool) -> None:
    """Document-generation job pipeline CLI."""

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@applykit.group()
def jobs() -> None:
    """Job queue commands."""


@jobs.command("enqueue")
@_DB_PATH_OPTION
@click.option("--owner", "owner_id", required=True, help="Owner (user) id.")
@click.option(
    "--type",
    "job_type",
    type=click.Choice([job_type.value for job_type in JobType]),
    required=True,
    help="Job type.",
)
@click.option("--input", "input_json", default=None, help="Job input as a JSON object.")
@click.option(
    "--input-file",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    default=None,
    help="Read job input JSON from a file.",
)
@click.option("--metadata", "metadata_json", default=None, help="Opaque metadata JSON object.")
@click.option(
    "--inline/--queued",
    default=False,
    show_default=True,
    help="Process the job immediately with a wall-clock timeout.",
)
@click.option(
    "--timeout",
    "timeout_seconds",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Inline timeout in seconds (defaults to APPLYKIT_INLINE_TIMEOUT_SECONDS).",
)
def jobs_enqueue(  # noqa: PLR0913
    db_path: Path | None,
    owner_id: str,
    job_type: str,
    input_json: str | None,
    input_file: Path | None,
    metadata_json: str | None,
    inline: bool,
    timeout_seconds: float | None,
) -> None:
    """Enqueue a document job."""

    _emit_lines(
        _invoke(
            JOBS_CONTROLLER.enqueue,
            JobsEnqueueCommand(
                db_path=db_path,
                owner_id=owner_id,
                job_type=job_type,
                input_json=input_json,
                input_file=input_file,
                metadata_json=metadata_json,
                inline=inline,
                timeout_seconds=timeout_seconds,
            ),
        ),
    )


@jobs.command("status")
@_DB_PATH_OPTION
@click.argument("job_id")
def jobs_status(db_path: Path | None, job_id: str) -> None:
    """Show one job with its result or error."""

    _emit_lines(_invoke(JOBS_CONTROLLER.status, JobsInspectCommand(db_path=db_path, job_id=job_id)))


@jobs.command("list")
@_DB_PATH_OPTION
@click.option(
    "--status",
    type=click.Choice([status.value for status in JobStatus], case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
@click.option("--owner", "owner_id", default=None, help="Optional owner filter.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=50,
    show_default=True,
    help="Max number of jobs to print.",
)
def jobs_list(db_path: Path | None, status: str | None, owner_id: str | None, limit: int) -> None:
    """List recent jobs, newest first."""

    _emit_lines(
        _invoke(
            JOBS_CONTROLLER.list_jobs,
            JobsListCommand(db_path=db_path, status=status, owner_id=owner_id, limit=limit),
        ),
    )


@jobs.command("events")
@_DB_PATH_OPTION
@click.argument("job_id")
def jobs_events(db_path: Path | None, job_id: str) -> None:
    """Show the transition audit trail of a job."""

    _emit_lines(_invoke(JOBS_CONTROLLER.events, JobsInspectCommand(db_path=db_path, job_id=job_id)))


@jobs.command("reset")
@_DB_PATH_OPTION
@click.argument("job_id")
def jobs_reset(db_path: Path | None, job_id: str) -> None:
    """Move a processing or failed job back to pending."""

    _emit_lines(_invoke(JOBS_CONTROLLER.reset, JobsInspectCommand(db_path=db_path, job_id=job_id)))


@jobs.command("stale")
@_DB_PATH_OPTION
@click.option(
    "--older-than-minutes",
    type=click.IntRange(min=1),
    default=30,
    show_default=True,
    help="Processing jobs started longer ago than this are listed.",
)
def jobs_stale(db_path: Path | None, older_than_minutes: int) -> None:
    """List jobs stuck in processing (candidates for `jobs reset`)."""

    _emit_lines(
        _invoke(
            JOBS_CONTROLLER.stale,
            JobsStaleCommand(db_path=db_path, older_than_minutes=older_than_minutes),
        ),
    )


@applykit.group()
def worker() -> None:
    """Job processor commands."""


@worker.command("run")
@_DB_PATH_OPTION
@click.option(
    "--once/--loop",
    default=False,
    show_default=True,
    help="Run one poll cycle or keep polling until stopped.",
)
@click.option(
    "--max-cycles",
    type=click.IntRange(min=1),
    default=None,
    help="Optional cap for poll cycles in loop mode.",
)
def worker_run(db_path: Path | None, once: bool, max_cycles: int | None) -> None:
    """Run the job processor poll loop."""

    _emit_lines(
        _invoke(
            JOBS_CONTROLLER.run_worker,
            WorkerRunCommand(db_path=db_path, once=once, max_cycles=max_cycles),
        ),
    )


@worker.command("inline")
@_DB_PATH_OPTION
@click.argument("job_id")
@click.option(
    "--timeout",
    "timeout_seconds",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Wall-clock timeout in seconds.",
)
def worker_inline(db_path: Path | None, job_id: str, timeout_seconds: float | None) -> None:
    """Process one pending job now."""

    _emit_lines(
        _invoke(
            JOBS_CONTROLLER.run_inline,
            WorkerInlineCommand(db_path=db_path, job_id=job_id, timeout_seconds=timeout_seconds),
        ),
    )


def _invoke(handler, command) -> list[str]:
    try:
        return handler(command)
    except (ApplykitError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    applykit()
