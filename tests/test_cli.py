from __future__ import annotations

import json
import re
from pathlib import Path

import allure
from click.testing import CliRunner

from applykit import __version__
from applykit.jobs.models import JobStatus, JobType
from applykit.jobs.repository import JobStore
from applykit.main import applykit

pytestmark = [
    allure.epic("Job Pipeline"),
    allure.feature("CLI Ops"),
]

_JOB_ID = re.compile(r"job_id=([0-9a-f-]{36})")


def _enqueue(runner: CliRunner, db_path: Path, *extra: str) -> str:
    result = runner.invoke(
        applykit,
        [
            "jobs",
            "enqueue",
            "--db-path",
            str(db_path),
            "--owner",
            "user-1",
            "--type",
            "parse-resume",
            "--input",
            json.dumps({"content": "Ada Lovelace", "filename": "ada.pdf"}),
            *extra,
        ],
    )
    assert result.exit_code == 0, result.output
    match = _JOB_ID.search(result.output)
    assert match is not None, result.output
    return match.group(1)


def test_cli_version() -> None:
    result = CliRunner().invoke(applykit, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_cli_enqueue_list_status_and_events(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()

    job_id = _enqueue(runner, db_path, "--metadata", '{"source": "cli"}')

    listed = runner.invoke(applykit, ["jobs", "list", "--db-path", str(db_path)])
    assert listed.exit_code == 0, listed.output
    assert "Jobs: 1" in listed.output
    assert f"{job_id} type=parse-resume status=pending" in listed.output

    status = runner.invoke(applykit, ["jobs", "status", "--db-path", str(db_path), job_id])
    assert status.exit_code == 0, status.output
    assert "Status: pending" in status.output
    assert "Owner: user-1" in status.output

    events = runner.invoke(applykit, ["jobs", "events", "--db-path", str(db_path), job_id])
    assert events.exit_code == 0, events.output
    assert "Events: 1" in events.output
    assert "enqueued - -> pending" in events.output

    store = JobStore(db_path)
    assert store.get(job_id).metadata == {"source": "cli"}
    store.close()


def test_cli_worker_fails_job_without_provider_credentials_then_reset(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()
    job_id = _enqueue(runner, db_path)

    worker = runner.invoke(applykit, ["worker", "run", "--once", "--db-path", str(db_path)])
    assert worker.exit_code == 0, worker.output
    assert "claimed=1" in worker.output
    assert "failed=1" in worker.output

    status = runner.invoke(applykit, ["jobs", "status", "--db-path", str(db_path), job_id])
    assert "Status: failed" in status.output
    assert "Error: Generation failed: openrouter API key is not configured." in status.output
    assert "Resume Parsing Failed" in status.output

    failed = runner.invoke(
        applykit,
        ["jobs", "list", "--db-path", str(db_path), "--status", "failed", "--owner", "user-1"],
    )
    assert f"{job_id} type=parse-resume status=failed" in failed.output

    reset = runner.invoke(applykit, ["jobs", "reset", "--db-path", str(db_path), job_id])
    assert reset.exit_code == 0, reset.output
    assert f"Job reset to pending: {job_id}" in reset.output

    again = runner.invoke(applykit, ["jobs", "reset", "--db-path", str(db_path), job_id])
    assert again.exit_code != 0
    assert "Only processing/failed jobs can be reset" in again.output


def test_cli_inline_enqueue_reports_final_status(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()

    result = runner.invoke(
        applykit,
        [
            "jobs",
            "enqueue",
            "--db-path",
            str(db_path),
            "--owner",
            "user-1",
            "--type",
            "generate-cover-letter",
            "--input",
            "{}",
            "--inline",
            "--timeout",
            "10",
        ],
    )

    assert result.exit_code == 0, result.output
    assert "Status: failed" in result.output


def test_cli_worker_inline_and_stale(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()
    store = JobStore(db_path)
    store.init_schema()
    stuck_id = store.enqueue("user-1", JobType.PARSE_RESUME, {})
    store.claim(stuck_id, worker_id="crashed-worker")
    store.close()

    stale = runner.invoke(
        applykit,
        ["jobs", "stale", "--db-path", str(db_path), "--older-than-minutes", "1"],
    )
    assert stale.exit_code == 0, stale.output
    assert "Stale processing jobs: 0" in stale.output

    inline = runner.invoke(applykit, ["worker", "inline", "--db-path", str(db_path), stuck_id])
    assert inline.exit_code == 0, inline.output
    assert f"Job was not pending: {stuck_id} status={JobStatus.PROCESSING.value}" in inline.output

    missing = runner.invoke(applykit, ["worker", "inline", "--db-path", str(db_path), "nope"])
    assert "Job not found: nope" in missing.output


def test_cli_rejects_invalid_input(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()

    bad_json = runner.invoke(
        applykit,
        [
            "jobs",
            "enqueue",
            "--db-path",
            str(db_path),
            "--owner",
            "u",
            "--type",
            "parse-resume",
            "--input",
            "{not json",
        ],
    )
    missing = runner.invoke(
        applykit,
        ["jobs", "enqueue", "--db-path", str(db_path), "--owner", "u", "--type", "parse-resume"],
    )
    bad_type = runner.invoke(
        applykit,
        ["jobs", "enqueue", "--owner", "u", "--type", "make-coffee", "--input", "{}"],
    )

    assert bad_json.exit_code != 0
    assert "not valid JSON" in bad_json.output
    assert missing.exit_code != 0
    assert "Job input is required" in missing.output
    assert bad_type.exit_code != 0


def test_cli_reads_input_file(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    input_file = tmp_path / "input.json"
    input_file.write_text(json.dumps({"content": "from file"}), encoding="utf-8")
    runner = CliRunner()

    job_id = _enqueue(runner, db_path, "--input-file", str(input_file))

    store = JobStore(db_path)
    assert store.get(job_id).input == {"content": "from file"}
    store.close()
