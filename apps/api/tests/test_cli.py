"""Tests for the scheduling-core CLI."""

import json
from datetime import datetime, timedelta, timezone

import pytest
from click.testing import CliRunner

from scheduling_core import cli as cli_module


@pytest.fixture
def runner(db, monkeypatch) -> CliRunner:
    """CliRunner whose commands use the test session."""

    class _TestSession:
        def __enter__(self):
            return db

        def __exit__(self, exc_type, exc, tb):
            return False

    monkeypatch.setattr(cli_module, "SessionLocal", lambda: _TestSession())
    monkeypatch.setattr(cli_module, "configure_logging", lambda level: None)
    return CliRunner()


def test_run_reminders_dry_run_leaves_stamps_untouched(runner, db, make_appointment):
    appt = make_appointment(scheduled_at=datetime.now(timezone.utc) + timedelta(hours=24))

    result = runner.invoke(cli_module.cli, ["run-reminders", "--dry-run"])

    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout) == {
        "appointments_processed": 1,
        "emails_sent": 1,
        "sms_sent": 1,
        "calls_initiated": 0,
        "errors": [],
    }
    db.refresh(appt)
    assert appt.reminder_sent_at is None
    assert appt.sms_reminder_sent_at is None


def test_business_hours_prints_schedule(runner, test_org):
    result = runner.invoke(cli_module.cli, ["business-hours", "--org-slug", test_org.slug])

    assert result.exit_code == 0, result.output
    assert "Business Hours (America/New_York):" in result.stdout
    assert ("✓ Open now" in result.stdout) or ("✗ Closed" in result.stdout)


def test_business_hours_unknown_org(runner, db):
    result = runner.invoke(cli_module.cli, ["business-hours", "--org-slug", "nope"])

    assert result.exit_code == 1
    assert "❌ Organization 'nope' not found" in result.stdout
