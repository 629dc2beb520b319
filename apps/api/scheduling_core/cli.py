"""CLI tools for scheduling operations."""

import json

import click

from scheduling_core.core.async_utils import run_async
from scheduling_core.core.config import settings
from scheduling_core.core.structured_logging import configure_logging
from scheduling_core.db.models import Organization
from scheduling_core.db.session import SessionLocal
from scheduling_core.services import appointment_service, reminder_service
from scheduling_core.services.notification_transport import HttpNotificationTransport
from scheduling_core.utils import business_hours


@click.group()
def cli():
    """Scheduling core CLI tools."""
    configure_logging(settings.LOG_LEVEL)


@cli.command()
@click.option("--dry-run", is_flag=True, help="Report what would be sent without sending or stamping anything")
def run_reminders(dry_run: bool):
    """
    Run one reminder dispatch pass and print the summary as JSON.

    With --dry-run nothing is sent and no reminder stamps are written; the
    counters show what a real run would send.

    Example:
        scheduling-core run-reminders --dry-run
    """
    transport = HttpNotificationTransport()
    with SessionLocal() as db:
        stats = run_async(reminder_service.process_due_reminders(db, transport, dry_run=dry_run))
    click.echo(json.dumps(stats.as_dict(), indent=2))
    if stats.errors:
        raise SystemExit(1)


@cli.command("business-hours")
@click.option("--org-slug", required=True, help="Organization slug")
def business_hours_status(org_slug: str):
    """Print an organization's business hours and whether it is open now."""
    with SessionLocal() as db:
        org = db.query(Organization).filter(Organization.slug == org_slug.lower().strip()).first()
        if not org:
            click.echo(f"❌ Organization '{org_slug}' not found")
            raise SystemExit(1)
        config = appointment_service.get_org_business_hours(org)

    click.echo(business_hours.format_business_hours_for_prompt(config))
    if business_hours.is_within_business_hours(config):
        click.echo("✓ Open now")
    else:
        next_open = business_hours.get_next_open_time(config)
        click.echo(f"✗ Closed (next open: {next_open})" if next_open else "✗ Closed")


if __name__ == "__main__":
    cli()
