# Overview: Flask CLI command groups for bootstrap, admin management, jobs and reports.

# backend/shopadmin/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init
#   Create all tables and a demo admin (admin@shopadmin.local / password123).
#
# Admin management:
# - python -m flask admins create --email a@b.com --name "Ana" --password secret1
#   Create an admin (prompts if options are omitted).
# - python -m flask admins list
# - python -m flask admins delete 3 --yes
#   Delete an admin with its products, categories and authored audit rows.
#
# Background jobs:
# - python -m flask jobs work [--workers 4] [--no-scheduler]
#   Run worker threads (and the daily report scheduler) until Ctrl+C.
# - python -m flask jobs drain [--queue reports]
#   Run every due job once in this process, then exit.
#
# Reports:
# - python -m flask reports daily --date 2024-01-01 [--enqueue]
#   Print the daily report (or queue the daily report email).

import json
import threading
from datetime import timedelta

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .jobs import QUEUES, jobs
from .jobs.scheduler import DailyReportScheduler, enqueue_daily_report
from .services import auth_service, reporting_service
from .validation import ConflictError, NotFoundError, ValidationError
from .time_utils import parse_date, today


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init')
@click.option('--email', default='admin@shopadmin.local', help='Demo admin email')
@click.option('--password', default='password123', help='Demo admin password')
@with_appcontext
def init_system(email, password):
    """Create tables and a demo admin (idempotent)."""
    click.echo("START Initializing shopadmin...")
    db.create_all()
    click.echo("PASS Tables ready")

    try:
        admin = auth_service.create_admin(email=email, name="Admin", password=password)
        click.echo(f"PASS Created admin: {admin.email} (ID: {admin.id})")
    except ConflictError:
        click.echo(f"WARN  Admin '{email}' already exists, skipping...")

    click.echo("DONE shopadmin initialized. Change the demo password in production!")


@click.group('admins')
def admins_group():
    """Admin account management."""


@admins_group.command('create')
@click.option('--email', prompt=True, help='Email address')
@click.option('--name', prompt=True, help='Display name')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@with_appcontext
def create_admin_cli(email, name, password):
    try:
        admin = auth_service.create_admin(email=email, name=name, password=password)
    except (ValidationError, ConflictError) as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created admin {admin.email} (ID: {admin.id})")


@admins_group.command('list')
@with_appcontext
def list_admins_cli():
    admins = auth_service.list_admins()
    if not admins:
        click.echo("No admins found.")
        return

    click.echo("\n" + "=" * 70)
    click.echo(f"{'ID':<5} {'Email':<40} {'Name'}")
    click.echo("=" * 70)
    for admin in admins:
        click.echo(f"{admin.id:<5} {admin.email:<40} {admin.name}")
    click.echo("=" * 70 + "\n")


@admins_group.command('delete')
@click.argument('admin_id', type=int)
@click.confirmation_option(prompt='This deletes the admin and everything it owns. Continue?')
@with_appcontext
def delete_admin_cli(admin_id):
    try:
        auth_service.delete_admin(admin_id)
    except NotFoundError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Deleted admin {admin_id}")


@click.group('jobs')
def jobs_group():
    """Background job workers."""


@jobs_group.command('work')
@click.option('--workers', type=int, default=None, help='Worker threads (default JOB_WORKERS)')
@click.option('--queue', 'queues', multiple=True, type=click.Choice(QUEUES), help='Queues to serve (default all)')
@click.option('--no-scheduler', is_flag=True, help='Do not enqueue the daily report')
@with_appcontext
def work_cli(workers, queues, no_scheduler):
    app = current_app._get_current_object()
    stop_event = threading.Event()

    threads = jobs.work(app, workers=workers, stop_event=stop_event, queues=queues or QUEUES)
    if not no_scheduler:
        scheduler = DailyReportScheduler(app)
        click.echo(f"Daily report scheduled at {scheduler.next_run:%Y-%m-%d %H:%M} UTC")
        threads.append(scheduler.start(stop_event))

    click.echo(f"Workers running ({len(threads)} threads). Ctrl+C to stop.")
    try:
        while not stop_event.wait(1.0):
            pass
    except KeyboardInterrupt:
        click.echo("Stopping...")
        stop_event.set()
        for t in threads:
            t.join(timeout=10)


@jobs_group.command('drain')
@click.option('--queue', 'queues', multiple=True, type=click.Choice(QUEUES), help='Queues to drain (default all)')
@with_appcontext
def drain_cli(queues):
    count = jobs.drain(queues or QUEUES)
    click.echo(f"Ran {count} job(s)")
    click.echo(json.dumps(jobs.stats(), indent=2))


@click.group('reports')
def reports_group():
    """Purchase reports."""


@reports_group.command('daily')
@click.option('--date', 'date_str', default=None, help='YYYY-MM-DD (default yesterday)')
@click.option('--enqueue', is_flag=True, help='Queue the report email instead of printing')
@with_appcontext
def daily_report_cli(date_str, enqueue):
    try:
        day = parse_date(date_str) if date_str else today() - timedelta(days=1)
    except ValueError:
        raise click.BadParameter("date must be YYYY-MM-DD", param_hint="--date")

    if enqueue:
        job = enqueue_daily_report(day)
        click.echo(f"Queued daily report for {day.isoformat()} (job #{job.id})")
        return

    click.echo(json.dumps(reporting_service.daily_report(day), indent=2))


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(admins_group)
    app.cli.add_command(jobs_group)
    app.cli.add_command(reports_group)
