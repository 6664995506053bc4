# Overview: Daily scheduler; enqueues the previous day's purchase report at DAILY_REPORT_TIME.

from __future__ import annotations

import threading
from datetime import date, datetime, time, timedelta

from flask import Flask, current_app

from ..extensions import db
from ..models import Job
from . import jobs
from shopadmin.time_utils import to_utc_z, utcnow


DAILY_REPORT_JOB = "daily_purchase_report"


def parse_run_time(value: str) -> time:
    try:
        hours, minutes = value.strip().split(":")
        return time(int(hours), int(minutes))
    except (AttributeError, ValueError):
        raise ValueError(f"DAILY_REPORT_TIME must be HH:MM, got {value!r}")


def next_run_at(now: datetime, at: time) -> datetime:
    """First occurrence of `at` strictly after `now`."""
    candidate = datetime.combine(now.date(), at)
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


def enqueue_daily_report(report_date: date | None = None, *, scheduled: bool = False) -> Job:
    """
    Queue the report of `report_date` (default: yesterday).

    Scheduled runs carry a per-date unique key, so one date is reported at
    most once by the scheduler; manual triggers always enqueue.
    """
    report_date = report_date or (utcnow().date() - timedelta(days=1))
    unique_key = f"{DAILY_REPORT_JOB}:{report_date.isoformat()}" if scheduled else None
    return jobs.enqueue(DAILY_REPORT_JOB, report_date.isoformat(), unique_key=unique_key)


class DailyReportScheduler:
    """Fires enqueue_daily_report once a day at DAILY_REPORT_TIME (UTC)."""

    def __init__(self, app: Flask, now: datetime | None = None):
        self.app = app
        self.run_time = parse_run_time(app.config.get("DAILY_REPORT_TIME", "08:00"))
        self.next_run = next_run_at(now or utcnow(), self.run_time)

    def tick(self, now: datetime | None = None) -> Job | None:
        """Enqueue the report if its time has come. Needs an app context."""
        now = now or utcnow()
        if now < self.next_run:
            return None

        report_date = self.next_run.date() - timedelta(days=1)
        job = enqueue_daily_report(report_date, scheduled=True)
        current_app.logger.info("Scheduled daily purchase report for %s (job #%s)", report_date, job.id)
        self.next_run = next_run_at(now, self.run_time)
        return job

    def start(self, stop_event: threading.Event) -> threading.Thread:
        poll = self.app.config.get("JOB_POLL_INTERVAL", 1.0)

        def _loop():
            with self.app.app_context():
                while not stop_event.is_set():
                    try:
                        self.tick()
                    except Exception:
                        db.session.rollback()
                        current_app.logger.exception("Scheduler tick failed")
                    finally:
                        db.session.remove()
                    stop_event.wait(poll)

        thread = threading.Thread(target=_loop, name="daily-report-scheduler", daemon=True)
        thread.start()
        return thread


def scheduler_status(now: datetime | None = None) -> dict:
    now = now or utcnow()
    run_time = parse_run_time(current_app.config.get("DAILY_REPORT_TIME", "08:00"))
    return {
        "daily_report_time": run_time.strftime("%H:%M"),
        "next_runs": {DAILY_REPORT_JOB: to_utc_z(next_run_at(now, run_time))},
        "job_stats": jobs.stats(),
    }
