"""
Background job tests: queue mechanics, notification jobs and the daily
report scheduler. Mail is suppressed in tests, so delivered messages land
in the mail outbox.
"""

from datetime import date, datetime, timedelta

import pytest

from shopadmin.jobs import jobs, job
from shopadmin.jobs.registry import UnknownJobError, get_job
from shopadmin.jobs.scheduler import (
    DailyReportScheduler,
    enqueue_daily_report,
    next_run_at,
    parse_run_time,
    scheduler_status,
)
from shopadmin.models import Job
from shopadmin.services import purchase_service
from shopadmin.services.mail_service import outbox
from shopadmin.time_utils import utcnow


CALLS = []


@job(queue="low", name="test_record_call")
def record_call(value):
    CALLS.append(value)


@job(queue="low", name="test_always_fails")
def always_fails():
    raise RuntimeError("boom")


@pytest.fixture(autouse=True)
def reset_calls():
    CALLS.clear()
    yield
    CALLS.clear()


def _subjects():
    return [(msg["To"], msg["Subject"]) for msg in outbox()]


class TestRegistry:
    def test_lookup(self):
        spec = get_job("first_purchase_notification")
        assert spec.queue == "default"
        assert get_job("daily_purchase_report").queue == "reports"

    def test_unknown_name(self):
        with pytest.raises(UnknownJobError):
            get_job("does_not_exist")

    def test_unknown_queue_rejected(self):
        with pytest.raises(ValueError):
            job(queue="urgent")

    def test_enqueue_requires_registered_job(self, db_session):
        with pytest.raises(UnknownJobError):
            jobs.enqueue("does_not_exist")


class TestQueue:
    def test_claim_follows_queue_priority(self, db_session):
        low = jobs.enqueue("test_record_call", "low")
        critical = jobs.enqueue("test_record_call", "critical", queue="critical")
        reports = jobs.enqueue("test_record_call", "reports", queue="reports")

        claimed = [jobs.claim().id for _ in range(3)]

        assert claimed == [critical.id, reports.id, low.id]
        assert jobs.claim() is None

    def test_claim_marks_running_and_counts_attempt(self, db_session):
        queued = jobs.enqueue("test_record_call", 1)

        claimed = jobs.claim()

        assert claimed.id == queued.id
        assert claimed.status == "running"
        assert claimed.attempts == 1
        assert claimed.locked_at is not None

    def test_future_jobs_are_not_claimed(self, db_session):
        jobs.enqueue("test_record_call", 1, run_at=utcnow() + timedelta(hours=1))
        assert jobs.claim() is None

    def test_claim_can_be_limited_to_queues(self, db_session):
        jobs.enqueue("test_record_call", 1)
        assert jobs.claim(queues=("critical",)) is None
        assert jobs.claim(queues=("low",)) is not None

    def test_successful_job_is_done(self, db_session):
        queued = jobs.enqueue("test_record_call", "hello")

        assert jobs.drain() == 1

        stored = db_session.get(Job, queued.id, populate_existing=True)
        assert stored.status == "done"
        assert stored.finished_at is not None
        assert CALLS == ["hello"]

    def test_failing_job_is_retried_then_dead(self, app, db_session, monkeypatch):
        monkeypatch.setitem(app.config, "JOB_MAX_ATTEMPTS", 3)
        queued = jobs.enqueue("test_always_fails")

        jobs.work_once()
        after_first = db_session.get(Job, queued.id, populate_existing=True)
        assert after_first.status == "pending"
        assert after_first.attempts == 1
        assert after_first.last_error == "RuntimeError: boom"

        jobs.drain()
        final = db_session.get(Job, queued.id, populate_existing=True)
        assert final.status == "dead"
        assert final.attempts == 3

    def test_retry_is_backed_off(self, app, db_session, monkeypatch):
        monkeypatch.setitem(app.config, "JOB_BACKOFF_BASE", 60)
        queued = jobs.enqueue("test_always_fails")

        jobs.work_once()

        stored = db_session.get(Job, queued.id, populate_existing=True)
        assert stored.run_at > utcnow() + timedelta(seconds=30)
        assert jobs.claim() is None

    def test_unknown_job_goes_dead_immediately(self, db_session):
        orphan = Job(queue="default", name="renamed_long_ago", args=[], status="pending", attempts=0)
        db_session.add(orphan)
        db_session.commit()

        jobs.work_once()

        stored = db_session.get(Job, orphan.id, populate_existing=True)
        assert stored.status == "dead"
        assert "renamed_long_ago" in stored.last_error

    def test_stuck_running_job_is_reclaimed_after_visibility_timeout(self, app, db_session):
        stuck = Job(
            queue="low",
            name="test_record_call",
            args=["again"],
            status="running",
            attempts=1,
            locked_at=utcnow() - timedelta(seconds=app.config["JOB_VISIBILITY_TIMEOUT"] + 60),
        )
        fresh = Job(
            queue="low",
            name="test_record_call",
            args=["busy"],
            status="running",
            attempts=1,
            locked_at=utcnow(),
        )
        db_session.add_all([stuck, fresh])
        db_session.commit()

        claimed = jobs.claim()

        assert claimed.id == stuck.id
        assert claimed.attempts == 2
        assert jobs.claim() is None

    def test_unique_key_dedupes(self, db_session):
        first = jobs.enqueue("test_record_call", 1, unique_key="once")
        second = jobs.enqueue("test_record_call", 2, unique_key="once")

        assert first.id == second.id
        assert db_session.query(Job).count() == 1

    def test_stats(self, app, db_session, monkeypatch):
        monkeypatch.setitem(app.config, "JOB_BACKOFF_BASE", 60)
        jobs.enqueue("test_record_call", 1)
        jobs.enqueue("test_always_fails", queue="critical")
        jobs.drain()

        stats = jobs.stats()

        assert stats["done"] == 1
        assert stats["pending"] == 1
        assert stats["retrying"] == 1
        assert stats["queues"]["critical"] == 1


class TestFirstPurchaseNotification:
    def test_emails_creator_then_other_admins(self, db_session, admin, other_admin, customer, make_product):
        product = make_product(admin, name="Lamp", stock=5)
        purchase = purchase_service.create_purchase(customer_id=customer.id, product_id=product.id, quantity=2)

        assert jobs.drain() == 1

        assert _subjects() == [
            ("owner@shop.test", "First purchase of your product Lamp"),
            ("other@shop.test", "New first purchase of the product: Lamp"),
        ]
        body = outbox()[0].get_content()
        assert "Carla Client" in body
        assert f"#{purchase.id}" in body
        assert "Stock left: 3" in body

    def test_no_email_when_purchase_is_no_longer_first(
        self, db_session, admin, customer, make_product, make_purchase
    ):
        product = make_product(admin, stock=5)
        purchase = make_purchase(customer, product, purchased_at=datetime(2024, 1, 2))
        make_purchase(customer, product, purchased_at=datetime(2024, 1, 1))
        jobs.enqueue("first_purchase_notification", purchase.id)

        jobs.drain()

        assert outbox() == []
        assert db_session.query(Job).one().status == "done"

    def test_missing_purchase_finishes_quietly(self, db_session, admin):
        queued = jobs.enqueue("first_purchase_notification", 424242)

        jobs.drain()

        assert outbox() == []
        assert db_session.get(Job, queued.id, populate_existing=True).status == "done"

    def test_delivery_failure_is_retried(self, app, db_session, admin, customer, make_product, monkeypatch):
        monkeypatch.setitem(app.config, "MAIL_SUPPRESS_SEND", False)
        monkeypatch.setitem(app.config, "SMTP_HOST", None)
        product = make_product(admin, stock=5)
        purchase_service.create_purchase(customer_id=customer.id, product_id=product.id, quantity=1)

        jobs.work_once()

        stored = db_session.query(Job).one()
        assert stored.status == "pending"
        assert stored.last_error.startswith("NotificationDeliveryError")


class TestDailyReport:
    def test_report_sent_to_every_admin(self, db_session, admin, other_admin, customer, make_product, make_purchase):
        product = make_product(admin, name="Lamp")
        make_purchase(customer, product, quantity=2, purchased_at=datetime(2024, 3, 14, 15, 0))
        enqueue_daily_report(date(2024, 3, 14))

        jobs.drain()

        assert _subjects() == [
            ("owner@shop.test", "Reporte diario de compras - 14/03/2024"),
            ("other@shop.test", "Reporte diario de compras - 14/03/2024"),
        ]
        body = outbox()[0].get_content()
        assert "Lamp: 2 units, 20.00" in body
        assert "Carla Client <carla@client.test>" in body

    def test_empty_day_sends_nothing(self, db_session, admin):
        enqueue_daily_report(date(2024, 3, 14))

        jobs.drain()

        assert outbox() == []

    def test_manual_triggers_are_not_deduped(self, db_session):
        enqueue_daily_report(date(2024, 3, 14))
        enqueue_daily_report(date(2024, 3, 14))

        assert db_session.query(Job).count() == 2

    def test_defaults_to_yesterday(self, db_session):
        queued = enqueue_daily_report()
        assert queued.args == [(utcnow().date() - timedelta(days=1)).isoformat()]


class TestScheduler:
    def test_parse_run_time(self):
        assert parse_run_time("08:30").hour == 8
        with pytest.raises(ValueError):
            parse_run_time("8am")

    def test_next_run_is_strictly_after_now(self):
        at = parse_run_time("08:00")
        assert next_run_at(datetime(2024, 1, 1, 7, 59), at) == datetime(2024, 1, 1, 8, 0)
        assert next_run_at(datetime(2024, 1, 1, 8, 0), at) == datetime(2024, 1, 2, 8, 0)

    def test_tick_enqueues_previous_day_once(self, app, db_session):
        scheduler = DailyReportScheduler(app, now=datetime(2024, 3, 15, 7, 0))

        assert scheduler.tick(datetime(2024, 3, 15, 7, 30)) is None
        fired = scheduler.tick(datetime(2024, 3, 15, 8, 0, 5))

        assert fired.name == "daily_purchase_report"
        assert fired.args == ["2024-03-14"]
        assert fired.queue == "reports"
        assert scheduler.next_run == datetime(2024, 3, 16, 8, 0)

        # a second scheduler (e.g. another process) fires the same date
        again = DailyReportScheduler(app, now=datetime(2024, 3, 15, 7, 0)).tick(datetime(2024, 3, 15, 8, 1))
        assert again.id == fired.id
        assert db_session.query(Job).count() == 1

    def test_status(self, app, db_session):
        jobs.enqueue("test_record_call", 1)

        status = scheduler_status(now=datetime(2024, 3, 15, 9, 0))

        assert status["daily_report_time"] == "08:00"
        assert status["next_runs"] == {"daily_purchase_report": "2024-03-16T08:00:00Z"}
        assert status["job_stats"]["queues"]["low"] == 1
