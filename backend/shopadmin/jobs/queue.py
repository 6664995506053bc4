# Overview: Database-backed job queue; enqueue, claim, run, retry and worker threads.

"""
Job Queue

Jobs live in the `jobs` table. Lifecycle:

    pending --claim--> running --ok--> done
                          |
                          +--error--> pending (run_at pushed back)
                          +--error, attempts exhausted--> dead

Claiming is a conditional UPDATE on status, so two workers can never both
own a job. A job stuck in `running` longer than JOB_VISIBILITY_TIMEOUT is
claimable again: delivery is at-least-once and job functions must be safe
to re-run.

Queues are served by priority (critical > default > reports > low), then
by run_at.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta

from flask import Flask, current_app
from sqlalchemy import and_, case, func, or_, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import JOB_STATUSES, Job
from .registry import QUEUES, UnknownJobError, get_job
from shopadmin.time_utils import utcnow


class JobQueue:
    def __init__(self, app: Flask | None = None):
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        app.extensions["job_queue"] = self
        # registers the job functions
        from . import notifications  # noqa: F401

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def enqueue(
        self,
        name: str,
        *args,
        queue: str | None = None,
        run_at: datetime | None = None,
        unique_key: str | None = None,
    ) -> Job:
        """
        Persist a job and commit. With `unique_key`, an existing job carrying
        the same key is returned instead of creating a second one.
        """
        spec = get_job(name)
        queue = queue or spec.queue
        if queue not in QUEUES:
            raise ValueError(f"Unknown queue {queue!r}")

        if unique_key:
            existing = db.session.query(Job).filter_by(unique_key=unique_key).first()
            if existing:
                return existing

        job = Job(
            queue=queue,
            name=name,
            args=list(args),
            unique_key=unique_key,
            status="pending",
            attempts=0,
            run_at=run_at or utcnow(),
        )
        db.session.add(job)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            if unique_key:
                return db.session.query(Job).filter_by(unique_key=unique_key).one()
            raise

        current_app.logger.info("Enqueued job %s #%s on %s", name, job.id, queue)
        return job

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    def _claimable(self, now: datetime):
        timeout = current_app.config.get("JOB_VISIBILITY_TIMEOUT", 300)
        return or_(
            and_(Job.status == "pending", Job.run_at <= now),
            and_(Job.status == "running", Job.locked_at < now - timedelta(seconds=timeout)),
        )

    def claim(self, queues=QUEUES) -> Job | None:
        """Take ownership of the next due job, or None when nothing is due."""
        now = utcnow()
        priority = case(
            {q: i for i, q in enumerate(QUEUES)},
            value=Job.queue,
            else_=len(QUEUES),
        )
        candidates = (
            db.session.query(Job.id)
            .filter(Job.queue.in_(queues), self._claimable(now))
            .order_by(priority, Job.run_at.asc(), Job.id.asc())
            .limit(10)
            .all()
        )

        for (job_id,) in candidates:
            result = db.session.execute(
                update(Job)
                .where(Job.id == job_id, self._claimable(now))
                .values(status="running", locked_at=now, attempts=Job.attempts + 1)
                .execution_options(synchronize_session=False)
            )
            db.session.commit()
            if result.rowcount == 1:
                return db.session.get(Job, job_id, populate_existing=True)
        return None

    def _backoff(self, attempts: int) -> timedelta:
        base = current_app.config.get("JOB_BACKOFF_BASE", 15)
        return timedelta(seconds=base * (2 ** max(attempts - 1, 0)))

    def _finish(self, job_id: int) -> None:
        job = db.session.get(Job, job_id, populate_existing=True)
        job.status = "done"
        job.locked_at = None
        job.finished_at = utcnow()
        db.session.commit()

    def _fail(self, job_id: int, exc: Exception, *, retry: bool = True) -> None:
        job = db.session.get(Job, job_id, populate_existing=True)
        max_attempts = current_app.config.get("JOB_MAX_ATTEMPTS", 5)

        job.last_error = f"{type(exc).__name__}: {exc}"[:2000]
        job.locked_at = None
        if not retry or job.attempts >= max_attempts:
            job.status = "dead"
            job.finished_at = utcnow()
            current_app.logger.error(
                "Job %s #%s dead after %s attempts: %s", job.name, job.id, job.attempts, job.last_error
            )
        else:
            job.status = "pending"
            job.run_at = utcnow() + self._backoff(job.attempts)
            current_app.logger.warning(
                "Job %s #%s failed (attempt %s/%s), retrying at %s: %s",
                job.name, job.id, job.attempts, max_attempts, job.run_at, job.last_error,
            )
        db.session.commit()

    def perform(self, job: Job) -> bool:
        """Run a claimed job. Returns True when it succeeded."""
        job_id, name, args = job.id, job.name, list(job.args or [])
        try:
            spec = get_job(name)
        except UnknownJobError as exc:
            self._fail(job_id, exc, retry=False)
            return False

        try:
            spec.func(*args)
        except Exception as exc:
            db.session.rollback()
            current_app.logger.exception("Job %s #%s raised", name, job_id)
            self._fail(job_id, exc)
            return False

        self._finish(job_id)
        current_app.logger.info("Job %s #%s done", name, job_id)
        return True

    def work_once(self, queues=QUEUES) -> bool:
        """Claim and run one job. False when no job was due."""
        job = self.claim(queues)
        if job is None:
            return False
        self.perform(job)
        return True

    def drain(self, queues=QUEUES, max_jobs: int | None = None) -> int:
        """Run due jobs until none is left (or `max_jobs` ran). Returns the count run."""
        count = 0
        while max_jobs is None or count < max_jobs:
            if not self.work_once(queues):
                break
            count += 1
        return count

    def work(self, app: Flask, *, workers: int | None = None, stop_event: threading.Event | None = None,
             queues=QUEUES) -> list[threading.Thread]:
        """
        Start worker threads, each polling the queue inside its own app context.
        Threads stop when `stop_event` is set.
        """
        stop_event = stop_event or threading.Event()
        workers = workers or app.config.get("JOB_WORKERS", 4)
        poll = app.config.get("JOB_POLL_INTERVAL", 1.0)

        def _loop():
            with app.app_context():
                while not stop_event.is_set():
                    try:
                        ran = self.work_once(queues)
                    except Exception:
                        db.session.rollback()
                        current_app.logger.exception("Worker loop error")
                        ran = False
                    finally:
                        db.session.remove()
                    if not ran:
                        stop_event.wait(poll)

        threads = []
        for i in range(workers):
            t = threading.Thread(target=_loop, name=f"job-worker-{i + 1}", daemon=True)
            t.start()
            threads.append(t)
        app.logger.info("Started %s job workers on %s", workers, ", ".join(queues))
        return threads

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def stats(self) -> dict:
        pending = dict(
            db.session.query(Job.queue, func.count(Job.id))
            .filter(Job.status == "pending")
            .group_by(Job.queue)
            .all()
        )
        by_status = dict(
            db.session.query(Job.status, func.count(Job.id)).group_by(Job.status).all()
        )
        retrying = (
            db.session.query(func.count(Job.id))
            .filter(Job.status == "pending", Job.attempts > 0)
            .scalar()
        )
        return {
            "queues": {q: int(pending.get(q, 0)) for q in QUEUES},
            **{status: int(by_status.get(status, 0)) for status in JOB_STATUSES},
            "retrying": int(retrying or 0),
        }
