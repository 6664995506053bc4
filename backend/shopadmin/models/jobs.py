from __future__ import annotations

from ..extensions import db
from shopadmin.time_utils import to_utc_z, utcnow


JOB_STATUSES = ("pending", "running", "done", "dead")


class Job(db.Model):
    """
    Durable background job.

    Workers claim a pending job by flipping status pending -> running with a
    conditional UPDATE; a job left running past the visibility timeout is
    claimable again, so delivery is at-least-once.
    """
    __tablename__ = "jobs"
    __table_args__ = (
        db.UniqueConstraint("unique_key", name="uq_jobs_unique_key"),
        db.Index("ix_jobs_claim", "status", "run_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    queue = db.Column(db.String(32), nullable=False, index=True)
    name = db.Column(db.String(64), nullable=False, index=True)
    args = db.Column(db.JSON, nullable=False, default=list)
    unique_key = db.Column(db.String(128), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="pending")
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text, nullable=True)

    run_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    locked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    finished_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<Job id={self.id} {self.queue}:{self.name} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "queue": self.queue,
            "name": self.name,
            "args": self.args,
            "status": self.status,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "run_at": to_utc_z(self.run_at),
            "finished_at": to_utc_z(self.finished_at),
            "created_at": to_utc_z(self.created_at),
        }
