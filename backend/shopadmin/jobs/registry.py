# shopadmin/jobs/registry.py
"""
Background job registry.

Job functions register themselves with a decorator that names the queue
they run on:

    @job(queue="default")
    def first_purchase_notification(purchase_id: int) -> dict:
        ...

The queue stores only the job name and its JSON arguments; workers look the
function up here when they run it.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

# Highest priority first
QUEUES = ("critical", "default", "reports", "low")

F = TypeVar("F", bound=Callable[..., Any])


@dataclass(frozen=True)
class JobSpec:
    name: str
    queue: str
    func: Callable[..., Any]


class UnknownJobError(LookupError):
    """Raised when a job name has no registered function."""


# central registry: job name -> spec
_JOBS: dict[str, JobSpec] = {}


def job(*, queue: str, name: str | None = None) -> Callable[[F], F]:
    """
    Register a function as a background job on `queue`.

    The job name defaults to the function name and must be unique.
    """
    if queue not in QUEUES:
        raise ValueError(f"Unknown queue {queue!r}; expected one of {', '.join(QUEUES)}")

    def deco(fn: F) -> F:
        job_name = name or fn.__name__
        existing = _JOBS.get(job_name)
        if existing and existing.func is not fn:
            raise ValueError(f"Job {job_name!r} is already registered")
        _JOBS[job_name] = JobSpec(name=job_name, queue=queue, func=fn)
        setattr(fn, "__job_name__", job_name)
        setattr(fn, "__job_queue__", queue)
        return fn

    return deco


def get_job(name: str) -> JobSpec:
    try:
        return _JOBS[name]
    except KeyError:
        raise UnknownJobError(f"No job registered as {name!r}") from None
