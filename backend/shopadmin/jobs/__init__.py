# Overview: Background jobs package; exposes the app-wide job queue.

from .queue import JobQueue
from .registry import QUEUES, job

jobs = JobQueue()

__all__ = ["JobQueue", "QUEUES", "job", "jobs"]
