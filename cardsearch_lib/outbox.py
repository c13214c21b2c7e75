"""
Index Outbox - Post-commit queue for best-effort index writes.

Card writes enqueue their indexing side effects here and flush the queue
after their own transaction has committed. Every job runs inside its own
error boundary: a failing job is logged and recorded, the remaining jobs
still run, and the card write that enqueued it is never affected.
"""

import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger(__name__)


@dataclass
class OutboxJob:
    """A deferred side effect."""
    name: str
    func: Callable[..., Any]
    args: tuple = ()


@dataclass
class OutboxFailure:
    """A job that raised while being flushed."""
    name: str
    error: str


class IndexOutbox:
    """FIFO queue of index jobs flushed after commit."""

    def __init__(self, max_failures: int = 100):
        self._jobs: deque[OutboxJob] = deque()
        self.failures: deque[OutboxFailure] = deque(maxlen=max_failures)

    def __len__(self) -> int:
        return len(self._jobs)

    def enqueue(self, name: str, func: Callable[..., Any], *args) -> None:
        self._jobs.append(OutboxJob(name=name, func=func, args=args))

    def flush(self) -> int:
        """
        Run every queued job in order.

        Returns:
            Number of jobs that completed without raising
        """
        completed = 0
        while self._jobs:
            job = self._jobs.popleft()
            try:
                job.func(*job.args)
                completed += 1
            except Exception as e:
                logger.warning(f"Index job '{job.name}' failed: {e}")
                self.failures.append(OutboxFailure(name=job.name, error=str(e)))
        return completed
