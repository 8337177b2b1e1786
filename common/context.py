"""Per-run request context.

Each agent run gets its own run id so log lines from interleaved runs can be
told apart. The context lives in ``contextvars`` and therefore follows the
asyncio task that owns the run.
"""

import logging
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Iterator, Optional


@dataclass(frozen=True)
class RunContext:
    """Identifiers attached to a single agent run."""

    run_id: str
    job_type: Optional[str] = None


_current: ContextVar[Optional[RunContext]] = ContextVar("run_context", default=None)


@contextmanager
def run_context(job_type: Optional[str] = None) -> Iterator[RunContext]:
    """Enter a fresh run context for the duration of the block."""
    ctx = RunContext(run_id=uuid.uuid4().hex, job_type=job_type)
    token = _current.set(ctx)
    try:
        yield ctx
    finally:
        _current.reset(token)


def get_run_id() -> Optional[str]:
    ctx = _current.get()
    return ctx.run_id if ctx else None


def get_job_type() -> Optional[str]:
    ctx = _current.get()
    return ctx.job_type if ctx else None


class RunContextFilter(logging.Filter):
    """Logging filter that stamps records with the current run id."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = get_run_id() or "-"
        return True
