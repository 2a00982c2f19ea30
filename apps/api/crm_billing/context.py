from __future__ import annotations

import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)
job_name_var: ContextVar[str | None] = ContextVar("job_name", default=None)


def get_correlation_id() -> str | None:
    return correlation_id_var.get()


def get_job_name() -> str | None:
    return job_name_var.get()


@contextmanager
def correlation_scope(correlation_id: str | None = None) -> Iterator[str]:
    """Bind a correlation id for the block, generating one when none is given."""
    value = correlation_id or str(uuid.uuid4())
    token = correlation_id_var.set(value)
    try:
        yield value
    finally:
        correlation_id_var.reset(token)


@contextmanager
def job_scope(job_name: str) -> Iterator[str]:
    """Bind a job name for one scheduled run.

    A correlation id already bound by the caller is kept, so a run triggered
    from a request logs under that request's id.
    """
    with correlation_scope(get_correlation_id()) as correlation_id:
        token = job_name_var.set(job_name)
        try:
            yield correlation_id
        finally:
            job_name_var.reset(token)
