from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

billing_jobs_total = Counter(
    "billing_jobs_total",
    "Total scheduled billing job runs by status",
    ["job_name", "status"],
)

billing_job_duration_seconds = Histogram(
    "billing_job_duration_seconds",
    "Scheduled billing job duration in seconds",
    ["job_name"],
)

renewal_reminders_dispatched_total = Counter(
    "renewal_reminders_dispatched_total",
    "Renewal reminder dispatch attempts by outcome",
    ["outcome"],
)

status_sweep_transitions_total = Counter(
    "status_sweep_transitions_total",
    "Rows transitioned by the status sweep",
    ["entity", "status"],
)

auto_generation_total = Counter(
    "auto_generation_total",
    "Auto-generated billing artifacts by outcome",
    ["artifact", "outcome"],
)

invoice_number_collisions_total = Counter(
    "invoice_number_collisions_total",
    "Invoice number collisions detected on insert",
)


_ID_SEGMENT = re.compile(
    r"/(?:[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}|\d+)(?=/|$)"
)
_TEMPLATE_PARAM = re.compile(r"\{[^{}]+\}")


def resolve_http_path_label(request: Request) -> str:
    """Label by route template so ids never become label values."""
    template = getattr(request.scope.get("route"), "path", None)
    if isinstance(template, str) and template:
        return _TEMPLATE_PARAM.sub("{id}", template)
    return _ID_SEGMENT.sub("/{id}", request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_job(job_name: str, status: str, duration: float) -> None:
    billing_jobs_total.labels(job_name=job_name, status=status).inc()
    billing_job_duration_seconds.labels(job_name=job_name).observe(duration)


def observe_reminder_dispatch(outcome: str) -> None:
    renewal_reminders_dispatched_total.labels(outcome=outcome).inc()


def observe_status_transitions(entity: str, status: str, count: int) -> None:
    if count > 0:
        status_sweep_transitions_total.labels(entity=entity, status=status).inc(count)


def observe_auto_generation(artifact: str, outcome: str) -> None:
    auto_generation_total.labels(artifact=artifact, outcome=outcome).inc()


def observe_invoice_number_collision() -> None:
    invoice_number_collisions_total.inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
