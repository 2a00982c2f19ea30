from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from crm_billing.context import get_correlation_id, get_job_name
from crm_billing.core.events import event_bus

published_events: list[dict[str, Any]] = []


def build_envelope(event_type: str, payload: dict[str, Any]) -> dict[str, Any]:
    envelope: dict[str, Any] = {
        "event_type": event_type,
        **payload,
        "correlation_id": get_correlation_id(),
        "occurred_at": datetime.now(timezone.utc).isoformat(),
    }
    job_name = get_job_name()
    if job_name is not None:
        envelope["meta"] = {"job_name": job_name}
    return envelope


def publish(event_type: str, **payload: Any) -> dict[str, Any]:
    envelope = build_envelope(event_type, payload)
    published_events.append(envelope)
    event_bus.publish(event_type, envelope)
    return envelope
