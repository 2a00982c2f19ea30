from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

from crm_billing.core.config import Settings
from crm_billing.otel import get_tracer


logger = logging.getLogger("crm_billing.notifier")
tracer = get_tracer(__name__)


class NotifierError(Exception):
    """Raised when a message could not be handed to the transport."""


@dataclass(slots=True)
class NotificationOutcome:
    provider_message_id: str | None = None


class Notifier(Protocol):
    def send(self, destination: str, text: str) -> NotificationOutcome: ...


class LoggingNotifier:
    def send(self, destination: str, text: str) -> NotificationOutcome:
        logger.info("notifier.logged", extra={"destination": destination, "message_length": len(text)})
        return NotificationOutcome()


class WhatsAppCloudNotifier:
    """Sends text messages through a WhatsApp Cloud (Graph API style) endpoint."""

    def __init__(
        self,
        *,
        api_url: str,
        api_token: str,
        phone_number_id: str,
        timeout_seconds: float = 5.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.endpoint = f"{api_url.rstrip('/')}/{phone_number_id}/messages"
        self._client = client or httpx.Client(timeout=timeout_seconds)
        self._headers = {"Authorization": f"Bearer {api_token}"}
        self._timeout = timeout_seconds

    def send(self, destination: str, text: str) -> NotificationOutcome:
        body = {
            "messaging_product": "whatsapp",
            "to": _normalize_destination(destination),
            "type": "text",
            "text": {"body": text},
        }
        with tracer.start_as_current_span("notifier.whatsapp.send") as span:
            span.set_attribute("destination", body["to"])
            try:
                response = self._client.post(self.endpoint, json=body, headers=self._headers, timeout=self._timeout)
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                span.set_attribute("http.status_code", exc.response.status_code)
                raise NotifierError(f"whatsapp api returned {exc.response.status_code}: {exc.response.text[:200]}") from exc
            except httpx.HTTPError as exc:
                raise NotifierError(f"whatsapp api request failed: {exc}") from exc

        message_id = None
        try:
            messages = response.json().get("messages") or []
        except ValueError:
            messages = []
        if messages and isinstance(messages[0], dict):
            message_id = messages[0].get("id")
        return NotificationOutcome(provider_message_id=message_id)

    def close(self) -> None:
        self._client.close()


def _normalize_destination(destination: str) -> str:
    return "".join(ch for ch in destination if ch.isdigit())


def build_notifier(settings: Settings) -> Notifier:
    if settings.notifier_backend == "whatsapp_cloud":
        return WhatsAppCloudNotifier(
            api_url=settings.whatsapp_api_url,
            api_token=settings.whatsapp_api_token,
            phone_number_id=settings.whatsapp_phone_number_id,
            timeout_seconds=settings.notifier_timeout_seconds,
        )
    return LoggingNotifier()
