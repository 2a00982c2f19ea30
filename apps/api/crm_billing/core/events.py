from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

SYSTEM_STARTED = "system.started"
CUSTOMER_CREATED = "customer.created"
RENEWAL_CREATED = "renewal.created"
INVOICE_CREATED = "invoice.created"
REMINDER_DISPATCHED = "reminder.dispatched"


@dataclass(frozen=True, slots=True)
class InternalEvent:
    name: str
    payload: dict[str, Any]


EventHandler = Callable[[InternalEvent], None]


class InProcessEventBus:
    """Synchronous fan-out to handlers registered in this process.

    Handlers run on the publisher's thread, inside its database session scope,
    and their exceptions propagate to the publisher.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_name: str, handler: EventHandler) -> Callable[[], None]:
        handlers = self._subscribers[event_name]
        if handler not in handlers:
            handlers.append(handler)

        def unsubscribe() -> None:
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def publish(self, event_name: str, payload: dict[str, Any]) -> None:
        event = InternalEvent(name=event_name, payload=payload)
        for handler in tuple(self._subscribers.get(event_name, ())):
            handler(event)


event_bus = InProcessEventBus()
