from __future__ import annotations

import logging
from collections.abc import Generator
from datetime import date, datetime, timezone

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from crm_billing import events
from crm_billing.billing.models import RenewalReminder
from crm_billing.billing.reminders import ReminderDispatcher, parse_reminder_days, render_reminder_message
from crm_billing.core.database import Base
from crm_billing.customers.models import Customer
from crm_billing.messaging.models import WhatsAppMessage
from crm_billing.messaging.notifier import NotificationOutcome, NotifierError


class RecordingNotifier:
    def __init__(self, failing: set[str] | None = None) -> None:
        self.sent: list[tuple[str, str]] = []
        self.failing = failing or set()

    def send(self, destination: str, text: str) -> NotificationOutcome:
        if destination in self.failing:
            raise NotifierError("provider timeout")
        self.sent.append((destination, text))
        return NotificationOutcome(provider_message_id=f"wamid.{len(self.sent)}")


class MutableClock:
    def __init__(self, value: datetime) -> None:
        self.value = value

    def __call__(self) -> datetime:
        return self.value


@pytest.fixture()
def session_factory() -> Generator[sessionmaker[Session], None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def reset_events() -> Generator[None, None, None]:
    events.published_events.clear()
    yield
    events.published_events.clear()


def _seed(
    session_factory: sessionmaker[Session],
    *,
    name: str = "Asha Traders",
    whatsapp_number: str | None = "+919876543210",
    expiry_date: date = date(2024, 4, 17),
    reminder_days: object = (30, 7, 1),
    status: str = "active",
    template: str | None = None,
) -> RenewalReminder:
    session = session_factory()
    try:
        customer = Customer(name=name, whatsapp_number=whatsapp_number)
        session.add(customer)
        session.flush()
        reminder = RenewalReminder(
            customer_id=customer.id,
            service_type="domain",
            service_name="asha.in",
            expiry_date=expiry_date,
            reminder_days=list(reminder_days) if isinstance(reminder_days, tuple) else reminder_days,
            status=status,
            whatsapp_template=template,
        )
        session.add(reminder)
        session.commit()
        session.refresh(reminder)
        session.expunge(reminder)
        return reminder
    finally:
        session.close()


def _reminder(session_factory: sessionmaker[Session], reminder_id: object) -> RenewalReminder:
    session = session_factory()
    try:
        reminder = session.get(RenewalReminder, reminder_id)
        assert reminder is not None
        session.expunge(reminder)
        return reminder
    finally:
        session.close()


def _messages(session_factory: sessionmaker[Session]) -> list[WhatsAppMessage]:
    session = session_factory()
    try:
        rows = list(session.scalars(select(WhatsAppMessage).order_by(WhatsAppMessage.created_at)).all())
        for row in rows:
            session.expunge(row)
        return rows
    finally:
        session.close()


def test_reminder_sent_once_per_day(session_factory: sessionmaker[Session]) -> None:
    seeded = _seed(session_factory)
    notifier = RecordingNotifier()
    clock = MutableClock(datetime(2024, 4, 10, 9, 0, tzinfo=timezone.utc))
    dispatcher = ReminderDispatcher(session_factory, notifier, clock=clock)

    first = dispatcher.run_reminder_sweep()
    clock.value = datetime(2024, 4, 10, 15, 0, tzinfo=timezone.utc)
    second = dispatcher.run_reminder_sweep()

    assert (first.sent_count, first.failed_count, first.skipped_count) == (1, 0, 0)
    assert (second.sent_count, second.skipped_count) == (0, 1)
    assert notifier.sent == [
        ("+919876543210", "Hi Asha Traders, your asha.in expires on 17 Apr 2024. Please renew to continue service."),
    ]
    assert _reminder(session_factory, seeded.id).last_reminder_sent == date(2024, 4, 10)

    messages = _messages(session_factory)
    assert [(row.status, row.provider_message_id) for row in messages] == [("sent", "wamid.1")]
    assert messages[0].reminder_id == seeded.id

    dispatched = [event for event in events.published_events if event["event_type"] == "reminder.dispatched"]
    assert dispatched[0]["days_until_expiry"] == 7


def test_reminder_sends_again_on_a_later_matching_offset(session_factory: sessionmaker[Session]) -> None:
    _seed(session_factory)
    notifier = RecordingNotifier()
    clock = MutableClock(datetime(2024, 4, 10, 9, 0, tzinfo=timezone.utc))
    dispatcher = ReminderDispatcher(session_factory, notifier, clock=clock)

    dispatcher.run_reminder_sweep()
    clock.value = datetime(2024, 4, 11, 9, 0, tzinfo=timezone.utc)
    off_offset = dispatcher.run_reminder_sweep()
    clock.value = datetime(2024, 4, 16, 9, 0, tzinfo=timezone.utc)
    last_day = dispatcher.run_reminder_sweep()

    assert off_offset.sent_count == 0
    assert last_day.sent_count == 1
    assert len(notifier.sent) == 2


def test_transport_failure_is_recorded_and_sweep_continues(session_factory: sessionmaker[Session]) -> None:
    failing = _seed(session_factory, name="Failing Co", whatsapp_number="+911111111111")
    working = _seed(session_factory, name="Working Co", whatsapp_number="+912222222222")
    notifier = RecordingNotifier(failing={"+911111111111"})
    dispatcher = ReminderDispatcher(
        session_factory,
        notifier,
        clock=lambda: datetime(2024, 4, 10, 9, 0, tzinfo=timezone.utc),
    )

    result = dispatcher.run_reminder_sweep()

    assert (result.sent_count, result.failed_count) == (1, 1)
    assert _reminder(session_factory, failing.id).last_reminder_sent is None
    assert _reminder(session_factory, working.id).last_reminder_sent == date(2024, 4, 10)
    by_status = {row.status: row for row in _messages(session_factory)}
    assert by_status["failed"].error_message == "provider timeout"
    assert by_status["failed"].sent_at is None
    assert by_status["sent"].phone_number == "+912222222222"


def test_missed_offset_is_not_caught_up(session_factory: sessionmaker[Session]) -> None:
    failing = _seed(session_factory, whatsapp_number="+911111111111")
    notifier = RecordingNotifier(failing={"+911111111111"})
    clock = MutableClock(datetime(2024, 4, 10, 9, 0, tzinfo=timezone.utc))
    dispatcher = ReminderDispatcher(session_factory, notifier, clock=clock)

    dispatcher.run_reminder_sweep()
    notifier.failing.clear()
    clock.value = datetime(2024, 4, 11, 9, 0, tzinfo=timezone.utc)
    result = dispatcher.run_reminder_sweep()

    assert result.sent_count == 0
    assert notifier.sent == []
    assert _reminder(session_factory, failing.id).last_reminder_sent is None


def test_reminders_without_destination_or_inactive_are_ignored(session_factory: sessionmaker[Session]) -> None:
    _seed(session_factory, name="No Number", whatsapp_number=None)
    _seed(session_factory, name="Blank Number", whatsapp_number="")
    _seed(session_factory, name="Cancelled", status="cancelled")
    notifier = RecordingNotifier()
    dispatcher = ReminderDispatcher(
        session_factory,
        notifier,
        clock=lambda: datetime(2024, 4, 10, 9, 0, tzinfo=timezone.utc),
    )

    result = dispatcher.run_reminder_sweep()

    assert (result.sent_count, result.failed_count, result.skipped_count) == (0, 0, 0)
    assert notifier.sent == []


def test_malformed_offsets_never_dispatch(session_factory: sessionmaker[Session]) -> None:
    _seed(session_factory, reminder_days="seven")
    _seed(session_factory, name="Dict Offsets", reminder_days={"days": 7})
    notifier = RecordingNotifier()
    dispatcher = ReminderDispatcher(
        session_factory,
        notifier,
        clock=lambda: datetime(2024, 4, 10, 9, 0, tzinfo=timezone.utc),
    )

    result = dispatcher.run_reminder_sweep()

    assert result.sent_count == 0
    assert result.skipped_count == 2


def test_custom_template_and_date_format(session_factory: sessionmaker[Session]) -> None:
    _seed(session_factory, template="{customerName}: {serviceName} ends {expiryDate}. Renew {serviceName} today, {customerName}!")
    notifier = RecordingNotifier()
    dispatcher = ReminderDispatcher(
        session_factory,
        notifier,
        clock=lambda: datetime(2024, 4, 10, 9, 0, tzinfo=timezone.utc),
        date_format="%Y-%m-%d",
    )

    dispatcher.run_reminder_sweep()

    assert notifier.sent[0][1] == "Asha Traders: asha.in ends 2024-04-17. Renew asha.in today, Asha Traders!"


def test_overlapping_sweep_returns_immediately(session_factory: sessionmaker[Session]) -> None:
    _seed(session_factory)
    nested_results = []

    class ReentrantNotifier(RecordingNotifier):
        def send(self, destination: str, text: str) -> NotificationOutcome:
            nested_results.append(dispatcher.run_reminder_sweep())
            return super().send(destination, text)

    notifier = ReentrantNotifier()
    dispatcher = ReminderDispatcher(
        session_factory,
        notifier,
        clock=lambda: datetime(2024, 4, 10, 9, 0, tzinfo=timezone.utc),
    )

    outer = dispatcher.run_reminder_sweep()

    assert outer.sent_count == 1
    assert len(nested_results) == 1
    assert nested_results[0].skipped_overlap is True
    assert nested_results[0].sent_count == 0


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ([30, 7, 1], {30, 7, 1}),
        ("[15, 3]", {15, 3}),
        (["7", " 1 "], {7, 1}),
        ([True, 2], {2}),
        ("not json", set()),
        (None, set()),
        ({"days": 7}, set()),
    ],
)
def test_parse_reminder_days(raw: object, expected: set[int]) -> None:
    assert parse_reminder_days(raw) == expected


def test_render_falls_back_to_default_template() -> None:
    text = render_reminder_message(
        "   ",
        customer_name="Ravi",
        service_name="Hosting",
        expiry_date=date(2024, 1, 5),
    )
    assert text == "Hi Ravi, your Hosting expires on 05 Jan 2024. Please renew to continue service."


def test_failed_commit_counts_as_failure_and_sweep_continues(
    session_factory: sessionmaker[Session], caplog: pytest.LogCaptureFixture
) -> None:
    locked = _seed(
        session_factory,
        name="Bharat Stores",
        whatsapp_number="+919800000001",
        expiry_date=date(2024, 4, 11),
        reminder_days=(1,),
    )
    healthy = _seed(session_factory)

    def factory_with_locked_first_commit() -> Session:
        session = session_factory()
        real_commit = session.commit
        calls = {"count": 0}

        def commit() -> None:
            calls["count"] += 1
            if calls["count"] == 1:
                raise OperationalError("COMMIT", {}, Exception("database is locked"))
            real_commit()

        session.commit = commit  # type: ignore[method-assign]
        return session

    notifier = RecordingNotifier()
    dispatcher = ReminderDispatcher(
        factory_with_locked_first_commit,
        notifier,
        clock=MutableClock(datetime(2024, 4, 10, 9, 0, tzinfo=timezone.utc)),
    )

    with caplog.at_level(logging.ERROR, logger="crm_billing.reminders"):
        result = dispatcher.run_reminder_sweep()

    assert (result.sent_count, result.failed_count) == (1, 1)
    assert [destination for destination, _ in notifier.sent] == ["+919800000001", "+919876543210"]
    assert _reminder(session_factory, locked.id).last_reminder_sent is None
    assert _reminder(session_factory, healthy.id).last_reminder_sent == date(2024, 4, 10)
    assert [(row.reminder_id, row.status) for row in _messages(session_factory)] == [(healthy.id, "sent")]
    assert any(record.getMessage() == "reminder.persist_failed" for record in caplog.records)
    dispatched = [event for event in events.published_events if event["event_type"] == "reminder.dispatched"]
    assert [event["reminder_id"] for event in dispatched] == [str(healthy.id)]
