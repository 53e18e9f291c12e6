"""Tests for the transactional outbox."""

from sqlmodel import select

from smartdca.core.events import Event, EventBus, EventType
from smartdca.core.models import OutboxMessage, Purchase, PurchaseStatus
from smartdca.core.outbox import OutboxDispatcher, make_outbox_message, purchase_domain_events


def _purchase(**kwargs):
    defaults = {"purchase_date": "2025-01-15", "price": 60000.0, "status": PurchaseStatus.FILLED}
    defaults.update(kwargs)
    return Purchase(**defaults)


class TestDomainEvents:
    def test_filled_purchase(self):
        messages = purchase_domain_events(_purchase(quantity=0.001, cost=60.0))

        assert [m.event_type for m in messages] == ["purchase_created", "purchase_completed"]
        assert '"quantity": 0.001' in messages[1].payload

    def test_failed_purchase(self):
        messages = purchase_domain_events(
            _purchase(status=PurchaseStatus.FAILED, failure_reason="Rejected")
        )

        assert [m.event_type for m in messages] == ["purchase_created", "purchase_failed"]

    def test_resting_order_reported_as_failure(self):
        messages = purchase_domain_events(
            _purchase(status=PurchaseStatus.PARTIALLY_FILLED, failure_reason="resting")
        )

        assert messages[-1].event_type == "purchase_failed"


class TestOutboxDispatcher:
    async def test_dispatches_pending_in_order(self, db_session):
        received: list[Event] = []

        async def handler(event: Event) -> None:
            received.append(event)

        bus = EventBus()
        bus.subscribe(EventType.MISSED_PURCHASE, handler)

        db_session.add(make_outbox_message(EventType.MISSED_PURCHASE, {"n": 1}))
        db_session.add(make_outbox_message(EventType.MISSED_PURCHASE, {"n": 2}))
        await db_session.commit()

        dispatcher = OutboxDispatcher(bus, session=db_session)
        assert await dispatcher.dispatch_pending() == 2
        assert [e.data["n"] for e in received] == [1, 2]

        # Processed messages are not delivered twice
        assert await dispatcher.dispatch_pending() == 0
        assert len(received) == 2

    async def test_bad_payload_counts_retries(self, db_session):
        db_session.add(OutboxMessage(event_type="missed_purchase", payload="{not json"))
        await db_session.commit()

        dispatcher = OutboxDispatcher(EventBus(), max_retries=2, session=db_session)
        assert await dispatcher.dispatch_pending() == 0
        assert await dispatcher.dispatch_pending() == 0

        message = (await db_session.execute(select(OutboxMessage))).scalar_one()
        assert message.retry_count == 2
        assert message.processed_at is None
        assert message.last_error

        # Abandoned after max_retries
        assert await dispatcher.dispatch_pending() == 0
        assert message.retry_count == 2

    async def test_unknown_event_type_is_retried(self, db_session):
        db_session.add(OutboxMessage(event_type="no_such_event", payload="{}"))
        await db_session.commit()

        dispatcher = OutboxDispatcher(EventBus(), session=db_session)
        await dispatcher.dispatch_pending()

        message = (await db_session.execute(select(OutboxMessage))).scalar_one()
        assert message.retry_count == 1

    async def test_start_and_stop(self, init_db):
        dispatcher = OutboxDispatcher(EventBus())

        task = dispatcher.start(interval=0.01)
        await dispatcher.stop()

        assert task.done()
