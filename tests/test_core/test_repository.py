"""Tests for purchase and price repositories."""

from datetime import UTC, date, datetime, timedelta

import pytest
from sqlmodel import select

from smartdca.core.events import EventType
from smartdca.core.models import DailyPrice, OutboxMessage, Purchase, PurchaseStatus
from smartdca.core.repository import DailyPriceRepository, PurchaseRepository, ensure_utc

DAY = date(2025, 1, 15)


def make_purchase(status=PurchaseStatus.FILLED, purchase_date=DAY, is_dry_run=False, hour=0, **kwargs):
    return Purchase(
        purchase_date=purchase_date.isoformat(),
        executed_at=datetime.combine(purchase_date, datetime.min.time(), tzinfo=UTC)
        + timedelta(hours=hour),
        price=60000.0,
        quantity=0.0002,
        cost=12.0,
        status=status,
        is_dry_run=is_dry_run,
        **kwargs,
    )


class TestPurchaseRepository:
    """Tests for PurchaseRepository class."""

    @pytest.fixture
    async def repo(self, init_db):
        return PurchaseRepository()

    async def test_save_and_get(self, repo):
        purchase = await repo.save(make_purchase())

        loaded = await repo.get_purchase(purchase.id)
        assert loaded is not None
        assert loaded.status == PurchaseStatus.FILLED
        assert loaded.cost == 12.0

    async def test_save_writes_outbox_events(self, repo, db_session):
        purchase = await repo.save(make_purchase())

        result = await db_session.execute(
            select(OutboxMessage).where(OutboxMessage.aggregate_id == purchase.id)
        )
        types = sorted(m.event_type for m in result.scalars().all())
        assert types == ["purchase_completed", "purchase_created"]

    async def test_failed_purchase_raises_failed_event(self, repo, db_session):
        purchase = await repo.save(
            make_purchase(status=PurchaseStatus.FAILED, failure_reason="Insufficient margin")
        )

        result = await db_session.execute(
            select(OutboxMessage).where(OutboxMessage.event_type == "purchase_failed")
        )
        message = result.scalar_one()
        assert message.aggregate_id == purchase.id
        assert "Insufficient margin" in message.payload

    async def test_successful_for_date_ignores_failures(self, repo):
        await repo.save(make_purchase(status=PurchaseStatus.FAILED))
        assert await repo.get_successful_for_date(DAY) is None

        await repo.save(make_purchase(status=PurchaseStatus.PARTIALLY_FILLED))
        found = await repo.get_successful_for_date(DAY)
        assert found is not None
        assert found.status == PurchaseStatus.PARTIALLY_FILLED

    async def test_successful_for_date_dry_run_filter(self, repo):
        await repo.save(make_purchase(is_dry_run=True))

        assert await repo.get_successful_for_date(DAY) is not None
        assert await repo.get_successful_for_date(DAY, include_dry_run=False) is None

    async def test_last_successful_date(self, repo):
        assert await repo.get_last_successful_date() is None

        await repo.save(make_purchase(purchase_date=date(2025, 1, 10)))
        await repo.save(make_purchase(purchase_date=date(2025, 1, 12)))
        await repo.save(make_purchase(purchase_date=date(2025, 1, 14), status=PurchaseStatus.FAILED))

        assert await repo.get_last_successful_date() == date(2025, 1, 12)

    async def test_last_successful_excludes_dry_run(self, repo):
        await repo.save(make_purchase(purchase_date=date(2025, 1, 10)))
        await repo.save(make_purchase(purchase_date=date(2025, 1, 11), is_dry_run=True))

        last = await repo.get_last_successful()
        assert last.purchase_date == "2025-01-10"
        assert await repo.get_last_successful_date(include_dry_run=False) == date(2025, 1, 10)
        assert await repo.get_last_successful_date(include_dry_run=True) == date(2025, 1, 11)

    async def test_latest_failed_for_date(self, repo):
        await repo.save(make_purchase(status=PurchaseStatus.FAILED, failure_reason="first", hour=1))
        await repo.save(make_purchase(status=PurchaseStatus.FAILED, failure_reason="second", hour=2))

        failed = await repo.get_latest_failed_for_date(DAY)
        assert failed.failure_reason == "second"

    async def test_recent_newest_first(self, repo):
        for hour in range(3):
            await repo.save(make_purchase(hour=hour, order_id=f"o{hour}"))

        recent = await repo.get_recent(limit=2)
        assert [p.order_id for p in recent] == ["o2", "o1"]

    async def test_alert_dedup(self, repo):
        key = "missed-purchase-2025-01-15"
        assert await repo.has_alert(EventType.MISSED_PURCHASE, key) is False

        await repo.record_alert(EventType.MISSED_PURCHASE, key, {"purchase_date": "2025-01-15"})

        assert await repo.has_alert(EventType.MISSED_PURCHASE, key) is True
        assert await repo.has_alert(EventType.MISSED_PURCHASE, "missed-purchase-2025-01-16") is False


class TestDailyPriceRepository:
    @pytest.fixture
    async def repo(self, init_db):
        return DailyPriceRepository()

    def _candle(self, day, close):
        return DailyPrice(symbol="BTC/USDC", date=day, open=close, high=close, low=close, close=close)

    async def test_upsert_inserts_and_updates(self, repo):
        await repo.upsert_many("BTC/USDC", [self._candle("2025-01-01", 100.0)])
        written = await repo.upsert_many(
            "BTC/USDC",
            [self._candle("2025-01-01", 110.0), self._candle("2025-01-02", 120.0)],
        )

        assert written == 2
        rows = await repo.get_range("BTC/USDC")
        assert [(r.date, r.close) for r in rows] == [("2025-01-01", 110.0), ("2025-01-02", 120.0)]

    async def test_range_bounds_inclusive(self, repo):
        await repo.upsert_many(
            "BTC/USDC", [self._candle(f"2025-01-0{d}", float(d)) for d in range(1, 6)]
        )

        rows = await repo.get_range("BTC/USDC", date(2025, 1, 2), date(2025, 1, 4))
        assert [r.close for r in rows] == [2.0, 3.0, 4.0]

    async def test_latest_date_per_symbol(self, repo):
        assert await repo.get_latest_date("BTC/USDC") is None

        await repo.upsert_many("BTC/USDC", [self._candle("2025-01-03", 1.0)])
        assert await repo.get_latest_date("BTC/USDC") == date(2025, 1, 3)
        assert await repo.get_latest_date("ETH/USDC") is None


def test_ensure_utc_attaches_timezone():
    naive = datetime(2025, 1, 1, 12, 0)

    assert ensure_utc(naive).tzinfo == UTC
    aware = datetime(2025, 1, 1, tzinfo=UTC)
    assert ensure_utc(aware) is aware
