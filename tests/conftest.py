"""Shared pytest fixtures."""

from datetime import UTC, date, datetime, timedelta

import pytest
import pytest_asyncio


@pytest.fixture(autouse=True)
def setup_test_database(tmp_path, monkeypatch):
    """Set up a fresh test database and fresh globals for each test."""
    db_path = tmp_path / "test_smartdca.db"
    # SMARTDCA_DB_ prefix + url field
    monkeypatch.setenv("SMARTDCA_DB_URL", f"sqlite+aiosqlite:///{db_path}")
    monkeypatch.setenv("SMARTDCA_EXCHANGE_DEMO", "true")
    monkeypatch.delenv("SMARTDCA_API_TOKEN", raising=False)
    monkeypatch.delenv("SMARTDCA_DCA_DRY_RUN", raising=False)

    import smartdca.config as config_module
    import smartdca.core.database as db_module
    import smartdca.core.events as events_module
    import smartdca.core.locks as locks_module
    import smartdca.core.repository as repo_module
    import smartdca.exchange as exchange_module
    import smartdca.exchange.demo as demo_module

    config_module._settings = None
    db_module._engine = None
    db_module._async_session_factory = None
    events_module._event_bus = None
    repo_module._purchase_repository = None
    repo_module._price_repository = None
    locks_module._lock = None
    exchange_module._live_client = None
    demo_module._demo_client = None

    yield

    if db_path.exists():
        try:
            db_path.unlink()
        except PermissionError:
            pass  # May be locked on Windows


@pytest_asyncio.fixture
async def init_db():
    """Initialize the database tables."""
    from smartdca.core.database import init_db as _init_db

    await _init_db()


@pytest_asyncio.fixture
async def db_session(init_db):
    """A session on the test database."""
    from smartdca.core.database import get_session_factory

    async with get_session_factory()() as session:
        yield session


@pytest.fixture
def daily_prices():
    """Build DailyPriceData rows from a list of closes, one per day from 2024-01-01."""
    from smartdca.backtester.data import DailyPriceData

    def _build(closes, start=date(2024, 1, 1)):
        return [
            DailyPriceData(
                date=start + timedelta(days=i),
                open=close,
                high=close,
                low=close,
                close=close,
                volume=1.0,
            )
            for i, close in enumerate(closes)
        ]

    return _build


@pytest.fixture
def fixed_clock():
    """Clock factory returning a fixed UTC instant."""

    def _clock(year=2025, month=1, day=15, hour=12, minute=0):
        moment = datetime(year, month, day, hour, minute, tzinfo=UTC)
        return lambda: moment

    return _clock
