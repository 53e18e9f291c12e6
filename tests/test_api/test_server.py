"""Tests for the API server endpoints."""

from datetime import UTC, date, datetime, timedelta

import pytest
from httpx import ASGITransport, AsyncClient

from smartdca.api.server import create_app
from smartdca.core.models import DailyPrice, Purchase, PurchaseStatus
from smartdca.core.repository import DailyPriceRepository, PurchaseRepository

_BASE_URL = "http://test"

START = date(2025, 1, 1)
CLOSES = [100.0, 95.0, 88.0, 80.0, 85.0, 92.0, 78.0, 83.0, 90.0, 96.0]


@pytest.fixture
async def app(init_db):
    """Create a fresh FastAPI app on an initialized database."""
    return create_app()


@pytest.fixture
async def client(app):
    """Async HTTP client wired to the ASGI app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url=_BASE_URL) as c:
        yield c


@pytest.fixture
def _set_api_token(monkeypatch):
    """Set a bearer token for auth tests."""
    import smartdca.config as config_module

    monkeypatch.setenv("SMARTDCA_API_TOKEN", "secret123")
    config_module._settings = None


@pytest.fixture
async def stored_prices(init_db):
    rows = [
        DailyPrice(
            symbol="BTC/USDC",
            date=(START + timedelta(days=i)).isoformat(),
            open=close,
            high=close,
            low=close,
            close=close,
        )
        for i, close in enumerate(CLOSES)
    ]
    await DailyPriceRepository().upsert_many("BTC/USDC", rows)


# -- Auth ----------------------------------------------------------------------


async def test_auth_skipped_when_token_empty(client):
    resp = await client.get("/api/health")
    assert resp.status_code == 200


@pytest.mark.usefixtures("_set_api_token")
async def test_auth_rejects_missing_header(client):
    resp = await client.get("/api/health")
    assert resp.status_code == 401


@pytest.mark.usefixtures("_set_api_token")
async def test_auth_rejects_wrong_token(client):
    resp = await client.get("/api/health", headers={"Authorization": "Bearer wrong"})
    assert resp.status_code == 401


@pytest.mark.usefixtures("_set_api_token")
async def test_auth_accepts_valid_token(client):
    resp = await client.get("/api/health", headers={"Authorization": "Bearer secret123"})
    assert resp.status_code == 200


# -- Backtest --------------------------------------------------------------------


async def test_backtest_without_data_is_404(client):
    resp = await client.post("/api/backtest", json={})

    assert resp.status_code == 404
    assert "No daily price data for BTC/USDC" in resp.json()["detail"]


@pytest.mark.usefixtures("stored_prices")
async def test_backtest_over_stored_prices(client):
    resp = await client.post("/api/backtest", json={})

    assert resp.status_code == 200
    data = resp.json()
    assert data["total_days"] == len(CLOSES)
    assert data["start_date"] == "2025-01-01"
    assert data["end_date"] == "2025-01-10"
    assert data["config"]["base_daily_amount"] == 10.0
    assert len(data["result"]["purchase_log"]) == len(CLOSES)
    assert data["result"]["fixed_dca_same_base"]["total_invested"] == pytest.approx(100.0)


@pytest.mark.usefixtures("stored_prices")
async def test_backtest_overrides_and_date_range(client):
    resp = await client.post(
        "/api/backtest",
        json={
            "start_date": "2025-01-03",
            "end_date": "2025-01-05",
            "base_daily_amount": 20,
            "tiers": [{"drop_percentage": 10, "multiplier": 2}],
        },
    )

    assert resp.status_code == 200
    data = resp.json()
    assert data["total_days"] == 3
    assert data["config"]["base_daily_amount"] == 20.0
    assert data["config"]["tiers"] == [{"drop_percentage": 0.1, "multiplier": 2.0}]


@pytest.mark.parametrize(
    "body",
    [
        {"start_date": "2025-01-10", "end_date": "2025-01-01"},
        {"base_daily_amount": -5},
        {"tiers": [{"drop_percentage": 150, "multiplier": 2}]},
    ],
)
async def test_backtest_invalid_request_is_400(client, body):
    resp = await client.post("/api/backtest", json=body)
    assert resp.status_code == 400


# -- Sweep -----------------------------------------------------------------------


@pytest.mark.usefixtures("stored_prices")
async def test_sweep_small_grid(client):
    resp = await client.post(
        "/api/backtest/sweep",
        json={"base_daily_amounts": [10, 20], "rank_by": "costbasis"},
    )

    assert resp.status_code == 200
    data = resp.json()
    assert data["total_combinations"] == 2
    assert data["executed_combinations"] == 2
    assert data["rank_by"] == "costbasis"
    assert [r["rank"] for r in data["results"]] == [1, 2]
    assert data["walk_forward"] is None


@pytest.mark.usefixtures("stored_prices")
async def test_sweep_full_preset_exceeds_cap(client):
    resp = await client.post("/api/backtest/sweep", json={"preset": "full"})

    assert resp.status_code == 400
    assert "exceeding max_combinations" in resp.json()["detail"]


@pytest.mark.usefixtures("stored_prices")
async def test_sweep_unknown_rank_by(client):
    resp = await client.post("/api/backtest/sweep", json={"rank_by": "sharpe"})
    assert resp.status_code == 400


@pytest.mark.usefixtures("stored_prices")
async def test_sweep_unknown_preset(client):
    resp = await client.post("/api/backtest/sweep", json={"preset": "aggressive"})

    assert resp.status_code == 400
    assert "Unknown preset" in resp.json()["detail"]


@pytest.mark.usefixtures("stored_prices")
async def test_sweep_non_positive_values_rejected(client):
    resp = await client.post(
        "/api/backtest/sweep",
        json={"base_daily_amounts": [-10], "high_lookback_days": [0], "max_multiplier_caps": [0]},
    )
    assert resp.status_code == 400


# -- Health and purchases ----------------------------------------------------------


async def test_health_degraded_without_purchases(client):
    resp = await client.get("/api/health")

    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "degraded"
    assert data["last_purchase"] == "never"


async def test_purchases_newest_first(client):
    repo = PurchaseRepository()
    for day in ("2025-01-14", "2025-01-15"):
        await repo.save(
            Purchase(
                purchase_date=day,
                executed_at=datetime.combine(date.fromisoformat(day), datetime.min.time(), tzinfo=UTC),
                price=60000.0,
                quantity=0.00016,
                cost=9.6,
                status=PurchaseStatus.FILLED,
            )
        )

    resp = await client.get("/api/purchases", params={"limit": 1})

    assert resp.status_code == 200
    data = resp.json()
    assert len(data) == 1
    assert data[0]["purchase_date"] == "2025-01-15"
    assert data[0]["status"] == "filled"


async def test_purchases_limit_validated(client):
    resp = await client.get("/api/purchases", params={"limit": 0})
    assert resp.status_code == 400
