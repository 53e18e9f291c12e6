"""FastAPI REST server for backtests, sweeps, health and purchase history."""

import asyncio
import contextlib
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from smartdca.api.models import BacktestRequest
from smartdca.backtester.data import DailyPriceData, DataLoader
from smartdca.backtester.engine import BacktestConfig, BacktestSimulator
from smartdca.config import get_settings
from smartdca.core.database import init_db
from smartdca.core.logging import get_logger
from smartdca.core.models import Purchase
from smartdca.core.repository import get_purchase_repository
from smartdca.dca.monitor import check_health
from smartdca.optimizer.engine import ParameterSweepService
from smartdca.optimizer.grid import SweepRequest

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)


async def verify_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> None:
    """Verify bearer token against configured API token.

    If no token is configured (empty string), authentication is skipped.
    """
    settings = get_settings()
    token = settings.api.token

    if not token:
        return

    if credentials is None or credentials.credentials != token:
        raise HTTPException(status_code=401, detail="Invalid or missing token")


router = APIRouter(prefix="/api", dependencies=[Depends(verify_token)])

_server: uvicorn.Server | None = None
_server_task: asyncio.Task | None = None


async def _load_stored_prices(start, end) -> list[DailyPriceData]:
    """Stored daily prices for the configured symbol; 404 when none."""
    settings = get_settings()
    loader = DataLoader()
    df = await loader.load_from_store(settings.system.symbol, start, end)
    prices = loader.to_daily_prices(df)

    if not prices:
        raise HTTPException(
            status_code=404,
            detail=f"No daily price data for {settings.system.symbol} in the requested range",
        )
    return prices


def _purchase_to_dict(p: Purchase) -> dict[str, Any]:
    return {
        "id": p.id,
        "purchase_date": p.purchase_date,
        "executed_at": p.executed_at.isoformat() if p.executed_at else None,
        "price": p.price,
        "quantity": p.quantity,
        "cost": p.cost,
        "status": p.status.value,
        "is_dry_run": p.is_dry_run,
        "order_id": p.order_id,
        "failure_reason": p.failure_reason,
        "multiplier": p.multiplier,
        "multiplier_tier": p.multiplier_tier,
        "drop_percentage": p.drop_percentage,
        "high_30_day": p.high_30_day,
        "ma_200_day": p.ma_200_day,
    }


@router.post("/backtest")
async def run_backtest(request: BacktestRequest) -> dict[str, Any]:
    """Run one backtest over stored prices."""
    defaults = BacktestConfig.from_settings(get_settings().dca)
    config = request.to_config(defaults)
    prices = await _load_stored_prices(request.start_date, request.end_date)

    try:
        result = await asyncio.to_thread(BacktestSimulator().run, config, prices)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    logger.info("api_backtest_completed", days=len(prices))
    return {
        "config": config.to_dict(),
        "start_date": prices[0].date.isoformat(),
        "end_date": prices[-1].date.isoformat(),
        "total_days": len(prices),
        "result": result.to_dict(),
    }


@router.post("/backtest/sweep")
async def run_sweep(request: SweepRequest) -> dict[str, Any]:
    """Run a parameter sweep over stored prices."""
    defaults = BacktestConfig.from_settings(get_settings().dca)
    prices = await _load_stored_prices(request.start_date, request.end_date)

    try:
        response = await ParameterSweepService().run(request, prices, defaults)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    logger.info(
        "api_sweep_completed",
        combinations=response.executed_combinations,
        rank_by=response.rank_by,
    )
    return response.to_dict()


@router.get("/health")
async def get_health() -> JSONResponse:
    """DCA health; 503 when unhealthy."""
    report = await check_health()
    status_code = 503 if report.status == "unhealthy" else 200
    return JSONResponse(report.to_dict(), status_code=status_code)


@router.get("/purchases")
async def get_purchases(limit: int = Query(50, ge=1, le=500)) -> list[dict[str, Any]]:
    """Most recent purchases first."""
    purchases = await get_purchase_repository().get_recent(limit=limit)
    return [_purchase_to_dict(p) for p in purchases]


async def _validation_error_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


@asynccontextmanager
async def _lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Lifespan handler: make sure tables exist before serving."""
    await init_db()
    yield


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="SmartDCA API",
        version="0.1.0",
        lifespan=_lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api.cors_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.include_router(router)

    return app


async def start_api_server(
    host: str = "127.0.0.1",
    port: int = 8080,
) -> tuple[uvicorn.Server, asyncio.Task]:
    """Start the FastAPI server as a background asyncio task.

    Returns:
        Tuple of (server, task) for lifecycle management.
    """
    global _server, _server_task

    app = create_app()
    config = uvicorn.Config(app, host=host, port=port, log_level="warning")
    server = uvicorn.Server(config)

    task = asyncio.create_task(server.serve())

    _server = server
    _server_task = task

    logger.info("api_server_started", host=host, port=port)
    return server, task


async def stop_api_server() -> None:
    """Stop the running API server gracefully."""
    global _server, _server_task

    if _server is not None:
        _server.should_exit = True

    if _server_task is not None:
        try:
            await asyncio.wait_for(_server_task, timeout=5.0)
        except TimeoutError:
            _server_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await _server_task

    _server = None
    _server_task = None
    logger.info("api_server_stopped")
