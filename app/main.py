"""FastAPI application: entry point."""

import asyncio
import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress
from pathlib import Path

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import ValidationError

from app.routes import health, proxy, rewards
from app.schemas.common import ErrorResponse, HealthResponse, MessageResponse
from config import Settings, get_settings
from poolrewards.services.epoch_sync import EpochSyncController
from poolrewards.services.errors import StateUnavailableError
from poolrewards.services.ledger_client import LedgerClient
from poolrewards.services.margins import strategy_for
from poolrewards.services.state_store import EpochStateStore

logger: logging.Logger = logging.getLogger(__name__)

DATA_NOT_FOUND_MESSAGE: str = "Internal error. Data could not be found."


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings: Settings = get_settings()
    logger.info("Pool %s, mode %s, upstream %s", settings.pool_id, settings.mode.value, settings.koios.api_url)

    client: LedgerClient = LedgerClient.from_settings(settings)
    controller: EpochSyncController = EpochSyncController(
        client=client,
        store=EpochStateStore(settings.resolved_data_dir),
        strategy=strategy_for(settings),
        sync_interval=settings.sync_interval_seconds,
    )
    app.state.ledger_client = client
    app.state.controller = controller

    try:
        await controller.start()
        ticker: asyncio.Task[None] = asyncio.create_task(controller.run_forever(), name="epoch-sync")
        try:
            yield
        finally:
            ticker.cancel()
            with suppress(asyncio.CancelledError):
                await ticker
    finally:
        await client.aclose()


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    app: FastAPI = FastAPI(
        title="Pool Reward Engine",
        version="0.1.0",
        lifespan=_lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["*"],
    )

    install_exception_handlers(app)

    @app.get("/", response_class=PlainTextResponse)
    def index() -> str:
        return "Pool reward engine is running."

    @app.get("/health", response_model=HealthResponse)
    def health_check() -> HealthResponse:
        return HealthResponse(status="ok")

    app.include_router(health.router)
    app.include_router(rewards.router)
    app.include_router(proxy.create_router(settings.proxy_prefix))

    return app


def install_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(StateUnavailableError)
    async def _on_missing_state(request: Request, exc: StateUnavailableError) -> JSONResponse:
        logger.warning("Request before first sync: %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content=MessageResponse(message=DATA_NOT_FOUND_MESSAGE).model_dump(),
        )

    @app.exception_handler(Exception)
    async def _on_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled: %s", exc)
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(detail=str(exc), type=type(exc).__name__).model_dump(),
        )


def start() -> None:
    """Entry point for poolrewards-api."""
    project_root: Path = Path(__file__).resolve().parent.parent
    os.chdir(project_root)

    try:
        settings: Settings = get_settings()
    except ValidationError as e:
        logger.error("Invalid configuration:\n%s", e)
        raise SystemExit(1) from e

    reload: bool = os.environ.get("POOLREWARDS_RELOAD", "false").lower() in ("1", "true", "yes")
    uvicorn.run(
        "app.main:create_app",
        factory=True,
        host=settings.ip,
        port=settings.port,
        reload=reload,
    )
