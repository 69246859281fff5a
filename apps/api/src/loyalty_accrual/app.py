from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from loyalty_accrual.core.settings import settings
from loyalty_accrual.db.session import engine, init_models
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing
from .services.accrual import RandomAccrualOracle, ReconciliationLoop
from .services.orders import SqlAlchemyOrderStore


APP_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Unreachable database at startup is fatal; let it propagate.
    await init_models(engine)

    store = SqlAlchemyOrderStore.from_engine(engine)
    loop = ReconciliationLoop(
        store,
        RandomAccrualOracle.from_settings(settings),
        interval_seconds=settings.accrual_poll_interval_seconds,
        concurrency=settings.accrual_stage_concurrency,
    )
    app.state.order_store = store
    app.state.reconciliation_loop = loop

    loop_enabled = settings.accrual_worker_enabled
    if loop_enabled:
        loop.start()
        logger.info(
            "Accrual reconciliation loop enabled",
            interval_seconds=loop.interval_seconds,
            concurrency=loop.concurrency,
        )
    else:
        logger.info(
            "Accrual reconciliation loop disabled",
            reason="accrual_worker_enabled is false",
        )

    try:
        yield
    finally:
        if loop_enabled and loop.is_running:
            await loop.stop()
        await engine.dispose()


def create_app() -> FastAPI:
    """Application factory for the loyalty accrual service."""
    configure_logging(
        service_name="loyalty-accrual",
        environment=settings.environment,
        version=APP_VERSION,
    )

    app = FastAPI(
        title="Loyalty Accrual API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    configure_tracing(
        app,
        service_name="loyalty-accrual",
        service_version=APP_VERSION,
        environment=settings.environment,
    )

    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app
