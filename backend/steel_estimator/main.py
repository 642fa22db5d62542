"""
Steel Estimator API
FastAPI surface over the estimate aggregation, benchmarking and Bid Coach
engines. Async SQLAlchemy store when DATABASE_URL is set, in-memory otherwise.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from steel_estimator import config
from steel_estimator.services.logging_config import setup_logging
from steel_estimator.services.middleware import RequestTimingMiddleware

logger = logging.getLogger("steel-estimator.api")

VERSION = "1.0.0"


def _default_store():
    from steel_estimator.db import get_session_factory, is_configured
    from steel_estimator.services.estimate_store import InMemoryEstimateStore, SqlEstimateStore

    if is_configured():
        return SqlEstimateStore(get_session_factory())
    logger.warning("DATABASE_URL not set, using in-memory store (dev mode)")
    return InMemoryEstimateStore()


@asynccontextmanager
async def lifespan(app: FastAPI):
    from steel_estimator.db import dispose_engine, init_db
    await init_db()
    yield
    await dispose_engine()


def create_app(store=None, configure_logging: bool = True) -> FastAPI:
    """Build the application. Tests pass their own ``store``."""
    if configure_logging:
        setup_logging(level=config.LOG_LEVEL, json_output=config.LOG_FORMAT != "text")

    app = FastAPI(
        title="Steel Estimator API",
        version=VERSION,
        description="Estimate aggregation, historical benchmarking and Bid Coach",
        lifespan=lifespan,
    )
    app.state.store = store if store is not None else _default_store()
    app.state.coach_sessions = {}
    app.state.live_sessions = {}

    app.add_middleware(RequestTimingMiddleware)

    from steel_estimator.api.estimate_routes import router as estimate_router
    app.include_router(estimate_router)

    @app.get("/health")
    async def health_check():
        return {
            "status": "active",
            "version": VERSION,
            "store": type(app.state.store).__name__,
        }

    return app


app: Optional[FastAPI] = None


def get_app() -> FastAPI:
    """Lazily built module-level app for ``uvicorn steel_estimator.main:get_app --factory``."""
    global app
    if app is None:
        app = create_app()
    return app
