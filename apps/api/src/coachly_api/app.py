"""FastAPI application factory for the Coachly commerce API."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from coachly_api.core.settings import settings
from coachly_api.db.session import async_session
from .api.errors import register_exception_handlers
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing
from .workers import CouponSyncWorker, PayoutRecoveryWorker


APP_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    coupon_worker: CouponSyncWorker | None = None
    if settings.coupon_sync_worker_enabled:
        coupon_worker = CouponSyncWorker(async_session)
        coupon_worker.start()
    else:
        logger.info("Coupon sync worker disabled", reason="coupon_sync_worker_enabled is false")
    app.state.coupon_sync_worker = coupon_worker

    payout_worker: PayoutRecoveryWorker | None = None
    if settings.payout_recovery_worker_enabled:
        payout_worker = PayoutRecoveryWorker(async_session)
        payout_worker.start()
    else:
        logger.info("Payout recovery worker disabled", reason="payout_recovery_worker_enabled is false")
    app.state.payout_recovery_worker = payout_worker

    try:
        yield
    finally:
        for worker in (coupon_worker, payout_worker):
            if worker is not None and worker.is_running:
                await worker.stop()


def create_app() -> FastAPI:
    configure_logging(service_name=settings.service_name, environment=settings.environment, version=APP_VERSION)

    app = FastAPI(title="Coachly Commerce API", version=APP_VERSION, lifespan=lifespan)
    configure_tracing(app, settings, service_version=APP_VERSION)
    register_exception_handlers(app)
    app.include_router(api_router)

    @app.get("/healthz", tags=["health"])
    async def healthz() -> dict[str, str]:
        return {"status": "ok", "environment": settings.environment, "version": APP_VERSION}

    return app
