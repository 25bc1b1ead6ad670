"""
Teemplot Billing - Application Entry Point
============================================
FastAPI app initialization, exception handlers, scheduler and router registration.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from apscheduler.schedulers.background import BackgroundScheduler

from config import settings
from config.database import SessionLocal, Base, engine
from common.exceptions import BillingError, status_code_for

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
scheduler_logger = logging.getLogger("teemplot.scheduler")


# ==========================================
# Import ALL models so Alembic/Base can see them
# ==========================================
from modules.company.models import Company  # noqa: F401, E402
from modules.user.models import User  # noqa: F401, E402
from modules.payment.models import PaymentIntent  # noqa: F401, E402

# ==========================================
# Import routers
# ==========================================
from modules.payment.service import build_payment_service  # noqa: E402
from modules.subscription.routes import router as subscription_router  # noqa: E402


# ==========================================
# Background Scheduler: Stale Pending Reconciliation
# ==========================================
def _reconcile_pending_payments(app: FastAPI):
    """Background job: re-drive intents nobody verified (lost webhook, abandoned poll)."""
    db = SessionLocal()
    try:
        counts = app.state.payment_service.reconcile_stale_pending(
            db, settings.PENDING_RECONCILE_AFTER_MINUTES,
        )
        if counts["checked"]:
            scheduler_logger.info(f"Reconciled pending payments: {counts}")
    except Exception as e:
        db.rollback()
        scheduler_logger.error(f"Reconcile error: {e}")
    finally:
        db.close()


scheduler = BackgroundScheduler()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Auto-create any missing tables (safe for existing tables)
    Base.metadata.create_all(bind=engine)

    app.state.payment_service = build_payment_service()
    logging.getLogger("teemplot.payment").info(
        f"Payment provider: {app.state.payment_service.provider_name}"
    )

    if settings.SCHEDULER_ENABLED:
        scheduler.add_job(
            _reconcile_pending_payments, 'interval',
            minutes=settings.PENDING_RECONCILE_INTERVAL_MINUTES,
            args=[app], id='reconcile_pending', replace_existing=True,
        )
        scheduler.start()
        scheduler_logger.info(
            f"Background scheduler started (reconcile: {settings.PENDING_RECONCILE_INTERVAL_MINUTES}m)"
        )
    yield
    if scheduler.running:
        scheduler.shutdown()
        scheduler_logger.info("Background scheduler stopped")


# ==========================================
# Create App
# ==========================================
app = FastAPI(
    title="Teemplot Billing",
    description="Subscription and seat billing over Paystack / Flutterwave",
    version=settings.APP_VERSION,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url=None,
    lifespan=lifespan,
)


# ==========================================
# Exception handlers
# ==========================================
async def billing_exception_handler(request: Request, exc: BillingError):
    """Business exceptions → {"success": false, "message": ...} with the mapped status."""
    return JSONResponse(
        {"success": False, "message": exc.message},
        status_code=status_code_for(exc),
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        {"success": False, "message": exc.detail},
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


app.add_exception_handler(BillingError, billing_exception_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)


# ==========================================
# Register Routers
# ==========================================
app.include_router(subscription_router)


@app.get("/health")
async def health_check():
    service = getattr(app.state, "payment_service", None)
    return {
        "status": "ok",
        "version": settings.APP_VERSION,
        "provider": service.provider_name if service else settings.PAYMENT_PROVIDER,
    }
