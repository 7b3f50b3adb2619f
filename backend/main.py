import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from storefront.db.config import (
    get_api_prefix,
    get_reservation_sweep_interval_seconds,
    is_reservation_reaper_enabled,
)
from storefront.db.session import SessionLocal
from storefront.routes import cart_r, checkout_r, orders_r, reservations_r
from storefront.services.reservation_reaper_s import ReservationReaper

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    reaper = None
    if is_reservation_reaper_enabled():
        reaper = ReservationReaper(
            SessionLocal,
            get_reservation_sweep_interval_seconds(),
        )
        reaper.start()
    else:
        logger.info("event=reservation_reaper_disabled")
    app.state.reservation_reaper = reaper
    try:
        yield
    finally:
        if reaper is not None:
            reaper.stop()


app = FastAPI(
    title="Storefront API",
    version="0.1.0",
    description="Cart reservations, stock ledger and checkout finalization.",
    lifespan=lifespan,
)

API_PREFIX = get_api_prefix()
app.include_router(cart_r.router, prefix=API_PREFIX, tags=["cart"])
app.include_router(orders_r.router, prefix=API_PREFIX, tags=["orders"])
app.include_router(reservations_r.router, prefix=API_PREFIX, tags=["reservations"])
app.include_router(checkout_r.router, prefix=API_PREFIX, tags=["checkout"])


@app.get("/health")
def health_check():
    return {"status": "ok"}
