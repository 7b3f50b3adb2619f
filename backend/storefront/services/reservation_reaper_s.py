from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import datetime

from sqlalchemy.orm import Session

from storefront.db.models import CartProduct, utc_now
from storefront.db.transaction import transaction_scope
from storefront.services.stock_ledger_s import release_stock

logger = logging.getLogger(__name__)


class ReservationReleaseError(RuntimeError):
    """The ledger refused to take back an expired line's stock."""


def _expired_reservation_ids(
    now: datetime,
    db: Session,
    deferred_ids: set[int] | None = None,
) -> list[int]:
    rows = (
        db.query(CartProduct.id)
        .filter(
            CartProduct.reserved.is_(True),
            CartProduct.reservation_expiry <= now,
        )
        .order_by(CartProduct.reservation_expiry.asc(), CartProduct.id.asc())
        .all()
    )
    ids = [int(row.id) for row in rows]
    if not deferred_ids:
        return ids
    # Lines that failed recently go last so they cannot starve the others.
    return [i for i in ids if i not in deferred_ids] + [i for i in ids if i in deferred_ids]


def _release_one(cart_product_id: int, now: datetime, db: Session) -> bool:
    cart_product = (
        db.query(CartProduct)
        .filter(CartProduct.id == cart_product_id)
        .with_for_update()
        .first()
    )
    # Removed, bought or already reaped since the scan.
    if cart_product is None or not cart_product.reserved:
        return False
    if cart_product.reservation_expiry > now:
        return False

    if cart_product.product_id is None:
        logger.warning(
            "event=reservation_release_product_missing cart_product_id=%s",
            cart_product.id,
        )
    elif not release_stock(
        product_id=int(cart_product.product_id),
        quantity=int(cart_product.quantity),
        db=db,
    ):
        raise ReservationReleaseError(
            f"product {cart_product.product_id} update failed for cart product {cart_product.id}"
        )

    cart_product.reserved = False
    db.flush()
    return True


def release_expired_reservations(
    session_factory: Callable[[], Session],
    *,
    now: datetime | None = None,
    deferred_ids: set[int] | None = None,
) -> dict:
    """Give the stock of every expired, still reserved cart line back to its product.

    Each line is released in its own transaction. The first failing line is
    rolled back and ends the pass; the lines released before it stay
    committed and the rest are picked up by the next pass.

    ``deferred_ids`` carries failures between passes: a failing line is
    added to it and scanned after every other candidate next time, and a
    line that is released again is dropped from it.
    """
    now = now or utc_now()
    with transaction_scope(session_factory) as db:
        candidate_ids = _expired_reservation_ids(now, db, deferred_ids)
    if deferred_ids is not None:
        deferred_ids.intersection_update(candidate_ids)

    released = 0
    for cart_product_id in candidate_ids:
        try:
            with transaction_scope(session_factory) as db:
                if _release_one(cart_product_id, now, db):
                    released += 1
            if deferred_ids is not None:
                deferred_ids.discard(cart_product_id)
        except Exception as exc:
            if deferred_ids is not None:
                deferred_ids.add(cart_product_id)
            logger.error(
                "event=reservation_release_aborted cart_product_id=%s released=%s error=%s",
                cart_product_id,
                released,
                str(exc),
            )
            return {"released": released, "aborted": True}

    logger.info(
        "event=reservation_release_completed candidates=%s released=%s",
        len(candidate_ids),
        released,
    )
    return {"released": released, "aborted": False}


class ReservationReaper:
    """Runs :func:`release_expired_reservations` on a fixed interval in a daemon thread."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        interval_seconds: float,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be greater than 0")
        self._session_factory = session_factory
        self._interval_seconds = float(interval_seconds)
        self._clock = clock
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._failed_ids: set[int] = set()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> dict:
        return release_expired_reservations(
            self._session_factory,
            now=self._clock(),
            deferred_ids=self._failed_ids,
        )

    def _run(self) -> None:
        logger.info("event=reservation_reaper_started interval_seconds=%s", self._interval_seconds)
        while not self._stop_event.wait(self._interval_seconds):
            try:
                self.run_once()
            except Exception as exc:
                # Scan failures only; the next tick retries.
                logger.error("event=reservation_reaper_pass_failed error=%s", str(exc))
        logger.info("event=reservation_reaper_stopped")

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            name="reservation-reaper",
            daemon=True,
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
        self._thread = None
