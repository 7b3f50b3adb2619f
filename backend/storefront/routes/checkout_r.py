import hmac
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from storefront.db.config import get_payment_webhook_token
from storefront.db.session import get_db_transactional
from storefront.errors import DuplicateEventError, raise_http_error_from_exception
from storefront.schemas import PaymentConfirmedEvent
from storefront.services.checkout_s import finalize_paid_checkout

router = APIRouter()
logger = logging.getLogger(__name__)


def _is_webhook_token_valid(received: str | None) -> bool:
    expected = get_payment_webhook_token()
    if not expected:
        return True
    if not received:
        return False
    return hmac.compare_digest(expected, received.strip())


@router.post("/checkout/webhook")
def payment_confirmed_webhook(
    payload: PaymentConfirmedEvent,
    x_payment_webhook_token: str | None = Header(default=None, alias="X-Payment-Webhook-Token"),
    db: Session = Depends(get_db_transactional),
):
    if not _is_webhook_token_valid(x_payment_webhook_token):
        logger.warning("event=checkout_webhook_token_failed payment_id=%s", payload.payment_id)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="invalid webhook token",
        )

    try:
        result = finalize_paid_checkout(payload.model_dump(), db=db)
    except DuplicateEventError:
        db.rollback()
        logger.info(
            "event=checkout_webhook_ignored reason=duplicate payment_id=%s",
            payload.payment_id,
        )
        return {"data": {"processed": False, "reason": "duplicate"}}
    except Exception as exc:
        logger.error(
            "event=checkout_webhook_failed payment_id=%s error=%s",
            payload.payment_id,
            str(exc),
        )
        raise_http_error_from_exception(exc, db=db)

    logger.info(
        "event=checkout_webhook_processed payment_id=%s processed=%s",
        payload.payment_id,
        result.get("processed"),
    )
    return {"data": result}
