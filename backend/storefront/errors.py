from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session


class StoreError(Exception):
    """Business-rule failure that is safe to show to the caller."""

    code = "store_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_detail(self) -> dict:
        return {"code": self.code, "message": self.message}


class NotFoundError(StoreError, LookupError):
    code = "not_found"


class OutOfStockError(StoreError, ValueError):
    code = "out_of_stock"


class InsufficientStockError(OutOfStockError):
    code = "insufficient_stock"


class StockConflictError(StoreError, ValueError):
    """Lost the race on a conditional stock update."""

    code = "conflict"


class DuplicateEventError(StoreError, ValueError):
    code = "duplicate"


def raise_http_error_from_exception(exc: Exception, db: Session | None = None) -> None:
    if db is not None and isinstance(exc, (IntegrityError, SQLAlchemyError)):
        db.rollback()

    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=404, detail=exc.to_detail()) from exc
    if isinstance(exc, (StockConflictError, DuplicateEventError)):
        raise HTTPException(status_code=409, detail=exc.to_detail()) from exc
    if isinstance(exc, StoreError):
        raise HTTPException(status_code=400, detail=exc.to_detail()) from exc
    if isinstance(exc, LookupError):
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    if isinstance(exc, ValueError):
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if isinstance(exc, IntegrityError):
        raise HTTPException(
            status_code=409,
            detail="database constraint violation",
        ) from exc
    if isinstance(exc, SQLAlchemyError):
        raise HTTPException(
            status_code=500,
            detail="database error",
        ) from exc

    raise exc
