from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from storefront.dependencies.auth_d import require_account_owner, require_admin
from storefront.db.session import get_db, get_db_transactional
from storefront.errors import raise_http_error_from_exception
from storefront.schemas import UpdateOrderStatusRequest
from storefront.services.orders_s import (
    change_order_status,
    delete_order,
    get_order_for_user,
    list_orders_for_user,
)

router = APIRouter()


@router.get("/users/{user_id}/orders")
def get_my_orders(
    user_id: int = Depends(require_account_owner),
    db: Session = Depends(get_db),
):
    return {"data": list_orders_for_user(user_id=user_id, db=db)}


@router.get("/users/{user_id}/orders/{order_id}")
def get_my_order(
    order_id: int,
    user_id: int = Depends(require_account_owner),
    db: Session = Depends(get_db),
):
    order = get_order_for_user(user_id=user_id, order_id=order_id, db=db)
    if order is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="order not found",
        )
    return {"data": order}


@router.patch("/admin/orders/{order_id}/status")
def update_order_status(
    order_id: int,
    payload: UpdateOrderStatusRequest,
    _: dict = Depends(require_admin),
    db: Session = Depends(get_db_transactional),
):
    try:
        order = change_order_status(order_id=order_id, new_status=payload.status, db=db)
    except Exception as exc:
        raise_http_error_from_exception(exc, db=db)
    return {"data": order}


@router.delete("/admin/orders/{order_id}")
def remove_order(
    order_id: int,
    _: dict = Depends(require_admin),
    db: Session = Depends(get_db_transactional),
):
    try:
        deleted = delete_order(order_id=order_id, db=db)
    except Exception as exc:
        raise_http_error_from_exception(exc, db=db)
    return {"data": deleted}
