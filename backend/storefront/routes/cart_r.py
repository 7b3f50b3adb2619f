from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from storefront.dependencies.auth_d import require_account_owner
from storefront.db.session import get_db, get_db_transactional
from storefront.errors import raise_http_error_from_exception
from storefront.schemas import AddToCartRequest, ModifyCartQuantityRequest
from storefront.services.cart_s import (
    add_to_cart,
    count_cart,
    get_cart_product,
    list_cart,
    modify_cart_product_quantity,
    remove_from_cart,
)

router = APIRouter()


@router.get("/users/{user_id}/cart")
def get_cart(
    user_id: int = Depends(require_account_owner),
    db: Session = Depends(get_db),
):
    try:
        cart = list_cart(user_id=user_id, db=db)
    except Exception as exc:
        raise_http_error_from_exception(exc, db=db)
    return {"data": cart}


@router.get("/users/{user_id}/cart/count")
def get_cart_count(
    user_id: int = Depends(require_account_owner),
    db: Session = Depends(get_db),
):
    try:
        count = count_cart(user_id=user_id, db=db)
    except Exception as exc:
        raise_http_error_from_exception(exc, db=db)
    return {"data": {"count": count}}


@router.get("/users/{user_id}/cart/{cart_product_id}")
def get_cart_line(
    cart_product_id: int,
    user_id: int = Depends(require_account_owner),
    db: Session = Depends(get_db),
):
    try:
        cart_product = get_cart_product(
            user_id=user_id,
            cart_product_id=cart_product_id,
            db=db,
        )
    except Exception as exc:
        raise_http_error_from_exception(exc, db=db)
    return {"data": cart_product}


@router.post("/users/{user_id}/cart", status_code=status.HTTP_201_CREATED)
def add_cart_line(
    payload: AddToCartRequest,
    response: Response,
    user_id: int = Depends(require_account_owner),
    db: Session = Depends(get_db_transactional),
):
    try:
        cart_product, created = add_to_cart(
            user_id=user_id,
            product_id=payload.product_id,
            quantity=payload.quantity,
            selected_size=payload.selected_size,
            selected_colour=payload.selected_colour,
            db=db,
        )
    except Exception as exc:
        raise_http_error_from_exception(exc, db=db)
    if not created:
        response.status_code = status.HTTP_200_OK
    return {"data": cart_product}


@router.put("/users/{user_id}/cart/{cart_product_id}")
def modify_cart_line(
    cart_product_id: int,
    payload: ModifyCartQuantityRequest,
    user_id: int = Depends(require_account_owner),
    db: Session = Depends(get_db_transactional),
):
    try:
        cart_product = modify_cart_product_quantity(
            user_id=user_id,
            cart_product_id=cart_product_id,
            quantity=payload.quantity,
            db=db,
        )
    except Exception as exc:
        raise_http_error_from_exception(exc, db=db)
    return {"data": cart_product}


@router.delete("/users/{user_id}/cart/{cart_product_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_cart_line(
    cart_product_id: int,
    user_id: int = Depends(require_account_owner),
    db: Session = Depends(get_db_transactional),
):
    try:
        remove_from_cart(user_id=user_id, cart_product_id=cart_product_id, db=db)
    except Exception as exc:
        raise_http_error_from_exception(exc, db=db)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
