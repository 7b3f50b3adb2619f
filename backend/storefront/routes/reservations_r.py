from fastapi import APIRouter, Depends

from storefront.dependencies.auth_d import require_admin
from storefront.db.session import SessionLocal
from storefront.schemas import ReleaseReservationsResponse
from storefront.services.reservation_reaper_s import release_expired_reservations

router = APIRouter()


def get_session_factory():
    return SessionLocal


@router.post("/admin/cart-reservations/release")
def release_cart_reservations(
    _: dict = Depends(require_admin),
    session_factory=Depends(get_session_factory),
):
    # Each line commits on its own, so no request-scoped session here.
    result = release_expired_reservations(session_factory)
    return {"data": ReleaseReservationsResponse(**result).model_dump()}
