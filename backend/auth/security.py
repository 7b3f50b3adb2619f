from datetime import datetime, timedelta, timezone
import os
from typing import Optional

from jose import ExpiredSignatureError, JWTError, jwt

DEFAULT_ALGORITHM = "HS256"
DEFAULT_JWT_ISSUER = "storefront-api"


def get_jwt_settings() -> dict:
    secret_key = os.getenv("JWT_SECRET", "").strip()
    algorithm = os.getenv("JWT_ALGORITHM", DEFAULT_ALGORITHM).strip()
    issuer = os.getenv("JWT_ISSUER", DEFAULT_JWT_ISSUER).strip()
    raw_access_minutes = os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "").strip()

    if not secret_key:
        raise RuntimeError("JWT_SECRET is required")
    if not algorithm:
        raise RuntimeError("JWT_ALGORITHM is required")
    if not issuer:
        raise RuntimeError("JWT_ISSUER is required")
    if not raw_access_minutes:
        raise RuntimeError("ACCESS_TOKEN_EXPIRE_MINUTES is required")

    access_minutes = int(raw_access_minutes)
    if access_minutes <= 0:
        raise RuntimeError("ACCESS_TOKEN_EXPIRE_MINUTES must be greater than 0")

    return {
        "secret_key": secret_key,
        "algorithm": algorithm,
        "issuer": issuer,
        "access_token_expire_minutes": access_minutes,
    }


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Sign an access token. Issuance lives in the auth service; this mirrors its claims."""
    settings = get_jwt_settings()
    now = _utc_now()
    expire_at = now + (
        expires_delta
        if expires_delta is not None
        else timedelta(minutes=settings["access_token_expire_minutes"])
    )

    to_encode = dict(data)
    if "sub" not in to_encode:
        raise ValueError("Token payload is missing subject")
    to_encode["sub"] = str(to_encode["sub"])
    to_encode.setdefault("type", "access")
    to_encode.setdefault("iss", settings["issuer"])
    to_encode.setdefault("iat", int(now.timestamp()))
    to_encode["exp"] = int(expire_at.timestamp())
    return jwt.encode(
        to_encode,
        settings["secret_key"],
        algorithm=settings["algorithm"],
    )


def decode_access_token(token: str) -> dict:
    settings = get_jwt_settings()
    try:
        payload = jwt.decode(
            token,
            settings["secret_key"],
            algorithms=[settings["algorithm"]],
            issuer=settings["issuer"],
            options={"verify_aud": False},
        )
    except ExpiredSignatureError as exc:
        raise ValueError("Token expired") from exc
    except JWTError as exc:
        raise ValueError("Invalid token") from exc

    token_type = str(payload.get("type", "")).strip().lower()
    if token_type != "access":
        raise ValueError("Invalid token type")
    if not str(payload.get("sub", "")).strip():
        raise ValueError("Token payload is missing subject")
    return payload


def parse_sub_to_user_id(sub: object) -> int:
    raw = str(sub).strip() if sub is not None else ""
    if not raw:
        raise ValueError("Invalid token subject")
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError("Invalid token subject") from exc
