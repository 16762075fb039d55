# certmanager/core/tokens.py
from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import jwt, JWTError
from certmanager.core.config import settings


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _exp(minutes: int = 15) -> datetime:
    return _now() + timedelta(minutes=minutes)


def _exp_days(days: int) -> datetime:
    return _now() + timedelta(days=days)


def create_access_token(*, sub: str, role: str, expires_minutes: Optional[int] = None) -> str:
    """Access token curto (minutos). `sub` é o id do usuário."""
    expire_min = expires_minutes if expires_minutes is not None else settings.ACCESS_TOKEN_EXPIRE_MINUTES
    payload: Dict[str, Any] = {
        "type": "access",
        "sub": sub,
        "role": role,
        "jti": uuid.uuid4().hex,
        "iat": int(_now().timestamp()),
        "exp": int(_exp(expire_min).timestamp()),
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def create_refresh_token(*, sub: str) -> str:
    payload: Dict[str, Any] = {
        "type": "refresh",
        "sub": sub,
        "jti": uuid.uuid4().hex,
        "iat": int(_now().timestamp()),
        "exp": int(_exp_days(settings.REFRESH_TOKEN_EXPIRE_DAYS).timestamp()),
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def _decode(token: str, expected_type: str) -> Optional[Dict[str, Any]]:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None
    if not isinstance(payload, dict):
        return None
    if payload.get("type") != expected_type:
        return None
    if not payload.get("sub") or not payload.get("jti"):
        return None
    return payload


def decode_refresh(token: str) -> Optional[Dict[str, Any]]:
    return _decode(token, "refresh")


def decode_access(token: str) -> Optional[Dict[str, Any]]:
    return _decode(token, "access")
