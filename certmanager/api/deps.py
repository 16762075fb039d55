from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from certmanager.core.config import settings
from certmanager.core.tokens import decode_access
from certmanager.db.base import as_utc
from certmanager.db.session import get_db
from certmanager.models.user import User
from certmanager.services.blockchain import get_chain_client
from certmanager.services.ipfs import get_ipfs_client

__all__ = [
    "get_db",
    "get_bearer_token",
    "get_current_user",
    "get_optional_api_key",
    "get_ipfs",
    "get_chain",
]


# ----------------------------------------------------------------------
# Lê o Bearer do header Authorization (sem usar OAuth2PasswordBearer)
# ----------------------------------------------------------------------
def get_bearer_token(authorization: str = Header(None, alias="Authorization")) -> str:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing Authorization header")
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(status_code=401, detail="Invalid Authorization header")
    return parts[1]


# ----------------------------------------------------------------------
# Usuário atual: token válido, conta ativa e senha não trocada depois do iat
# ----------------------------------------------------------------------
def get_current_user(
    token: str = Depends(get_bearer_token),
    db: Session = Depends(get_db),
) -> User:
    payload = decode_access(token)
    if not payload:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token")

    user = db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=401, detail="User no longer exists")
    if not user.is_active:
        raise HTTPException(status_code=401, detail="Account is deactivated")

    changed = as_utc(user.password_changed_at)
    issued = datetime.fromtimestamp(payload.get("iat", 0), tz=timezone.utc)
    if changed and changed.replace(microsecond=0) > issued:
        raise HTTPException(status_code=401, detail="Password changed recently, please log in again")
    return user


# ----------------------------------------------------------------------
# X-API-Key para integrações
# ----------------------------------------------------------------------
def get_optional_api_key(x_api_key: Optional[str] = Header(None, alias="X-API-Key")) -> Optional[str]:
    if x_api_key and x_api_key in settings.VALID_API_KEYS:
        return x_api_key
    return None


def get_ipfs():
    return get_ipfs_client()


def get_chain():
    return get_chain_client()
