# certmanager/api/v1/auth.py
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_keys.exceptions import BadSignature, ValidationError as SignatureError
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from certmanager.api.deps import get_current_user, get_db
from certmanager.api.permissions import require_permissions
from certmanager.core.config import settings
from certmanager.core.rate_limit import auth_rate_limiter
from certmanager.core.rbac import PERM_MANAGE_USERS, ROLE_ADMIN
from certmanager.core.security_password import (
    hash_password,
    hash_reset_token,
    new_reset_token,
    verify_and_maybe_upgrade,
)
from certmanager.core.tokens import create_access_token, create_refresh_token, decode_refresh
from certmanager.crud.base import page_count
from certmanager.crud.user import user_crud
from certmanager.db.base import as_utc
from certmanager.models.refresh_token import RefreshToken
from certmanager.models.user import User, UserRole
from certmanager.schemas.token import AuthResponse, MessageOut, RefreshRequest
from certmanager.schemas.user import (
    ForgotPasswordRequest,
    LoginRequest,
    PasswordUpdate,
    ResetPasswordRequest,
    RoleUpdate,
    StatusUpdate,
    UserOut,
    UserPage,
    UserRegister,
    UserUpdateMe,
    WalletLoginRequest,
)

router = APIRouter()
logger = structlog.get_logger()


# ---------- helpers ----------
def _now() -> datetime:
    return datetime.now(timezone.utc)


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _rate_limit(request: Request, identifier: str) -> None:
    auth_rate_limiter.hit(f"{_client_ip(request)}:{identifier.lower()}")


def _to_out(user: User) -> UserOut:
    return UserOut.model_validate(user)


def _issue_tokens(db: Session, user: User) -> dict:
    access = create_access_token(sub=str(user.id), role=user.role.value)
    refresh = create_refresh_token(sub=str(user.id))
    payload = decode_refresh(refresh)
    db.add(RefreshToken(
        jti=payload["jti"],
        user_id=user.id,
        issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
        expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
    ))
    db.commit()
    return {"access_token": access, "refresh_token": refresh, "token_type": "bearer"}


def _auth_response(db: Session, user: User) -> AuthResponse:
    tokens = _issue_tokens(db, user)
    db.refresh(user)
    return AuthResponse(**tokens, user=_to_out(user))


def _check_new_password(password: str, confirm: str) -> None:
    if password != confirm:
        raise HTTPException(status_code=400, detail="Password confirmation does not match")


def _set_password(user: User, password: str) -> None:
    user.hashed_password = hash_password(password)
    user.password_changed_at = _now()
    user.password_reset_token = None
    user.password_reset_expires = None


def _revoke_all_refresh(db: Session, user: User) -> None:
    rows = db.scalars(
        select(RefreshToken).where(RefreshToken.user_id == user.id, RefreshToken.revoked_at.is_(None))
    ).all()
    for rt in rows:
        rt.revoked_at = _now()


# ---------- endpoints ----------
@router.post("/register", response_model=AuthResponse, status_code=201)
def register(payload: UserRegister, request: Request, db: Session = Depends(get_db)):
    _rate_limit(request, payload.email)
    if payload.role == ROLE_ADMIN:
        raise HTTPException(status_code=400, detail="The admin role cannot be self-assigned")
    conflict = user_crud.find_conflict(
        db, email=payload.email, username=payload.username, wallet_address=payload.wallet_address
    )
    if conflict:
        raise HTTPException(status_code=409, detail="Email, username or wallet address already registered")
    user = user_crud.create(db, payload)
    logger.info("auth.register", user_id=user.id, role=user.role.value)
    return _auth_response(db, user)


@router.post("/login", response_model=AuthResponse)
def login(payload: LoginRequest, request: Request, db: Session = Depends(get_db)):
    _rate_limit(request, payload.email)
    user = user_crud.get_by_email(db, payload.email)
    if not user:
        logger.warning("auth.login_failed", email=payload.email, reason="unknown_email")
        raise HTTPException(status_code=401, detail="Invalid email or password")

    ok, new_hash = verify_and_maybe_upgrade(payload.password, user.hashed_password)
    if not ok:
        logger.warning("auth.login_failed", user_id=user.id, reason="bad_password")
        raise HTTPException(status_code=401, detail="Invalid email or password")
    if not user.is_active:
        raise HTTPException(status_code=401, detail="Account is deactivated")
    if new_hash:
        user.hashed_password = new_hash

    user.last_login = _now()
    db.commit()
    logger.info("auth.login", user_id=user.id)
    return _auth_response(db, user)


@router.post("/wallet-login", response_model=AuthResponse)
def wallet_login(payload: WalletLoginRequest, request: Request, db: Session = Depends(get_db)):
    _rate_limit(request, payload.wallet_address)
    try:
        recovered = Account.recover_message(encode_defunct(text=payload.message), signature=payload.signature)
    except (ValueError, TypeError, BadSignature, SignatureError) as exc:
        logger.warning("auth.wallet_signature_invalid", wallet=payload.wallet_address, error=str(exc))
        raise HTTPException(status_code=400, detail="Failed to validate wallet signature")
    if recovered.lower() != payload.wallet_address.lower():
        raise HTTPException(status_code=401, detail="Invalid wallet signature")

    user = user_crud.get_by_wallet(db, payload.wallet_address)
    if not user or not user.is_active:
        raise HTTPException(status_code=404, detail="No account found with this wallet address")

    user.last_login = _now()
    db.commit()
    logger.info("auth.wallet_login", user_id=user.id, wallet=user.wallet_address)
    return _auth_response(db, user)


@router.post("/refresh", response_model=AuthResponse)
def refresh(payload: RefreshRequest, db: Session = Depends(get_db)):
    data = decode_refresh(payload.token)
    if not data:
        raise HTTPException(status_code=401, detail="Invalid token")

    # rotação: o refresh só vale uma vez
    rt = db.execute(select(RefreshToken).where(RefreshToken.jti == data["jti"])).scalar_one_or_none()
    if not rt or rt.revoked_at is not None:
        raise HTTPException(status_code=401, detail="Refresh token revoked")
    if as_utc(rt.expires_at) <= _now():
        raise HTTPException(status_code=401, detail="Refresh token expired")

    user = user_crud.get(db, rt.user_id)
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="Invalid token")

    rt.revoked_at = _now()
    db.commit()
    return _auth_response(db, user)


@router.post("/logout", response_model=MessageOut)
def logout(payload: RefreshRequest, db: Session = Depends(get_db)):
    data = decode_refresh(payload.token)
    if data:
        rt = db.execute(select(RefreshToken).where(RefreshToken.jti == data["jti"])).scalar_one_or_none()
        if rt and rt.revoked_at is None:
            rt.revoked_at = _now()
            db.commit()
            logger.info("auth.logout", user_id=rt.user_id)
    return MessageOut(message="Logged out")


@router.get("/me", response_model=UserOut)
def me(user: User = Depends(get_current_user)):
    return _to_out(user)


@router.patch("/update-me", response_model=UserOut)
def update_me(
    payload: UserUpdateMe,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    if payload.password is not None:
        raise HTTPException(status_code=400, detail="This route is not for password updates. Use /update-password")
    if payload.role is not None or payload.wallet_address is not None:
        raise HTTPException(status_code=400, detail="Role and wallet address cannot be changed here")

    changes = payload.model_dump(exclude_unset=True, exclude={"password", "role", "wallet_address"})
    if "email" in changes and changes["email"]:
        email = str(changes["email"]).lower()
        other = user_crud.get_by_email(db, email)
        if other and other.id != user.id:
            raise HTTPException(status_code=409, detail="Email already registered")
        changes["email"] = email
        if email != user.email:
            user.is_email_verified = False
    for field, value in changes.items():
        setattr(user, field, value)
    db.commit()
    db.refresh(user)
    return _to_out(user)


@router.patch("/update-password", response_model=AuthResponse)
def update_password(
    payload: PasswordUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    ok, _ = verify_and_maybe_upgrade(payload.password_current, user.hashed_password)
    if not ok:
        raise HTTPException(status_code=401, detail="Your current password is wrong")
    _check_new_password(payload.password, payload.password_confirm)
    _set_password(user, payload.password)
    _revoke_all_refresh(db, user)
    db.commit()
    logger.info("auth.password_updated", user_id=user.id)
    return _auth_response(db, user)


@router.post("/forgot-password", response_model=MessageOut)
def forgot_password(payload: ForgotPasswordRequest, request: Request, db: Session = Depends(get_db)):
    _rate_limit(request, payload.email)
    user = user_crud.get_by_email(db, payload.email)
    if not user:
        raise HTTPException(status_code=404, detail="There is no user with that email address")

    token, digest = new_reset_token()
    user.password_reset_token = digest
    user.password_reset_expires = _now() + timedelta(minutes=settings.PASSWORD_RESET_EXPIRE_MINUTES)
    db.commit()
    logger.info("auth.forgot_password", user_id=user.id)
    # sem serviço de e-mail: o token só volta na resposta em desenvolvimento
    return MessageOut(
        message="Password reset token generated",
        reset_token=token if settings.is_development else None,
    )


@router.patch("/reset-password/{token}", response_model=AuthResponse)
def reset_password(token: str, payload: ResetPasswordRequest, db: Session = Depends(get_db)):
    digest = hash_reset_token(token)
    user = db.execute(select(User).where(User.password_reset_token == digest)).scalar_one_or_none()
    expires = as_utc(user.password_reset_expires) if user else None
    if not user or not expires or expires <= _now():
        raise HTTPException(status_code=400, detail="Token is invalid or has expired")
    _check_new_password(payload.password, payload.password_confirm)
    _set_password(user, payload.password)
    _revoke_all_refresh(db, user)
    db.commit()
    logger.info("auth.password_reset", user_id=user.id)
    return _auth_response(db, user)


# ---------- administração de usuários ----------
@router.get("/users", response_model=UserPage)
def list_users(
    role: Optional[str] = Query(None, pattern="^(creator|verifier|issuer|admin)$"),
    is_active: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    _admin: User = Depends(require_permissions(PERM_MANAGE_USERS)),
):
    items, total = user_crud.list_filtered(db, role=role, is_active=is_active, page=page, limit=limit)
    return UserPage(
        items=[_to_out(u) for u in items], page=page, limit=limit, total=total, pages=page_count(total, limit)
    )


def _get_user_or_404(db: Session, user_id: int) -> User:
    user = user_crud.get(db, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.patch("/users/{user_id}/role", response_model=UserOut)
def update_user_role(
    user_id: int,
    payload: RoleUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_permissions(PERM_MANAGE_USERS)),
):
    user = _get_user_or_404(db, user_id)
    if user.id == admin.id:
        raise HTTPException(status_code=400, detail="You cannot change your own role")
    previous = user.role.value
    user.role = UserRole(payload.role)
    db.commit()
    db.refresh(user)
    logger.info("auth.role_changed", user_id=user.id, from_role=previous, to_role=user.role.value, by=admin.id)
    return _to_out(user)


@router.patch("/users/{user_id}/status", response_model=UserOut)
def update_user_status(
    user_id: int,
    payload: StatusUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_permissions(PERM_MANAGE_USERS)),
):
    user = _get_user_or_404(db, user_id)
    if user.id == admin.id and not payload.is_active:
        raise HTTPException(status_code=400, detail="You cannot deactivate your own account")
    user.is_active = payload.is_active
    if not payload.is_active:
        _revoke_all_refresh(db, user)
    db.commit()
    db.refresh(user)
    logger.info("auth.status_changed", user_id=user.id, is_active=user.is_active, by=admin.id)
    return _to_out(user)
