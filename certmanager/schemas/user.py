# certmanager/schemas/user.py
from __future__ import annotations
from datetime import datetime
from typing import Literal, List, Optional
from pydantic import BaseModel, EmailStr, Field, field_validator

RoleName = Literal["creator", "verifier", "issuer", "admin"]

WALLET_PATTERN = r"^0x[a-fA-F0-9]{40}$"


class ProfileFields(BaseModel):
    first_name: Optional[str] = Field(default=None, max_length=50)
    last_name: Optional[str] = Field(default=None, max_length=50)
    organization: Optional[str] = Field(default=None, max_length=100)
    department: Optional[str] = Field(default=None, max_length=100)
    phone_number: Optional[str] = Field(default=None, max_length=30)


class UserRegister(ProfileFields):
    username: str = Field(min_length=3, max_length=30, pattern=r"^[A-Za-z0-9_.-]+$")
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    role: RoleName = "creator"
    wallet_address: Optional[str] = Field(default=None, pattern=WALLET_PATTERN)

    @field_validator("email")
    @classmethod
    def _lower_email(cls, v: str) -> str:
        return v.strip().lower()


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=128)


class WalletLoginRequest(BaseModel):
    wallet_address: str = Field(pattern=WALLET_PATTERN)
    signature: str = Field(min_length=1)
    message: str = Field(min_length=1)


class UserUpdateMe(ProfileFields):
    email: Optional[EmailStr] = None
    # só para detectar tentativas; a rota recusa se vierem preenchidos
    password: Optional[str] = None
    role: Optional[str] = None
    wallet_address: Optional[str] = None


class PasswordUpdate(BaseModel):
    password_current: str
    password: str = Field(min_length=8, max_length=128)
    password_confirm: str


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    password: str = Field(min_length=8, max_length=128)
    password_confirm: str


class RoleUpdate(BaseModel):
    role: RoleName


class StatusUpdate(BaseModel):
    is_active: bool


class UserOut(BaseModel):
    id: int
    username: str
    email: str
    role: str
    permissions: List[str] = []
    wallet_address: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    organization: Optional[str] = None
    department: Optional[str] = None
    phone_number: Optional[str] = None
    is_active: bool = True
    is_email_verified: bool = False
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

    @field_validator("role", mode="before")
    @classmethod
    def _role_value(cls, v):
        return getattr(v, "value", v)


class UserPage(BaseModel):
    items: List[UserOut]
    page: int
    limit: int
    total: int
    pages: int
