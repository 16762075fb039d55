# certmanager/schemas/token.py
from typing import Optional
from pydantic import BaseModel
from certmanager.schemas.user import UserOut


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class AuthResponse(TokenPair):
    user: UserOut


class RefreshRequest(BaseModel):
    token: str


class MessageOut(BaseModel):
    message: str
    reset_token: Optional[str] = None
