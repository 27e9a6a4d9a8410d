from pydantic import BaseModel, Field
from typing import Optional


class LoginRequest(BaseModel):
    email: str
    password: str


class TwoFactorRequest(BaseModel):
    pending_token: str
    code: str = Field(pattern=r"^\d{6}$")


class User(BaseModel):
    email: str
    username: str
    guest: bool = False


class TokenData(BaseModel):
    email: Optional[str] = None
    stage: Optional[str] = None


class PendingLogin(BaseModel):
    two_factor_required: bool = True
    pending_token: str


class AuthResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: User
