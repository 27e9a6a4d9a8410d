"""Demo login gate with a simulated two-factor step.

A single hard-coded credential pair and a non-cryptographic rolling-hash
code. This is a placeholder gate, not a security design.
"""
import time
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from jose import JWTError, jwt
import bcrypt

from ..config import (
    ACCESS_TOKEN_EXPIRE_MINUTES,
    DEMO_EMAIL,
    DEMO_PASSWORD,
    PENDING_TOKEN_EXPIRE_MINUTES,
    SECRET_KEY,
    TWO_FACTOR_SECRET,
)
from ..schemas.user import AuthResponse, LoginRequest, PendingLogin, TokenData, TwoFactorRequest, User

router = APIRouter()

ALGORITHM = "HS256"
CODE_WINDOW_SECONDS = 30
ACCESS_STAGE = "access"
TWO_FACTOR_STAGE = "2fa"


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    password_bytes = plain_password.encode('utf-8')[:72]
    hashed_bytes = hashed_password.encode('utf-8') if isinstance(hashed_password, str) else hashed_password
    return bcrypt.checkpw(password_bytes, hashed_bytes)


def get_password_hash(password: str) -> str:
    """Hash a password using bcrypt directly."""
    password_bytes = password.encode('utf-8')[:72]  # Truncate to 72 bytes (bcrypt limit)
    salt = bcrypt.gensalt()
    hashed = bcrypt.hashpw(password_bytes, salt)
    return hashed.decode('utf-8')


DEMO_PASSWORD_HASH = get_password_hash(DEMO_PASSWORD)


def authenticate_user(email: str, password: str) -> Optional[User]:
    """Check the demo credential pair."""
    if email != DEMO_EMAIL:
        return None
    if not verify_password(password, DEMO_PASSWORD_HASH):
        return None
    return User(email=email, username=email.split("@")[0])


def simple_hash(value: str) -> int:
    """32-bit rolling string hash (h * 31 + c), absolute value."""
    result = 0
    for char in value:
        result = (result * 31 + ord(char)) & 0xFFFFFFFF
    if result >= 0x80000000:
        result -= 0x100000000
    return abs(result)


def current_window(now: Optional[float] = None) -> int:
    return int((time.time() if now is None else now) // CODE_WINDOW_SECONDS)


def generate_code(window: int, secret: str = TWO_FACTOR_SECRET) -> str:
    return f"{simple_hash(secret + str(window)) % 1000000:06d}"


def verify_code(code: str, now: Optional[float] = None) -> bool:
    """Accept the previous, current or next window's code."""
    window = current_window(now)
    return code in {generate_code(window + offset) for offset in (-1, 0, 1)}


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token."""
    to_encode = data.copy()
    expire = datetime.utcnow() + (
        expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def _get_token_from_request(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.lower().startswith("bearer "):
        return auth_header.split(" ", 1)[1].strip()
    return request.cookies.get("token")


def _decode_token(token: str) -> Optional[TokenData]:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        email: str = payload.get("sub")
        if not email:
            return None
        return TokenData(email=email, stage=payload.get("stage"))
    except JWTError:
        return None


def _user_for(email: str) -> User:
    if email == "guest":
        return User(email="guest", username="guest", guest=True)
    return User(email=email, username=email.split("@")[0])


def _issue_session(user: User, response: Response) -> dict:
    access_token = create_access_token(data={"sub": user.email, "stage": ACCESS_STAGE})
    response.set_cookie(
        key="token",
        value=access_token,
        httponly=True,
        secure=False,  # Set to True in production with HTTPS
        samesite="lax",
        max_age=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )
    return {"access_token": access_token, "token_type": "bearer", "user": user}


async def get_current_user(request: Request) -> User:
    """Get current user from JWT token."""
    token = _get_token_from_request(request)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token_data = _decode_token(token)
    if not token_data or token_data.stage != ACCESS_STAGE:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return _user_for(token_data.email)


@router.post("/login", response_model=PendingLogin)
def login(credentials: LoginRequest):
    """Check credentials and start the two-factor step."""
    user = authenticate_user(credentials.email, credentials.password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid credentials. Try {DEMO_EMAIL}/{DEMO_PASSWORD}",
        )

    pending_token = create_access_token(
        data={"sub": user.email, "stage": TWO_FACTOR_STAGE},
        expires_delta=timedelta(minutes=PENDING_TOKEN_EXPIRE_MINUTES),
    )
    return {"two_factor_required": True, "pending_token": pending_token}


@router.post("/verify-2fa", response_model=AuthResponse)
def verify_two_factor(payload: TwoFactorRequest, response: Response):
    """Exchange a pending login and a 6-digit code for a session."""
    token_data = _decode_token(payload.pending_token)
    if not token_data or token_data.stage != TWO_FACTOR_STAGE:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Login expired, please sign in again",
        )
    if not verify_code(payload.code):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authenticator code. Please try again.",
        )
    return _issue_session(_user_for(token_data.email), response)


@router.post("/guest", response_model=AuthResponse)
def guest_login(response: Response):
    """Continue without an account."""
    return _issue_session(_user_for("guest"), response)


@router.post("/signout")
async def signout(response: Response):
    """Sign out and clear session cookie."""
    response.delete_cookie(key="token")
    return {"success": True}


@router.get("/me", response_model=User)
def read_users_me(current_user: User = Depends(get_current_user)):
    """Get current user information."""
    return current_user
