import hashlib
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Dict, NamedTuple, Optional, Tuple

from fastapi import Depends, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext
from pymongo.database import Database

import config
from database import get_db
from errors import AppError, ExpiredToken, Forbidden, InvalidToken
from schemas import utcnow

logger = logging.getLogger(__name__)

COOKIE_NAME = "jwt"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=config.BCRYPT_ROUNDS)


class SessionClaims(NamedTuple):
    user_id: str
    issued_at: int


# Passwords

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    return pwd_context.verify(password, hashed)


# Session tokens

def issue_session_token(user_id: str, expires_delta: Optional[timedelta] = None) -> str:
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(days=config.JWT_EXPIRES_IN_DAYS))
    claims = {"sub": str(user_id), "iat": int(now.timestamp()), "exp": expire}
    return jwt.encode(claims, config.SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def verify_session_token(token: str) -> SessionClaims:
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.JWT_ALGORITHM])
    except ExpiredSignatureError:
        raise ExpiredToken()
    except JWTError:
        raise InvalidToken()
    user_id = payload.get("sub")
    issued_at = payload.get("iat")
    if not user_id or issued_at is None:
        raise InvalidToken()
    return SessionClaims(user_id=user_id, issued_at=int(issued_at))


# Password reset tokens

def hash_reset_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def create_reset_token() -> Tuple[str, str, datetime]:
    """Return (plain token for the email, hashed token to store, expiry)."""
    plain = secrets.token_hex(32)
    expires = utcnow() + timedelta(minutes=config.PASSWORD_RESET_MINUTES)
    return plain, hash_reset_token(plain), expires


def changed_password_after(user: Dict, issued_at: int) -> bool:
    changed_at = user.get("password_changed_at")
    if not changed_at:
        return False
    changed_ts = int(changed_at.replace(tzinfo=timezone.utc).timestamp())
    return issued_at < changed_ts


# Responses

def send_token(user: Dict, status_code: int = 200) -> JSONResponse:
    # imported late: repositories imports this module for hashing
    from repositories import UserRepository

    token = issue_session_token(user["id"])
    body = {"status": "success", "token": token, "data": {"user": UserRepository.to_public(user)}}
    response = JSONResponse(status_code=status_code, content=jsonable_encoder(body))
    response.set_cookie(
        COOKIE_NAME,
        token,
        max_age=config.JWT_COOKIE_EXPIRES_IN_DAYS * 24 * 60 * 60,
        httponly=True,
        secure=config.is_production(),
        samesite="lax",
    )
    return response


# Guards

def extract_token(request: Request) -> Optional[str]:
    auth = request.headers.get("authorization", "")
    if auth.startswith("Bearer "):
        token = auth.split(" ", 1)[1].strip()
        if token:
            return token
    return request.cookies.get(COOKIE_NAME) or None


def resolve_user(db: Database, token: str) -> Dict:
    """Verify the token and load the user it belongs to."""
    from repositories import UserRepository

    claims = verify_session_token(token)
    user = UserRepository(db).find_with_password(claims.user_id, missing_ok=True)
    if not user:
        raise AppError("The user belonging to this token no longer exists.", 401)
    if changed_password_after(user, claims.issued_at):
        raise AppError("User recently changed password! Please log in again.", 401)
    return UserRepository.to_public(user)


def protect(request: Request, db: Database = Depends(get_db)) -> Dict:
    token = extract_token(request)
    if not token:
        raise AppError("You are not logged in! Please log in to get access.", 401)
    user = resolve_user(db, token)
    request.state.user = user
    return user


def is_logged_in(request: Request, db: Database = Depends(get_db)) -> Optional[Dict]:
    """Page routes only: attach the user when the cookie is valid, never fail."""
    request.state.user = None
    token = request.cookies.get(COOKIE_NAME)
    if not token:
        return None
    try:
        request.state.user = resolve_user(db, token)
    except AppError:
        return None
    return request.state.user


def restrict_to(*roles: str):
    def role_dep(current_user: Dict = Depends(protect)):
        if current_user.get("role") not in roles:
            raise Forbidden()
        return current_user
    return role_dep
