import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from config import (
    ACCESS_TOKEN_EXPIRE_MINUTES,
    ADMIN_ACCESS_TOKEN_EXPIRE_MINUTES,
    BCRYPT_ROUNDS,
    JWT_ALGORITHM,
    JWT_SECRET,
    REFRESH_TOKEN_EXPIRE_DAYS,
    REFRESH_TOKEN_SECRET,
)
from errors import AuthenticationError

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=BCRYPT_ROUNDS)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def new_session_id(user_id: str, prefix: str = "session") -> str:
    return f"{prefix}_{user_id}_{uuid.uuid4().hex}"


def access_token_lifetime(is_admin_login: bool) -> timedelta:
    minutes = ADMIN_ACCESS_TOKEN_EXPIRE_MINUTES if is_admin_login else ACCESS_TOKEN_EXPIRE_MINUTES
    return timedelta(minutes=minutes)


def refresh_token_lifetime() -> timedelta:
    return timedelta(days=REFRESH_TOKEN_EXPIRE_DAYS)


def _encode(claims: Dict[str, Any], secret: str, expires_delta: timedelta) -> str:
    now = datetime.now(timezone.utc)
    to_encode = claims.copy()
    to_encode.update({"iat": now, "exp": now + expires_delta})
    return jwt.encode(to_encode, secret, algorithm=JWT_ALGORITHM)


def create_access_token(user: Dict[str, Any], session_id: str, is_admin_login: bool = False) -> str:
    role = user.get("role", "user")
    claims = {
        "userId": str(user["_id"]),
        "role": role,
        "email": user.get("email"),
        "isAdmin": role == "admin",
        "sessionId": session_id,
    }
    return _encode(claims, JWT_SECRET, access_token_lifetime(is_admin_login))


def create_refresh_token(user: Dict[str, Any], session_id: str) -> str:
    claims = {
        "userId": str(user["_id"]),
        "role": user.get("role", "user"),
        "sessionId": session_id,
    }
    return _encode(claims, REFRESH_TOKEN_SECRET, refresh_token_lifetime())


def decode_access_token(token: Optional[str]) -> Dict[str, Any]:
    if not token:
        raise AuthenticationError("Authentication required - No token provided")
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError:
        raise AuthenticationError("Invalid or expired token")


def decode_refresh_token(token: Optional[str]) -> Dict[str, Any]:
    if not token:
        raise AuthenticationError("No refresh token provided")
    try:
        return jwt.decode(token, REFRESH_TOKEN_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError:
        raise AuthenticationError("Invalid refresh token")
