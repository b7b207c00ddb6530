"""
Credential and token service plus the /api/auth routes.

Access and refresh tokens travel as httpOnly cookies. Each user holds a
single valid refresh token; presenting it rotates it, and presenting an
already rotated-out token is rejected as reuse.
"""

import hashlib
import logging
import math
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, NamedTuple, Optional, Tuple

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel, EmailStr, Field
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from config import COOKIE_SECURE, EXPOSE_RESET_TOKEN, LOCK_MINUTES, MAX_LOGIN_ATTEMPTS, PASSWORD_RESET_MINUTES
from database import get_db, to_object_id
from errors import AccountLockedError, AuthenticationError, AuthorizationError, ValidationError
from schemas import Role, User
from security import (
    access_token_lifetime,
    create_access_token,
    create_refresh_token,
    decode_access_token,
    decode_refresh_token,
    hash_password,
    new_session_id,
    refresh_token_lifetime,
    verify_password,
)
from sessions import session_registry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


class TokenPair(NamedTuple):
    access_token: str
    refresh_token: str
    is_admin_login: bool = False


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def lock_remaining_minutes(user: Dict[str, Any], now: Optional[datetime] = None) -> int:
    """Minutes left on the account lock, 0 when not locked."""
    now = now or datetime.now(timezone.utc)
    lock_until = _utc(user.get("lockUntil"))
    if not lock_until or lock_until <= now:
        return 0
    return max(1, math.ceil((lock_until - now).total_seconds() / 60))


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(user["_id"]),
        "firstName": user.get("firstName"),
        "lastName": user.get("lastName"),
        "email": user.get("email"),
        "role": user.get("role", Role.USER.value),
    }


# ---------------------- Services ----------------------

def register_user(db, first_name: str, last_name: str, email: str, password: str, phone_number: Optional[str] = None) -> Dict[str, Any]:
    email = email.lower()
    if db["user"].find_one({"email": email}):
        raise ValidationError("Email already registered")
    doc = User(
        firstName=first_name,
        lastName=last_name,
        email=email,
        password=hash_password(password),
        phoneNumber=phone_number,
    ).model_dump(mode="json")
    now = datetime.now(timezone.utc)
    doc.update({"createdAt": now, "updatedAt": now})
    try:
        result = db["user"].insert_one(doc)
    except DuplicateKeyError:
        raise ValidationError("Email already registered")
    doc["_id"] = result.inserted_id
    return doc


def _record_failed_attempt(db, user: Dict[str, Any], now: datetime) -> None:
    lock_until = _utc(user.get("lockUntil"))
    if lock_until and lock_until <= now:
        # previous lock has run out, start counting again
        db["user"].update_one(
            {"_id": user["_id"]},
            {"$set": {"loginAttempts": 1, "lockUntil": None, "updatedAt": now}},
        )
        return

    updated = db["user"].find_one_and_update(
        {"_id": user["_id"]},
        {"$inc": {"loginAttempts": 1}, "$set": {"updatedAt": now}},
        return_document=ReturnDocument.AFTER,
    )
    if updated and updated.get("loginAttempts", 0) >= MAX_LOGIN_ATTEMPTS:
        db["user"].update_one(
            {"_id": user["_id"]},
            {"$set": {"lockUntil": now + timedelta(minutes=LOCK_MINUTES)}},
        )
        logger.warning("Locked account %s after %d failed logins", user.get("email"), updated["loginAttempts"])


def authenticate(db, email: str, password: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    user = db["user"].find_one({"email": email.lower()})
    if not user or not user.get("isActive", True):
        raise AuthenticationError("Invalid credentials")

    wait = lock_remaining_minutes(user, now)
    if wait:
        raise AccountLockedError(wait)

    if not verify_password(password, user.get("password", "")):
        _record_failed_attempt(db, user, now)
        raise AuthenticationError("Invalid credentials")

    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"loginAttempts": 0, "lockUntil": None, "lastLogin": now, "updatedAt": now}},
    )
    user.update({"loginAttempts": 0, "lockUntil": None, "lastLogin": now})
    return user


def _sign_tokens(user: Dict[str, Any], is_admin_login: bool = False) -> Tuple[TokenPair, str]:
    user_id = str(user["_id"])
    role = user.get("role", Role.USER.value)
    session_id = session_registry.create(user_id, user.get("email", ""), role)
    access_token = create_access_token(user, session_id, is_admin_login)
    refresh_token = create_refresh_token(user, new_session_id(user_id, prefix="refresh"))
    return TokenPair(access_token, refresh_token, is_admin_login), session_id


def issue_tokens(db, user: Dict[str, Any], is_admin_login: bool = False) -> TokenPair:
    tokens, _ = _sign_tokens(user, is_admin_login)
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"refreshToken": tokens.refresh_token, "updatedAt": datetime.now(timezone.utc)}},
    )
    return tokens


def refresh_tokens(db, refresh_token: Optional[str]) -> Tuple[TokenPair, Dict[str, Any]]:
    """Rotate a refresh token. Refreshed access tokens always get the normal lifetime."""
    claims = decode_refresh_token(refresh_token)
    obj_id = to_object_id(str(claims.get("userId", "")))
    user = db["user"].find_one({"_id": obj_id}) if obj_id else None
    if not user or not user.get("isActive", True):
        raise AuthenticationError("Invalid refresh token")
    if user.get("refreshToken") != refresh_token:
        logger.warning("Refresh token reuse detected for user %s", claims.get("userId"))
        raise AuthenticationError("Invalid refresh token")

    tokens, session_id = _sign_tokens(user)
    # only the request still holding the stored token may replace it
    swapped = db["user"].find_one_and_update(
        {"_id": user["_id"], "refreshToken": refresh_token},
        {"$set": {"refreshToken": tokens.refresh_token, "updatedAt": datetime.now(timezone.utc)}},
    )
    if swapped is None:
        session_registry.invalidate(session_id)
        logger.warning("Concurrent refresh token reuse for user %s", claims.get("userId"))
        raise AuthenticationError("Invalid refresh token")
    return tokens, user


def revoke_refresh_token(db, user_id: str) -> None:
    obj_id = to_object_id(user_id)
    if obj_id:
        db["user"].update_one({"_id": obj_id}, {"$set": {"refreshToken": None}})


def _hash_reset_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def request_password_reset(db, email: str, now: Optional[datetime] = None) -> Optional[str]:
    """Store a one-time reset token for the account and return it, or None for unknown emails."""
    now = now or datetime.now(timezone.utc)
    user = db["user"].find_one({"email": email.lower()})
    if not user or not user.get("isActive", True):
        return None
    token = secrets.token_hex(32)
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {
            "passwordResetToken": _hash_reset_token(token),
            "passwordResetExpires": now + timedelta(minutes=PASSWORD_RESET_MINUTES),
            "updatedAt": now,
        }},
    )
    logger.info("Password reset requested for %s", user["email"])
    return token


def reset_password(db, token: str, new_password: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    user = db["user"].find_one({"passwordResetToken": _hash_reset_token(token or "")})
    expires = _utc(user.get("passwordResetExpires")) if user else None
    if not user or not expires or expires <= now:
        raise ValidationError("Invalid or expired reset token")

    claimed = db["user"].find_one_and_update(
        {"_id": user["_id"], "passwordResetToken": user["passwordResetToken"]},
        {"$set": {
            "password": hash_password(new_password),
            "passwordResetToken": None,
            "passwordResetExpires": None,
            "loginAttempts": 0,
            "lockUntil": None,
            "refreshToken": None,
            "updatedAt": now,
        }},
        return_document=ReturnDocument.AFTER,
    )
    if claimed is None:
        raise ValidationError("Invalid or expired reset token")
    removed = session_registry.invalidate_user(str(user["_id"]))
    logger.info("Password reset for %s, signed out %d sessions", user["email"], removed)
    return claimed


# ---------------------- Cookies ----------------------

def set_auth_cookies(response: Response, tokens: TokenPair) -> None:
    response.set_cookie(
        "token",
        tokens.access_token,
        max_age=int(access_token_lifetime(tokens.is_admin_login).total_seconds()),
        httponly=True,
        secure=COOKIE_SECURE,
        samesite="strict",
        path="/",
    )
    response.set_cookie(
        "refreshToken",
        tokens.refresh_token,
        max_age=int(refresh_token_lifetime().total_seconds()),
        httponly=True,
        secure=COOKIE_SECURE,
        samesite="strict",
        path="/",
    )


def clear_auth_cookies(response: Response) -> None:
    for name in ("token", "refreshToken"):
        response.delete_cookie(name, path="/", httponly=True, secure=COOKIE_SECURE, samesite="strict")


# ---------------------- Routes ----------------------

class RegisterInput(BaseModel):
    firstName: str = Field(..., min_length=1)
    lastName: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)
    phoneNumber: Optional[str] = None


class LoginInput(BaseModel):
    email: EmailStr
    password: str
    isAdminLogin: bool = False


@router.post("/register", status_code=201)
def register(payload: RegisterInput, db=Depends(get_db)):
    user = register_user(db, payload.firstName, payload.lastName, payload.email, payload.password, payload.phoneNumber)
    logger.info("Registered user %s", user["email"])
    return {"message": "Registration successful", "user": public_user(user)}


@router.post("/login")
def login(payload: LoginInput, db=Depends(get_db)):
    user = authenticate(db, payload.email, payload.password)
    is_admin = Role(user.get("role", Role.USER.value)) is Role.ADMIN
    if payload.isAdminLogin and not is_admin:
        raise AuthorizationError("Admin access required")
    tokens = issue_tokens(db, user, is_admin_login=payload.isAdminLogin and is_admin)
    response = JSONResponse({"message": "Login successful", "user": public_user(user)})
    set_auth_cookies(response, tokens)
    return response


def _refresh(request: Request, db):
    tokens, user = refresh_tokens(db, request.cookies.get("refreshToken"))
    return_url = request.query_params.get("returnUrl")
    if return_url and return_url.startswith("/") and "/api/auth/" not in return_url:
        response = RedirectResponse(return_url)
    else:
        response = JSONResponse({"message": "Token refreshed successfully", "user": public_user(user)})
    set_auth_cookies(response, tokens)
    return response


@router.get("/refresh")
def refresh_get(request: Request, db=Depends(get_db)):
    return _refresh(request, db)


@router.post("/refresh")
def refresh_post(request: Request, db=Depends(get_db)):
    return _refresh(request, db)


@router.post("/logout")
def logout(request: Request, db=Depends(get_db)):
    token = request.cookies.get("token")
    if token:
        try:
            claims = decode_access_token(token)
        except AuthenticationError:
            claims = None
        if claims:
            session_registry.invalidate(claims.get("sessionId", ""))
            revoke_refresh_token(db, str(claims.get("userId", "")))
    response = JSONResponse({"message": "Logout successful"})
    clear_auth_cookies(response)
    return response


@router.post("/logout-all")
def logout_all(request: Request, db=Depends(get_db)):
    claims = decode_access_token(request.cookies.get("token"))
    if not session_registry.validate(claims.get("sessionId")):
        raise AuthenticationError("Session expired or invalid")
    user_id = str(claims.get("userId", ""))
    removed = session_registry.invalidate_user(user_id)
    revoke_refresh_token(db, user_id)
    logger.info("Signed out %d sessions for user %s", removed, user_id)
    response = JSONResponse({"message": "Logged out of all sessions", "sessions": removed})
    clear_auth_cookies(response)
    return response


@router.get("/check")
def check(request: Request):
    try:
        claims = decode_access_token(request.cookies.get("token"))
    except AuthenticationError:
        return JSONResponse({"authenticated": False}, status_code=401)
    if not session_registry.validate(claims.get("sessionId")):
        return JSONResponse({"authenticated": False}, status_code=401)
    return {"authenticated": True, "user": claims}


class PasswordResetRequestInput(BaseModel):
    email: EmailStr


class PasswordResetInput(BaseModel):
    token: str = Field(..., min_length=1)
    password: str = Field(..., min_length=8)


@router.post("/request-password-reset")
def request_reset(payload: PasswordResetRequestInput, db=Depends(get_db)):
    token = request_password_reset(db, payload.email)
    body = {"message": "If an account exists for that email, a reset link has been sent"}
    if token and EXPOSE_RESET_TOKEN:
        body["resetToken"] = token
    return body


@router.post("/reset-password")
def reset(payload: PasswordResetInput, db=Depends(get_db)):
    reset_password(db, payload.token, payload.password)
    response = JSONResponse({"message": "Password has been reset"})
    clear_auth_cookies(response)
    return response
