"""
Access gate: request middleware guarding admin and account routes.

Verified requests are forwarded with x-user-id / x-user-role headers, which
handlers read through get_current_user and require_admin.
"""

import logging
from typing import Optional

from fastapi import Depends, Header
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from auth import lock_remaining_minutes
from database import get_db, to_object_id
from errors import AccountLockedError, AuthenticationError, AuthorizationError
from schemas import Role
from security import decode_access_token
from sessions import session_registry

logger = logging.getLogger(__name__)

USER_ID_HEADER = "x-user-id"
USER_ROLE_HEADER = "x-user-role"

BYPASS_PREFIXES = ("/api/auth/",)
ADMIN_PREFIXES = ("/admin", "/api/admin", "/api/upload")
USER_PREFIXES = ("/dashboard", "/account", "/api/user")

LOGIN_PAGE = "/login"
HOME_PAGE = "/"
ADMIN_HOME_PAGE = "/admin/dashboard"


def _matches(path: str, prefixes) -> bool:
    return any(path == p or path.startswith(p.rstrip("/") + "/") for p in prefixes)


def required_role(path: str) -> Optional[Role]:
    if _matches(path, ADMIN_PREFIXES):
        return Role.ADMIN
    if _matches(path, USER_PREFIXES):
        return Role.USER
    return None


def is_api_path(path: str) -> bool:
    return path == "/api" or path.startswith("/api/")


class AccessGateMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, registry=session_registry):
        super().__init__(app)
        self.registry = registry

    async def dispatch(self, request: Request, call_next):
        # Identity headers are only ever set here
        self._set_identity(request, None, None)

        path = request.url.path
        if _matches(path, BYPASS_PREFIXES):
            return await call_next(request)

        required = required_role(path)
        token = request.cookies.get("token")
        if required is None:
            if token:
                self._forward_identity(request, token)
            return await call_next(request)

        is_api = is_api_path(path)
        if not token:
            return self._unauthenticated(request, is_api, "Authentication required")

        try:
            claims, role = self._verify(token)
        except (AuthenticationError, ValueError) as exc:
            if request.cookies.get("refreshToken") and not is_api:
                # let the page load so the client can refresh silently
                return await call_next(request)
            detail = getattr(exc, "detail", "Invalid token")
            return self._unauthenticated(request, is_api, detail)

        if required is Role.ADMIN:
            if role is not Role.ADMIN:
                logger.warning("Non-admin user %s denied %s", claims.get("userId"), path)
                if is_api:
                    return JSONResponse({"detail": "Admin access required"}, status_code=403)
                return RedirectResponse(HOME_PAGE)
        elif required is Role.USER:
            if role is Role.ADMIN and not is_api and request.query_params.get("adminBypass") != "true":
                return RedirectResponse(ADMIN_HOME_PAGE)

        self._set_identity(request, claims.get("userId"), role.value)
        return await call_next(request)

    def _verify(self, token: str):
        claims = decode_access_token(token)
        role = Role(claims.get("role"))
        if not self.registry.validate(claims.get("sessionId")):
            raise AuthenticationError("Session expired or invalid")
        return claims, role

    def _forward_identity(self, request: Request, token: str) -> None:
        """Public routes still see who is calling when the session is live."""
        try:
            claims, role = self._verify(token)
        except (AuthenticationError, ValueError) as exc:
            logger.debug("Anonymous request to %s: %s", request.url.path, getattr(exc, "detail", exc))
            return
        self._set_identity(request, claims.get("userId"), role.value)

    @staticmethod
    def _unauthenticated(request: Request, is_api: bool, detail: str):
        if is_api:
            return JSONResponse({"detail": detail}, status_code=401)
        return RedirectResponse(LOGIN_PAGE)

    @staticmethod
    def _set_identity(request: Request, user_id: Optional[str], role: Optional[str]) -> None:
        headers = [
            (k, v) for k, v in request.scope["headers"]
            if k not in (USER_ID_HEADER.encode(), USER_ROLE_HEADER.encode())
        ]
        if user_id and role:
            headers.append((USER_ID_HEADER.encode(), user_id.encode()))
            headers.append((USER_ROLE_HEADER.encode(), role.encode()))
        request.scope["headers"] = headers
        # drop the cached Headers view so handlers see the new list
        request.__dict__.pop("_headers", None)


# Dependencies

def get_current_user(x_user_id: Optional[str] = Header(default=None), db=Depends(get_db)):
    if not x_user_id:
        raise AuthenticationError("Not authenticated")
    obj_id = to_object_id(x_user_id)
    user = db["user"].find_one({"_id": obj_id}) if obj_id else None
    if not user or not user.get("isActive", True):
        raise AuthenticationError("User not found or inactive")
    wait = lock_remaining_minutes(user)
    if wait:
        raise AccountLockedError(wait)
    return user


def require_admin(user: dict = Depends(get_current_user)):
    if Role(user.get("role", Role.USER.value)) is not Role.ADMIN:
        raise AuthorizationError()
    return user
