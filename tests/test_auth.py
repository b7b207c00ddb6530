from datetime import datetime, timedelta, timezone

import pytest

import auth
from auth import authenticate, lock_remaining_minutes, refresh_tokens, request_password_reset, reset_password
from conftest import PASSWORD, login, make_user
from errors import AccountLockedError, AuthenticationError, ValidationError
from security import decode_access_token, decode_refresh_token
from sessions import session_registry


def test_register_creates_user_with_user_role(client, db):
    res = client.post(
        "/api/auth/register",
        json={
            "firstName": "Sam",
            "lastName": "Lee",
            "email": "Sam@Example.com",
            "password": "hunter22",
            "role": "admin",
        },
    )
    assert res.status_code == 201
    assert res.json()["user"]["email"] == "sam@example.com"
    stored = db["user"].find_one({"email": "sam@example.com"})
    assert stored["role"] == "user"
    assert stored["password"] != "hunter22"


def test_register_duplicate_email(client, user):
    res = client.post(
        "/api/auth/register",
        json={"firstName": "J", "lastName": "D", "email": user["email"], "password": "whatever1"},
    )
    assert res.status_code == 400


def test_register_validation_error_shape(client):
    res = client.post("/api/auth/register", json={"email": "not-an-email"})
    assert res.status_code == 400
    body = res.json()
    assert body["detail"] == "Validation error"
    assert {e["field"] for e in body["errors"]} >= {"firstName", "password"}


def test_login_sets_cookies_and_session(client, user):
    res = login(client, user["email"])
    assert res.status_code == 200
    assert "password" not in res.json()["user"]
    token = client.cookies.get("token")
    assert token and client.cookies.get("refreshToken")
    claims = decode_access_token(token)
    assert claims["userId"] == str(user["_id"])
    assert claims["role"] == "user"
    assert session_registry.validate(claims["sessionId"])


def test_login_unknown_email(client):
    res = login(client, "nobody@example.com")
    assert res.status_code == 401


def test_admin_login_rejected_for_regular_user(client, user):
    res = login(client, user["email"], is_admin_login=True)
    assert res.status_code == 403


def test_lockout_after_five_failures(db):
    user = make_user(db)
    for _ in range(5):
        with pytest.raises(AuthenticationError):
            authenticate(db, user["email"], "wrong-password")
    stored = db["user"].find_one({"_id": user["_id"]})
    assert stored["loginAttempts"] == 5
    assert lock_remaining_minutes(stored) == 15

    with pytest.raises(AccountLockedError) as exc:
        authenticate(db, user["email"], PASSWORD)
    assert exc.value.status_code == 423
    assert "15 minutes" in exc.value.detail


def test_expired_lock_resets_counter(db):
    past = datetime.now(timezone.utc) - timedelta(minutes=1)
    user = make_user(db, loginAttempts=5, lockUntil=past)
    with pytest.raises(AuthenticationError):
        authenticate(db, user["email"], "wrong-password")
    stored = db["user"].find_one({"_id": user["_id"]})
    assert stored["loginAttempts"] == 1
    assert stored["lockUntil"] is None


def test_successful_login_clears_attempts(db):
    user = make_user(db, loginAttempts=3)
    authenticate(db, user["email"], PASSWORD)
    stored = db["user"].find_one({"_id": user["_id"]})
    assert stored["loginAttempts"] == 0
    assert stored["lastLogin"] is not None


def test_locked_login_over_http(client, db):
    user = make_user(db, loginAttempts=5, lockUntil=datetime.now(timezone.utc) + timedelta(minutes=10))
    res = login(client, user["email"])
    assert res.status_code == 423
    assert "10 minutes" in res.json()["detail"]


def test_refresh_rotates_token(user_client, db, user):
    old_refresh = user_client.cookies.get("refreshToken")
    res = user_client.post("/api/auth/refresh")
    assert res.status_code == 200
    new_refresh = user_client.cookies.get("refreshToken")
    assert new_refresh != old_refresh
    assert db["user"].find_one({"_id": user["_id"]})["refreshToken"] == new_refresh


def test_refresh_token_reuse_rejected(user_client, db):
    old_refresh = user_client.cookies.get("refreshToken")
    refresh_tokens(db, old_refresh)
    with pytest.raises(AuthenticationError):
        refresh_tokens(db, old_refresh)


def test_refresh_get_redirects_to_return_url(user_client):
    res = user_client.get("/api/auth/refresh", params={"returnUrl": "/account/orders"}, follow_redirects=False)
    assert res.status_code in (302, 307)
    assert res.headers["location"] == "/account/orders"


def test_refresh_ignores_auth_return_url(user_client):
    res = user_client.get("/api/auth/refresh", params={"returnUrl": "/api/auth/refresh"}, follow_redirects=False)
    assert res.status_code == 200


def test_refresh_without_cookie(client):
    assert client.post("/api/auth/refresh").status_code == 401


def test_logout_invalidates_session(user_client, db, user):
    claims = decode_access_token(user_client.cookies.get("token"))
    res = user_client.post("/api/auth/logout")
    assert res.status_code == 200
    assert not session_registry.validate(claims["sessionId"])
    assert db["user"].find_one({"_id": user["_id"]})["refreshToken"] is None


def test_logout_all_signs_out_every_session(client, user):
    login(client, user["email"])
    login(client, user["email"])
    assert len(session_registry.user_sessions(str(user["_id"]))) == 2
    res = client.post("/api/auth/logout-all")
    assert res.status_code == 200
    assert res.json()["sessions"] == 2
    assert session_registry.user_sessions(str(user["_id"])) == []


def test_check(user_client):
    res = user_client.get("/api/auth/check")
    assert res.status_code == 200
    assert res.json()["authenticated"] is True


def test_check_without_token(client):
    res = client.get("/api/auth/check")
    assert res.status_code == 401
    assert res.json() == {"authenticated": False}


def test_login_succeeds_after_lock_expires(db):
    past = datetime.now(timezone.utc) - timedelta(seconds=1)
    user = make_user(db, loginAttempts=5, lockUntil=past)
    authenticate(db, user["email"], PASSWORD)
    assert db["user"].find_one({"_id": user["_id"]})["loginAttempts"] == 0


def _lifetime(claims):
    return claims["exp"] - claims["iat"]


def test_access_token_lifetimes(client, user, admin):
    login(client, user["email"])
    assert _lifetime(decode_access_token(client.cookies.get("token"))) == 2 * 60 * 60
    assert _lifetime(decode_refresh_token(client.cookies.get("refreshToken"))) == 15 * 24 * 60 * 60

    client.cookies.clear()
    login(client, admin["email"], is_admin_login=True)
    assert _lifetime(decode_access_token(client.cookies.get("token"))) == 7 * 24 * 60 * 60


def test_admin_login_without_flag_gets_normal_lifetime(client, admin):
    login(client, admin["email"])
    assert _lifetime(decode_access_token(client.cookies.get("token"))) == 2 * 60 * 60


def test_refreshed_admin_token_gets_normal_lifetime(admin_client):
    assert admin_client.post("/api/auth/refresh").status_code == 200
    claims = decode_access_token(admin_client.cookies.get("token"))
    assert claims["role"] == "admin"
    assert _lifetime(claims) == 2 * 60 * 60


def test_concurrent_refresh_only_one_wins(user_client, db, user, monkeypatch):
    old_refresh = user_client.cookies.get("refreshToken")
    original = auth.create_access_token
    results = []

    def interleaved(*args, **kwargs):
        # a second request with the same token lands while the first is signing
        if not results:
            results.append(None)
            results.append(refresh_tokens(db, old_refresh))
        return original(*args, **kwargs)

    monkeypatch.setattr(auth, "create_access_token", interleaved)
    with pytest.raises(AuthenticationError):
        refresh_tokens(db, old_refresh)

    winner, _ = results[1]
    assert db["user"].find_one({"_id": user["_id"]})["refreshToken"] == winner.refresh_token
    assert len(session_registry.user_sessions(str(user["_id"]))) == 2


def test_password_reset_flow(client, db, monkeypatch):
    locked = make_user(db, loginAttempts=5, lockUntil=datetime.now(timezone.utc) + timedelta(minutes=10))
    monkeypatch.setattr(auth, "EXPOSE_RESET_TOKEN", True)
    res = client.post("/api/auth/request-password-reset", json={"email": locked["email"].upper()})
    assert res.status_code == 200
    token = res.json()["resetToken"]
    assert db["user"].find_one({"_id": locked["_id"]})["passwordResetToken"] != token

    res = client.post("/api/auth/reset-password", json={"token": token, "password": "new-secret-1"})
    assert res.status_code == 200
    stored = db["user"].find_one({"_id": locked["_id"]})
    assert stored["loginAttempts"] == 0
    assert stored["lockUntil"] is None
    assert stored["passwordResetToken"] is None

    assert login(client, locked["email"]).status_code == 401
    assert login(client, locked["email"], password="new-secret-1").status_code == 200


def test_password_reset_token_is_single_use(client, db, user):
    token = request_password_reset(db, user["email"])
    reset_password(db, token, "new-secret-1")
    res = client.post("/api/auth/reset-password", json={"token": token, "password": "new-secret-2"})
    assert res.status_code == 400


def test_expired_reset_token_rejected(db, user):
    issued = datetime.now(timezone.utc) - timedelta(minutes=11)
    token = request_password_reset(db, user["email"], now=issued)
    with pytest.raises(ValidationError):
        reset_password(db, token, "new-secret-1")
    assert authenticate(db, user["email"], PASSWORD)


def test_reset_request_for_unknown_email_is_generic(client, user):
    known = client.post("/api/auth/request-password-reset", json={"email": user["email"]})
    unknown = client.post("/api/auth/request-password-reset", json={"email": "nobody@example.com"})
    assert known.status_code == unknown.status_code == 200
    assert known.json() == unknown.json()
    assert "resetToken" not in known.json()


def test_reset_signs_out_existing_sessions(user_client, db, user):
    claims = decode_access_token(user_client.cookies.get("token"))
    token = request_password_reset(db, user["email"])
    reset_password(db, token, "new-secret-1")
    assert not session_registry.validate(claims["sessionId"])
    assert db["user"].find_one({"_id": user["_id"]})["refreshToken"] is None


def test_reset_password_minimum_length(client, db, user):
    token = request_password_reset(db, user["email"])
    res = client.post("/api/auth/reset-password", json={"token": token, "password": "short"})
    assert res.status_code == 400
