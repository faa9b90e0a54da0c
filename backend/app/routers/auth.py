from fastapi import APIRouter, HTTPException, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from datetime import datetime, timedelta, timezone
from typing import Literal, Optional
import secrets
from ..config import settings
from ..crypto import decrypt, encrypt, lookup_hash
from ..db import get_conn
from ..deps import get_session, SESSION_COOKIE_NAME
from ..logging_utils import json_log
from ..rate_limit import login_limiter, client_ip
from ..security import hash_password, verify_password, needs_rehash, hash_session_token, is_valid_pin, constant_time_equals

router = APIRouter(prefix="/auth", tags=["auth"])


class LoginIn(BaseModel):
    # Email or username for password logins; ignored for PIN logins.
    identifier: Optional[str] = None
    # Holds the PIN when auth_type == "pin".
    password: str
    auth_type: Literal["password", "pin"] = "password"


def _request_ip(request: Request) -> str:
    return client_ip(
        request.headers.get("x-forwarded-for"),
        request.headers.get("x-real-ip"),
        request.client.host if request.client else None,
    )


def _public_user(row: dict) -> dict:
    return {
        "id": str(row["id"]),
        "name": decrypt(row.get("name_enc")),
        "email": decrypt(row.get("email_enc")),
        "username": decrypt(row.get("username_enc")),
        "role": (decrypt(row.get("role_enc")) or "USER").upper(),
        "department": decrypt(row.get("department_enc")),
    }


def _find_by_identifier(cur, identifier: str) -> Optional[dict]:
    h = lookup_hash(identifier)
    if not h:
        return None
    cur.execute(
        """
        SELECT id, name_enc, email_enc, username_enc, role_enc, department_enc, hashed_password
        FROM users
        WHERE email_hash = %s OR username_hash = %s
        LIMIT 1
        """,
        (h, h),
    )
    return cur.fetchone()


def _find_by_pin(cur, pin: str) -> Optional[dict]:
    # PINs are encrypted with a random IV, so there is nothing to index on: scan.
    cur.execute(
        """
        SELECT id, name_enc, email_enc, username_enc, role_enc, department_enc, pin_enc
        FROM users
        WHERE pin_enc IS NOT NULL AND pin_enc <> ''
        """
    )
    for row in cur.fetchall():
        if constant_time_equals(decrypt(row["pin_enc"]), pin):
            return row
    return None


def authenticate(cur, data: LoginIn) -> dict:
    """Resolve credentials to a user row or raise 401 with a user-facing reason."""
    if data.auth_type == "pin":
        if not data.password:
            raise HTTPException(status_code=400, detail="PIN is required")
        user = _find_by_pin(cur, data.password)
        if not user:
            raise HTTPException(status_code=401, detail="wrong or unknown PIN")
        return user

    if not (data.identifier or "").strip():
        raise HTTPException(status_code=400, detail="email is required")
    if not data.password:
        raise HTTPException(status_code=400, detail="password is required")
    user = _find_by_identifier(cur, data.identifier)
    if not user:
        raise HTTPException(status_code=401, detail="email not registered")
    if not verify_password(data.password, user["hashed_password"]):
        raise HTTPException(status_code=401, detail="wrong password")
    if needs_rehash(user["hashed_password"]):
        cur.execute(
            "UPDATE users SET hashed_password = %s WHERE id = %s",
            (hash_password(data.password), user["id"]),
        )
    return user


def _locked_detail(seconds: int) -> str:
    minutes = max(1, -(-seconds // 60))
    return f"too many attempts, wait {minutes} minute(s)"


@router.post("/login")
def login(data: LoginIn, request: Request):
    ip = _request_ip(request)
    blocked = login_limiter.remaining_block_seconds(ip)
    if blocked:
        raise HTTPException(status_code=429, detail=_locked_detail(blocked))

    with get_conn() as conn:
        with conn.cursor() as cur:
            try:
                user = authenticate(cur, data)
            except HTTPException as exc:
                if exc.status_code == 401:
                    json_log("warning", "auth.login_failed", ip=ip, auth_type=data.auth_type)
                    if login_limiter.register_failure(ip):
                        raise HTTPException(
                            status_code=429,
                            detail=_locked_detail(login_limiter.block_seconds),
                        ) from None
                raise
            login_limiter.reset(ip)

            # Use a strong random token and store only a one-way hash in the DB.
            token = secrets.token_urlsafe(32)
            expires = datetime.now(timezone.utc) + timedelta(hours=settings.session_hours)
            cur.execute(
                """
                INSERT INTO auth_sessions (id, user_id, token_hash, expires_at)
                VALUES (gen_random_uuid(), %s, %s, %s)
                """,
                (user["id"], hash_session_token(token), expires),
            )

    resp = JSONResponse({"token": token, "expires_at": expires.isoformat(), "user": _public_user(user)})
    resp.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=token,
        httponly=True,
        samesite="lax",
        secure=not settings.is_dev,
        max_age=settings.session_hours * 60 * 60,
        path="/",
    )
    return resp


@router.get("/rate-limit-status")
def rate_limit_status(request: Request):
    return login_limiter.status(_request_ip(request))


@router.get("/me")
def me(session=Depends(get_session)):
    return {
        "user_id": str(session["user_id"]),
        "name": session["name"],
        "email": session["email"],
        "role": session["role"],
        "department": session["department"],
    }


class ProfileUpdateIn(BaseModel):
    name: Optional[str] = None
    current_password: Optional[str] = None
    new_password: Optional[str] = None
    pin: Optional[str] = None


@router.patch("/profile")
def update_profile(data: ProfileUpdateIn, session=Depends(get_session)):
    fields = []
    params = []
    if data.name is not None:
        name = data.name.strip()
        if not name:
            raise HTTPException(status_code=400, detail="name is required")
        fields.append("name_enc = %s")
        params.append(encrypt(name))
    if data.pin:
        if not is_valid_pin(data.pin):
            raise HTTPException(status_code=400, detail="PIN must be 4-6 digits")
        fields.append("pin_enc = %s")
        params.append(encrypt(data.pin))

    with get_conn() as conn:
        with conn.cursor() as cur:
            if data.new_password:
                if len(data.new_password) < 6:
                    raise HTTPException(status_code=400, detail="password must be at least 6 characters")
                cur.execute("SELECT hashed_password FROM users WHERE id = %s", (session["user_id"],))
                row = cur.fetchone()
                if not row or not verify_password(data.current_password or "", row["hashed_password"]):
                    raise HTTPException(status_code=400, detail="current password is wrong")
                fields.append("hashed_password = %s")
                params.append(hash_password(data.new_password))
            if not fields:
                return {"ok": True}
            params.append(session["user_id"])
            cur.execute(
                f"""
                UPDATE users
                SET {', '.join(fields)}, updated_at = now()
                WHERE id = %s
                """,
                params,
            )
    return {"ok": True}


@router.post("/logout")
def logout(session=Depends(get_session)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                "UPDATE auth_sessions SET is_active = false WHERE id = %s",
                (session["session_id"],),
            )
    resp = JSONResponse({"ok": True})
    resp.delete_cookie(key=SESSION_COOKIE_NAME, path="/")
    return resp


@router.post("/logout-all")
def logout_all(session=Depends(get_session)):
    """
    Revoke all sessions for the current user (useful after password resets or when a token may be leaked).
    """
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                UPDATE auth_sessions
                SET is_active = false
                WHERE user_id = %s
                """,
                (session["user_id"],),
            )
    resp = JSONResponse({"ok": True})
    resp.delete_cookie(key=SESSION_COOKIE_NAME, path="/")
    return resp
