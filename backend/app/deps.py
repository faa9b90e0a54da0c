from fastapi import Header, HTTPException, Depends, Cookie
from .db import get_conn
from .crypto import decrypt
from .rbac import is_route_allowed, load_rbac_config, FORBIDDEN_REDIRECT
from .security import hash_session_token
from datetime import datetime, timezone
from typing import Optional


SESSION_COOKIE_NAME = "ichibot_session"

# Roles with admin-level access to HR, users and settings.
ADMIN_ROLES = ("ADMIN", "HRD")


def _extract_session_token(authorization: Optional[str], cookie_token: Optional[str]) -> str:
    if authorization and authorization.lower().startswith("bearer "):
        return authorization.split(" ", 1)[1]
    if cookie_token:
        return cookie_token
    raise HTTPException(status_code=401, detail="missing token")


def get_session(
    authorization: Optional[str] = Header(None),
    cookie_token: Optional[str] = Cookie(None, alias=SESSION_COOKIE_NAME),
):
    token = _extract_session_token(authorization, cookie_token)
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT s.id AS session_id, s.user_id, s.expires_at, s.is_active,
                       u.name_enc, u.email_enc, u.role_enc, u.department_enc
                FROM auth_sessions s
                JOIN users u ON u.id = s.user_id
                WHERE s.token_hash = %s
                """,
                (hash_session_token(token),),
            )
            row = cur.fetchone()
            now = datetime.now(timezone.utc)
            if not row or not row["is_active"] or row["expires_at"] < now:
                raise HTTPException(status_code=401, detail="invalid token")
            return {
                "session_id": row["session_id"],
                "user_id": row["user_id"],
                "name": decrypt(row["name_enc"]),
                "email": decrypt(row["email_enc"]),
                "role": (decrypt(row["role_enc"]) or "USER").upper(),
                "department": decrypt(row["department_enc"]),
                "token": token,
            }


def get_current_user(session=Depends(get_session)):
    return {
        "user_id": session["user_id"],
        "name": session["name"],
        "email": session["email"],
        "role": session["role"],
        "department": session["department"],
    }


def require_auth(user=Depends(get_current_user)):
    """Any signed-in user; the resolved user dict is passed through."""
    return user


def is_admin_role(role: Optional[str]) -> bool:
    return (role or "").upper() in ADMIN_ROLES


def require_admin(user=Depends(get_current_user)):
    if not is_admin_role(user["role"]):
        raise HTTPException(status_code=403, detail="admin access required")
    return user


def require_roles(*roles: str):
    wanted = {r.upper() for r in roles}

    def _dep(user=Depends(get_current_user)):
        if user["role"] not in wanted:
            raise HTTPException(status_code=403, detail="permission denied")
        return user
    return _dep


def require_route(path: str):
    """Server-side page gate driven by the stored RBAC config."""
    def _dep(user=Depends(get_current_user)):
        with get_conn() as conn:
            with conn.cursor() as cur:
                config = load_rbac_config(cur)
        if not is_route_allowed(user["role"], path, config):
            raise HTTPException(
                status_code=403,
                detail="forbidden",
                headers={"X-Redirect-To": FORBIDDEN_REDIRECT},
            )
        return user
    return _dep
