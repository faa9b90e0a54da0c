from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from typing import Optional
from ..crypto import decrypt, encrypt, lookup_hash
from ..db import get_conn
from ..deps import require_admin
from ..security import hash_password, is_valid_pin

router = APIRouter(prefix="/users", tags=["users"])

ROLES = ("ADMIN", "HRD", "USER", "TEKNISI", "ADMINISTRASI", "STORE")


class UserIn(BaseModel):
    name: str
    email: str
    username: str
    password: str
    department: Optional[str] = None
    role: str = "USER"
    pin: Optional[str] = None


class UserUpdate(BaseModel):
    name: str
    email: str
    username: str
    department: Optional[str] = None
    role: str = "USER"
    # Left unchanged when blank.
    password: Optional[str] = None
    pin: Optional[str] = None


def _normalize_role(role: Optional[str]) -> str:
    r = (role or "USER").strip().upper() or "USER"
    if r not in ROLES:
        raise HTTPException(status_code=400, detail=f"unknown role: {r}")
    return r


def decrypt_user(row: dict) -> dict:
    return {
        "id": str(row["id"]),
        "name": decrypt(row.get("name_enc")),
        "email": decrypt(row.get("email_enc")),
        "username": decrypt(row.get("username_enc")),
        "department": decrypt(row.get("department_enc")),
        "role": (decrypt(row.get("role_enc")) or "USER").upper(),
        "has_pin": bool(row.get("pin_enc")),
        "created_at": row.get("created_at"),
    }


def _assert_unique(cur, email_hash: str, username_hash: str, exclude_id: Optional[str] = None):
    cur.execute(
        """
        SELECT id
        FROM users
        WHERE (email_hash = %s OR username_hash = %s)
          AND (%s::uuid IS NULL OR id <> %s::uuid)
        LIMIT 1
        """,
        (email_hash, username_hash, exclude_id, exclude_id),
    )
    if cur.fetchone():
        raise HTTPException(status_code=409, detail="email or username already exists")


def _identity_hashes(email: str, username: str):
    email_hash = lookup_hash(email)
    username_hash = lookup_hash(username)
    if not email_hash or not username_hash:
        raise HTTPException(status_code=400, detail="invalid email or username")
    return email_hash, username_hash


def list_all_users(cur) -> list:
    cur.execute(
        """
        SELECT id, name_enc, email_enc, username_enc, department_enc, role_enc, pin_enc, created_at
        FROM users
        ORDER BY created_at DESC
        """
    )
    return [decrypt_user(r) for r in cur.fetchall()]


@router.get("", dependencies=[Depends(require_admin)])
def list_users():
    with get_conn() as conn:
        with conn.cursor() as cur:
            return {"users": list_all_users(cur)}


@router.post("", dependencies=[Depends(require_admin)])
def create_user(data: UserIn):
    if not data.name.strip():
        raise HTTPException(status_code=400, detail="name is required")
    if not data.password:
        raise HTTPException(status_code=400, detail="password is required")
    if data.pin and not is_valid_pin(data.pin):
        raise HTTPException(status_code=400, detail="PIN must be 4-6 digits")
    role = _normalize_role(data.role)
    email_hash, username_hash = _identity_hashes(data.email, data.username)

    with get_conn() as conn:
        with conn.cursor() as cur:
            _assert_unique(cur, email_hash, username_hash)
            cur.execute(
                """
                INSERT INTO users
                  (id, name_enc, email_enc, email_hash, username_enc, username_hash,
                   hashed_password, pin_enc, department_enc, role_enc)
                VALUES
                  (gen_random_uuid(), %s, %s, %s, %s, %s,
                   %s, %s, %s, %s)
                RETURNING id
                """,
                (
                    encrypt(data.name.strip()),
                    encrypt(data.email.strip()),
                    email_hash,
                    encrypt(data.username.strip()),
                    username_hash,
                    hash_password(data.password),
                    encrypt(data.pin) if data.pin else None,
                    encrypt(data.department),
                    encrypt(role),
                ),
            )
            return {"id": str(cur.fetchone()["id"])}


@router.put("/{user_id}", dependencies=[Depends(require_admin)])
def update_user(user_id: str, data: UserUpdate):
    role = _normalize_role(data.role)
    email_hash, username_hash = _identity_hashes(data.email, data.username)
    fields = [
        "name_enc = %s",
        "email_enc = %s",
        "email_hash = %s",
        "username_enc = %s",
        "username_hash = %s",
        "department_enc = %s",
        "role_enc = %s",
    ]
    params = [
        encrypt(data.name.strip()),
        encrypt(data.email.strip()),
        email_hash,
        encrypt(data.username.strip()),
        username_hash,
        encrypt(data.department),
        encrypt(role),
    ]
    if data.password and data.password.strip():
        fields.append("hashed_password = %s")
        params.append(hash_password(data.password))
    if data.pin and data.pin.strip():
        if not is_valid_pin(data.pin):
            raise HTTPException(status_code=400, detail="PIN must be 4-6 digits")
        fields.append("pin_enc = %s")
        params.append(encrypt(data.pin))
    params.append(user_id)

    with get_conn() as conn:
        with conn.cursor() as cur:
            _assert_unique(cur, email_hash, username_hash, exclude_id=user_id)
            cur.execute(
                f"""
                UPDATE users
                SET {', '.join(fields)}, updated_at = now()
                WHERE id = %s
                """,
                params,
            )
            if cur.rowcount == 0:
                raise HTTPException(status_code=404, detail="user not found")
    return {"ok": True}


@router.delete("/{user_id}")
def delete_user(user_id: str, admin=Depends(require_admin)):
    if str(admin["user_id"]) == str(user_id):
        raise HTTPException(status_code=400, detail="cannot delete yourself")
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("DELETE FROM users WHERE id = %s", (user_id,))
            if cur.rowcount == 0:
                raise HTTPException(status_code=404, detail="user not found")
    return {"ok": True}


@router.post("/{user_id}/toggle-role", dependencies=[Depends(require_admin)])
def toggle_user_role(user_id: str):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT role_enc FROM users WHERE id = %s", (user_id,))
            row = cur.fetchone()
            if not row:
                raise HTTPException(status_code=404, detail="user not found")
            current = (decrypt(row["role_enc"]) or "USER").upper()
            new_role = "USER" if current == "ADMIN" else "ADMIN"
            cur.execute(
                "UPDATE users SET role_enc = %s, updated_at = now() WHERE id = %s",
                (encrypt(new_role), user_id),
            )
            return {"ok": True, "role": new_role}
