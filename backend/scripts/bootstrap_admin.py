#!/usr/bin/env python3
import os
import secrets
import sys

import psycopg
from psycopg.rows import dict_row

from backend.app.crypto import encrypt, lookup_hash
from backend.app.security import hash_password


def _truthy(v: str) -> bool:
    return (v or "").strip().lower() in {"1", "true", "yes", "y", "on"}


def _generate_password() -> str:
    # URL-safe and copy/paste friendly.
    return secrets.token_urlsafe(16)


def main() -> int:
    if not _truthy(os.getenv("BOOTSTRAP_ADMIN", "")):
        return 0

    db_url = os.getenv("DATABASE_URL")
    if not db_url:
        print("bootstrap_admin: missing DATABASE_URL", file=sys.stderr)
        return 2
    if not os.getenv("AUTH_KEY"):
        print("bootstrap_admin: missing AUTH_KEY (needed to encrypt user fields)", file=sys.stderr)
        return 2

    email = os.getenv("BOOTSTRAP_ADMIN_EMAIL", "admin@ichibot.local").strip().lower()
    username = os.getenv("BOOTSTRAP_ADMIN_USERNAME", "admin").strip()
    if not email or not username:
        print("bootstrap_admin: BOOTSTRAP_ADMIN_EMAIL/USERNAME is empty", file=sys.stderr)
        return 2
    name = os.getenv("BOOTSTRAP_ADMIN_NAME", "Administrator").strip() or "Administrator"

    password = os.getenv("BOOTSTRAP_ADMIN_PASSWORD")
    generated_password = False
    if not password:
        password = _generate_password()
        generated_password = True

    email_hash = lookup_hash(email)
    username_hash = lookup_hash(username)

    with psycopg.connect(db_url, row_factory=dict_row) as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT id FROM users WHERE email_hash = %s OR username_hash = %s",
                    (email_hash, username_hash),
                )
                if cur.fetchone():
                    # Idempotent: don't create duplicate users.
                    return 0

                cur.execute(
                    """
                    INSERT INTO users
                      (id, name_enc, email_enc, email_hash, username_enc, username_hash,
                       hashed_password, role_enc)
                    VALUES (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        encrypt(name),
                        encrypt(email),
                        email_hash,
                        encrypt(username),
                        username_hash,
                        hash_password(password),
                        encrypt("ADMIN"),
                    ),
                )

    print("BOOTSTRAP_ADMIN_CREATED")
    print(f"email: {email}")
    print(f"username: {username}")
    if generated_password:
        print(f"password: {password}")
    else:
        print("password: (provided via BOOTSTRAP_ADMIN_PASSWORD)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
