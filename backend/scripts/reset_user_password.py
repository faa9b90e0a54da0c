#!/usr/bin/env python3
import argparse
import os
import sys

import psycopg
from psycopg.rows import dict_row

from backend.app.crypto import lookup_hash
from backend.app.security import hash_password


def main() -> int:
    parser = argparse.ArgumentParser(description="Reset a user's password (admin/maintenance).")
    parser.add_argument(
        "--db",
        default=os.getenv("DATABASE_URL") or "postgresql://localhost/ichibot",
        help="Postgres connection string (defaults to $DATABASE_URL).",
    )
    parser.add_argument("--login", required=True, help="Email or username.")
    parser.add_argument("--password", required=True)
    args = parser.parse_args()

    h = lookup_hash(args.login)
    if not h:
        print("login is required", file=sys.stderr)
        return 2

    with psycopg.connect(args.db, row_factory=dict_row) as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE users
                    SET hashed_password = %s,
                        updated_at = now()
                    WHERE email_hash = %s OR username_hash = %s
                    RETURNING id
                    """,
                    (hash_password(args.password), h, h),
                )
                row = cur.fetchone()
                if not row:
                    print(f"user not found: {args.login}", file=sys.stderr)
                    return 2

                # Old sessions must not survive a password reset.
                cur.execute(
                    "UPDATE auth_sessions SET is_active = false WHERE user_id = %s",
                    (row["id"],),
                )

    print("OK")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
