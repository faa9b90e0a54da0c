#!/usr/bin/env python3
import argparse
import os
import sys

import psycopg
from psycopg.rows import dict_row

from backend.app.config import settings
from backend.app.store_sync import perform_store_sync
from backend.app.woocommerce import WooClient


def main() -> int:
    parser = argparse.ArgumentParser(description="Pull the WooCommerce catalogue into store_products.")
    parser.add_argument(
        "--db",
        default=os.getenv("DATABASE_URL") or "postgresql://localhost/ichibot",
        help="Postgres connection string (defaults to $DATABASE_URL).",
    )
    parser.add_argument("--quiet", action="store_true", help="Only print the final summary.")
    args = parser.parse_args()

    if not settings.wc_configured:
        print("WC_URL, WC_CONSUMER_KEY and WC_CONSUMER_SECRET must be set", file=sys.stderr)
        return 2

    log = (lambda _msg: None) if args.quiet else print
    with psycopg.connect(args.db, row_factory=dict_row) as conn:
        result = perform_store_sync(conn, WooClient.from_settings(), log)

    if not result.get("success"):
        print(f"sync failed: {result.get('error')}", file=sys.stderr)
        return 1
    print(f"synced={result.get('count', 0)} errors={result.get('errors', 0)} total={result.get('total', 0)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
