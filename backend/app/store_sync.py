"""
One-way pull of the WooCommerce catalogue into `store_products`.

Products are upserted by `wc_id` (variations included, `type='variation'`), local
columns (`purchased`, `store_name`, `keterangan`) are never touched, and rows the
store no longer returns are flagged `is_missing_from_woo`.
"""
import json
from typing import Callable, List, Optional

from .logging_utils import json_log
from .woocommerce import PER_PAGE, WooClient, WooError, to_decimal

LogFn = Callable[[str], None]


def _noop(_msg: str) -> None:
    return None


_UPSERT_SQL = """
    INSERT INTO store_products
      (wc_id, name, slug, sku, type, status, description, short_description,
       price, regular_price, sale_price, stock_quantity, stock_status,
       images, categories, attributes, parent_id,
       purchased, is_missing_from_woo, created_at, updated_at)
    VALUES
      (%s, %s, %s, %s, %s, %s, %s, %s,
       %s, %s, %s, %s, %s,
       %s, %s, %s, %s,
       false, false, now(), now())
    ON CONFLICT (wc_id) DO UPDATE
    SET name = EXCLUDED.name,
        slug = EXCLUDED.slug,
        sku = EXCLUDED.sku,
        type = EXCLUDED.type,
        status = EXCLUDED.status,
        description = COALESCE(EXCLUDED.description, store_products.description),
        short_description = COALESCE(EXCLUDED.short_description, store_products.short_description),
        price = EXCLUDED.price,
        regular_price = EXCLUDED.regular_price,
        sale_price = EXCLUDED.sale_price,
        stock_quantity = EXCLUDED.stock_quantity,
        stock_status = EXCLUDED.stock_status,
        images = EXCLUDED.images,
        categories = COALESCE(EXCLUDED.categories, store_products.categories),
        attributes = COALESCE(EXCLUDED.attributes, store_products.attributes),
        parent_id = EXCLUDED.parent_id,
        is_missing_from_woo = false,
        updated_at = now()
"""


def product_row(p: dict) -> tuple:
    return (
        int(p["id"]),
        p.get("name") or "",
        p.get("slug"),
        p.get("sku"),
        p.get("type"),
        p.get("status"),
        p.get("description"),
        p.get("short_description"),
        to_decimal(p.get("price")),
        to_decimal(p.get("regular_price")),
        to_decimal(p.get("sale_price")),
        int(p.get("stock_quantity") or 0),
        p.get("stock_status"),
        json.dumps(p.get("images") or []),
        json.dumps(p.get("categories") or []),
        None,
        None,
    )


def variation_row(v: dict, parent: dict) -> tuple:
    # Variations carry the parent's name; their own attributes tell them apart.
    image = v.get("image")
    return (
        int(v["id"]),
        parent.get("name") or "",
        v.get("slug"),
        v.get("sku"),
        "variation",
        v.get("status"),
        None,
        None,
        to_decimal(v.get("price")),
        to_decimal(v.get("regular_price")),
        to_decimal(v.get("sale_price")),
        int(v.get("stock_quantity") or 0),
        v.get("stock_status"),
        json.dumps([image] if image else []),
        None,
        json.dumps(v.get("attributes") or []),
        int(parent["id"]),
    )


def fetch_all_products(client: WooClient, log: LogFn = _noop):
    """
    Page through the catalogue until an empty or short page.

    Returns (products, complete). A failed page stops the loop; `complete` is False in
    that case. A failure on the very first page is re-raised.
    """
    products: List[dict] = []
    page = 1
    while True:
        log(f"Fetching page {page}...")
        try:
            batch = client.fetch_products_page(page, PER_PAGE)
        except WooError as exc:
            if page == 1:
                raise
            log(f"Failed to fetch page {page}: {exc}")
            json_log("warning", "store.sync.page_failed", page=page, error=str(exc))
            return products, False
        log(f"Received {len(batch)} products from page {page}")
        if not batch:
            break
        products.extend(batch)
        if len(batch) < PER_PAGE:
            break
        page += 1
    return products, True


def known_variation_ids(cur, parent_id) -> List[int]:
    cur.execute("SELECT wc_id FROM store_products WHERE parent_id = %s", (parent_id,))
    return [r["wc_id"] for r in cur.fetchall()]


def mark_missing(cur, fetched_ids: List[int]) -> int:
    if not fetched_ids:
        return 0
    cur.execute(
        """
        UPDATE store_products
        SET is_missing_from_woo = true, updated_at = now()
        WHERE NOT (wc_id = ANY(%s))
          AND is_missing_from_woo = false
        """,
        (list(fetched_ids),),
    )
    return cur.rowcount or 0


def perform_store_sync(conn, client: Optional[WooClient], log: LogFn = _noop) -> dict:
    if client is None:
        log("WooCommerce API credentials are not configured")
        return {"success": False, "error": "WooCommerce API credentials are not configured"}

    json_log("info", "store.sync.start")
    log("Starting store sync...")
    try:
        products, complete = fetch_all_products(client, log)
    except WooError as exc:
        log(f"Sync failed: {exc}")
        json_log("error", "store.sync.failed", error=str(exc), status=exc.status)
        return {"success": False, "error": str(exc)}

    log(f"Total products fetched: {len(products)}")
    if not products:
        json_log("info", "store.sync.done", count=0, errors=0, total=0)
        return {"success": True, "count": 0, "errors": 0, "total": 0}

    synced = 0
    errors = 0
    fetched_ids: List[int] = []
    with conn.cursor() as cur:
        for idx, product in enumerate(products, start=1):
            fetched_ids.append(product.get("id"))
            try:
                # Savepoint per product so one bad row does not abort the batch.
                with conn.transaction():
                    cur.execute(_UPSERT_SQL, product_row(product))
                synced += 1
            except Exception as exc:
                errors += 1
                log(f"Failed to upsert product {product.get('id')} ({product.get('name')}): {exc}")
                json_log("warning", "store.sync.upsert_failed", wc_id=product.get("id"), error=str(exc))
                continue

            if product.get("type") == "variable":
                try:
                    variations = client.fetch_variations(product["id"])
                except WooError as exc:
                    log(f"Failed to fetch variations for {product.get('id')}: {exc}")
                    json_log("warning", "store.sync.variations_failed", wc_id=product.get("id"), error=str(exc))
                    # Keep the variations already mirrored out of the missing-product check.
                    fetched_ids.extend(known_variation_ids(cur, product["id"]))
                    variations = []
                for v in variations:
                    fetched_ids.append(v.get("id"))
                    try:
                        with conn.transaction():
                            cur.execute(_UPSERT_SQL, variation_row(v, product))
                        synced += 1
                    except Exception as exc:
                        errors += 1
                        log(f"Failed to upsert variation {v.get('id')}: {exc}")
                        json_log("warning", "store.sync.upsert_failed", wc_id=v.get("id"), error=str(exc))

            if idx % 50 == 0:
                log(f"Processed {idx}/{len(products)} products")

        if complete:
            missing = mark_missing(cur, [i for i in fetched_ids if i is not None])
            log(f"Marked {missing} products as missing from WooCommerce")
        else:
            log("Catalogue fetch was incomplete; skipping missing-product check")

    log(f"Sync complete. Success: {synced}, Errors: {errors}")
    json_log("info", "store.sync.done", count=synced, errors=errors, total=len(products))
    return {"success": True, "count": synced, "errors": errors, "total": len(products)}
