from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from datetime import date, datetime, timedelta
from typing import List, Optional

from ..crypto import decrypt
from ..db import get_conn
from ..deps import get_current_user, require_route
from ..logging_utils import json_log

router = APIRouter(tags=["pos"], dependencies=[Depends(require_route("/pos"))])


class CheckoutItemIn(BaseModel):
    product_id: str
    quantity: int


class CheckoutIn(BaseModel):
    items: List[CheckoutItemIn]


def format_order_number(day: date, count_today: int) -> str:
    return f"ORD-{day.strftime('%Y%m%d')}-{count_today + 1:03d}"


def next_order_number(cur, today: Optional[date] = None) -> str:
    today = today or date.today()
    start = datetime.combine(today, datetime.min.time())
    cur.execute(
        """
        SELECT COUNT(*)::int AS n
        FROM orders
        WHERE created_at >= %s AND created_at < %s
        """,
        (start, start + timedelta(days=1)),
    )
    row = cur.fetchone()
    return format_order_number(today, int(row["n"] if row else 0))


def check_lines(items: List[CheckoutItemIn]) -> None:
    if not items:
        raise HTTPException(status_code=400, detail="no items to checkout")
    for it in items:
        if it.quantity <= 0:
            raise HTTPException(status_code=400, detail=f"quantity must be > 0 for {it.product_id}")


def validate_items(items: List[CheckoutItemIn], products: dict) -> None:
    """Raise before any write when an item is unknown or exceeds the stock on hand."""
    check_lines(items)
    for it in items:
        p = products.get(it.product_id)
        if not p:
            raise HTTPException(status_code=404, detail=f"product not found: {it.product_id}")
        if int(p["stock"]) < it.quantity:
            raise HTTPException(
                status_code=400,
                detail=f"Insufficient stock for {p['name']}. Available: {p['stock']}, Requested: {it.quantity}",
            )


def _merge_lines(items: List[CheckoutItemIn]) -> List[CheckoutItemIn]:
    # The same product twice in one cart is one stock movement.
    merged = {}
    for it in items:
        if it.product_id in merged:
            merged[it.product_id].quantity += it.quantity
        else:
            merged[it.product_id] = CheckoutItemIn(product_id=it.product_id, quantity=it.quantity)
    return list(merged.values())


def process_checkout(conn, items: List[CheckoutItemIn], user_id) -> dict:
    # Each cart line must be valid on its own, before lines are merged.
    check_lines(items)
    items = _merge_lines(items)
    with conn.transaction():
        with conn.cursor() as cur:
            ids = [it.product_id for it in items]
            cur.execute(
                """
                SELECT id, name, sku, notes, stock
                FROM products
                WHERE id = ANY(%s)
                FOR UPDATE
                """,
                (ids,),
            )
            products = {r["id"]: r for r in cur.fetchall()}
            validate_items(items, products)

            order_number = next_order_number(cur)
            cur.execute(
                """
                INSERT INTO orders (id, order_number, user_id)
                VALUES (gen_random_uuid(), %s, %s)
                RETURNING id
                """,
                (order_number, user_id),
            )
            order_id = cur.fetchone()["id"]

            for it in items:
                p = products[it.product_id]
                cur.execute(
                    """
                    INSERT INTO order_items (id, order_id, product_id, product_name, product_sku, product_note, quantity)
                    VALUES (gen_random_uuid(), %s, %s, %s, %s, %s, %s)
                    """,
                    (order_id, it.product_id, p["name"], p.get("sku"), p.get("notes"), it.quantity),
                )
                cur.execute(
                    """
                    UPDATE products
                    SET stock = stock - %s, updated_at = now()
                    WHERE id = %s AND stock >= %s
                    """,
                    (it.quantity, it.product_id, it.quantity),
                )
                if cur.rowcount != 1:
                    raise HTTPException(status_code=409, detail=f"stock changed for {p['name']}, retry")
                cur.execute(
                    """
                    INSERT INTO transactions (id, type, quantity, product_id, user_id, description)
                    VALUES (gen_random_uuid(), 'OUT', %s, %s, %s, %s)
                    """,
                    (it.quantity, it.product_id, user_id, f"Checkout via POS - {order_number}"),
                )
    return {"order_id": order_id, "order_number": order_number}


@router.post("/checkout")
def checkout(data: CheckoutIn, user=Depends(get_current_user)):
    with get_conn() as conn:
        result = process_checkout(conn, data.items, user["user_id"])
    json_log("info", "pos.checkout", order_number=result["order_number"], lines=len(data.items))
    return result


def _load_items(cur, order_ids) -> dict:
    if not order_ids:
        return {}
    cur.execute(
        """
        SELECT id, order_id, product_id, product_name, product_sku, product_note, quantity
        FROM order_items
        WHERE order_id = ANY(%s)
        ORDER BY product_name
        """,
        (list(order_ids),),
    )
    out = {}
    for r in cur.fetchall():
        out.setdefault(r["order_id"], []).append(r)
    return out


def _order_out(row: dict, items: list) -> dict:
    return {
        "id": row["id"],
        "order_number": row["order_number"],
        "created_at": row["created_at"],
        "user": {"id": row.get("user_id"), "name": decrypt(row.get("user_name_enc"))} if row.get("user_id") else None,
        "items": items,
    }


_ORDER_SELECT = """
    SELECT o.id, o.order_number, o.created_at, o.user_id, u.name_enc AS user_name_enc
    FROM orders o
    LEFT JOIN users u ON u.id = o.user_id
"""


@router.get("/orders", dependencies=[Depends(get_current_user)])
def list_orders():
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(_ORDER_SELECT + " ORDER BY o.created_at DESC LIMIT 100")
            rows = cur.fetchall()
            items = _load_items(cur, [r["id"] for r in rows])
    return {"orders": [_order_out(r, items.get(r["id"], [])) for r in rows]}


@router.get("/orders/{order_id}", dependencies=[Depends(get_current_user)])
def get_order(order_id: str):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(_ORDER_SELECT + " WHERE o.id = %s", (order_id,))
            row = cur.fetchone()
            if not row:
                raise HTTPException(status_code=404, detail="order not found")
            items = _load_items(cur, [row["id"]])
    return {"order": _order_out(row, items.get(row["id"], []))}
