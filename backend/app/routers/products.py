from fastapi import APIRouter, Depends, File, Form, Header, HTTPException, Query, UploadFile
from pydantic import BaseModel
from decimal import Decimal, InvalidOperation
from typing import Literal, Optional, Union
import uuid

from ..admin_api import AdminApiClient
from ..db import get_conn
from ..deps import get_current_user, require_admin, require_route
from ..logging_utils import json_log
from ..security import constant_time_equals
from ..system_settings import get_setting
from ..uploads import UploadTooLarge, download_external_image, public_url, save_upload

router = APIRouter(prefix="/products", tags=["products"], dependencies=[Depends(require_route("/inventory"))])
# Called by the administration backend, authenticated by X-API-Key instead of a session.
sync_router = APIRouter(prefix="/api/products", tags=["products"])

# Remote path on the administration backend receiving outbound pushes.
ADMIN_SYNC_PATH = "/products/sync"

_PRODUCT_COLUMNS = "id, name, sku, stock, low_stock_threshold, notes, drawer_location, image, created_at, updated_at"


def _to_int(value, default: int = 0) -> int:
    if value is None or value == "":
        return default
    try:
        return int(Decimal(str(value)))
    except (InvalidOperation, ValueError):
        return default


class StockIn(BaseModel):
    quantity: int


@router.get("", dependencies=[Depends(get_current_user)])
def list_products(q: Optional[str] = None, low_stock: bool = False):
    where = ["1=1"]
    params = []
    if q and q.strip():
        where.append("(name ILIKE %s OR sku ILIKE %s)")
        like = f"%{q.strip()}%"
        params.extend([like, like])
    if low_stock:
        where.append("stock <= low_stock_threshold")
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT {_PRODUCT_COLUMNS}
                FROM products
                WHERE {' AND '.join(where)}
                ORDER BY created_at DESC
                """,
                params,
            )
            return {"products": cur.fetchall()}


@router.post("", dependencies=[Depends(get_current_user)])
def create_product(
    name: str = Form(...),
    sku: Optional[str] = Form(None),
    stock: int = Form(0),
    low_stock_threshold: int = Form(0),
    notes: Optional[str] = Form(None),
    drawer_location: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
):
    if not name.strip():
        raise HTTPException(status_code=400, detail="name is required")
    if stock < 0 or low_stock_threshold < 0:
        raise HTTPException(status_code=400, detail="stock and threshold must be >= 0")
    image_url = None
    if image is not None and image.filename:
        raw = image.file.read() or b""
        if raw:
            try:
                image_url = public_url(save_upload(raw, image.filename, "products"))
            except UploadTooLarge as exc:
                raise HTTPException(status_code=413, detail=str(exc)) from None
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO products (id, name, sku, stock, low_stock_threshold, notes, drawer_location, image)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING id
                """,
                (
                    str(uuid.uuid4()),
                    name.strip(),
                    (sku or "").strip() or None,
                    stock,
                    low_stock_threshold,
                    notes,
                    (drawer_location or "").strip() or None,
                    image_url,
                ),
            )
            return {"id": cur.fetchone()["id"], "image": image_url}


@router.post("/{product_id}/stock")
def add_stock(product_id: str, data: StockIn, user=Depends(get_current_user)):
    if data.quantity <= 0:
        raise HTTPException(status_code=400, detail="quantity must be > 0")
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE products
                    SET stock = stock + %s, updated_at = now()
                    WHERE id = %s
                    RETURNING stock
                    """,
                    (data.quantity, product_id),
                )
                row = cur.fetchone()
                if not row:
                    raise HTTPException(status_code=404, detail="product not found")
                cur.execute(
                    """
                    INSERT INTO transactions (id, type, quantity, product_id, user_id, description)
                    VALUES (gen_random_uuid(), 'IN', %s, %s, %s, %s)
                    """,
                    (data.quantity, product_id, user["user_id"], "Stock added"),
                )
    return {"ok": True, "stock": row["stock"]}


@router.delete("/{product_id}", dependencies=[Depends(get_current_user)])
def delete_product(product_id: str):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("DELETE FROM products WHERE id = %s", (product_id,))
            if cur.rowcount == 0:
                raise HTTPException(status_code=404, detail="product not found")
    return {"ok": True}


@router.get("/transactions", dependencies=[Depends(get_current_user)])
def list_transactions(
    product_id: Optional[str] = None,
    limit: int = Query(200, ge=1, le=1000),
):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT t.id, t.type, t.quantity, t.description, t.created_at,
                       t.product_id, p.name AS product_name, p.sku AS product_sku,
                       t.user_id
                FROM transactions t
                LEFT JOIN products p ON p.id = t.product_id
                WHERE (%s::text IS NULL OR t.product_id = %s)
                ORDER BY t.created_at DESC
                LIMIT %s
                """,
                (product_id, product_id, limit),
            )
            return {"transactions": cur.fetchall()}


def _admin_payload(row: dict) -> dict:
    return {
        "action": "update",
        "id": row["id"],
        "data": {
            "name": row["name"],
            "sku": row.get("sku"),
            "stock": row.get("stock") or 0,
            "low_stock_threshold": row.get("low_stock_threshold") or 0,
            "notes": row.get("notes"),
            "drawer_location": row.get("drawer_location"),
        },
    }


def push_products(client: AdminApiClient, rows) -> dict:
    total = 0
    failed = 0
    errors = []
    for row in rows:
        total += 1
        res = client.post(ADMIN_SYNC_PATH, _admin_payload(row))
        if not res["success"]:
            failed += 1
            errors.append({"id": row["id"], "name": row.get("name"), "error": res.get("error")})
    return {"success": failed == 0, "total": total, "failed": failed, "errors": errors}


@router.post("/sync-to-admin", dependencies=[Depends(require_admin)])
def sync_to_admin():
    with get_conn() as conn:
        with conn.cursor() as cur:
            client = AdminApiClient.from_db(cur)
            cur.execute(f"SELECT {_PRODUCT_COLUMNS} FROM products ORDER BY created_at ASC")
            rows = cur.fetchall()
    if not client.endpoint:
        raise HTTPException(status_code=400, detail="API endpoint is not configured")
    result = push_products(client, rows)
    json_log("info", "products.sync_to_admin", total=result["total"], failed=result["failed"])
    return result


class InboundProductData(BaseModel):
    name: str
    sku: Optional[str] = None
    stock: Optional[Union[int, float, str]] = None
    low_stock_threshold: Optional[Union[int, float, str]] = None
    notes: Optional[str] = None
    drawer_location: Optional[str] = None
    image: Optional[str] = None


class InboundSyncIn(BaseModel):
    action: Literal["create", "update", "delete"]
    id: Union[str, int]
    data: Optional[InboundProductData] = None


def apply_inbound_sync(cur, body: InboundSyncIn, fetch_image=download_external_image) -> None:
    product_id = str(body.id)
    data = body.data

    if body.action == "delete":
        sku = (data.sku if data else None) or None
        cur.execute(
            "DELETE FROM products WHERE id = %s OR (%s::text IS NOT NULL AND sku = %s)",
            (product_id, sku, sku),
        )
        return

    if data is None:
        raise HTTPException(status_code=400, detail="missing data for create/update")

    fields = {
        "name": data.name,
        "sku": data.sku or None,
        "stock": _to_int(data.stock),
        "low_stock_threshold": _to_int(data.low_stock_threshold),
        "notes": data.notes or "",
        "drawer_location": data.drawer_location or None,
    }
    # image: http URL -> download; explicit null -> clear; anything else -> keep.
    if data.image and data.image.startswith("http"):
        downloaded = fetch_image(data.image)
        if downloaded:
            fields["image"] = downloaded
    elif "image" in data.model_fields_set and data.image is None:
        fields["image"] = None

    cur.execute(
        """
        SELECT id
        FROM products
        WHERE id = %s OR (%s::text IS NOT NULL AND sku = %s)
        ORDER BY (id = %s) DESC
        LIMIT 1
        """,
        (product_id, fields["sku"], fields["sku"], product_id),
    )
    existing = cur.fetchone()
    if existing:
        sets = ", ".join(f"{k} = %s" for k in fields)
        cur.execute(
            f"UPDATE products SET {sets}, updated_at = now() WHERE id = %s",
            list(fields.values()) + [existing["id"]],
        )
    else:
        cols = ["id"] + list(fields.keys())
        cur.execute(
            f"INSERT INTO products ({', '.join(cols)}) VALUES ({', '.join(['%s'] * len(cols))})",
            [product_id] + list(fields.values()),
        )


@sync_router.post("/sync")
def inbound_product_sync(body: InboundSyncIn, x_api_key: Optional[str] = Header(None)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            expected = get_setting(cur, "INTERNAL_API_KEY")
            if expected and not constant_time_equals(x_api_key or "", expected):
                raise HTTPException(status_code=401, detail="unauthorized")
            apply_inbound_sync(cur, body)
    json_log("info", "products.inbound_sync", action=body.action, product_id=str(body.id))
    return {"success": True}
