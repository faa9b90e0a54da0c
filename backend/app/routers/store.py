from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel
from sse_starlette.sse import EventSourceResponse
from datetime import datetime, timezone
from typing import Optional
import asyncio
import json
import queue
import threading

from ..config import settings
from ..db import get_conn
from ..deps import require_roles
from ..logging_utils import json_log
from ..store_sync import perform_store_sync
from ..woocommerce import WooClient, WooError

router = APIRouter(
    prefix="/store",
    tags=["store"],
    dependencies=[Depends(require_roles("ADMIN", "STORE"))],
)

_STORE_COLUMNS = """
    wc_id, name, store_name, keterangan, slug, sku, type, status, description, short_description,
    price, regular_price, sale_price, stock_quantity, stock_status,
    images, categories, attributes, parent_id,
    purchased, purchased_at, is_missing_from_woo, created_at, updated_at
"""

# One sync at a time per process.
_sync_lock = threading.Lock()


def woo_client_or_none() -> Optional[WooClient]:
    if not settings.wc_configured:
        return None
    return WooClient.from_settings()


# Seconds between keep-alive comments while the sync is blocked on WooCommerce.
SSE_PING_SECONDS = 15
# How often the stream checks for a disconnected client.
_POLL_SECONDS = 1.0


def sync_event(message: str) -> dict:
    payload = {"message": message, "timestamp": datetime.now(timezone.utc).isoformat()}
    return {"data": json.dumps(payload)}


def _run_sync(log) -> dict:
    if not _sync_lock.acquire(blocking=False):
        log("A sync is already running")
        return {"success": False, "error": "sync already running"}
    try:
        with get_conn() as conn:
            return perform_store_sync(conn, woo_client_or_none(), log)
    finally:
        _sync_lock.release()


async def sync_events(request: Optional[Request] = None, run=_run_sync):
    """Run the sync on a worker thread and yield its log lines as SSE events."""
    q: "queue.Queue[Optional[str]]" = queue.Queue()
    outcome = {}

    def _worker():
        try:
            outcome["result"] = run(q.put)
        except Exception as exc:
            json_log("error", "store.sync.crashed", error=str(exc))
            outcome["error"] = str(exc)
        finally:
            q.put(None)

    yield sync_event("Initializing sync connection...")
    threading.Thread(target=_worker, name="store-sync", daemon=True).start()
    while True:
        try:
            msg = await asyncio.to_thread(q.get, True, _POLL_SECONDS)
        except queue.Empty:
            if request is not None and await request.is_disconnected():
                # The worker finishes on its own and still holds the sync lock until then.
                json_log("info", "store.sync.client_disconnected")
                return
            continue
        if msg is None:
            break
        yield sync_event(msg)

    if "error" in outcome:
        yield sync_event(f"Failed: {outcome['error']}")
        return
    result = outcome.get("result") or {}
    if result.get("success"):
        yield sync_event(f"Done: {result.get('count', 0)} products synced.")
    else:
        yield sync_event(f"Failed: {result.get('error')}")


@router.get("/sync")
def stream_store_sync(request: Request):
    return EventSourceResponse(sync_events(request), ping=SSE_PING_SECONDS)


@router.post("/sync")
def run_store_sync():
    result = _run_sync(lambda _msg: None)
    if not result.get("success") and result.get("error") == "sync already running":
        raise HTTPException(status_code=409, detail="sync already running")
    return result


def _select(where: str, order: str, params=()):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(f"SELECT {_STORE_COLUMNS} FROM store_products WHERE {where} ORDER BY {order}", params)
            return cur.fetchall()


@router.get("/products")
def list_store_products(include_missing: bool = True):
    where = "true" if include_missing else "is_missing_from_woo = false"
    return {"products": _select(where, "purchased ASC, wc_id DESC")}


@router.get("/products/low-stock")
def list_low_stock_products(max_stock: Optional[int] = Query(None, ge=0)):
    where = "purchased = false AND type IS DISTINCT FROM 'variable'"
    params = ()
    if max_stock is not None:
        where += " AND stock_quantity <= %s"
        params = (max_stock,)
    return {"products": _select(where, "stock_quantity ASC, wc_id DESC", params)}


@router.get("/products/purchased")
def list_purchased_products():
    return {"products": _select("purchased = true", "updated_at DESC")}


class PurchasedIn(BaseModel):
    purchased: bool


class StoreNameIn(BaseModel):
    store_name: Optional[str] = None


class KeteranganIn(BaseModel):
    keterangan: Optional[str] = None


def _update_product(wc_id: int, sets: str, params: tuple) -> None:
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"UPDATE store_products SET {sets}, updated_at = now() WHERE wc_id = %s",
                params + (wc_id,),
            )
            if cur.rowcount == 0:
                raise HTTPException(status_code=404, detail="store product not found")


@router.post("/products/{wc_id}/purchased")
def set_purchased(wc_id: int, data: PurchasedIn):
    _update_product(
        wc_id,
        "purchased = %s, purchased_at = CASE WHEN %s THEN now() ELSE NULL END",
        (data.purchased, data.purchased),
    )
    return {"success": True}


@router.put("/products/{wc_id}/store-name")
def set_store_name(wc_id: int, data: StoreNameIn):
    _update_product(wc_id, "store_name = %s", ((data.store_name or "").strip() or None,))
    return {"success": True}


@router.put("/products/{wc_id}/keterangan")
def set_keterangan(wc_id: int, data: KeteranganIn):
    _update_product(wc_id, "keterangan = %s", ((data.keterangan or "").strip() or None,))
    return {"success": True}


def _client_or_503() -> WooClient:
    client = woo_client_or_none()
    if client is None:
        raise HTTPException(status_code=503, detail="WooCommerce API credentials are not configured")
    return client


@router.get("/search")
def search_store(q: str = Query(..., min_length=1), page: int = Query(1, ge=1)):
    client = _client_or_503()
    try:
        return client.search_products(q, page)
    except WooError as exc:
        json_log("warning", "store.search_failed", query=q, error=str(exc), status=exc.status)
        raise HTTPException(status_code=502, detail=str(exc)) from None


@router.get("/products/{wc_id}/variations")
def product_variations(wc_id: int):
    client = _client_or_503()
    try:
        return {"variations": client.product_variations(wc_id)}
    except WooError as exc:
        json_log("warning", "store.variations_failed", wc_id=wc_id, error=str(exc), status=exc.status)
        raise HTTPException(status_code=502, detail=str(exc)) from None
