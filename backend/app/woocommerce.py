"""
Minimal WooCommerce REST (wc/v3) client.

Auth is HTTP Basic with the consumer key/secret. Errors raise `WooError`; callers
decide whether to stop or continue.
"""
import base64
import urllib.parse
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from .config import settings
from .http_client import request_json

USER_AGENT = "Ichibot-Production-App/1.0"
PER_PAGE = 100
TIMEOUT = 30

BARCODE_META_KEYS = ("backup_gudang", "_pos_barcode", "_barcode", "barcode")


class WooError(Exception):
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


def to_decimal(value) -> Decimal:
    try:
        return Decimal(str(value)) if value not in (None, "") else Decimal(0)
    except (InvalidOperation, ValueError):
        return Decimal(0)


def find_barcode(meta_data) -> Optional[str]:
    for m in meta_data or []:
        if isinstance(m, dict) and m.get("key") in BARCODE_META_KEYS:
            v = m.get("value")
            if v not in (None, ""):
                return str(v)
    return None


def rank_search_results(products: List[dict], query: str) -> List[dict]:
    """SKU prefix first, then name prefix, then name contains, then alphabetical."""
    q = (query or "").strip().lower()

    def key(p):
        name = (p.get("name") or "").lower()
        sku = (p.get("sku") or "").lower()
        return (
            not sku.startswith(q),
            not name.startswith(q),
            q not in name,
            name,
        )

    return sorted(products, key=key)


def _summary(p: dict, parent_id: Optional[int] = None) -> dict:
    if parent_id is not None:
        image = (p.get("image") or {}).get("src")
        images = [image] if image else []
    else:
        images = [i.get("src") for i in (p.get("images") or []) if isinstance(i, dict) and i.get("src")]
        image = images[0] if images else None
    return {
        "id": p.get("id"),
        "name": p.get("name") or (f"Variation #{p.get('id')}" if parent_id is not None else ""),
        "sku": p.get("sku"),
        "type": "variation" if parent_id is not None else p.get("type"),
        "parent_id": parent_id,
        "attributes": p.get("attributes") or [],
        "price": to_decimal(p.get("price")),
        "regular_price": to_decimal(p.get("regular_price")),
        "sale_price": to_decimal(p.get("sale_price")),
        "stock_quantity": int(p.get("stock_quantity") or 0),
        "image": image,
        "images": images,
        "description": p.get("description") or "",
        "barcode": find_barcode(p.get("meta_data")),
        "slug": p.get("slug"),
    }


class WooClient:
    def __init__(self, base_url: str, consumer_key: str, consumer_secret: str, transport=request_json) -> None:
        if not (base_url and consumer_key and consumer_secret):
            raise WooError("WooCommerce API credentials are not configured")
        self.base_url = base_url.rstrip("/")
        token = base64.b64encode(f"{consumer_key}:{consumer_secret}".encode("utf-8")).decode("ascii")
        self._auth = f"Basic {token}"
        self._transport = transport

    @classmethod
    def from_settings(cls) -> "WooClient":
        return cls(settings.wc_url, settings.wc_consumer_key, settings.wc_consumer_secret)

    def _get(self, path: str, params: dict):
        url = f"{self.base_url}/wp-json/wc/v3{path}"
        if params:
            url = f"{url}?{urllib.parse.urlencode(params)}"
        headers = {"Authorization": self._auth, "User-Agent": USER_AGENT}
        try:
            res = self._transport("GET", url, headers=headers, payload=None, timeout=TIMEOUT)
        except OSError as exc:
            # URLError and socket timeouts are OSError subclasses.
            raise WooError(f"network error: {getattr(exc, 'reason', exc)}") from exc
        if not res.ok:
            message = ""
            if isinstance(res.data, dict):
                message = res.data.get("message") or ""
            raise WooError(f"HTTP {res.status} {res.reason}. {message}".strip(), status=res.status)
        return res

    def fetch_products_page(self, page: int, per_page: int = PER_PAGE) -> List[dict]:
        res = self._get("/products", {"per_page": per_page, "page": page, "status": "any"})
        return res.data if isinstance(res.data, list) else []

    def fetch_variations(self, product_id: int) -> List[dict]:
        res = self._get(f"/products/{int(product_id)}/variations", {"per_page": PER_PAGE})
        return res.data if isinstance(res.data, list) else []

    def product_variations(self, product_id: int) -> List[dict]:
        return [_summary(v, parent_id=int(product_id)) for v in self.fetch_variations(product_id)]

    def search_products(self, query: str, page: int = 1) -> dict:
        q = (query or "").strip()
        if not q:
            return {"products": [], "total_pages": 0, "total_items": 0}
        res = self._get("/products", {"search": q, "per_page": PER_PAGE, "page": page, "status": "publish"})
        found = res.data if isinstance(res.data, list) else []

        if page == 1:
            # SKU matches are not covered by `search`; a failed SKU lookup is ignored.
            try:
                sku_res = self._get("/products", {"sku": q, "per_page": PER_PAGE, "page": 1, "status": "publish"})
            except WooError:
                sku_res = None
            sku_hits = sku_res.data if sku_res is not None and isinstance(sku_res.data, list) else []
            seen = {p.get("id") for p in found}
            found = [p for p in sku_hits if p.get("id") not in seen] + found

        return {
            "products": rank_search_results([_summary(p) for p in found], q),
            "total_pages": int(res.headers.get("x-wp-totalpages") or 0),
            "total_items": int(res.headers.get("x-wp-total") or 0),
        }
