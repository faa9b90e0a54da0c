import pytest
from fastapi import HTTPException

from backend.app.admin_api import AdminApiClient
from backend.app.http_client import HttpResult
from backend.app.routers.products import (
    ADMIN_SYNC_PATH,
    InboundSyncIn,
    _to_int,
    apply_inbound_sync,
    push_products,
)


class _DummyCursor:
    def __init__(self, existing=None):
        self._existing = existing
        self.executed = []

    def execute(self, sql, params=None):
        self.executed.append((" ".join(sql.split()), params))

    def fetchone(self):
        return self._existing


def _sync(action, id_, data=None):
    body = {"action": action, "id": id_}
    if data is not None:
        body["data"] = data
    return InboundSyncIn.model_validate(body)


def test_to_int_accepts_strings_and_decimals():
    assert _to_int("12") == 12
    assert _to_int(7.9) == 7
    assert _to_int("3.0") == 3
    assert _to_int("") == 0
    assert _to_int("abc", default=5) == 5


def test_create_inserts_when_no_match():
    cur = _DummyCursor(existing=None)
    apply_inbound_sync(cur, _sync("create", 42, {"name": "Servo", "sku": "SRV", "stock": "5", "notes": None}))
    sql, params = cur.executed[-1]
    assert sql.startswith("INSERT INTO products (id, name, sku, stock, low_stock_threshold, notes, drawer_location)")
    assert params == ["42", "Servo", "SRV", 5, 0, "", None]


def test_update_matches_existing_row_and_downloads_image():
    cur = _DummyCursor(existing={"id": "local-7"})
    fetched = []

    def _fetch(url):
        fetched.append(url)
        return "/api/uploads/abc-imported.png"

    apply_inbound_sync(
        cur,
        _sync("update", "remote-7", {"name": "Servo", "sku": "SRV", "stock": 3, "image": "https://cdn/x.png"}),
        fetch_image=_fetch,
    )
    assert fetched == ["https://cdn/x.png"]
    sql, params = cur.executed[-1]
    assert sql.startswith("UPDATE products SET")
    assert "image = %s" in sql
    assert params[-2:] == ["/api/uploads/abc-imported.png", "local-7"]


def test_explicit_null_image_clears_and_missing_image_keeps():
    cur = _DummyCursor(existing={"id": "p"})
    apply_inbound_sync(cur, _sync("update", "p", {"name": "A", "image": None}))
    assert "image = %s" in cur.executed[-1][0]

    cur = _DummyCursor(existing={"id": "p"})
    apply_inbound_sync(cur, _sync("update", "p", {"name": "A"}))
    assert "image" not in cur.executed[-1][0]


def test_delete_by_id_or_sku():
    cur = _DummyCursor()
    apply_inbound_sync(cur, _sync("delete", 9, {"name": "x", "sku": "SKU-9"}))
    sql, params = cur.executed[0]
    assert sql.startswith("DELETE FROM products")
    assert params == ("9", "SKU-9", "SKU-9")


def test_update_without_data_is_rejected():
    with pytest.raises(HTTPException) as exc_info:
        apply_inbound_sync(_DummyCursor(), _sync("update", 1))
    assert exc_info.value.status_code == 400


def test_push_products_reports_failures():
    sent = []

    def _transport(method, url, *, headers=None, payload=None, timeout=30):
        sent.append((url, payload))
        if payload["id"] == "p2":
            return HttpResult(status=500, reason="Server Error")
        return HttpResult(status=200, data={"ok": True})

    client = AdminApiClient("https://admin.example", "k", transport=_transport)
    rows = [
        {"id": "p1", "name": "Servo", "sku": "S", "stock": 4, "low_stock_threshold": 1, "notes": None, "drawer_location": "A1"},
        {"id": "p2", "name": "Nano", "sku": None, "stock": None, "low_stock_threshold": None, "notes": "", "drawer_location": None},
    ]
    out = push_products(client, rows)
    assert out["success"] is False
    assert (out["total"], out["failed"]) == (2, 1)
    assert out["errors"] == [{"id": "p2", "name": "Nano", "error": "HTTP 500: Server Error"}]
    assert sent[0][0] == "https://admin.example" + ADMIN_SYNC_PATH
    assert sent[0][1]["action"] == "update"
    assert sent[1][1]["data"]["stock"] == 0
