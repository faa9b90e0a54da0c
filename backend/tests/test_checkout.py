import re
from datetime import date
from pathlib import Path

import pytest
from fastapi import HTTPException

from backend.app.routers.checkout import (
    CheckoutItemIn,
    format_order_number,
    process_checkout,
    validate_items,
)


class _Tx:
    def __init__(self, conn):
        self._conn = conn

    def __enter__(self):
        self._conn.tx_depth += 1
        return self

    def __exit__(self, exc_type, exc, tb):
        self._conn.tx_depth -= 1
        if exc_type is not None:
            self._conn.rolled_back = True
        return False


class _DummyCursor:
    def __init__(self, products, orders_today=0, lose_race_on=None):
        self._products = {p["id"]: dict(p) for p in products}
        self._orders_today = orders_today
        self._lose_race_on = lose_race_on
        self._last = None
        self.rowcount = 0
        self.executed = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, sql, params=None):
        self.executed.append((sql, params))
        if "FROM products" in sql and "FOR UPDATE" in sql:
            self._last = [p for pid, p in self._products.items() if pid in params[0]]
        elif "COUNT(*)" in sql:
            self._last = {"n": self._orders_today}
        elif "INSERT INTO orders" in sql:
            self._last = {"id": "order-1"}
        elif sql.strip().startswith("UPDATE products"):
            qty, pid, _ = params
            p = self._products[pid]
            if pid != self._lose_race_on and p["stock"] >= qty:
                p["stock"] -= qty
                self.rowcount = 1
            else:
                self.rowcount = 0

    def fetchone(self):
        return self._last

    def fetchall(self):
        return self._last

    def stock(self, pid):
        return self._products[pid]["stock"]

    def statements(self, needle):
        return [(sql, params) for sql, params in self.executed if needle in sql]


class _DummyConn:
    def __init__(self, cur):
        self._cur = cur
        self.tx_depth = 0
        self.rolled_back = False

    def transaction(self):
        return _Tx(self)

    def cursor(self):
        return self._cur


PRODUCTS = [
    {"id": "P1", "name": "Servo MG996R", "sku": "SRV-1", "notes": "rack A", "stock": 10},
    {"id": "P2", "name": "Arduino Nano", "sku": "ARD-N", "notes": None, "stock": 2},
]


def test_format_order_number():
    assert format_order_number(date(2025, 3, 7), 0) == "ORD-20250307-001"
    assert format_order_number(date(2025, 12, 31), 41) == "ORD-20251231-042"


def test_validate_items_errors():
    products = {p["id"]: p for p in PRODUCTS}
    with pytest.raises(HTTPException) as exc_info:
        validate_items([], products)
    assert exc_info.value.status_code == 400

    with pytest.raises(HTTPException) as exc_info:
        validate_items([CheckoutItemIn(product_id="nope", quantity=1)], products)
    assert exc_info.value.status_code == 404

    with pytest.raises(HTTPException) as exc_info:
        validate_items([CheckoutItemIn(product_id="P1", quantity=0)], products)
    assert exc_info.value.status_code == 400

    with pytest.raises(HTTPException) as exc_info:
        validate_items([CheckoutItemIn(product_id="P2", quantity=3)], products)
    assert exc_info.value.status_code == 400
    assert exc_info.value.detail == "Insufficient stock for Arduino Nano. Available: 2, Requested: 3"


def test_process_checkout_writes_order_items_stock_and_transactions():
    cur = _DummyCursor(PRODUCTS, orders_today=4)
    conn = _DummyConn(cur)
    out = process_checkout(
        conn,
        [
            CheckoutItemIn(product_id="P1", quantity=2),
            CheckoutItemIn(product_id="P2", quantity=2),
            CheckoutItemIn(product_id="P1", quantity=1),
        ],
        user_id="u-1",
    )
    assert out["order_id"] == "order-1"
    assert re.fullmatch(r"ORD-\d{8}-005", out["order_number"])
    assert cur.stock("P1") == 7
    assert cur.stock("P2") == 0

    # Duplicate cart lines are merged into a single movement.
    items = cur.statements("INSERT INTO order_items")
    assert [p[1] for _, p in items] == ["P1", "P2"]
    assert items[0][1][2:] == ("Servo MG996R", "SRV-1", "rack A", 3)

    tx = cur.statements("INSERT INTO transactions")
    assert len(tx) == 2
    assert tx[0][1] == (3, "P1", "u-1", f"Checkout via POS - {out['order_number']}")
    assert "'OUT'" in tx[0][0]
    assert conn.rolled_back is False


def test_process_checkout_insufficient_stock_writes_nothing():
    cur = _DummyCursor(PRODUCTS)
    conn = _DummyConn(cur)
    with pytest.raises(HTTPException) as exc_info:
        process_checkout(
            conn,
            [CheckoutItemIn(product_id="P1", quantity=1), CheckoutItemIn(product_id="P2", quantity=5)],
            user_id="u-1",
        )
    assert exc_info.value.status_code == 400
    assert not cur.statements("INSERT")
    assert cur.stock("P1") == 10


def test_process_checkout_rejects_a_negative_line_even_when_merged_total_is_positive():
    cur = _DummyCursor(PRODUCTS)
    conn = _DummyConn(cur)
    with pytest.raises(HTTPException) as exc_info:
        process_checkout(
            conn,
            [CheckoutItemIn(product_id="P1", quantity=5), CheckoutItemIn(product_id="P1", quantity=-3)],
            user_id="u-1",
        )
    assert exc_info.value.status_code == 400
    assert "quantity must be > 0" in exc_info.value.detail
    assert not cur.statements("INSERT")
    assert cur.stock("P1") == 10


def test_process_checkout_rejects_an_empty_cart():
    cur = _DummyCursor(PRODUCTS)
    with pytest.raises(HTTPException) as exc_info:
        process_checkout(_DummyConn(cur), [], user_id="u-1")
    assert exc_info.value.status_code == 400
    assert cur.executed == []


def test_process_checkout_conflicting_decrement_rolls_back():
    cur = _DummyCursor(PRODUCTS, lose_race_on="P2")
    conn = _DummyConn(cur)
    with pytest.raises(HTTPException) as exc_info:
        process_checkout(conn, [CheckoutItemIn(product_id="P2", quantity=1)], user_id=None)
    assert exc_info.value.status_code == 409
    assert conn.rolled_back is True


def test_stock_decrement_is_guarded_in_sql():
    src = (Path(__file__).resolve().parents[1] / "app/routers/checkout.py").read_text(encoding="utf-8")
    assert re.search(r"SET stock = stock - %s.*WHERE id = %s AND stock >= %s", src, re.DOTALL)
