from decimal import Decimal

import pytest
from fastapi import HTTPException

from backend.app.crypto import decrypt_number
from backend.app.routers import payroll as payroll_router
from backend.app.routers.payroll import PayrollIn, PayrollItemIn, compute_net_salary

TYPES = {"c-bonus": "ADDITION", "c-meal": "ADDITION", "c-bpjs": "DEDUCTION"}


def test_net_salary_adds_and_deducts():
    items = [
        PayrollItemIn(component_id="c-bonus", amount=Decimal("500000")),
        PayrollItemIn(component_id="c-meal", amount=Decimal("250000.50")),
        PayrollItemIn(component_id="c-bpjs", amount=Decimal("120000")),
        PayrollItemIn(component_id="c-unknown", amount=Decimal("999")),
    ]
    assert compute_net_salary(Decimal("4000000"), items, TYPES) == Decimal("4630000.50")
    assert compute_net_salary(Decimal("4000000"), [], TYPES) == Decimal("4000000")


class _Tx:
    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class _DummyCursor:
    def __init__(self, components):
        self._components = components
        self._last = None
        self.executed = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, sql, params=None):
        self.executed.append((sql, params))
        if "FROM salary_components" in sql:
            self._last = [{"id": i, "type": t} for i, t in self._components.items() if i in params[0]]
        elif "INSERT INTO payrolls" in sql:
            self._last = {"id": "pay-1"}

    def fetchone(self):
        return self._last

    def fetchall(self):
        return self._last


class _DummyConn:
    def __init__(self, cur):
        self._cur = cur

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def transaction(self):
        return _Tx()

    def cursor(self):
        return self._cur


def _patch_db(monkeypatch, components):
    cur = _DummyCursor(components)
    monkeypatch.setattr(payroll_router, "get_conn", lambda: _DummyConn(cur))
    return cur


def test_upsert_payroll_encrypts_amounts_and_replaces_items(monkeypatch):
    cur = _patch_db(monkeypatch, TYPES)
    out = payroll_router.upsert_payroll(
        PayrollIn(
            user_id="u-1",
            month=3,
            year=2025,
            basic_salary=Decimal("4000000"),
            items=[
                PayrollItemIn(component_id="c-bonus", amount=Decimal("500000")),
                PayrollItemIn(component_id="c-bpjs", amount=Decimal("100000")),
            ],
        )
    )
    assert out == {"success": True, "id": "pay-1", "net_salary": "4400000"}

    insert = next(p for s, p in cur.executed if "INSERT INTO payrolls" in s)
    assert insert[:3] == ("u-1", 3, 2025)
    assert decrypt_number(insert[5]) == Decimal("4000000")
    assert decrypt_number(insert[6]) == Decimal("4400000")

    statements = [s for s, _ in cur.executed]
    delete_at = next(i for i, s in enumerate(statements) if "DELETE FROM payroll_items" in s)
    inserts = [i for i, s in enumerate(statements) if "INSERT INTO payroll_items" in s]
    assert len(inserts) == 2
    assert all(i > delete_at for i in inserts)


def test_upsert_payroll_rejects_unknown_component(monkeypatch):
    cur = _patch_db(monkeypatch, TYPES)
    with pytest.raises(HTTPException) as exc_info:
        payroll_router.upsert_payroll(
            PayrollIn(
                user_id="u-1",
                month=3,
                year=2025,
                basic_salary=Decimal("1"),
                items=[PayrollItemIn(component_id="c-missing", amount=Decimal("1"))],
            )
        )
    assert exc_info.value.status_code == 400
    assert not [s for s, _ in cur.executed if "INSERT" in s]


def test_upsert_payroll_rejects_negative_amounts(monkeypatch):
    _patch_db(monkeypatch, TYPES)
    with pytest.raises(HTTPException) as exc_info:
        payroll_router.upsert_payroll(PayrollIn(user_id="u-1", month=3, year=2025, basic_salary=Decimal("-1")))
    assert exc_info.value.status_code == 400
