import json

import pytest

from backend.app import rbac
from backend.app.crypto import encrypt


class _DummyCursor:
    def __init__(self, value=None):
        self._value = value
        self.executed = []

    def execute(self, sql, params=None):
        self.executed.append((sql, params))

    def fetchone(self):
        if self._value is None:
            return None
        return {"value": self._value}


CONFIG = {"/hr/payroll": ["HRD"], "/store": ["STORE", "ADMINISTRASI"], "/open": []}


def test_admin_is_always_allowed():
    assert rbac.is_route_allowed("ADMIN", "/hr/payroll", CONFIG)
    assert rbac.is_route_allowed("admin", "/open", CONFIG)


def test_unconfigured_route_or_missing_config_allows_everyone():
    assert rbac.is_route_allowed("USER", "/inventory", CONFIG)
    assert rbac.is_route_allowed("USER", "/hr/payroll", None)
    assert rbac.is_route_allowed("USER", "/hr/payroll", {})


def test_listed_roles_only():
    assert rbac.is_route_allowed("HRD", "/hr/payroll", CONFIG)
    assert not rbac.is_route_allowed("USER", "/hr/payroll", CONFIG)
    assert rbac.is_route_allowed("store", "/store", CONFIG)
    # An empty list means admin only.
    assert not rbac.is_route_allowed("HRD", "/open", CONFIG)
    # Missing role is treated as USER.
    assert not rbac.is_route_allowed(None, "/store", CONFIG)


def test_normalize_config_uppercases_and_dedupes():
    out = rbac.normalize_config({" /store ": ["store", "STORE", " teknisi ", ""]})
    assert out == {"/store": ["STORE", "TEKNISI"]}


@pytest.mark.parametrize("raw", [[], {"store": ["ADMIN"]}, {"/store": "ADMIN"}])
def test_normalize_config_rejects_bad_shapes(raw):
    with pytest.raises(ValueError):
        rbac.normalize_config(raw)


def test_load_rbac_config_decrypts_stored_value():
    cur = _DummyCursor(encrypt(json.dumps(CONFIG)))
    loaded = rbac.load_rbac_config(cur)
    assert loaded["/hr/payroll"] == ["HRD"]
    assert cur.executed[0][1] == (rbac.RBAC_KEY,)


def test_load_rbac_config_unreadable_or_missing_is_none():
    assert rbac.load_rbac_config(_DummyCursor(None)) is None
    assert rbac.load_rbac_config(_DummyCursor(encrypt("{not json"))) is None


def test_save_rbac_config_stores_encrypted_json():
    cur = _DummyCursor()
    saved = rbac.save_rbac_config(cur, {"/store": ["store"]})
    assert saved == {"/store": ["STORE"]}
    sql, params = cur.executed[-1]
    assert "INSERT INTO system_settings" in sql
    assert params[0] == rbac.RBAC_KEY
    assert "STORE" not in params[1]


class _Conn:
    def __init__(self, cur):
        self._cur = cur

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def cursor(self):
        return self._cur


class _CursorCtx(_DummyCursor):
    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


def test_require_route_blocks_roles_outside_the_config(monkeypatch):
    from fastapi import HTTPException

    from backend.app import deps

    cur = _CursorCtx(encrypt(json.dumps(CONFIG)))
    monkeypatch.setattr(deps, "get_conn", lambda: _Conn(cur))

    gate = deps.require_route("/hr/payroll")
    assert gate(user={"role": "HRD"})["role"] == "HRD"
    with pytest.raises(HTTPException) as err:
        gate(user={"role": "USER"})
    assert err.value.status_code == 403
    assert err.value.headers["X-Redirect-To"] == rbac.FORBIDDEN_REDIRECT


def test_page_routers_are_gated_by_their_ui_path():
    from backend.app.routers import checkout, expenses, products, projects

    for router in (products.router, checkout.router, projects.router, expenses.router):
        assert router.dependencies, router.tags
    assert not products.sync_router.dependencies
