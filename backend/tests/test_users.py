import pytest
from fastapi import HTTPException

from backend.app.crypto import encrypt, lookup_hash
from backend.app.routers import users as users_router


class _DummyCursor:
    def __init__(self, one=None):
        self._one = one
        self.executed = []

    def execute(self, sql, params=None):
        self.executed.append((sql, params))

    def fetchone(self):
        return self._one


def test_normalize_role():
    assert users_router._normalize_role(" teknisi ") == "TEKNISI"
    assert users_router._normalize_role(None) == "USER"
    assert users_router._normalize_role("") == "USER"
    with pytest.raises(HTTPException) as exc_info:
        users_router._normalize_role("superuser")
    assert exc_info.value.status_code == 400


def test_decrypt_user_hides_secrets():
    out = users_router.decrypt_user(
        {
            "id": "abc",
            "name_enc": encrypt("Andi"),
            "email_enc": encrypt("andi@ichibot.local"),
            "username_enc": encrypt("andi"),
            "department_enc": None,
            "role_enc": None,
            "pin_enc": encrypt("1234"),
            "hashed_password": "$2b$...",
        }
    )
    assert out["name"] == "Andi"
    assert out["role"] == "USER"
    assert out["has_pin"] is True
    assert "pin_enc" not in out
    assert "hashed_password" not in out


def test_identity_hashes_require_both_values():
    e, u = users_router._identity_hashes("Andi@Ichibot.local", "andi")
    assert e == lookup_hash("andi@ichibot.local")
    assert u == lookup_hash("ANDI")
    with pytest.raises(HTTPException):
        users_router._identity_hashes("andi@ichibot.local", "  ")


def test_assert_unique_conflict_and_exclusion():
    cur = _DummyCursor(one={"id": "x"})
    with pytest.raises(HTTPException) as exc_info:
        users_router._assert_unique(cur, "eh", "uh")
    assert exc_info.value.status_code == 409

    cur = _DummyCursor(one=None)
    users_router._assert_unique(cur, "eh", "uh", exclude_id="me")
    assert cur.executed[0][1] == ("eh", "uh", "me", "me")


class _RoleCursor(_DummyCursor):
    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class _DummyConn:
    def __init__(self, cur):
        self._cur = cur

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def cursor(self):
        return self._cur


@pytest.mark.parametrize(
    "stored, expected",
    [("ADMIN", "USER"), ("USER", "ADMIN"), ("teknisi", "ADMIN"), (None, "ADMIN")],
)
def test_toggle_role_flips_between_admin_and_user(monkeypatch, stored, expected):
    from backend.app.crypto import decrypt

    cur = _RoleCursor(one={"role_enc": encrypt(stored)})
    monkeypatch.setattr(users_router, "get_conn", lambda: _DummyConn(cur))
    out = users_router.toggle_user_role("u-1")
    assert out == {"ok": True, "role": expected}
    sql, params = cur.executed[-1]
    assert sql.startswith("UPDATE users SET role_enc")
    assert decrypt(params[0]) == expected
    assert params[1] == "u-1"


def test_toggle_role_unknown_user(monkeypatch):
    cur = _RoleCursor(one=None)
    monkeypatch.setattr(users_router, "get_conn", lambda: _DummyConn(cur))
    with pytest.raises(HTTPException) as exc_info:
        users_router.toggle_user_role("missing")
    assert exc_info.value.status_code == 404
