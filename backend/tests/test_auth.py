import pytest
from fastapi import HTTPException

from backend.app.crypto import encrypt, lookup_hash
from backend.app.routers.auth import LoginIn, _locked_detail, _public_user, authenticate
from backend.app.security import hash_password


class _DummyCursor:
    def __init__(self, one=None, many=None):
        self._one = one
        self._many = many or []
        self.executed = []

    def execute(self, sql, params=None):
        self.executed.append((sql, params))

    def fetchone(self):
        return self._one

    def fetchall(self):
        return self._many


def _user(**overrides):
    row = {
        "id": "11111111-1111-1111-1111-111111111111",
        "name_enc": encrypt("Siti"),
        "email_enc": encrypt("siti@ichibot.local"),
        "username_enc": encrypt("siti"),
        "role_enc": encrypt("hrd"),
        "department_enc": encrypt("HR"),
        "hashed_password": hash_password("correct horse"),
        "pin_enc": None,
    }
    row.update(overrides)
    return row


def test_password_login_looks_up_by_hash_and_verifies():
    user = _user()
    cur = _DummyCursor(one=user)
    got = authenticate(cur, LoginIn(identifier=" SITI@ichibot.local", password="correct horse"))
    assert got is user
    sql, params = cur.executed[0]
    assert "email_hash = %s OR username_hash = %s" in sql
    assert params == (lookup_hash("siti@ichibot.local"),) * 2


def test_password_login_errors():
    with pytest.raises(HTTPException) as exc_info:
        authenticate(_DummyCursor(one=None), LoginIn(identifier="nobody", password="x"))
    assert exc_info.value.status_code == 401
    assert exc_info.value.detail == "email not registered"

    with pytest.raises(HTTPException) as exc_info:
        authenticate(_DummyCursor(one=_user()), LoginIn(identifier="siti", password="wrong"))
    assert exc_info.value.status_code == 401
    assert exc_info.value.detail == "wrong password"

    with pytest.raises(HTTPException) as exc_info:
        authenticate(_DummyCursor(), LoginIn(identifier="  ", password="x"))
    assert exc_info.value.status_code == 400


def test_pin_login_scans_encrypted_pins():
    other = _user(id="other", pin_enc=encrypt("9999"))
    me = _user(pin_enc=encrypt("1234"))
    cur = _DummyCursor(many=[other, me])
    assert authenticate(cur, LoginIn(password="1234", auth_type="pin")) is me

    with pytest.raises(HTTPException) as exc_info:
        authenticate(_DummyCursor(many=[other]), LoginIn(password="1234", auth_type="pin"))
    assert exc_info.value.status_code == 401


def test_public_user_decrypts_and_uppercases_role():
    out = _public_user(_user())
    assert out["name"] == "Siti"
    assert out["email"] == "siti@ichibot.local"
    assert out["role"] == "HRD"
    assert "hashed_password" not in out


def test_locked_detail_rounds_up_to_minutes():
    assert _locked_detail(1) == "too many attempts, wait 1 minute(s)"
    assert _locked_detail(61) == "too many attempts, wait 2 minute(s)"
