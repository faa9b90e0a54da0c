import pytest
from fastapi import HTTPException

from backend.app.crypto import decrypt
from backend.app.routers import settings as settings_router
from backend.app.routers.settings import SettingIn


class _SettingsCursor:
    """A `system_settings` table held in a dict."""

    def __init__(self, stored=None):
        self.stored = dict(stored or {})
        self._one = None
        self._rows = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, sql, params=None):
        if "INSERT INTO system_settings" in sql:
            key, value = params
            self.stored[key] = value
        elif "WHERE key = ANY" in sql:
            self._rows = [{"key": k, "value": self.stored[k]} for k in params[0] if k in self.stored]
        elif "WHERE key = %s" in sql:
            key = params[0]
            self._one = {"value": self.stored[key]} if key in self.stored else None

    def fetchone(self):
        return self._one

    def fetchall(self):
        return self._rows


class _DummyConn:
    def __init__(self, cur):
        self._cur = cur

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def transaction(self):
        return self

    def cursor(self):
        return self._cur


@pytest.fixture
def cur(monkeypatch):
    c = _SettingsCursor()
    monkeypatch.setattr(settings_router, "get_conn", lambda: _DummyConn(c))
    return c


def test_secret_keys_are_stored_encrypted_and_masked_on_read(cur):
    settings_router.put_setting_value("internal_api_key", SettingIn(value="sk-live-abcdef"))
    assert cur.stored["INTERNAL_API_KEY"] != "sk-live-abcdef"
    assert decrypt(cur.stored["INTERNAL_API_KEY"]) == "sk-live-abcdef"

    out = settings_router.get_setting_value("INTERNAL_API_KEY")
    assert out == {"key": "INTERNAL_API_KEY", "value": "**********cdef"}


def test_plain_keys_are_returned_as_stored(cur):
    settings_router.put_setting_value("SENDER_NAME", SettingIn(value="Ichibot"))
    assert cur.stored["SENDER_NAME"] == "Ichibot"
    assert settings_router.get_setting_value("sender_name")["value"] == "Ichibot"
    assert settings_router.get_setting_value("UNSET_KEY")["value"] is None


@pytest.mark.parametrize("key", ["RBAC_CONFIG", " rbac_config "])
def test_rbac_config_is_refused_on_generic_routes(cur, key):
    with pytest.raises(HTTPException) as exc_info:
        settings_router.get_setting_value(key)
    assert exc_info.value.status_code == 400

    with pytest.raises(HTTPException) as exc_info:
        settings_router.put_setting_value(key, SettingIn(value="{}"))
    assert exc_info.value.status_code == 400
    assert "RBAC_CONFIG" not in cur.stored


def test_api_settings_mask_key_and_keep_it_when_blank(cur):
    settings_router.put_api_config(
        settings_router.ApiSettingsIn(api_endpoint="https://admin.example/api/", api_key="key-123456")
    )
    out = settings_router.get_api_config()
    assert out["api_endpoint"] == "https://admin.example/api"
    assert out["api_key"] == "******3456"

    settings_router.put_api_config(settings_router.ApiSettingsIn(api_endpoint="https://admin.example/api", api_key=" "))
    assert decrypt(cur.stored["API_KEY"]) == "key-123456"


def test_mask_short_values():
    assert settings_router._mask("abc") == "abc"
    assert settings_router._mask("") == ""
    assert settings_router._mask(None) is None
