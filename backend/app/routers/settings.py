from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from decimal import Decimal
from typing import Optional

from ..admin_api import AdminApiClient
from ..db import get_conn
from ..deps import get_current_user, require_admin
from ..logging_utils import json_log
from ..public_apis import CURRENCY_KEYS, PublicApiError, fetch_rate_to_idr
from ..system_settings import ENCRYPTED_KEYS, get_api_settings, get_setting, get_settings, set_setting

router = APIRouter(prefix="/settings", tags=["settings"])

# Keys with dedicated endpoints; the generic key/value routes refuse them.
RESERVED_KEYS = {"RBAC_CONFIG"}


class SettingIn(BaseModel):
    value: Optional[str] = None


class ApiSettingsIn(BaseModel):
    api_endpoint: Optional[str] = None
    api_key: Optional[str] = None
    sender_name: Optional[str] = None
    sender_phone: Optional[str] = None
    sender_address: Optional[str] = None


class CurrencyIn(BaseModel):
    value: Decimal


def _currency_key(key: str) -> str:
    k = (key or "").strip().upper()
    if k not in CURRENCY_KEYS:
        raise HTTPException(status_code=404, detail=f"unknown currency key: {key}")
    return k


def _mask(value: Optional[str]) -> Optional[str]:
    if not value:
        return value
    return "*" * max(0, len(value) - 4) + value[-4:]


@router.get("/api", dependencies=[Depends(require_admin)])
def get_api_config():
    with get_conn() as conn:
        with conn.cursor() as cur:
            s = get_api_settings(cur)
    s["api_key"] = _mask(s["api_key"])
    return s


@router.put("/api", dependencies=[Depends(require_admin)])
def put_api_config(data: ApiSettingsIn):
    endpoint = (data.api_endpoint or "").strip().rstrip("/")
    if endpoint and not (endpoint.startswith("http://") or endpoint.startswith("https://")):
        raise HTTPException(status_code=400, detail="api_endpoint must be an http(s) URL")
    with get_conn() as conn:
        with conn.cursor() as cur:
            with conn.transaction():
                set_setting(cur, "API_ENDPOINT", endpoint)
                # A blank key keeps the stored one.
                if data.api_key and data.api_key.strip():
                    set_setting(cur, "API_KEY", data.api_key.strip())
                set_setting(cur, "SENDER_NAME", (data.sender_name or "").strip())
                set_setting(cur, "SENDER_PHONE", (data.sender_phone or "").strip())
                set_setting(cur, "SENDER_ADDRESS", (data.sender_address or "").strip())
    return {"ok": True}


@router.post("/api/test", dependencies=[Depends(require_admin)])
def test_api_connection():
    with get_conn() as conn:
        with conn.cursor() as cur:
            client = AdminApiClient.from_db(cur)
    return client.test_connection()


@router.get("/currency", dependencies=[Depends(get_current_user)])
def get_currency_rates():
    with get_conn() as conn:
        with conn.cursor() as cur:
            vals = get_settings(cur, CURRENCY_KEYS.keys())
    return {"rates": {k: vals.get(k) for k in CURRENCY_KEYS}}


@router.put("/currency/{key}", dependencies=[Depends(require_admin)])
def put_currency_rate(key: str, data: CurrencyIn):
    k = _currency_key(key)
    if data.value <= 0:
        raise HTTPException(status_code=400, detail="rate must be > 0")
    with get_conn() as conn:
        with conn.cursor() as cur:
            set_setting(cur, k, str(data.value))
    return {"ok": True, "key": k, "value": str(data.value)}


@router.post("/currency/{key}/refresh", dependencies=[Depends(require_admin)])
def refresh_currency_rate(key: str):
    k = _currency_key(key)
    try:
        rate = fetch_rate_to_idr(CURRENCY_KEYS[k])
    except PublicApiError as exc:
        json_log("warning", "settings.fx_refresh_failed", key=k, error=str(exc))
        raise HTTPException(status_code=502, detail=str(exc)) from None
    with get_conn() as conn:
        with conn.cursor() as cur:
            set_setting(cur, k, str(rate))
    return {"ok": True, "key": k, "value": str(rate)}


@router.get("/{key}", dependencies=[Depends(require_admin)])
def get_setting_value(key: str):
    k = key.strip().upper()
    if k in RESERVED_KEYS:
        raise HTTPException(status_code=400, detail=f"{k} is managed through its own endpoint")
    with get_conn() as conn:
        with conn.cursor() as cur:
            value = get_setting(cur, k)
    return {"key": k, "value": _mask(value) if k in ENCRYPTED_KEYS else value}


@router.put("/{key}", dependencies=[Depends(require_admin)])
def put_setting_value(key: str, data: SettingIn):
    k = key.strip().upper()
    if not k:
        raise HTTPException(status_code=400, detail="key is required")
    if k in RESERVED_KEYS:
        raise HTTPException(status_code=400, detail=f"{k} is managed through its own endpoint")
    with get_conn() as conn:
        with conn.cursor() as cur:
            set_setting(cur, k, data.value)
    return {"ok": True}
