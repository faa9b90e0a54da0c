"""
Unauthenticated public APIs: FX rates and national holidays.
"""
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

from .config import settings
from .http_client import request_json

# Settings keys -> ISO code quoted against IDR.
CURRENCY_KEYS = {
    "KURS_YUAN": "CNY",
    "KURS_USD": "USD",
}


class PublicApiError(Exception):
    pass


def _get(url: str, transport):
    try:
        return transport("GET", url, headers=None, payload=None, timeout=15)
    except OSError as exc:
        raise PublicApiError(f"network error: {getattr(exc, 'reason', exc)}") from exc


def fetch_rate_to_idr(currency: str, transport=request_json) -> Decimal:
    """Latest `currency` -> IDR rate, rounded to a whole rupiah."""
    code = (currency or "").strip().upper()
    if not code:
        raise PublicApiError("currency is required")
    res = _get(f"{settings.fx_api_url}/{code}", transport)
    data = res.data if isinstance(res.data, dict) else {}
    if not res.ok or data.get("result") != "success":
        raise PublicApiError(f"fx api failed for {code}: HTTP {res.status}")
    idr = (data.get("rates") or {}).get("IDR")
    if idr is None:
        raise PublicApiError(f"fx api returned no IDR rate for {code}")
    return Decimal(str(idr)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def fetch_public_holidays(year: int, country: Optional[str] = None, transport=request_json) -> List[dict]:
    cc = (country or settings.holiday_country).strip().upper()
    res = _get(f"{settings.holiday_api_url}/{int(year)}/{cc}", transport)
    if not res.ok or not isinstance(res.data, list):
        raise PublicApiError(f"holiday api failed: HTTP {res.status}")
    out = []
    for h in res.data:
        raw = (h or {}).get("date")
        try:
            d = date.fromisoformat(str(raw))
        except ValueError:
            continue
        out.append({"date": d, "name": h.get("localName") or h.get("name") or ""})
    out.sort(key=lambda x: x["date"])
    return out
