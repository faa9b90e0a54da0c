"""
Client for the separate "administration" REST backend (invoices, letters, surat tugas,
certificates, calendar).

Every call returns an envelope instead of raising:
    {"success": bool, "data": ..., "error": str | None, "status": int | None}
"""
import socket
import urllib.error
from typing import Any, Dict, Optional

from .http_client import request_json
from .logging_utils import json_log
from .system_settings import get_api_settings

DEFAULT_TIMEOUT = 30
TEST_TIMEOUT = 5


def _envelope(success: bool, data=None, error: Optional[str] = None, status: Optional[int] = None) -> dict:
    return {"success": success, "data": data, "error": error, "status": status}


class AdminApiClient:
    def __init__(self, endpoint: Optional[str], api_key: Optional[str], transport=request_json) -> None:
        self.endpoint = (endpoint or "").strip().rstrip("/")
        self.api_key = (api_key or "").strip()
        self._transport = transport

    @classmethod
    def from_db(cls, cur) -> "AdminApiClient":
        s = get_api_settings(cur)
        return cls(s["api_endpoint"], s["api_key"])

    def build_url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.endpoint}{path if path.startswith('/') else '/' + path}"

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        h = {"Content-Type": "application/json"}
        if extra:
            h.update(extra)
        if self.api_key:
            h["X-API-Key"] = self.api_key
        return h

    def request(self, method: str, path: str, body: Any = None, *, timeout: float = DEFAULT_TIMEOUT) -> dict:
        if not self.endpoint:
            return _envelope(False, error="API endpoint is not configured")
        url = self.build_url(path)
        try:
            res = self._transport(method, url, headers=self._headers(), payload=body, timeout=timeout)
        except (socket.timeout, TimeoutError):
            json_log("warning", "admin_api.timeout", method=method, url=url)
            return _envelope(False, error="request timeout")
        except (urllib.error.URLError, OSError) as exc:
            json_log("warning", "admin_api.unreachable", method=method, url=url, error=str(exc))
            return _envelope(False, error=str(getattr(exc, "reason", exc)))
        if not res.ok:
            return _envelope(False, data=res.data, error=f"HTTP {res.status}: {res.reason}".strip(), status=res.status)
        return _envelope(True, data=res.data, status=res.status)

    def get(self, path: str, **kw) -> dict:
        return self.request("GET", path, **kw)

    def post(self, path: str, body: Any = None, **kw) -> dict:
        return self.request("POST", path, body, **kw)

    def put(self, path: str, body: Any = None, **kw) -> dict:
        return self.request("PUT", path, body, **kw)

    def patch(self, path: str, body: Any = None, **kw) -> dict:
        return self.request("PATCH", path, body, **kw)

    def delete(self, path: str, **kw) -> dict:
        return self.request("DELETE", path, **kw)

    def test_connection(self) -> dict:
        if not self.endpoint:
            return {"success": False, "message": "API endpoint is not configured"}
        try:
            res = self._transport("GET", self.endpoint, headers=self._headers(), payload=None, timeout=TEST_TIMEOUT)
        except (socket.timeout, TimeoutError):
            return {"success": False, "message": f"connection timeout ({TEST_TIMEOUT} seconds)"}
        except (urllib.error.URLError, OSError) as exc:
            return {"success": False, "message": f"error: {getattr(exc, 'reason', exc)}"}
        if res.ok:
            return {"success": True, "message": f"connected, status {res.status}"}
        return {"success": False, "message": f"failed: HTTP {res.status} {res.reason}".strip()}
