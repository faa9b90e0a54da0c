import socket
import urllib.error

import pytest
from fastapi import HTTPException

from backend.app.admin_api import AdminApiClient
from backend.app.http_client import HttpResult
from backend.app.routers.administrasi import _with_query, unwrap


class _Transport:
    def __init__(self, result=None, exc=None):
        self._result = result
        self._exc = exc
        self.calls = []

    def __call__(self, method, url, *, headers=None, payload=None, timeout=30):
        self.calls.append({"method": method, "url": url, "headers": headers, "payload": payload, "timeout": timeout})
        if self._exc is not None:
            raise self._exc
        return self._result


def test_success_envelope_and_headers():
    t = _Transport(HttpResult(status=201, data={"id": 5}))
    client = AdminApiClient("https://admin.example/api/", "k-123", transport=t)
    res = client.post("/invoices", {"no": "INV-1"})
    assert res == {"success": True, "data": {"id": 5}, "error": None, "status": 201}
    call = t.calls[0]
    assert call["url"] == "https://admin.example/api/invoices"
    assert call["headers"]["X-API-Key"] == "k-123"
    assert call["headers"]["Content-Type"] == "application/json"
    assert call["payload"] == {"no": "INV-1"}
    assert call["timeout"] == 30


def test_unconfigured_endpoint_does_not_call_out():
    t = _Transport(HttpResult(status=200))
    res = AdminApiClient(None, None, transport=t).get("/invoices")
    assert res["success"] is False
    assert res["error"] == "API endpoint is not configured"
    assert t.calls == []


def test_http_error_and_network_failures_are_enveloped():
    t = _Transport(HttpResult(status=404, reason="Not Found", data={"message": "no such invoice"}))
    res = AdminApiClient("https://admin.example", "k", transport=t).get("invoices/9")
    assert res["success"] is False
    assert res["status"] == 404
    assert res["error"] == "HTTP 404: Not Found"
    assert t.calls[0]["url"] == "https://admin.example/invoices/9"

    res = AdminApiClient("https://admin.example", "k", transport=_Transport(exc=socket.timeout())).get("/x")
    assert res["error"] == "request timeout"

    refused = urllib.error.URLError("connection refused")
    res = AdminApiClient("https://admin.example", "k", transport=_Transport(exc=refused)).get("/x")
    assert res == {"success": False, "data": None, "error": "connection refused", "status": None}


def test_connection_check():
    t = _Transport(HttpResult(status=200))
    out = AdminApiClient("https://admin.example", "k", transport=t).test_connection()
    assert out["success"] is True
    assert t.calls[0]["timeout"] == 5

    out = AdminApiClient("https://admin.example", "k", transport=_Transport(exc=TimeoutError())).test_connection()
    assert out == {"success": False, "message": "connection timeout (5 seconds)"}


def test_unwrap_maps_upstream_failures():
    assert unwrap({"success": True, "data": [1], "error": None, "status": 200}) == [1]

    with pytest.raises(HTTPException) as exc_info:
        unwrap({"success": False, "data": {"message": "number taken"}, "error": "HTTP 409: Conflict", "status": 409})
    assert exc_info.value.status_code == 409
    assert exc_info.value.detail == "number taken"

    with pytest.raises(HTTPException) as exc_info:
        unwrap({"success": False, "data": None, "error": "HTTP 500: Server Error", "status": 500})
    assert exc_info.value.status_code == 502

    with pytest.raises(HTTPException) as exc_info:
        unwrap({"success": False, "data": None, "error": "request timeout", "status": None})
    assert exc_info.value.status_code == 502
    assert exc_info.value.detail == "request timeout"


def test_with_query_drops_empty_params():
    assert _with_query("/invoices", {"page": 2, "search": "", "status": None}) == "/invoices?page=2"
    assert _with_query("/invoices", {}) == "/invoices"
