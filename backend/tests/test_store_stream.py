import asyncio
import json
import threading

from backend.app.routers import store as store_router


def _collect(agen):
    async def _run():
        return [ev async for ev in agen]
    return asyncio.run(_run())


def _messages(events):
    out = []
    for ev in events:
        assert set(ev) == {"data"}
        payload = json.loads(ev["data"])
        assert "timestamp" in payload
        out.append(payload["message"])
    return out


def test_sync_event_payload():
    payload = json.loads(store_router.sync_event("hello")["data"])
    assert payload["message"] == "hello"
    assert "timestamp" in payload


def test_stream_forwards_progress_and_reports_done():
    def _run(log):
        log("Fetching page 1...")
        log("Received 3 products from page 1")
        return {"success": True, "count": 3, "errors": 0, "total": 3}

    msgs = _messages(_collect(store_router.sync_events(run=_run)))
    assert msgs == [
        "Initializing sync connection...",
        "Fetching page 1...",
        "Received 3 products from page 1",
        "Done: 3 products synced.",
    ]


def test_stream_reports_failures():
    msgs = _messages(_collect(store_router.sync_events(run=lambda log: {"success": False, "error": "bad key"})))
    assert msgs[-1] == "Failed: bad key"

    def _boom(log):
        raise RuntimeError("db down")

    msgs = _messages(_collect(store_router.sync_events(run=_boom)))
    assert msgs[-1] == "Failed: db down"


class _GoneRequest:
    async def is_disconnected(self):
        return True


def test_stream_stops_when_client_disconnects(monkeypatch):
    monkeypatch.setattr(store_router, "_POLL_SECONDS", 0.01)
    release = threading.Event()

    def _slow(log):
        release.wait(5)
        return {"success": True, "count": 0}

    try:
        msgs = _messages(_collect(store_router.sync_events(_GoneRequest(), run=_slow)))
    finally:
        release.set()
    assert msgs == ["Initializing sync connection..."]


def test_stream_endpoint_uses_event_source_response():
    from sse_starlette.sse import EventSourceResponse

    resp = store_router.stream_store_sync(_GoneRequest())
    assert isinstance(resp, EventSourceResponse)


def test_store_sync_requires_configured_client(monkeypatch):
    monkeypatch.setattr(store_router.settings, "wc_url", "")
    assert store_router.woo_client_or_none() is None


def test_low_stock_keeps_rows_without_a_type(monkeypatch):
    seen = {}

    def _select(where, order, params=()):
        seen["where"] = where
        seen["params"] = params
        return []

    monkeypatch.setattr(store_router, "_select", _select)
    store_router.list_low_stock_products(max_stock=5)
    assert "type IS DISTINCT FROM 'variable'" in seen["where"]
    assert "<>" not in seen["where"]
    assert seen["params"] == (5,)
