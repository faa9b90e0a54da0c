import pytest
from fastapi.testclient import TestClient
from psycopg import errors as pg_errors

from backend.app import main
from backend.app.config import settings

PG_CASES = [
    ("unique", pg_errors.UniqueViolation, 409, "conflict"),
    ("foreign-key", pg_errors.ForeignKeyViolation, 400, "invalid reference"),
    ("check", pg_errors.CheckViolation, 400, "constraint violation"),
    ("text", pg_errors.InvalidTextRepresentation, 400, "invalid value"),
]


def _raiser(exc):
    def _endpoint():
        raise exc
    return _endpoint


@pytest.fixture
def client():
    routes = main.app.router.routes
    before = len(routes)
    for name, exc_type, _, _ in PG_CASES:
        main.app.add_api_route(f"/_raise/{name}", _raiser(exc_type(f"{name} failed")))
    main.app.add_api_route("/_raise/boom", _raiser(RuntimeError("secret detail")))
    try:
        yield TestClient(main.app, raise_server_exceptions=False)
    finally:
        del routes[before:]


@pytest.mark.parametrize("name, _exc, status, detail", PG_CASES)
def test_postgres_client_errors_map_to_4xx(client, monkeypatch, name, _exc, status, detail):
    monkeypatch.setattr(settings, "env", "production")
    resp = client.get(f"/_raise/{name}")
    assert resp.status_code == status
    assert resp.json() == {"detail": detail}


def test_postgres_error_text_only_in_dev(client, monkeypatch):
    monkeypatch.setattr(settings, "env", "dev")
    body = client.get("/_raise/unique").json()
    assert body["detail"] == "conflict"
    assert "unique failed" in body["error"]


def test_unhandled_error_is_500_with_request_id(client, monkeypatch):
    monkeypatch.setattr(settings, "env", "production")
    resp = client.get("/_raise/boom", headers={"X-Request-Id": "req-42"})
    assert resp.status_code == 500
    assert resp.json() == {"detail": "internal error", "request_id": "req-42"}


def test_unhandled_error_text_only_in_dev(client, monkeypatch):
    monkeypatch.setattr(settings, "env", "local")
    body = client.get("/_raise/boom").json()
    assert body["detail"] == "internal error"
    assert body["request_id"]
    assert body["error"] == "secret detail"


def test_validation_errors_are_422(client, monkeypatch):
    monkeypatch.setattr(settings, "env", "production")

    def _needs_int(n: int):
        return {"n": n}

    main.app.add_api_route("/_raise/validate", _needs_int)
    resp = client.get("/_raise/validate", params={"n": "abc"})
    assert resp.status_code == 422
    assert resp.json() == {"detail": "validation failed"}


def test_responses_carry_request_id_and_security_headers(client):
    resp = client.get("/", headers={"X-Request-Id": "abc"})
    assert resp.status_code == 200
    assert resp.headers["X-Request-Id"] == "abc"
    assert resp.headers["X-Content-Type-Options"] == "nosniff"
