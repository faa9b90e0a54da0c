from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from psycopg import errors as pg_errors
import time
import uuid
from datetime import datetime, timezone
from .routers.auth import router as auth_router
from .routers.users import router as users_router
from .routers.rbac import router as rbac_router
from .routers.settings import router as settings_router
from .routers.products import router as products_router, sync_router as products_sync_router
from .routers.checkout import router as checkout_router
from .routers.attendance import router as attendance_router
from .routers.payroll import router as payroll_router
from .routers.expenses import router as expenses_router
from .routers.projects import router as projects_router
from .routers.administrasi import router as administrasi_router
from .routers.store import router as store_router
from .routers.uploads import router as uploads_router
from .config import settings
from .db import get_conn, close_pools
from .logging_utils import json_log

SERVICE_NAME = "ichibot-backend"

app = FastAPI(title="Ichibot Production API", version=settings.api_version)
STARTED_AT_UTC = datetime.now(timezone.utc)

ROUTERS = (
    auth_router,
    users_router,
    rbac_router,
    settings_router,
    products_router,
    products_sync_router,
    checkout_router,
    attendance_router,
    payroll_router,
    expenses_router,
    projects_router,
    administrasi_router,
    store_router,
    uploads_router,
)

# Postgres errors that are the client's fault: (exception, status, detail).
PG_CLIENT_ERRORS = (
    (pg_errors.InvalidTextRepresentation, 400, "invalid value"),
    (pg_errors.ForeignKeyViolation, 400, "invalid reference"),
    (pg_errors.UniqueViolation, 409, "conflict"),
    (pg_errors.CheckViolation, 400, "constraint violation"),
)


def _request_id(req: Request) -> str:
    return getattr(req.state, "request_id", "") or req.headers.get("x-request-id") or "startup"


def _with_dev_error(content: dict, exc) -> dict:
    if settings.is_dev:
        content["error"] = str(exc)
    return content


def _pg_handler(status: int, detail: str):
    def _handle(_req: Request, exc: Exception):
        return JSONResponse(status_code=status, content=_with_dev_error({"detail": detail}, exc))
    return _handle


for _exc_type, _status, _detail in PG_CLIENT_ERRORS:
    app.add_exception_handler(_exc_type, _pg_handler(_status, _detail))


@app.exception_handler(RequestValidationError)
def _validation_failed(_req: Request, exc: RequestValidationError):
    content = {"detail": "validation failed"}
    if settings.is_dev:
        content["errors"] = exc.errors()
    return JSONResponse(status_code=422, content=content)


@app.exception_handler(Exception)
def _internal_error(req: Request, exc: Exception):
    rid = _request_id(req)
    json_log("error", "http.request.unhandled", request_id=rid, method=req.method, path=req.url.path, error=str(exc))
    return JSONResponse(
        status_code=500,
        content=_with_dev_error({"detail": "internal error", "request_id": rid}, exc),
    )


@app.middleware("http")
async def _access_log(request: Request, call_next):
    rid = (request.headers.get("X-Request-Id") or "").strip() or uuid.uuid4().hex
    request.state.request_id = rid
    started = time.monotonic()
    fields = {
        "request_id": rid,
        "method": request.method,
        "path": request.url.path,
        "client_ip": request.client.host if request.client else None,
    }
    try:
        response = await call_next(request)
    except Exception as exc:
        json_log("error", "http.request.error", duration_ms=int((time.monotonic() - started) * 1000), error=str(exc), **fields)
        raise

    response.headers["X-Request-Id"] = rid
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    # Probes would drown the log.
    if not fields["path"].startswith("/health"):
        json_log(
            "info",
            "http.request",
            status_code=response.status_code,
            duration_ms=int((time.monotonic() - started) * 1000),
            **fields,
        )
    return response


# The Next.js UI is served from another origin and authenticates with the session cookie.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
for _router in ROUTERS:
    app.include_router(_router)


def _ping_db():
    """(ok, error) from a trivial query."""
    try:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1")
        return True, None
    except Exception as exc:
        return False, str(exc)


@app.on_event("startup")
def _on_startup():
    if not settings.auth_key:
        json_log("warning", "startup.auth_key_missing", env=settings.env)
    ok, err = _ping_db()
    if ok:
        json_log("info", "startup.db_connected", env=settings.env, version=settings.api_version)
    else:
        json_log("warning", "startup.db_check_failed", env=settings.env, error=err)


@app.on_event("shutdown")
def _on_shutdown():
    close_pools()


def _status_body(req: Request, status: str, **extra) -> dict:
    return {
        "status": status,
        "service": SERVICE_NAME,
        "env": settings.env,
        "version": settings.api_version,
        "request_id": _request_id(req),
        **extra,
    }


def _db_checked(req: Request, status: str, **extra):
    ok, err = _ping_db()
    if not ok:
        body = _status_body(req, "degraded", db="down")
        return JSONResponse(status_code=503, content=_with_dev_error(body, err))
    return _status_body(req, status, db="ok", **extra)


@app.get("/")
def root():
    return {"status": "ok", "service": SERVICE_NAME}


@app.get("/health")
def health(req: Request):
    return _db_checked(req, "ok", started_at=STARTED_AT_UTC.isoformat())


@app.get("/health/live")
def health_live(req: Request):
    return _status_body(req, "ok")


@app.get("/health/ready")
def health_ready(req: Request):
    return _db_checked(req, "ready")


@app.get("/meta")
def meta():
    return {
        "service": SERVICE_NAME,
        "version": settings.api_version,
        "env": settings.env,
        "started_at": STARTED_AT_UTC.isoformat(),
        "uptime_seconds": int((datetime.now(timezone.utc) - STARTED_AT_UTC).total_seconds()),
    }
