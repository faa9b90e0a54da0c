from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request
from typing import Any, Optional
import urllib.parse

from ..admin_api import AdminApiClient
from ..db import get_conn
from ..deps import require_roles

router = APIRouter(
    prefix="/administrasi",
    tags=["administrasi"],
    dependencies=[Depends(require_roles("ADMIN", "HRD", "ADMINISTRASI"))],
)

# Local kind -> path on the administration backend.
DOCUMENT_PATHS = {
    "invoices": "/invoices",
    "invoice-en": "/invoices-english",
    "invoice-gan": "/invoices-gan",
    "surat-tugas": "/surat-tugas",
    "surat-jalan": "/surat-jalan",
    "certificates": "/certificates",
    "calendar": "/calendar",
}


def _base_path(kind: str) -> str:
    path = DOCUMENT_PATHS.get(kind)
    if not path:
        raise HTTPException(status_code=404, detail=f"unknown document kind: {kind}")
    return path


def _client() -> AdminApiClient:
    with get_conn() as conn:
        with conn.cursor() as cur:
            return AdminApiClient.from_db(cur)


def unwrap(res: dict):
    """
    Map a client envelope to an HTTP result: upstream 4xx keep their status, anything
    else that failed becomes 502.
    """
    if res["success"]:
        return res["data"]
    status = res.get("status")
    detail: Any = res.get("error") or "administration API request failed"
    data = res.get("data")
    if isinstance(data, dict) and data.get("message"):
        detail = data["message"]
    if status and 400 <= status < 500:
        raise HTTPException(status_code=status, detail=detail)
    raise HTTPException(status_code=502, detail=detail)


def _with_query(path: str, params: dict) -> str:
    clean = {k: v for k, v in params.items() if v not in (None, "")}
    return f"{path}?{urllib.parse.urlencode(clean)}" if clean else path


@router.get("/surat-tugas/generate-number")
def generate_surat_tugas_number(instansi: str = Query(..., min_length=1), date: Optional[str] = None):
    data = unwrap(_client().get(_with_query("/surat-tugas/generate-number", {"instansi": instansi, "date": date})))
    number = data.get("number") if isinstance(data, dict) else None
    return {"number": number}


@router.get("/{kind}/generate-number")
def generate_document_number(kind: str):
    if kind not in ("surat-jalan", "certificates"):
        raise HTTPException(status_code=404, detail="number generation is not available for this kind")
    return unwrap(_client().get(f"{_base_path(kind)}/generate-number"))


@router.get("/{kind}/stats")
def document_stats(kind: str):
    return unwrap(_client().get(f"{_base_path(kind)}/stats"))


@router.get("/{kind}")
def list_documents(kind: str, request: Request):
    # Query string (page, per_page, search, start/end dates) is passed through as-is.
    params = dict(request.query_params)
    return unwrap(_client().get(_with_query(_base_path(kind), params)))


@router.get("/{kind}/{doc_id}")
def get_document(kind: str, doc_id: str):
    return unwrap(_client().get(f"{_base_path(kind)}/{urllib.parse.quote(doc_id, safe='')}"))


@router.post("/{kind}")
def create_document(kind: str, payload: dict = Body(...)):
    return unwrap(_client().post(_base_path(kind), payload))


@router.put("/{kind}/{doc_id}")
def update_document(kind: str, doc_id: str, payload: dict = Body(...)):
    return unwrap(_client().put(f"{_base_path(kind)}/{urllib.parse.quote(doc_id, safe='')}", payload))


@router.delete("/{kind}/{doc_id}")
def delete_document(kind: str, doc_id: str):
    return unwrap(_client().delete(f"{_base_path(kind)}/{urllib.parse.quote(doc_id, safe='')}"))
