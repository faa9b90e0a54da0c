from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from pydantic import BaseModel
from decimal import Decimal
from typing import Dict, List, Optional

from ..crypto import decrypt, decrypt_number, encrypt, encrypt_number
from ..db import get_conn
from ..deps import get_current_user, is_admin_role, require_admin
from ..logging_utils import json_log
from ..uploads import UploadTooLarge, delete_upload, public_url, save_upload
from ..validation import ComponentType

router = APIRouter(tags=["payroll"])

SLIP_SUBDIR = "salary-slips"


class SalaryComponentIn(BaseModel):
    name: str
    type: ComponentType


@router.get("/salary-components", dependencies=[Depends(require_admin)])
def list_salary_components(type: Optional[ComponentType] = None):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, name, type, created_at
                FROM salary_components
                WHERE (%s::text IS NULL OR type = %s)
                ORDER BY created_at ASC
                """,
                (type, type),
            )
            return {"components": cur.fetchall()}


@router.post("/salary-components", dependencies=[Depends(require_admin)])
def create_salary_component(data: SalaryComponentIn):
    name = data.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="name is required")
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                "SELECT 1 FROM salary_components WHERE name = %s AND type = %s",
                (name, data.type),
            )
            if cur.fetchone():
                raise HTTPException(status_code=409, detail="component already exists")
            cur.execute(
                """
                INSERT INTO salary_components (id, name, type)
                VALUES (gen_random_uuid(), %s, %s)
                RETURNING id
                """,
                (name, data.type),
            )
            return {"id": cur.fetchone()["id"]}


@router.delete("/salary-components/{component_id}", dependencies=[Depends(require_admin)])
def delete_salary_component(component_id: str):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("DELETE FROM salary_components WHERE id = %s", (component_id,))
            if cur.rowcount == 0:
                raise HTTPException(status_code=404, detail="component not found")
    return {"ok": True}


class PayrollItemIn(BaseModel):
    component_id: str
    amount: Decimal


class PayrollIn(BaseModel):
    user_id: str
    month: int
    year: int
    basic_salary: Decimal
    items: List[PayrollItemIn] = []


def compute_net_salary(basic: Decimal, items: List[PayrollItemIn], types: Dict[str, str]) -> Decimal:
    """basic + additions - deductions; items with an unknown component are ignored."""
    net = Decimal(basic)
    for it in items:
        t = types.get(str(it.component_id))
        if t == "ADDITION":
            net += it.amount
        elif t == "DEDUCTION":
            net -= it.amount
    return net


@router.put("/payroll", dependencies=[Depends(require_admin)])
def upsert_payroll(data: PayrollIn):
    if not 1 <= data.month <= 12:
        raise HTTPException(status_code=400, detail="month must be 1-12")
    if data.basic_salary < 0 or any(it.amount < 0 for it in data.items):
        raise HTTPException(status_code=400, detail="amounts must be >= 0")

    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                ids = list({str(it.component_id) for it in data.items})
                types: Dict[str, str] = {}
                if ids:
                    cur.execute("SELECT id, type FROM salary_components WHERE id::text = ANY(%s)", (ids,))
                    types = {str(r["id"]): r["type"] for r in cur.fetchall()}
                    unknown = [i for i in ids if i not in types]
                    if unknown:
                        raise HTTPException(status_code=400, detail=f"unknown salary component: {unknown[0]}")
                net = compute_net_salary(data.basic_salary, data.items, types)

                cur.execute(
                    """
                    INSERT INTO payrolls
                      (id, user_id, month, year, month_enc, year_enc, basic_salary_enc, net_salary_enc)
                    VALUES
                      (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (user_id, month, year) DO UPDATE
                    SET month_enc = EXCLUDED.month_enc,
                        year_enc = EXCLUDED.year_enc,
                        basic_salary_enc = EXCLUDED.basic_salary_enc,
                        net_salary_enc = EXCLUDED.net_salary_enc,
                        updated_at = now()
                    RETURNING id
                    """,
                    (
                        data.user_id,
                        data.month,
                        data.year,
                        encrypt_number(data.month),
                        encrypt_number(data.year),
                        encrypt_number(data.basic_salary),
                        encrypt_number(net),
                    ),
                )
                payroll_id = cur.fetchone()["id"]
                cur.execute("DELETE FROM payroll_items WHERE payroll_id = %s", (payroll_id,))
                for it in data.items:
                    cur.execute(
                        """
                        INSERT INTO payroll_items (id, payroll_id, component_id, amount_enc)
                        VALUES (gen_random_uuid(), %s, %s, %s)
                        """,
                        (payroll_id, it.component_id, encrypt_number(it.amount)),
                    )
    return {"success": True, "id": payroll_id, "net_salary": str(net)}


def _load_items(cur, payroll_ids) -> Dict[str, list]:
    if not payroll_ids:
        return {}
    cur.execute(
        """
        SELECT pi.id, pi.payroll_id, pi.component_id, pi.amount_enc,
               c.name AS component_name, c.type AS component_type
        FROM payroll_items pi
        JOIN salary_components c ON c.id = pi.component_id
        WHERE pi.payroll_id = ANY(%s)
        ORDER BY c.type, c.name
        """,
        (list(payroll_ids),),
    )
    out: Dict[str, list] = {}
    for r in cur.fetchall():
        out.setdefault(str(r["payroll_id"]), []).append(
            {
                "id": r["id"],
                "component_id": r["component_id"],
                "component_name": r["component_name"],
                "type": r["component_type"],
                "amount": decrypt_number(r["amount_enc"]),
            }
        )
    return out


def _payroll_out(row: dict, items: list) -> dict:
    return {
        "id": row["id"],
        "user_id": row["user_id"],
        "month": row["month"],
        "year": row["year"],
        "basic_salary": decrypt_number(row.get("basic_salary_enc")),
        "net_salary": decrypt_number(row.get("net_salary_enc")),
        "salary_slip": decrypt(row.get("salary_slip_enc")),
        "items": items,
    }


_PAYROLL_COLUMNS = "id, user_id, month, year, basic_salary_enc, net_salary_enc, salary_slip_enc"


@router.get("/payroll")
def get_payroll(
    user_id: str,
    month: int = Query(..., ge=1, le=12),
    year: int = Query(..., ge=2000, le=2100),
    user=Depends(get_current_user),
):
    if str(user["user_id"]) != str(user_id) and not is_admin_role(user["role"]):
        raise HTTPException(status_code=403, detail="permission denied")
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"SELECT {_PAYROLL_COLUMNS} FROM payrolls WHERE user_id = %s AND month = %s AND year = %s",
                (user_id, month, year),
            )
            row = cur.fetchone()
            if not row:
                return {"success": True, "data": None}
            items = _load_items(cur, [row["id"]])
    return {"success": True, "data": _payroll_out(row, items.get(str(row["id"]), []))}


@router.delete("/payroll/{payroll_id}", dependencies=[Depends(require_admin)])
def delete_payroll(payroll_id: str):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("DELETE FROM payrolls WHERE id = %s RETURNING salary_slip_enc", (payroll_id,))
            row = cur.fetchone()
            if not row:
                raise HTTPException(status_code=404, detail="payroll not found")
    delete_upload(decrypt(row.get("salary_slip_enc")))
    return {"success": True}


@router.post("/payroll/{payroll_id}/slip", dependencies=[Depends(require_admin)])
def upload_salary_slip(payroll_id: str, file: UploadFile = File(...)):
    raw = file.file.read() or b""
    if not raw:
        raise HTTPException(status_code=400, detail="empty file")
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT salary_slip_enc FROM payrolls WHERE id = %s", (payroll_id,))
            row = cur.fetchone()
            if not row:
                raise HTTPException(status_code=404, detail="payroll not found")
            try:
                url = public_url(save_upload(raw, file.filename, SLIP_SUBDIR))
            except UploadTooLarge as exc:
                raise HTTPException(status_code=413, detail=str(exc)) from None
            cur.execute(
                "UPDATE payrolls SET salary_slip_enc = %s, updated_at = now() WHERE id = %s",
                (encrypt(url), payroll_id),
            )
    old = decrypt(row.get("salary_slip_enc"))
    if old and old != url:
        delete_upload(old)
    json_log("info", "payroll.slip_uploaded", payroll_id=payroll_id)
    return {"success": True, "salary_slip": url}


@router.delete("/payroll/{payroll_id}/slip", dependencies=[Depends(require_admin)])
def remove_salary_slip(payroll_id: str):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT salary_slip_enc FROM payrolls WHERE id = %s", (payroll_id,))
            row = cur.fetchone()
            if not row:
                raise HTTPException(status_code=404, detail="payroll not found")
            cur.execute(
                "UPDATE payrolls SET salary_slip_enc = NULL, updated_at = now() WHERE id = %s",
                (payroll_id,),
            )
    delete_upload(decrypt(row.get("salary_slip_enc")))
    return {"success": True}


@router.get("/payroll/recap", dependencies=[Depends(require_admin)])
def monthly_payroll_recap(
    month: int = Query(..., ge=1, le=12),
    year: int = Query(..., ge=2000, le=2100),
):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT id, name_enc, department_enc, role_enc FROM users")
            users = cur.fetchall()
            cur.execute(
                f"SELECT {_PAYROLL_COLUMNS} FROM payrolls WHERE month = %s AND year = %s",
                (month, year),
            )
            by_user = {str(r["user_id"]): r for r in cur.fetchall()}
            items = _load_items(cur, [r["id"] for r in by_user.values()])

    data = []
    for u in users:
        p = by_user.get(str(u["id"]))
        p_items = items.get(str(p["id"]), []) if p else []
        data.append(
            {
                "id": u["id"],
                "payroll_id": p["id"] if p else None,
                "name": decrypt(u.get("name_enc")),
                "role": (decrypt(u.get("role_enc")) or "USER").upper(),
                "department": decrypt(u.get("department_enc")),
                "has_payroll": p is not None,
                "basic_salary": decrypt_number(p["basic_salary_enc"]) if p else Decimal(0),
                "total_additions": sum((i["amount"] for i in p_items if i["type"] == "ADDITION"), Decimal(0)),
                "total_deductions": sum((i["amount"] for i in p_items if i["type"] == "DEDUCTION"), Decimal(0)),
                "net_salary": decrypt_number(p["net_salary_enc"]) if p else Decimal(0),
                "salary_slip": decrypt(p.get("salary_slip_enc")) if p else None,
                "items": p_items,
            }
        )
    data.sort(key=lambda r: (r["name"] or "").lower())
    return {"success": True, "data": data}
