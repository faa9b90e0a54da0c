from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
import datetime as dt
from datetime import date
from decimal import Decimal
from typing import Optional

from ..crypto import decrypt, decrypt_number, encrypt, encrypt_number
from ..db import get_conn
from ..deps import get_current_user, is_admin_role, require_admin, require_route

router = APIRouter(tags=["finance"], dependencies=[Depends(require_route("/keuangan/pengeluaran"))])


class ExpenseCategoryIn(BaseModel):
    name: str
    description: Optional[str] = None


@router.get("/expense-categories", dependencies=[Depends(get_current_user)])
def list_expense_categories():
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT id, name, description, created_at FROM expense_categories ORDER BY name")
            return {"categories": cur.fetchall()}


@router.post("/expense-categories", dependencies=[Depends(require_admin)])
def create_expense_category(data: ExpenseCategoryIn):
    if not data.name.strip():
        raise HTTPException(status_code=400, detail="name is required")
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO expense_categories (id, name, description)
                VALUES (gen_random_uuid(), %s, %s)
                RETURNING id
                """,
                (data.name.strip(), data.description),
            )
            return {"id": cur.fetchone()["id"]}


@router.put("/expense-categories/{category_id}", dependencies=[Depends(require_admin)])
def update_expense_category(category_id: str, data: ExpenseCategoryIn):
    if not data.name.strip():
        raise HTTPException(status_code=400, detail="name is required")
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                UPDATE expense_categories
                SET name = %s, description = %s, updated_at = now()
                WHERE id = %s
                """,
                (data.name.strip(), data.description, category_id),
            )
            if cur.rowcount == 0:
                raise HTTPException(status_code=404, detail="category not found")
    return {"ok": True}


@router.delete("/expense-categories/{category_id}", dependencies=[Depends(require_admin)])
def delete_expense_category(category_id: str):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT 1 FROM expenses WHERE category_id = %s LIMIT 1", (category_id,))
            if cur.fetchone():
                raise HTTPException(status_code=409, detail="category is used by expenses")
            cur.execute("DELETE FROM expense_categories WHERE id = %s", (category_id,))
            if cur.rowcount == 0:
                raise HTTPException(status_code=404, detail="category not found")
    return {"ok": True}


class ExpenseIn(BaseModel):
    category_id: str
    date: dt.date
    amount: Decimal
    name: str
    image: Optional[str] = None


def _validate_expense(data: ExpenseIn) -> None:
    if not data.name.strip():
        raise HTTPException(status_code=400, detail="name is required")
    if data.amount < 0:
        raise HTTPException(status_code=400, detail="amount must be >= 0")


def decrypt_expense(row: dict) -> dict:
    out = {
        "id": row["id"],
        "user_id": row["user_id"],
        "category_id": row["category_id"],
        "category_name": row.get("category_name"),
        "date": row["date"],
        "amount": decrypt_number(row.get("amount_enc")),
        "name": decrypt(row.get("name_enc")) or "Unknown",
        "image": row.get("image"),
        "created_at": row.get("created_at"),
    }
    if "user_name_enc" in row:
        out["user_name"] = decrypt(row.get("user_name_enc")) or "Unknown"
    return out


_EXPENSE_SELECT = """
    SELECT e.id, e.user_id, e.category_id, c.name AS category_name, e.date,
           e.amount_enc, e.name_enc, e.image, e.created_at
    FROM expenses e
    LEFT JOIN expense_categories c ON c.id = e.category_id
"""


@router.get("/expenses")
def list_my_expenses(user=Depends(get_current_user)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(_EXPENSE_SELECT + " WHERE e.user_id = %s ORDER BY e.date DESC", (user["user_id"],))
            return {"expenses": [decrypt_expense(r) for r in cur.fetchall()]}


@router.get("/expenses/all", dependencies=[Depends(require_admin)])
def list_all_expenses(start: Optional[date] = None, end: Optional[date] = None):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT e.id, e.user_id, e.category_id, c.name AS category_name, e.date,
                       e.amount_enc, e.name_enc, e.image, e.created_at,
                       u.name_enc AS user_name_enc
                FROM expenses e
                LEFT JOIN expense_categories c ON c.id = e.category_id
                LEFT JOIN users u ON u.id = e.user_id
                WHERE (%s::date IS NULL OR e.date >= %s)
                  AND (%s::date IS NULL OR e.date <= %s)
                ORDER BY e.date DESC
                """,
                (start, start, end, end),
            )
            return {"expenses": [decrypt_expense(r) for r in cur.fetchall()]}


@router.get("/expenses/summary", dependencies=[Depends(require_admin)])
def expense_summary(start: Optional[date] = None, end: Optional[date] = None):
    # Amounts are ciphertext, so totals are computed here rather than in SQL.
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                _EXPENSE_SELECT
                + """
                WHERE (%s::date IS NULL OR e.date >= %s)
                  AND (%s::date IS NULL OR e.date <= %s)
                """,
                (start, start, end, end),
            )
            rows = [decrypt_expense(r) for r in cur.fetchall()]
    per_category = {}
    for r in rows:
        key = str(r["category_id"])
        bucket = per_category.setdefault(
            key, {"category_id": r["category_id"], "category_name": r["category_name"], "total": Decimal(0), "count": 0}
        )
        bucket["total"] += r["amount"]
        bucket["count"] += 1
    categories = sorted(per_category.values(), key=lambda b: b["total"], reverse=True)
    return {"total": sum((r["amount"] for r in rows), Decimal(0)), "count": len(rows), "categories": categories}


@router.post("/expenses")
def create_expense(data: ExpenseIn, user=Depends(get_current_user)):
    _validate_expense(data)
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO expenses (id, user_id, category_id, date, amount_enc, name_enc, image)
                VALUES (gen_random_uuid(), %s, %s, %s, %s, %s, %s)
                RETURNING id
                """,
                (
                    user["user_id"],
                    data.category_id,
                    data.date,
                    encrypt_number(data.amount),
                    encrypt(data.name.strip()),
                    data.image,
                ),
            )
            return {"success": True, "id": cur.fetchone()["id"]}


def _owner_or_admin(cur, expense_id: str, user: dict) -> None:
    cur.execute("SELECT user_id FROM expenses WHERE id = %s", (expense_id,))
    row = cur.fetchone()
    if not row:
        raise HTTPException(status_code=404, detail="expense not found")
    if str(row["user_id"]) != str(user["user_id"]) and not is_admin_role(user["role"]):
        raise HTTPException(status_code=403, detail="permission denied")


@router.put("/expenses/{expense_id}")
def update_expense(expense_id: str, data: ExpenseIn, user=Depends(get_current_user)):
    _validate_expense(data)
    with get_conn() as conn:
        with conn.cursor() as cur:
            _owner_or_admin(cur, expense_id, user)
            cur.execute(
                """
                UPDATE expenses
                SET category_id = %s, date = %s, amount_enc = %s, name_enc = %s, image = %s,
                    updated_at = now()
                WHERE id = %s
                """,
                (
                    data.category_id,
                    data.date,
                    encrypt_number(data.amount),
                    encrypt(data.name.strip()),
                    data.image,
                    expense_id,
                ),
            )
    return {"success": True}


@router.delete("/expenses/{expense_id}")
def delete_expense(expense_id: str, user=Depends(get_current_user)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            _owner_or_admin(cur, expense_id, user)
            cur.execute("DELETE FROM expenses WHERE id = %s", (expense_id,))
    return {"success": True}
