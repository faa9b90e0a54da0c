from fastapi import APIRouter, Depends, File, HTTPException, Query, Response, UploadFile
from pydantic import BaseModel
import datetime as dt
from datetime import date, datetime, time
from typing import Dict, List, Optional

from ..attendance_calc import (
    DEFAULT_SALARY_CALC_DAY,
    DEFAULT_WORK_SCHEDULE,
    PRESENT_STATUS,
    STATUSES,
    CustomSchedule,
    DayRecord,
    PunchDay,
    aggregate_punches,
    combine_clock,
    keeps_clock_times,
    minutes_to_clock,
    month_bounds,
    parse_hhmm,
    payroll_period,
    summarize_period,
)
from ..crypto import decrypt, decrypt_date, encrypt, encrypt_date
from ..db import get_conn
from ..deps import get_current_user, require_admin
from ..logging_utils import json_log
from ..public_apis import PublicApiError, fetch_public_holidays
from ..spreadsheets import XLSX_MEDIA_TYPE, SpreadsheetError, build_workbook, column_index, read_first_sheet
from ..validation import ClockTime

router = APIRouter(tags=["attendance"])


def _naive(value: Optional[datetime]) -> Optional[datetime]:
    # Older rows were written as UTC with an offset; compare in local wall-clock time.
    if value is not None and value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


def decrypt_attendance(row: Optional[dict]) -> Optional[dict]:
    if not row:
        return None
    return {
        "id": row["id"],
        "user_id": row["user_id"],
        "date": row["date"],
        "is_holiday": bool(row.get("is_holiday")),
        "clock_in": _naive(decrypt_date(row.get("clock_in_enc"))),
        "clock_out": _naive(decrypt_date(row.get("clock_out_enc"))),
        "status": decrypt(row.get("status_enc")),
        "notes": decrypt(row.get("notes_enc")),
    }


def _user_brief(row: dict) -> dict:
    return {
        "id": row["id"],
        "name": decrypt(row.get("name_enc")),
        "username": decrypt(row.get("username_enc")) or "Unknown",
        "department": decrypt(row.get("department_enc")),
        "role": (decrypt(row.get("role_enc")) or "USER").upper(),
    }


# ---------------------------------------------------------------------------
# Work schedules
# ---------------------------------------------------------------------------

def load_work_schedules(cur) -> List[dict]:
    cur.execute(
        """
        SELECT day_of_week, day_name, start_time, end_time, is_work_day
        FROM work_schedules
        ORDER BY day_of_week
        """
    )
    rows = cur.fetchall()
    if rows:
        return rows
    for s in DEFAULT_WORK_SCHEDULE:
        cur.execute(
            """
            INSERT INTO work_schedules (day_of_week, day_name, start_time, end_time, is_work_day)
            VALUES (%s, %s, %s, %s, %s)
            ON CONFLICT (day_of_week) DO NOTHING
            """,
            (s["day_of_week"], s["day_name"], s["start_time"], s["end_time"], s["is_work_day"]),
        )
    return [dict(s) for s in DEFAULT_WORK_SCHEDULE]


class WorkScheduleIn(BaseModel):
    is_work_day: bool
    start_time: Optional[ClockTime] = None
    end_time: Optional[ClockTime] = None


@router.get("/work-schedules", dependencies=[Depends(get_current_user)])
def list_work_schedules():
    with get_conn() as conn:
        with conn.cursor() as cur:
            return {"schedules": load_work_schedules(cur)}


@router.put("/work-schedules/{day_of_week}", dependencies=[Depends(require_admin)])
def update_work_schedule(day_of_week: int, data: WorkScheduleIn):
    if not 0 <= day_of_week <= 6:
        raise HTTPException(status_code=400, detail="day_of_week must be 0-6")
    if data.is_work_day and not parse_hhmm(data.start_time):
        raise HTTPException(status_code=400, detail="start_time (HH:MM) is required for a work day")
    with get_conn() as conn:
        with conn.cursor() as cur:
            load_work_schedules(cur)
            cur.execute(
                """
                UPDATE work_schedules
                SET start_time = %s, end_time = %s, is_work_day = %s, updated_at = now()
                WHERE day_of_week = %s
                """,
                (
                    data.start_time if data.is_work_day else None,
                    data.end_time if data.is_work_day else None,
                    data.is_work_day,
                    day_of_week,
                ),
            )
    return {"ok": True}


class CustomScheduleIn(BaseModel):
    name: Optional[str] = None
    start_date: date
    end_date: date
    start_time: ClockTime
    end_time: ClockTime


def _validate_custom(data: CustomScheduleIn) -> None:
    if data.end_date < data.start_date:
        raise HTTPException(status_code=400, detail="end_date must be >= start_date")


def load_custom_schedules(cur, start: date, end: date) -> List[CustomSchedule]:
    cur.execute(
        """
        SELECT start_date, end_date, start_time, end_time
        FROM custom_work_schedules
        WHERE start_date <= %s AND end_date >= %s
        ORDER BY start_date
        """,
        (end, start),
    )
    return [
        CustomSchedule(r["start_date"], r["end_date"], r.get("start_time"), r.get("end_time"))
        for r in cur.fetchall()
    ]


@router.get("/custom-work-schedules", dependencies=[Depends(get_current_user)])
def list_custom_schedules():
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, name, start_date, end_date, start_time, end_time, created_at
                FROM custom_work_schedules
                ORDER BY start_date DESC
                """
            )
            return {"schedules": cur.fetchall()}


@router.post("/custom-work-schedules", dependencies=[Depends(require_admin)])
def create_custom_schedule(data: CustomScheduleIn):
    _validate_custom(data)
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO custom_work_schedules (id, name, start_date, end_date, start_time, end_time)
                VALUES (gen_random_uuid(), %s, %s, %s, %s, %s)
                RETURNING id
                """,
                (data.name, data.start_date, data.end_date, data.start_time, data.end_time),
            )
            return {"id": cur.fetchone()["id"]}


@router.put("/custom-work-schedules/{schedule_id}", dependencies=[Depends(require_admin)])
def update_custom_schedule(schedule_id: str, data: CustomScheduleIn):
    _validate_custom(data)
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                UPDATE custom_work_schedules
                SET name = %s, start_date = %s, end_date = %s, start_time = %s, end_time = %s,
                    updated_at = now()
                WHERE id = %s
                """,
                (data.name, data.start_date, data.end_date, data.start_time, data.end_time, schedule_id),
            )
            if cur.rowcount == 0:
                raise HTTPException(status_code=404, detail="schedule not found")
    return {"ok": True}


@router.delete("/custom-work-schedules/{schedule_id}", dependencies=[Depends(require_admin)])
def delete_custom_schedule(schedule_id: str):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("DELETE FROM custom_work_schedules WHERE id = %s", (schedule_id,))
            if cur.rowcount == 0:
                raise HTTPException(status_code=404, detail="schedule not found")
    return {"ok": True}


# ---------------------------------------------------------------------------
# Daily attendance
# ---------------------------------------------------------------------------

_ATTENDANCE_COLUMNS = "id, user_id, date, clock_in_enc, clock_out_enc, status_enc, notes_enc, is_holiday"


@router.get("/attendance", dependencies=[Depends(require_admin)])
def list_attendance(day: Optional[date] = Query(None, alias="date")):
    day = day or date.today()
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT id, name_enc, username_enc, department_enc, role_enc FROM users ORDER BY id")
            users = cur.fetchall()
            cur.execute(f"SELECT {_ATTENDANCE_COLUMNS} FROM attendances WHERE date = %s", (day,))
            by_user = {r["user_id"]: r for r in cur.fetchall()}
    return {
        "date": day,
        "rows": [
            {"user": _user_brief(u), "attendance": decrypt_attendance(by_user.get(u["id"]))}
            for u in users
        ],
    }


class AttendanceIn(BaseModel):
    user_id: str
    date: dt.date
    # HH:MM; "" clears the stored time, None leaves it unchanged.
    clock_in: Optional[str] = None
    clock_out: Optional[str] = None
    status: Optional[str] = None
    notes: Optional[str] = None
    is_holiday: bool = False
    update_holiday_global: bool = False


def attendance_values(data: AttendanceIn) -> Dict[str, Optional[str]]:
    """Encrypted column values to write; clock columns are absent when left unchanged."""
    status = (data.status or "").strip().upper() or None
    if status and status not in STATUSES:
        raise HTTPException(status_code=400, detail=f"unknown status: {status}")
    vals: Dict[str, Optional[str]] = {
        "status_enc": encrypt(status),
        "notes_enc": encrypt(data.notes),
    }
    if keeps_clock_times(status):
        for field, col in (("clock_in", "clock_in_enc"), ("clock_out", "clock_out_enc")):
            raw = getattr(data, field)
            if raw:
                stamp = combine_clock(data.date, raw)
                if stamp is None:
                    raise HTTPException(status_code=400, detail=f"{field} must be HH:MM")
                vals[col] = encrypt_date(stamp)
            elif raw == "":
                vals[col] = None
    else:
        vals["clock_in_enc"] = None
        vals["clock_out_enc"] = None
    return vals


def apply_holiday_to_all(cur, day: date, is_holiday: bool) -> None:
    cur.execute(
        """
        INSERT INTO attendances (id, user_id, date, is_holiday)
        SELECT gen_random_uuid(), u.id, %s, %s
        FROM users u
        ON CONFLICT (user_id, date) DO UPDATE
        SET is_holiday = EXCLUDED.is_holiday, updated_at = now()
        """,
        (day, is_holiday),
    )


@router.post("/attendance", dependencies=[Depends(require_admin)])
def upsert_attendance(data: AttendanceIn):
    with get_conn() as conn:
        with conn.cursor() as cur:
            if data.update_holiday_global:
                apply_holiday_to_all(cur, data.date, data.is_holiday)
                json_log("info", "attendance.holiday_global", date=data.date, is_holiday=data.is_holiday)
                return {
                    "success": True,
                    "message": "holiday applied to all employees" if data.is_holiday else "holiday cleared for all employees",
                }

            vals = attendance_values(data)
            cols = ["is_holiday"] + list(vals.keys())
            params = [data.is_holiday] + list(vals.values())
            cur.execute(
                f"""
                INSERT INTO attendances (id, user_id, date, {', '.join(cols)})
                VALUES (gen_random_uuid(), %s, %s, {', '.join(['%s'] * len(cols))})
                ON CONFLICT (user_id, date) DO UPDATE
                SET {', '.join(f'{c} = EXCLUDED.{c}' for c in cols)}, updated_at = now()
                RETURNING {_ATTENDANCE_COLUMNS}
                """,
                [data.user_id, data.date] + params,
            )
            return {"success": True, "data": decrypt_attendance(cur.fetchone())}


@router.delete("/attendance/{attendance_id}", dependencies=[Depends(require_admin)])
def delete_attendance(attendance_id: str):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("DELETE FROM attendances WHERE id = %s", (attendance_id,))
            if cur.rowcount == 0:
                raise HTTPException(status_code=404, detail="attendance not found")
    return {"success": True}


@router.get("/attendance/monthly", dependencies=[Depends(require_admin)])
def monthly_attendance(
    user_id: str,
    month: int = Query(..., ge=1, le=12),
    year: int = Query(..., ge=2000, le=2100),
):
    start, end = month_bounds(month, year)
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT {_ATTENDANCE_COLUMNS}
                FROM attendances
                WHERE user_id = %s AND date >= %s AND date <= %s
                ORDER BY date ASC
                """,
                (user_id, start, end),
            )
            return {"records": [decrypt_attendance(r) for r in cur.fetchall()]}


# ---------------------------------------------------------------------------
# Raw punch import / export (xlsx)
# ---------------------------------------------------------------------------

PUNCH_HEADERS = ["ID", "Nama", "Date", "Time"]
_PUNCH_WIDTHS = (15, 30, 15, 10)


def _xlsx_response(body: bytes, filename: str) -> Response:
    return Response(
        content=body,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def punch_rows(sheet: List[list]) -> List[tuple]:
    """`(id, date, time)` cells from a sheet whose first row names the columns."""
    if len(sheet) < 2:
        raise HTTPException(status_code=400, detail="file empty or invalid")
    header = sheet[0]
    cols = [column_index(header, name) for name in ("id", "date", "time")]
    if any(c is None for c in cols):
        raise HTTPException(status_code=400, detail="required columns (ID, Date, Time) not found")
    return [tuple(row[c] if c < len(row) else None for c in cols) for row in sheet[1:]]


def write_punch_days(cur, days: Dict[tuple, PunchDay]) -> int:
    """Upsert one PRESENT row per known user and day; returns the number written."""
    if not days:
        return 0
    cur.execute(
        "SELECT id FROM users WHERE id::text = ANY(%s)",
        (sorted({uid for uid, _ in days}),),
    )
    known = {str(r["id"]) for r in cur.fetchall()}
    written = 0
    for (uid, day), punch in sorted(days.items()):
        if uid not in known:
            continue
        cur.execute(
            """
            INSERT INTO attendances (id, user_id, date, is_holiday, status_enc, clock_in_enc, clock_out_enc)
            VALUES (gen_random_uuid(), %s, %s, false, %s, %s, %s)
            ON CONFLICT (user_id, date) DO UPDATE
            SET is_holiday = false,
                status_enc = EXCLUDED.status_enc,
                clock_in_enc = EXCLUDED.clock_in_enc,
                clock_out_enc = EXCLUDED.clock_out_enc,
                updated_at = now()
            """,
            (
                uid,
                day,
                encrypt(PRESENT_STATUS),
                encrypt_date(minutes_to_clock(day, punch.clock_in)),
                encrypt_date(minutes_to_clock(day, punch.clock_out)),
            ),
        )
        written += 1
    return written


@router.post("/attendance/import", dependencies=[Depends(require_admin)])
def import_attendance(file: UploadFile = File(...)):
    raw = file.file.read() or b""
    if not raw:
        raise HTTPException(status_code=400, detail="empty file")
    try:
        sheet = read_first_sheet(raw)
    except SpreadsheetError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from None
    days = aggregate_punches(punch_rows(sheet))
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                written = write_punch_days(cur, days)
    json_log("info", "attendance.imported", rows=len(sheet) - 1, days=len(days), written=written)
    return {"success": True, "count": written}


def export_rows(records: List[dict]) -> List[list]:
    """One punch row per stored clock-in and clock-out, in the import layout."""
    rows = [list(PUNCH_HEADERS)]
    for r in records:
        name = decrypt(r.get("name_enc")) or "-"
        for col in ("clock_in_enc", "clock_out_enc"):
            stamp = _naive(decrypt_date(r.get(col)))
            if stamp:
                rows.append([str(r["user_id"]), name, r["date"].isoformat(), stamp.strftime("%H:%M")])
    return rows


@router.get("/attendance/export", dependencies=[Depends(require_admin)])
def export_attendance(
    month: Optional[int] = Query(None, ge=1, le=12),
    year: Optional[int] = Query(None, ge=2000, le=2100),
):
    start = end = None
    title = "All Attendance"
    if month and year:
        start, end = month_bounds(month, year)
        title = f"Attendance {month}-{year}"
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT a.user_id, a.date, a.clock_in_enc, a.clock_out_enc, u.name_enc
                FROM attendances a
                JOIN users u ON u.id = a.user_id
                WHERE (%s::date IS NULL OR a.date >= %s)
                  AND (%s::date IS NULL OR a.date <= %s)
                ORDER BY a.date ASC, a.user_id ASC
                """,
                (start, start, end, end),
            )
            records = cur.fetchall()
    body = build_workbook(title, export_rows(records), _PUNCH_WIDTHS)
    return _xlsx_response(body, f"{title.replace(' ', '_')}.xlsx")


def template_rows(users: List[dict]) -> List[list]:
    rows = [
        list(PUNCH_HEADERS),
        ["kode_id_user", "nama user", "2026-02-01", "08:05"],
        ["kode_id_user", "nama user", "2026-02-01", "17:15"],
    ]
    rows.extend([str(u["id"]), decrypt(u.get("name_enc")) or "-", "", ""] for u in users)
    return rows


@router.get("/attendance/template", dependencies=[Depends(require_admin)])
def attendance_template():
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT id, name_enc FROM users ORDER BY id")
            users = cur.fetchall()
    body = build_workbook("Template Import Absensi", template_rows(users), _PUNCH_WIDTHS)
    return _xlsx_response(body, "attendance_template.xlsx")


# ---------------------------------------------------------------------------
# Payroll-period summaries
# ---------------------------------------------------------------------------

def _period_inputs(cur, start: date, end: date, user_id: Optional[str] = None):
    weekly = {r["day_of_week"]: r for r in load_work_schedules(cur)}
    customs = load_custom_schedules(cur, start, end)
    cur.execute(
        f"""
        SELECT {_ATTENDANCE_COLUMNS}
        FROM attendances
        WHERE date >= %s AND date <= %s
          AND (%s::uuid IS NULL OR user_id = %s::uuid)
        """,
        (start, end, user_id, user_id),
    )
    records: Dict[str, Dict[date, DayRecord]] = {}
    for r in cur.fetchall():
        a = decrypt_attendance(r)
        records.setdefault(str(a["user_id"]), {})[a["date"]] = DayRecord(
            status=a["status"],
            clock_in=a["clock_in"],
            clock_out=a["clock_out"],
            is_holiday=a["is_holiday"],
        )
    return weekly, customs, records


def _period_out(start: date, end: date) -> dict:
    return {
        "start_date": datetime.combine(start, time.min).isoformat(),
        "end_date": datetime.combine(end, time.max).isoformat(),
    }


def _resolve_period(salary_calc_day: int, month: int, year: int):
    try:
        return payroll_period(salary_calc_day, month, year)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from None


@router.get("/attendance/summary", dependencies=[Depends(require_admin)])
def payroll_period_summary(
    month: int = Query(..., ge=1, le=12),
    year: int = Query(..., ge=2000, le=2100),
    salary_calc_day: int = Query(DEFAULT_SALARY_CALC_DAY, ge=1, le=31),
):
    start, end = _resolve_period(salary_calc_day, month, year)
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT id, name_enc, username_enc, department_enc, role_enc FROM users ORDER BY id")
            users = cur.fetchall()
            weekly, customs, records = _period_inputs(cur, start, end)
    data = []
    for u in users:
        s = summarize_period(start, end, records.get(str(u["id"]), {}), weekly, customs)
        data.append({**_user_brief(u), **s.as_dict()})
    return {"success": True, "data": data, "period": _period_out(start, end)}


@router.get("/attendance/summary/me")
def my_payroll_period_summary(
    month: int = Query(..., ge=1, le=12),
    year: int = Query(..., ge=2000, le=2100),
    salary_calc_day: int = Query(DEFAULT_SALARY_CALC_DAY, ge=1, le=31),
    user=Depends(get_current_user),
):
    start, end = _resolve_period(salary_calc_day, month, year)
    uid = str(user["user_id"])
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                "SELECT id, name_enc, username_enc, department_enc, role_enc FROM users WHERE id = %s",
                (uid,),
            )
            u = cur.fetchone()
            if not u:
                raise HTTPException(status_code=404, detail="user not found")
            weekly, customs, records = _period_inputs(cur, start, end, user_id=uid)
    s = summarize_period(start, end, records.get(uid, {}), weekly, customs)
    return {"success": True, "data": {**_user_brief(u), **s.as_dict()}, "period": _period_out(start, end)}


# ---------------------------------------------------------------------------
# Public holidays
# ---------------------------------------------------------------------------

def _holidays_or_502(year: int) -> list:
    try:
        return fetch_public_holidays(year)
    except PublicApiError as exc:
        json_log("warning", "attendance.holiday_api_failed", year=year, error=str(exc))
        raise HTTPException(status_code=502, detail=str(exc)) from None


@router.get("/attendance/holidays", dependencies=[Depends(get_current_user)])
def public_holidays(year: int = Query(..., ge=2000, le=2100)):
    return {"year": year, "holidays": _holidays_or_502(year)}


@router.post("/attendance/holidays/apply", dependencies=[Depends(require_admin)])
def apply_public_holidays(year: int = Query(..., ge=2000, le=2100)):
    holidays = _holidays_or_502(year)
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                for h in holidays:
                    apply_holiday_to_all(cur, h["date"], True)
    json_log("info", "attendance.holidays_applied", year=year, count=len(holidays))
    return {"ok": True, "applied": len(holidays), "dates": [h["date"] for h in holidays]}
