"""
Attendance arithmetic for payroll periods.

Day-of-week numbering follows the stored work schedule: 0 = Sunday ... 6 = Saturday.
Everything here is pure; routers load rows and pass them in already decrypted.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

SUNDAY = 0
DEFAULT_SALARY_CALC_DAY = 25

PERMIT_STATUSES = ("PERMIT", "LEAVE", "SICK")
PRESENT_STATUS = "PRESENT"
STATUSES = (PRESENT_STATUS, "ABSENT") + PERMIT_STATUSES

DEFAULT_WORK_SCHEDULE = [
    {"day_of_week": 0, "day_name": "Minggu", "start_time": None, "end_time": None, "is_work_day": False},
    {"day_of_week": 1, "day_name": "Senin", "start_time": "08:00", "end_time": "17:00", "is_work_day": True},
    {"day_of_week": 2, "day_name": "Selasa", "start_time": "08:00", "end_time": "17:00", "is_work_day": True},
    {"day_of_week": 3, "day_name": "Rabu", "start_time": "08:00", "end_time": "17:00", "is_work_day": True},
    {"day_of_week": 4, "day_name": "Kamis", "start_time": "08:00", "end_time": "17:00", "is_work_day": True},
    {"day_of_week": 5, "day_name": "Jumat", "start_time": "08:00", "end_time": "17:00", "is_work_day": True},
    {"day_of_week": 6, "day_name": "Sabtu", "start_time": None, "end_time": None, "is_work_day": False},
]


def day_of_week(d: date) -> int:
    return (d.weekday() + 1) % 7


def parse_hhmm(value: Optional[str]) -> Optional[time]:
    if not value:
        return None
    parts = str(value).strip().split(":")
    if len(parts) < 2:
        return None
    try:
        return time(int(parts[0]), int(parts[1]))
    except ValueError:
        return None


def combine_clock(day: date, hhmm: Optional[str]) -> Optional[datetime]:
    t = parse_hhmm(hhmm)
    return datetime.combine(day, t) if t else None


def keeps_clock_times(status: Optional[str]) -> bool:
    return not status or status == PRESENT_STATUS


def payroll_period(salary_calc_day: int, month: int, year: int, today: Optional[date] = None):
    """
    Period from `salary_calc_day` of the previous month to `salary_calc_day - 1` of
    `month`, with the end capped at today. Out-of-range days roll over into the next
    month (day 31 of February lands in March).
    """
    if not 1 <= month <= 12:
        raise ValueError("month must be 1-12")
    if not 1 <= salary_calc_day <= 31:
        raise ValueError("salary_calc_day must be 1-31")
    prev_year, prev_month = (year - 1, 12) if month == 1 else (year, month - 1)
    start = date(prev_year, prev_month, 1) + timedelta(days=salary_calc_day - 1)
    end = date(year, month, 1) + timedelta(days=salary_calc_day - 2)
    today = today or date.today()
    if end > today:
        end = today
    return start, end


def month_bounds(month: int, year: int):
    start = date(year, month, 1)
    nxt = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
    return start, nxt - timedelta(days=1)


@dataclass
class CustomSchedule:
    start_date: date
    end_date: date
    start_time: Optional[str] = None
    end_time: Optional[str] = None

    def covers(self, d: date) -> bool:
        return self.start_date <= d <= self.end_date


@dataclass
class DayRecord:
    status: Optional[str] = None
    clock_in: Optional[datetime] = None
    clock_out: Optional[datetime] = None
    is_holiday: bool = False


@dataclass
class PeriodSummary:
    total_work_days: int = 0
    late_count: int = 0
    late_minutes: int = 0
    absent_count: int = 0
    permit_count: int = 0
    no_clock_out_count: int = 0

    def as_dict(self) -> dict:
        return {
            "total_work_days": self.total_work_days,
            "late_count": self.late_count,
            "late_minutes": self.late_minutes,
            "absent_count": self.absent_count,
            "permit_count": self.permit_count,
            "no_clock_out_count": self.no_clock_out_count,
        }


def _find_custom(customs: Iterable[CustomSchedule], d: date) -> Optional[CustomSchedule]:
    for cs in customs:
        if cs.covers(d):
            return cs
    return None


def summarize_period(
    start: date,
    end: date,
    records: Dict[date, DayRecord],
    weekly: Dict[int, dict],
    customs: List[CustomSchedule],
) -> PeriodSummary:
    """
    Count lateness, absences and permits for one user.

    `weekly` maps day-of-week to a schedule row (`is_work_day`, `start_time`).
    Sundays and holidays count toward `total_work_days` but are never late or absent.
    """
    s = PeriodSummary()
    d = start
    while d <= end:
        dow = day_of_week(d)
        rec = records.get(d)
        s.total_work_days += 1

        if dow == SUNDAY or (rec is not None and rec.is_holiday):
            d += timedelta(days=1)
            continue

        custom = _find_custom(customs, d)
        sched = weekly.get(dow) or {}
        is_work_day = True if custom else bool(sched.get("is_work_day"))

        if is_work_day:
            if rec is None:
                s.absent_count += 1
            elif rec.status in PERMIT_STATUSES:
                s.permit_count += 1
            elif keeps_clock_times(rec.status):
                effective_start = (custom.start_time if custom else None) or sched.get("start_time")
                scheduled = combine_clock(d, effective_start)
                if rec.clock_in and scheduled and rec.clock_in > scheduled:
                    s.late_count += 1
                    s.late_minutes += int((rec.clock_in - scheduled).total_seconds() // 60)
                if rec.clock_in and not rec.clock_out:
                    s.no_clock_out_count += 1
        d += timedelta(days=1)
    return s


# ---------------------------------------------------------------------------
# Raw punch import
# ---------------------------------------------------------------------------

# Punches before noon are clock-ins, the rest clock-outs.
CLOCK_OUT_FROM_MINUTE = 12 * 60
# Day zero of spreadsheet serial dates.
_SERIAL_EPOCH = date(1899, 12, 30)


def punch_date(value) -> Optional[date]:
    """A spreadsheet date cell: datetime, date, serial number or ISO-ish text."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return _SERIAL_EPOCH + timedelta(days=int(value))
    text = str(value).strip()
    for fmt in ("%Y-%m-%d", "%Y/%m/%d", "%d/%m/%Y", "%d-%m-%Y"):
        try:
            return datetime.strptime(text[:10], fmt).date()
        except ValueError:
            continue
    return None


def punch_minutes(value) -> Optional[int]:
    """Minutes after midnight from a time cell: time, datetime, day fraction or "HH:MM"."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        value = value.time()
    if isinstance(value, time):
        return value.hour * 60 + value.minute
    if isinstance(value, timedelta):
        return int(value.total_seconds() // 60) % (24 * 60)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return min(round((value % 1) * 24 * 60), 24 * 60 - 1)
    t = parse_hhmm(str(value))
    return t.hour * 60 + t.minute if t else None


@dataclass
class PunchDay:
    clock_in: Optional[int] = None
    clock_out: Optional[int] = None

    def add(self, minutes: int) -> None:
        if minutes < CLOCK_OUT_FROM_MINUTE:
            self.clock_in = minutes if self.clock_in is None else min(self.clock_in, minutes)
        else:
            self.clock_out = minutes if self.clock_out is None else max(self.clock_out, minutes)


def aggregate_punches(rows: Iterable[tuple]) -> Dict[Tuple[str, date], PunchDay]:
    """
    Fold `(user_id, date, time)` punch rows into one entry per user and day: the
    earliest punch before noon and the latest from noon on. Rows with a blank or
    unreadable cell are skipped.
    """
    out: Dict[Tuple[str, date], PunchDay] = {}
    for user_id, date_val, time_val in rows:
        uid = str(user_id).strip() if user_id is not None else ""
        day = punch_date(date_val)
        minutes = punch_minutes(time_val)
        if not uid or day is None or minutes is None:
            continue
        out.setdefault((uid, day), PunchDay()).add(minutes)
    return out


def minutes_to_clock(day: date, minutes: Optional[int]) -> Optional[datetime]:
    if minutes is None:
        return None
    return datetime.combine(day, time(minutes // 60, minutes % 60))
