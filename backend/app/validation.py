from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BeforeValidator, StringConstraints


def _to_upper_str(v):
    if v is None:
        return v
    return str(v).strip().upper()


# Canonical values mirror the CHECK constraints in `backend/db/migrations/001_init.sql`.
ComponentType = Annotated[Literal["ADDITION", "DEDUCTION"], BeforeValidator(_to_upper_str)]
ProjectStatus = Annotated[
    Literal["PENDING", "IN_PROGRESS", "COMPLETED", "CANCELLED"],
    BeforeValidator(_to_upper_str),
]


# Work-schedule clock values are stored as plain "HH:MM" strings.
ClockTime = Annotated[
    str,
    BeforeValidator(lambda v: v.strip() if isinstance(v, str) else v),
    StringConstraints(pattern=r"^([01]\d|2[0-3]):[0-5]\d$"),
]
