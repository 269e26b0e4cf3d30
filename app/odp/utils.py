from __future__ import annotations

from datetime import date, datetime, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime(timezone=False) columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def isoformat(value: datetime | date | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def parse_iso_date(s: str | None) -> date | None:
    if not s:
        return None
    s = s.strip()
    if not s:
        return None
    return date.fromisoformat(s)


DRAFTING_GROUPS = (
    "4DT",
    "AIRPORT",
    "ASM_ATFCM",
    "CRISIS_FAAS",
    "FLOW",
    "IDL",
    "NM_B2B",
    "NMUI",
    "PERF",
    "RRT",
    "TCF",
)


def check_required_text(payload: dict, field: str, errors: list[str]) -> None:
    value = payload.get(field)
    if value is None or (isinstance(value, str) and not value.strip()):
        errors.append(f"{field} is required")
    elif not isinstance(value, str):
        errors.append(f"{field} must be a string")


def check_optional_text(payload: dict, fields: tuple[str, ...], errors: list[str]) -> None:
    for field in fields:
        value = payload.get(field)
        if value is not None and not isinstance(value, str):
            errors.append(f"{field} must be a string")


def check_choice(payload: dict, field: str, choices: tuple[str, ...], errors: list[str], *, required: bool) -> None:
    value = payload.get(field)
    if value is None:
        if required:
            errors.append(f"{field} is required")
        return
    if value not in choices:
        errors.append(f"{field} must be one of {', '.join(choices)}")


def check_path(payload: dict, errors: list[str]) -> None:
    value = payload.get("path")
    if value is None:
        return
    if not isinstance(value, list) or not all(isinstance(p, str) for p in value):
        errors.append("path must be a list of strings")
