from __future__ import annotations

import logging
import re
from datetime import date
from typing import TYPE_CHECKING

from sqlalchemy import select

from app.odp.errors import NotFoundError, ValidationError
from app.odp.utils import isoformat

from .models import Wave
from .timeline import wave_sort_key

if TYPE_CHECKING:
    from app.odp.db import Transaction

logger = logging.getLogger(__name__)

YEAR_MIN = 2025  # inclusive
YEAR_MAX = 2124  # exclusive
QUARTER_MIN = 1
QUARTER_MAX = 4

_RFC3339_FULL_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def wave_name(year: int, quarter: int) -> str:
    return f"{year}.{quarter}"


def _as_int(value) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and re.fullmatch(r"\s*-?\d+\s*", value):
        return int(value)
    return None


def validate_wave_payload(payload: dict) -> tuple[dict, list[str]]:
    """Validate wave creation payload. Returns (cleaned values, errors)."""
    errors: list[str] = []
    cleaned: dict = {}

    year = _as_int(payload.get("year"))
    if payload.get("year") is None:
        errors.append("year is required")
    elif year is None:
        errors.append("year must be an integer")
    elif not (YEAR_MIN <= year < YEAR_MAX):
        errors.append(f"year must be in range [{YEAR_MIN}, {YEAR_MAX}[")
    else:
        cleaned["year"] = year

    quarter = _as_int(payload.get("quarter"))
    if payload.get("quarter") is None:
        errors.append("quarter is required")
    elif quarter is None:
        errors.append("quarter must be an integer")
    elif not (QUARTER_MIN <= quarter <= QUARTER_MAX):
        errors.append(f"quarter must be in range [{QUARTER_MIN}, {QUARTER_MAX}]")
    else:
        cleaned["quarter"] = quarter

    raw_date = payload.get("date")
    if not raw_date:
        errors.append("date is required")
    elif not isinstance(raw_date, str) or not _RFC3339_FULL_DATE.match(raw_date):
        errors.append("date must be in YYYY-MM-DD format")
    else:
        try:
            cleaned["date"] = date.fromisoformat(raw_date)
        except ValueError:
            errors.append("date must be a valid calendar date")

    return cleaned, errors


def wave_to_dict(wave: Wave) -> dict:
    return {
        "id": wave.id,
        "year": wave.year,
        "quarter": wave.quarter,
        "date": isoformat(wave.date),
        "name": wave.name,
    }


class WaveStore:
    def exists(self, wave_id: int, tx: "Transaction") -> bool:
        return tx.get(Wave, wave_id) is not None

    def require(self, wave_id: int, tx: "Transaction") -> Wave:
        wave = tx.get(Wave, wave_id)
        if wave is None:
            raise NotFoundError(f"Wave {wave_id} not found")
        return wave

    def create_wave(self, payload: dict, tx: "Transaction") -> dict:
        cleaned, errors = validate_wave_payload(payload)
        if not errors:
            dup = tx.run(
                select(Wave.id).where(Wave.year == cleaned["year"], Wave.quarter == cleaned["quarter"])
            ).first()
            if dup is not None:
                errors.append(f"wave {wave_name(cleaned['year'], cleaned['quarter'])} already exists")
        if errors:
            raise ValidationError(errors)

        wave = Wave(
            year=cleaned["year"],
            quarter=cleaned["quarter"],
            date=cleaned["date"],
            name=wave_name(cleaned["year"], cleaned["quarter"]),
            created_by=tx.get_user_id(),
        )
        tx.add(wave)
        tx.flush()
        logger.info("Created wave %s (id=%s)", wave.name, wave.id)
        return wave_to_dict(wave)

    def get_wave(self, wave_id: int, tx: "Transaction") -> dict:
        return wave_to_dict(self.require(wave_id, tx))

    def list_waves(self, tx: "Transaction") -> list[dict]:
        waves = sorted(tx.run(select(Wave)).scalars(), key=wave_sort_key)
        return [wave_to_dict(w) for w in waves]
