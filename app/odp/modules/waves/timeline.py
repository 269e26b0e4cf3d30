"""
Total order over waves: (year, quarter).

The exact date is informational; two waves never share a (year, quarter).
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Iterable

from sqlalchemy import select

from .models import Wave

if TYPE_CHECKING:
    from app.odp.db import Transaction


def wave_sort_key(wave: Wave) -> tuple[int, int]:
    return (wave.year, wave.quarter)


def compare_waves(a: Wave, b: Wave) -> int:
    ka, kb = wave_sort_key(a), wave_sort_key(b)
    if ka < kb:
        return -1
    if ka > kb:
        return 1
    return 0


def is_at_or_after(wave: Wave, reference: Wave) -> bool:
    return wave_sort_key(wave) >= wave_sort_key(reference)


def load_wave_index(tx: "Transaction") -> dict[int, Wave]:
    return {w.id: w for w in tx.run(select(Wave)).scalars()}


def anchored_at_or_after(wave_ids: Iterable[int], reference: Wave, waves_by_id: dict[int, Wave]) -> bool:
    """True when at least one of the given waves is at or after the reference wave."""
    for wave_id in wave_ids:
        wave = waves_by_id.get(wave_id)
        if wave is not None and is_at_or_after(wave, reference):
            return True
    return False


def sort_milestones(milestones: list[dict], waves_by_id: dict[int, Wave]) -> list[dict]:
    """
    Chronological display order: wave-bound milestones by wave, then title;
    milestones without a wave go last.
    """

    def key(m: dict) -> tuple:
        wave = waves_by_id.get(m.get("waveId")) if m.get("waveId") is not None else None
        if wave is None:
            return (1, 0, 0, m.get("title") or "")
        return (0, wave.year, wave.quarter, m.get("title") or "")

    return sorted(milestones, key=key)
