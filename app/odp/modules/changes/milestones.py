"""
Milestones embedded in OperationalChange versions.

A milestone has no version of its own: every add/update/delete rebuilds the
parent's milestone list and writes a new parent version through the ordinary
compare-and-swap update. The ``milestoneKey`` is what stays stable across
those versions.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from app.odp.errors import NotFoundError, ValidationError
from app.odp.modules.waves.service import WaveStore
from app.odp.modules.waves.timeline import is_at_or_after, load_wave_index, sort_milestones

from .service import MILESTONE_FIELDS, OPERATIONAL_CHANGE

if TYPE_CHECKING:
    from app.odp.db import Transaction

logger = logging.getLogger(__name__)

_waves = WaveStore()


def _store():
    from app.odp.stores import change_store

    return change_store


def _change_ref(change: dict) -> dict:
    return {"itemId": change["itemId"], "versionId": change["versionId"], "version": change["version"]}


def _milestone_fields(data: dict) -> dict:
    if "milestoneKey" in data:
        raise ValidationError(["milestoneKey is assigned by the server and cannot be submitted"])
    return {name: data[name] for name in MILESTONE_FIELDS if name in data}


def _find(change: dict, milestone_key: str) -> tuple[int, dict]:
    for i, m in enumerate(change.get("milestones") or []):
        if m.get("milestoneKey") == milestone_key:
            return i, m
    raise NotFoundError(f"Milestone {milestone_key} not found in {OPERATIONAL_CHANGE} {change['itemId']}")


def _submit(change: dict, milestones: list[dict], expected_version_id: int, tx: "Transaction") -> dict:
    store = _store()
    payload = store.payload_from_view(change)
    payload["milestones"] = milestones
    return store.update(change["itemId"], payload, expected_version_id, tx)


def list_milestones(
    change_id: int,
    tx: "Transaction",
    baseline_id: int | None = None,
    from_wave_id: int | None = None,
) -> list[dict]:
    """
    Milestones of the change (latest, or as captured by a baseline) in
    chronological order. With ``from_wave_id`` only milestones targeting that
    wave or a later one are returned.
    """
    reference = _waves.require(from_wave_id, tx) if from_wave_id is not None else None
    change = _store().get_by_id(change_id, tx, baseline_id=baseline_id)
    waves_by_id = load_wave_index(tx)

    milestones = change.get("milestones") or []
    if reference is not None:
        milestones = [
            m
            for m in milestones
            if m.get("waveId") in waves_by_id and is_at_or_after(waves_by_id[m["waveId"]], reference)
        ]
    return sort_milestones(milestones, waves_by_id)


def get_milestone(
    change_id: int,
    milestone_key: str,
    tx: "Transaction",
    baseline_id: int | None = None,
    from_wave_id: int | None = None,
) -> dict:
    for m in list_milestones(change_id, tx, baseline_id=baseline_id, from_wave_id=from_wave_id):
        if m["milestoneKey"] == milestone_key:
            return m
    raise NotFoundError(f"Milestone {milestone_key} not found in {OPERATIONAL_CHANGE} {change_id}")


def milestones_by_wave(wave_id: int, tx: "Transaction", baseline_id: int | None = None) -> list[dict]:
    """Every milestone targeting the wave, tagged with its change."""
    _waves.require(wave_id, tx)
    found = []
    for change in _store().get_all(tx, baseline_id=baseline_id):
        for m in change.get("milestones") or []:
            if m.get("waveId") == wave_id:
                found.append({**m, "change": _change_ref(change)})
    found.sort(key=lambda m: (m.get("title") or "", m["change"]["itemId"]))
    return found


def add_milestone(change_id: int, data: dict, expected_version_id: int, tx: "Transaction") -> dict:
    change = _store().get_by_id(change_id, tx)
    before = {m["milestoneKey"] for m in change.get("milestones") or []}

    milestones = list(change.get("milestones") or [])
    milestones.append(_milestone_fields(data))
    updated = _submit(change, milestones, expected_version_id, tx)

    added = [m for m in updated["milestones"] if m["milestoneKey"] not in before]
    # exactly one key is new: the one issued for the milestone just appended
    milestone = added[0]
    logger.info("Added milestone %s to %s %s", milestone["milestoneKey"], OPERATIONAL_CHANGE, change_id)
    return {"milestone": milestone, "change": _change_ref(updated)}


def update_milestone(
    change_id: int,
    milestone_key: str,
    data: dict,
    expected_version_id: int,
    tx: "Transaction",
) -> dict:
    """Fields absent from ``data`` keep their current value."""
    change = _store().get_by_id(change_id, tx)
    index, current = _find(change, milestone_key)

    milestones = list(change.get("milestones") or [])
    milestones[index] = {**current, **_milestone_fields(data), "milestoneKey": milestone_key}
    updated = _submit(change, milestones, expected_version_id, tx)

    _, milestone = _find(updated, milestone_key)
    logger.info("Updated milestone %s of %s %s", milestone_key, OPERATIONAL_CHANGE, change_id)
    return {"milestone": milestone, "change": _change_ref(updated)}


def delete_milestone(change_id: int, milestone_key: str, expected_version_id: int, tx: "Transaction") -> dict:
    change = _store().get_by_id(change_id, tx)
    index, _ = _find(change, milestone_key)

    milestones = list(change.get("milestones") or [])
    del milestones[index]
    updated = _submit(change, milestones, expected_version_id, tx)

    logger.info("Deleted milestone %s of %s %s", milestone_key, OPERATIONAL_CHANGE, change_id)
    return {"change": _change_ref(updated)}
