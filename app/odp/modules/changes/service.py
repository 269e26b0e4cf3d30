from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from app.odp.modules.requirements.service import OPERATIONAL_REQUIREMENT
from app.odp.modules.setup.service import DOCUMENT
from app.odp.modules.waves.service import WaveStore
from app.odp.traits import DEPENDS_ON, REFERENCES, SATISFIES, SUPERSEDES, EntityTraits, RelationshipSpec
from app.odp.utils import (
    DRAFTING_GROUPS,
    check_choice,
    check_optional_text,
    check_path,
    check_required_text,
)

if TYPE_CHECKING:
    from app.odp.db import Transaction


OPERATIONAL_CHANGE = "OperationalChange"

VISIBILITIES = ("NM", "NETWORK")

MILESTONE_EVENT_TYPES = (
    "API_PUBLICATION",
    "API_TEST_DEPLOYMENT",
    "UI_TEST_DEPLOYMENT",
    "SERVICE_ACTIVATION",
    "API_DECOMMISSIONING",
    "OTHER",
)

MILESTONE_FIELDS = ("title", "description", "eventTypes", "waveId")

TEXT_FIELDS = ("purpose", "initialState", "finalState", "details", "privateNotes")

_waves = WaveStore()


def new_milestone_key() -> str:
    return f"ms_{uuid.uuid4()}"


def validate_milestone(milestone, position: str, tx: "Transaction") -> list[str]:
    """Field checks for one milestone; ``position`` prefixes every message."""
    if not isinstance(milestone, dict):
        return [f"{position} must be an object"]
    errors: list[str] = []

    title = milestone.get("title")
    if not isinstance(title, str) or not title.strip():
        errors.append(f"{position}.title is required")

    description = milestone.get("description")
    if description is not None and not isinstance(description, str):
        errors.append(f"{position}.description must be a string")

    event_types = milestone.get("eventTypes")
    if event_types is not None:
        if not isinstance(event_types, list):
            errors.append(f"{position}.eventTypes must be a list")
        else:
            for event_type in event_types:
                if event_type not in MILESTONE_EVENT_TYPES:
                    errors.append(f"{position}.eventTypes: invalid event type {event_type!r}")

    wave_id = milestone.get("waveId")
    if wave_id is not None:
        if not isinstance(wave_id, int) or isinstance(wave_id, bool):
            errors.append(f"{position}.waveId must be an integer id")
        elif not _waves.exists(wave_id, tx):
            errors.append(f"{position}.waveId: wave {wave_id} does not exist")
    return errors


def validate_milestones(milestones, tx: "Transaction", known_keys: set[str]) -> list[str]:
    """
    Check every milestone plus key ownership: a submitted milestoneKey must
    already belong to the current version, and may appear only once.
    """
    if milestones is None:
        return []
    if not isinstance(milestones, list):
        return ["milestones must be a list"]

    errors: list[str] = []
    seen: set[str] = set()
    for i, milestone in enumerate(milestones):
        position = f"milestones[{i}]"
        errors.extend(validate_milestone(milestone, position, tx))
        if not isinstance(milestone, dict):
            continue
        key = milestone.get("milestoneKey")
        if key is None:
            continue
        if not isinstance(key, str) or not key:
            errors.append(f"{position}.milestoneKey must be a non-empty string")
            continue
        if key not in known_keys:
            errors.append(f"{position}.milestoneKey {key!r} is unknown")
        elif key in seen:
            errors.append(f"{position}.milestoneKey {key!r} is duplicated")
        seen.add(key)
    return errors


def _validate_change(payload: dict, tx: "Transaction", known_keys: set[str]) -> list[str]:
    errors: list[str] = []
    check_required_text(payload, "title", errors)
    check_choice(payload, "visibility", VISIBILITIES, errors, required=True)
    check_choice(payload, "drg", DRAFTING_GROUPS, errors, required=False)
    check_optional_text(payload, TEXT_FIELDS, errors)
    check_path(payload, errors)
    errors.extend(validate_milestones(payload.get("milestones"), tx, known_keys))
    return errors


def validate_change_create(payload: dict, tx: "Transaction") -> list[str]:
    return _validate_change(payload, tx, set())


def validate_change_update(payload: dict, tx: "Transaction", current: dict) -> list[str]:
    return _validate_change(payload, tx, milestone_keys(current))


def milestone_keys(change: dict) -> set[str]:
    return {m["milestoneKey"] for m in change.get("milestones") or [] if m.get("milestoneKey")}


def normalize_change_content(content: dict, current_content: dict | None) -> dict:
    """Issue keys for new milestones; keyed ones are carried over verbatim."""
    milestones = []
    for m in content.get("milestones") or []:
        milestones.append(
            {
                "milestoneKey": m.get("milestoneKey") or new_milestone_key(),
                "title": m["title"].strip(),
                "description": m.get("description"),
                "eventTypes": list(dict.fromkeys(m.get("eventTypes") or [])),
                "waveId": m.get("waveId"),
            }
        )
    content = dict(content)
    content["milestones"] = milestones
    return content


def change_wave_anchor(content: dict) -> list[int]:
    return [m["waveId"] for m in content.get("milestones") or [] if m.get("waveId") is not None]


CHANGE_TRAITS = EntityTraits(
    item_type=OPERATIONAL_CHANGE,
    content_fields=(
        "title",
        "visibility",
        "purpose",
        "initialState",
        "finalState",
        "details",
        "privateNotes",
        "path",
        "drg",
        "milestones",
    ),
    relationships=(
        RelationshipSpec("satisfiesRequirements", SATISFIES, OPERATIONAL_REQUIREMENT, "requirement"),
        RelationshipSpec("supersedsRequirements", SUPERSEDES, OPERATIONAL_REQUIREMENT, "requirement"),
        RelationshipSpec("dependsOnChanges", DEPENDS_ON, OPERATIONAL_CHANGE, "change"),
        RelationshipSpec("referencesDocuments", REFERENCES, DOCUMENT, "document", id_key="documentId"),
    ),
    list_fields=frozenset({"path", "milestones"}),
    validate_create=validate_change_create,
    validate_update=validate_change_update,
    normalize_content=normalize_change_content,
    wave_anchor=change_wave_anchor,
    keep_unanchored=False,
)


def changes_satisfying(requirement_id: int, tx: "Transaction") -> list[dict]:
    """Changes whose latest version satisfies the given requirement."""
    from app.odp.stores import change_store, requirement_store

    requirement_store.get_by_id(requirement_id, tx)
    return change_store.find_referencing(SATISFIES, OPERATIONAL_REQUIREMENT, requirement_id, tx)


def changes_superseding(requirement_id: int, tx: "Transaction") -> list[dict]:
    from app.odp.stores import change_store, requirement_store

    requirement_store.get_by_id(requirement_id, tx)
    return change_store.find_referencing(SUPERSEDES, OPERATIONAL_REQUIREMENT, requirement_id, tx)
