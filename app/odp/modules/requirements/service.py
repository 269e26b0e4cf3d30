from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import select

from app.odp.models import Item, ItemVersion
from app.odp.modules.setup.service import (
    DATA_CATEGORY,
    DOCUMENT,
    REGULATORY_ASPECT,
    SERVICE,
    STAKEHOLDER_CATEGORY,
)
from app.odp.traits import (
    DEPENDS_ON,
    IMPACTS,
    IMPLEMENTS,
    REFERENCES,
    REFINES,
    EntityTraits,
    RelationshipSpec,
)
from app.odp.utils import (
    DRAFTING_GROUPS,
    check_choice,
    check_optional_text,
    check_path,
    check_required_text,
)

if TYPE_CHECKING:
    from app.odp.db import Transaction


OPERATIONAL_REQUIREMENT = "OperationalRequirement"

REQUIREMENT_TYPES = ("ON", "OR")

TEXT_FIELDS = ("statement", "rationale", "flows", "privateNotes")


def _latest_requirement_type(requirement_id: int, tx: "Transaction") -> str | None:
    content = tx.run(
        select(ItemVersion.content)
        .join(Item, Item.latest_version_id == ItemVersion.id)
        .where(Item.id == requirement_id, Item.item_type == OPERATIONAL_REQUIREMENT)
    ).scalar_one_or_none()
    if content is None:
        return None
    return content.get("type")


def validate_requirement(payload: dict, tx: "Transaction") -> list[str]:
    errors: list[str] = []
    check_required_text(payload, "title", errors)
    check_choice(payload, "type", REQUIREMENT_TYPES, errors, required=True)
    check_choice(payload, "drg", DRAFTING_GROUPS, errors, required=False)
    check_optional_text(payload, TEXT_FIELDS, errors)
    check_path(payload, errors)

    # An ON (need) sits above the ORs that implement it; it may not refine one.
    parents = payload.get("refinesParents")
    if payload.get("type") == "ON" and isinstance(parents, list):
        for parent_id in parents:
            if isinstance(parent_id, int) and _latest_requirement_type(parent_id, tx) == "OR":
                errors.append(f"refinesParents: ON requirement cannot refine OR requirement {parent_id}")

    # implementedONs link an OR (how) to the ONs (what) it realises.
    implemented = payload.get("implementedONs")
    if isinstance(implemented, list) and implemented:
        if payload.get("type") != "OR":
            errors.append("implementedONs: only OR requirements can implement ON requirements")
        else:
            for on_id in implemented:
                if not isinstance(on_id, int) or isinstance(on_id, bool):
                    continue
                on_type = _latest_requirement_type(on_id, tx)
                if on_type is not None and on_type != "ON":
                    errors.append(f"implementedONs: requirement {on_id} is {on_type}, not ON")
    return errors


REQUIREMENT_TRAITS = EntityTraits(
    item_type=OPERATIONAL_REQUIREMENT,
    content_fields=("title", "type", "statement", "rationale", "flows", "privateNotes", "path", "drg"),
    relationships=(
        RelationshipSpec("refinesParents", REFINES, OPERATIONAL_REQUIREMENT, "requirement"),
        RelationshipSpec("impactsStakeholderCategories", IMPACTS, STAKEHOLDER_CATEGORY, "stakeholder category"),
        RelationshipSpec("impactsData", IMPACTS, DATA_CATEGORY, "data category"),
        RelationshipSpec("impactsServices", IMPACTS, SERVICE, "service"),
        RelationshipSpec("impactsRegulatoryAspects", IMPACTS, REGULATORY_ASPECT, "regulatory aspect"),
        RelationshipSpec("dependsOnRequirements", DEPENDS_ON, OPERATIONAL_REQUIREMENT, "requirement"),
        RelationshipSpec("implementedONs", IMPLEMENTS, OPERATIONAL_REQUIREMENT, "requirement"),
        RelationshipSpec("referencesDocuments", REFERENCES, DOCUMENT, "document", id_key="documentId"),
    ),
    list_fields=frozenset({"path"}),
    validate_create=validate_requirement,
    validate_update=lambda payload, tx, current: validate_requirement(payload, tx),
    keep_unanchored=True,
)


def requirement_children(requirement_id: int, tx: "Transaction") -> list[dict]:
    """Requirements whose latest version refines the given one."""
    from app.odp.stores import requirement_store

    requirement_store.get_by_id(requirement_id, tx)
    return requirement_store.find_referencing(REFINES, OPERATIONAL_REQUIREMENT, requirement_id, tx)


def requirement_dependents(requirement_id: int, tx: "Transaction") -> list[dict]:
    from app.odp.stores import requirement_store

    requirement_store.get_by_id(requirement_id, tx)
    return requirement_store.find_referencing(DEPENDS_ON, OPERATIONAL_REQUIREMENT, requirement_id, tx)


def requirement_implementers(requirement_id: int, tx: "Transaction") -> list[dict]:
    """OR requirements whose latest version implements the given ON."""
    from app.odp.stores import requirement_store

    requirement_store.get_by_id(requirement_id, tx)
    return requirement_store.find_referencing(IMPLEMENTS, OPERATIONAL_REQUIREMENT, requirement_id, tx)
