from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import select

from app.odp.errors import ValidationError

from .models import SetupElement

if TYPE_CHECKING:
    from app.odp.db import Transaction


STAKEHOLDER_CATEGORY = "StakeholderCategory"
DATA_CATEGORY = "DataCategory"
SERVICE = "Service"
REGULATORY_ASPECT = "RegulatoryAspect"
DOCUMENT = "Document"

SETUP_KINDS = (STAKEHOLDER_CATEGORY, DATA_CATEGORY, SERVICE, REGULATORY_ASPECT, DOCUMENT)


def _to_dict(el: SetupElement) -> dict:
    return {
        "id": el.id,
        "name": el.name,
        "description": el.description,
        "parentId": el.parent_id,
    }


class SetupStore:
    """Store for one kind of setup element."""

    def __init__(self, kind: str) -> None:
        if kind not in SETUP_KINDS:
            raise ValueError(f"Unknown setup kind: {kind!r}")
        self.kind = kind

    def exists(self, element_id: int, tx: "Transaction") -> bool:
        el = tx.get(SetupElement, element_id)
        return el is not None and el.kind == self.kind

    def create(self, data: dict, tx: "Transaction") -> dict:
        errors = []
        name = (data.get("name") or "").strip()
        if not name:
            errors.append("name is required")
        parent_id = data.get("parentId")
        if parent_id is not None and not self.exists(parent_id, tx):
            errors.append(f"parent {self.kind} {parent_id} does not exist")
        if errors:
            raise ValidationError(errors)

        el = SetupElement(
            kind=self.kind,
            name=name,
            description=(data.get("description") or "").strip() or None,
            parent_id=parent_id,
            created_by=tx.get_user_id(),
        )
        tx.add(el)
        tx.flush()
        return _to_dict(el)

    def get(self, element_id: int, tx: "Transaction") -> dict | None:
        el = tx.get(SetupElement, element_id)
        if el is None or el.kind != self.kind:
            return None
        return _to_dict(el)

    def list_all(self, tx: "Transaction") -> list[dict]:
        rows = tx.run(
            select(SetupElement).where(SetupElement.kind == self.kind).order_by(SetupElement.name.asc())
        ).scalars()
        return [_to_dict(el) for el in rows]
