from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select

from app.odp.models import RelationshipAuditEntry
from app.odp.utils import isoformat, utcnow

if TYPE_CHECKING:
    from app.odp.db import Transaction

ADD = "ADD"
REMOVE = "REMOVE"


def record_relationship_change(
    tx: "Transaction",
    *,
    action: str,
    relationship_type: str,
    item_id: int,
    source_version_id: int,
    target_type: str,
    target_id: int,
) -> RelationshipAuditEntry:
    """
    Append-only audit entry helper.

    Written in the caller's transaction so the ledger cannot diverge from the
    edges it describes.
    """
    if action not in (ADD, REMOVE):
        raise ValueError(f"Unknown audit action: {action!r}")
    entry = RelationshipAuditEntry(
        timestamp=utcnow(),
        user_id=tx.get_user_id(),
        action=action,
        relationship_type=relationship_type,
        item_id=item_id,
        source_version_id=source_version_id,
        target_type=target_type,
        target_id=target_id,
    )
    tx.add(entry)
    return entry


def entry_to_dict(entry: RelationshipAuditEntry) -> dict:
    return {
        "id": entry.id,
        "timestamp": isoformat(entry.timestamp),
        "userId": entry.user_id,
        "action": entry.action,
        "relationshipType": entry.relationship_type,
        "itemId": entry.item_id,
        "sourceVersionId": entry.source_version_id,
        "targetType": entry.target_type,
        "targetId": entry.target_id,
    }


def _chronological(stmt):
    return stmt.order_by(RelationshipAuditEntry.timestamp.asc(), RelationshipAuditEntry.id.asc())


def audit_trail_for_item(item_id: int, tx: "Transaction") -> list[dict]:
    rows = tx.run(
        _chronological(select(RelationshipAuditEntry).where(RelationshipAuditEntry.item_id == item_id))
    ).scalars()
    return [entry_to_dict(e) for e in rows]


def audit_trail_for_relationship(
    item_id: int,
    relationship_type: str,
    target_type: str,
    target_id: int,
    tx: "Transaction",
) -> list[dict]:
    rows = tx.run(
        _chronological(
            select(RelationshipAuditEntry).where(
                RelationshipAuditEntry.item_id == item_id,
                RelationshipAuditEntry.relationship_type == relationship_type,
                RelationshipAuditEntry.target_type == target_type,
                RelationshipAuditEntry.target_id == target_id,
            )
        )
    ).scalars()
    return [entry_to_dict(e) for e in rows]


def relationships_at(item_id: int, at: "datetime", tx: "Transaction") -> dict[str, dict[str, list[int]]]:
    """
    Replay the ledger up to ``at`` (inclusive) and return the outgoing edges the
    item had at that moment, as {relationship_type: {target_type: [ids]}}.

    The last action recorded for a (type, target) pair wins.
    """
    if at.tzinfo is not None:
        at = at.astimezone(timezone.utc).replace(tzinfo=None)
    rows = tx.run(
        _chronological(
            select(RelationshipAuditEntry).where(
                RelationshipAuditEntry.item_id == item_id,
                RelationshipAuditEntry.timestamp <= at,
            )
        )
    ).scalars()

    final: dict[tuple[str, str, int], str] = {}
    for entry in rows:
        final[(entry.relationship_type, entry.target_type, entry.target_id)] = entry.action

    state: dict[str, dict[str, list[int]]] = {}
    for (rel_type, target_type, target_id), action in sorted(final.items()):
        if action != ADD:
            continue
        state.setdefault(rel_type, {}).setdefault(target_type, []).append(target_id)
    return state


def audit_statistics(item_id: int, tx: "Transaction") -> dict[str, Any]:
    row = tx.run(
        select(
            func.count(RelationshipAuditEntry.id),
            func.count(func.distinct(RelationshipAuditEntry.relationship_type)),
            func.min(RelationshipAuditEntry.timestamp),
            func.max(RelationshipAuditEntry.timestamp),
        ).where(RelationshipAuditEntry.item_id == item_id)
    ).one()
    contributors = tx.run(
        select(RelationshipAuditEntry.user_id)
        .where(RelationshipAuditEntry.item_id == item_id)
        .distinct()
        .order_by(RelationshipAuditEntry.user_id.asc())
    ).scalars()
    return {
        "totalChanges": row[0] or 0,
        "relationshipTypes": row[1] or 0,
        "contributors": list(contributors),
        "firstChange": isoformat(row[2]),
        "lastChange": isoformat(row[3]),
    }
