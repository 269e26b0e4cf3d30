"""
Entity traits: everything that distinguishes one versioned entity type from
another, injected into the single generic VersionedItemStore.

Patch payloads are plain dicts where a *missing key* means "keep the current
value" and a key present with ``None`` means "explicitly null".
"""
from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from app.odp.db import Transaction

# Relationship kinds. Edges of every kind originate from an ItemVersion.
REFINES = "REFINES"
IMPACTS = "IMPACTS"
SATISFIES = "SATISFIES"
SUPERSEDES = "SUPERSEDES"
DEPENDS_ON = "DEPENDS_ON"
IMPLEMENTS = "IMPLEMENTS"
REFERENCES = "REFERENCES"

RELATIONSHIP_TYPES = (REFINES, IMPACTS, SATISFIES, SUPERSEDES, DEPENDS_ON, IMPLEMENTS, REFERENCES)


@dataclass(frozen=True)
class RelationshipSpec:
    """One reference-id array of the payload and the edges it becomes."""

    field: str  # payload key, e.g. "refinesParents"
    relation_type: str  # one of RELATIONSHIP_TYPES
    target_type: str  # item type or setup kind the ids point at
    label: str  # human name used in validation messages
    # Annotated references are objects {id_key: id, "note": str} instead of bare ids.
    id_key: str | None = None


ValidateCreate = Callable[[dict, "Transaction"], list[str]]
ValidateUpdate = Callable[[dict, "Transaction", dict], list[str]]
MergePatch = Callable[[dict, dict], dict]
NormalizeContent = Callable[[dict, "dict | None"], dict]
WaveAnchor = Callable[[dict], list[int]]


def _no_errors(*_args: Any) -> list[str]:
    return []


def _no_anchor(_content: dict) -> list[int]:
    return []


def _keep_content(content: dict, _current: dict | None) -> dict:
    return content


@dataclass(frozen=True)
class EntityTraits:
    item_type: str
    content_fields: tuple[str, ...]
    relationships: tuple[RelationshipSpec, ...] = ()
    list_fields: frozenset[str] = field(default_factory=frozenset)

    validate_create: ValidateCreate = _no_errors
    validate_update: ValidateUpdate = _no_errors
    merge_patch: MergePatch | None = None
    normalize_content: NormalizeContent = _keep_content

    # Wave ids an item's content is anchored to, for fromWave filtering.
    wave_anchor: WaveAnchor = _no_anchor
    # Whether items with no anchor survive a fromWave filter.
    keep_unanchored: bool = True

    @property
    def relationship_fields(self) -> tuple[str, ...]:
        return tuple(spec.field for spec in self.relationships)

    @property
    def payload_fields(self) -> tuple[str, ...]:
        return self.content_fields + self.relationship_fields

    def extract_content(self, payload: dict) -> dict:
        content = {}
        for name in self.content_fields:
            value = payload.get(name)
            if value is None and name in self.list_fields:
                value = []
            content[name] = value
        return content

    def payload_from_view(self, view: dict) -> dict:
        """Complete update payload reproducing a version view as-is."""
        payload = {name: view.get(name) for name in self.content_fields}
        for name in self.relationship_fields:
            payload[name] = list(view.get(name) or [])
        return payload

    def patched_payload(self, view: dict, partial: dict) -> dict:
        if self.merge_patch is not None:
            return self.merge_patch(view, partial)
        return overlay_patch(self.payload_from_view(view), partial, self.payload_fields)


def overlay_patch(current: dict, partial: dict, fields: tuple[str, ...]) -> dict:
    """
    Overlay a partial payload onto a complete one.

    Absent keys keep the current value; present keys (None included) replace it.
    Keys outside ``fields`` are ignored.
    """
    merged = dict(current)
    for name in fields:
        if name in partial:
            merged[name] = partial[name]
    return merged
