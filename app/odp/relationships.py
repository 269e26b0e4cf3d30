from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Protocol

from sqlalchemy import select

from app.odp.audit import ADD, REMOVE, record_relationship_change
from app.odp.models import ItemRelationship, ItemVersion
from app.odp.traits import RelationshipSpec

if TYPE_CHECKING:
    from app.odp.db import Transaction

logger = logging.getLogger(__name__)

EdgeKey = tuple[str, str, int]  # (relation_type, target_type, target_id)
EdgeRow = tuple[str, str, int, "str | None"]  # EdgeKey + note

# field -> {target_id: note}; note is always None for plain id arrays
References = dict[str, dict[int, "str | None"]]


class ExistenceChecker(Protocol):
    def exists(self, target_id: int, tx: "Transaction") -> bool: ...


def _is_id(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _extract_annotated(spec: RelationshipSpec, raw: list) -> tuple[dict[int, str | None], list[str]]:
    refs: dict[int, str | None] = {}
    errors: list[str] = []
    for i, ref in enumerate(raw):
        where = f"{spec.field}[{i}]"
        if not isinstance(ref, dict):
            errors.append(f"{where} must be an object with {spec.id_key}")
            continue
        target_id = ref.get(spec.id_key)
        note = ref.get("note")
        if not _is_id(target_id):
            errors.append(f"{where}.{spec.id_key} must be an integer id")
            continue
        if note is not None and not isinstance(note, str):
            errors.append(f"{where}.note must be a string")
            continue
        refs.setdefault(target_id, (note or "").strip() or None)
    return refs, errors


class RelationshipManager:
    """
    Turns the reference arrays of a payload into typed edges on a version.

    Relationships are replaced wholesale on every version write; the diff
    against the previous version is what lands in the audit log. Notes on
    annotated references travel with the edge but are not audited.
    """

    def __init__(
        self,
        item_type: str,
        specs: Iterable[RelationshipSpec],
        resolve_target: Callable[[str], ExistenceChecker],
    ) -> None:
        self.item_type = item_type
        self.specs = tuple(specs)
        self.resolve_target = resolve_target
        self._spec_by_edge: dict[tuple[str, str], RelationshipSpec] = {}
        for spec in self.specs:
            edge = (spec.relation_type, spec.target_type)
            if edge in self._spec_by_edge:
                raise ValueError(
                    f"{item_type}: {edge} mapped by both {self._spec_by_edge[edge].field} and {spec.field}"
                )
            self._spec_by_edge[edge] = spec

    def extract(self, payload: dict) -> tuple[References, list[str]]:
        """Shape check only: ids must be integers, annotated entries objects."""
        refs: References = {}
        errors: list[str] = []
        for spec in self.specs:
            raw = payload.get(spec.field)
            if raw is None:
                refs[spec.field] = {}
                continue
            if not isinstance(raw, list):
                errors.append(f"{spec.field} must be a list of {'ids' if spec.id_key is None else 'references'}")
                continue
            if spec.id_key is not None:
                annotated, bad = _extract_annotated(spec, raw)
                errors.extend(bad)
                if not bad:
                    refs[spec.field] = annotated
                continue
            bad_ids = [v for v in raw if not _is_id(v)]
            if bad_ids:
                errors.append(f"{spec.field} must contain integer ids, got {bad_ids!r}")
                continue
            refs[spec.field] = dict.fromkeys(raw)
        return refs, errors

    def validate(
        self,
        payload: dict,
        tx: "Transaction",
        item_id: int | None = None,
    ) -> tuple[References, list[str]]:
        """
        Extract and check every reference; all violations are collected so
        the caller can report them in one ValidationError.
        """
        refs, errors = self.extract(payload)
        for spec in self.specs:
            ids = refs.get(spec.field)
            if not ids:
                continue
            checker = self.resolve_target(spec.target_type)
            for target_id in ids:
                if item_id is not None and spec.target_type == self.item_type and target_id == item_id:
                    errors.append(f"{spec.field}: {self.item_type} {item_id} cannot reference itself")
                elif not checker.exists(target_id, tx):
                    errors.append(f"{spec.field}: {spec.label} {target_id} does not exist")
        return refs, errors

    def edge_notes(self, refs: References) -> dict[EdgeKey, str | None]:
        edges: dict[EdgeKey, str | None] = {}
        for spec in self.specs:
            for target_id, note in (refs.get(spec.field) or {}).items():
                edges[(spec.relation_type, spec.target_type, target_id)] = note
        return edges

    def edge_keys(self, refs: References) -> set[EdgeKey]:
        return set(self.edge_notes(refs))

    def current(self, version_id: int, tx: "Transaction") -> set[EdgeKey]:
        return {(r[0], r[1], r[2]) for r in self._rows([version_id], tx)}

    def _rows(self, version_ids: list[int], tx: "Transaction") -> list:
        return tx.run(
            select(
                ItemRelationship.relation_type,
                ItemRelationship.target_type,
                ItemRelationship.target_id,
                ItemRelationship.note,
                ItemRelationship.from_version_id,
            ).where(ItemRelationship.from_version_id.in_(version_ids))
        ).all()

    def attach(
        self,
        version: ItemVersion,
        refs: References,
        previous: ItemVersion | None,
        tx: "Transaction",
    ) -> None:
        """Create the version's edges and audit the difference to ``previous``."""
        edges = self.edge_notes(refs)
        new_keys = set(edges)
        old_keys = self.current(previous.id, tx) if previous is not None else set()

        for key in sorted(new_keys):
            rel_type, target_type, target_id = key
            tx.add(
                ItemRelationship(
                    from_version_id=version.id,
                    relation_type=rel_type,
                    target_type=target_type,
                    target_id=target_id,
                    note=edges[key],
                )
            )

        for action, keys in ((ADD, new_keys - old_keys), (REMOVE, old_keys - new_keys)):
            for rel_type, target_type, target_id in sorted(keys):
                record_relationship_change(
                    tx,
                    action=action,
                    relationship_type=rel_type,
                    item_id=version.item_id,
                    source_version_id=version.id,
                    target_type=target_type,
                    target_id=target_id,
                )
        if new_keys != old_keys:
            logger.debug(
                "%s %s v%s: %s edge(s) added, %s removed",
                self.item_type,
                version.item_id,
                version.version,
                len(new_keys - old_keys),
                len(old_keys - new_keys),
            )

    def to_view(self, rows: Iterable[EdgeRow]) -> dict[str, list]:
        view: dict[str, list] = {spec.field: [] for spec in self.specs}
        for rel_type, target_type, target_id, note in sorted(rows, key=lambda r: r[2]):
            spec = self._spec_by_edge.get((rel_type, target_type))
            if spec is None:
                continue
            if spec.id_key is None:
                view[spec.field].append(target_id)
            else:
                view[spec.field].append({spec.id_key: target_id, "note": note})
        return view

    def view_for_version(self, version_id: int, tx: "Transaction") -> dict[str, list]:
        return self.to_view((r[0], r[1], r[2], r[3]) for r in self._rows([version_id], tx))

    def views_for_versions(self, version_ids: list[int], tx: "Transaction") -> dict[int, dict[str, list]]:
        """Batched view_for_version, one query for the whole list."""
        rows: dict[int, list[EdgeRow]] = {vid: [] for vid in version_ids}
        if version_ids:
            for r in self._rows(version_ids, tx):
                rows[r[4]].append((r[0], r[1], r[2], r[3]))
        return {vid: self.to_view(edges) for vid, edges in rows.items()}
