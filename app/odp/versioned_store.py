"""
Generic store for versioned items.

Every item type shares the same persistence protocol:

- an ``Item`` row is the stable identity and owns the latest-version pointer;
- each write appends an immutable ``ItemVersion`` (1, 2, 3 ...) whose
  relationship edges are replaced wholesale;
- updates are compare-and-swap on the latest pointer: the caller sends the
  ``expectedVersionId`` it read, and a stale value is a ``VersionConflict``.

Per-type behaviour (fields, validation, patch merge, wave anchoring) comes from
the injected ``EntityTraits``.
"""
from __future__ import annotations

import copy
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from app.odp.errors import NotFoundError, StoreError, ValidationError, VersionConflict
from app.odp.models import Item, ItemRelationship, ItemVersion
from app.odp.modules.baselines.models import Baseline, BaselineItem
from app.odp.modules.waves.service import WaveStore
from app.odp.modules.waves.timeline import anchored_at_or_after, load_wave_index
from app.odp.relationships import ExistenceChecker, RelationshipManager
from app.odp.traits import EntityTraits
from app.odp.utils import isoformat

if TYPE_CHECKING:
    from app.odp.db import Transaction
    from app.odp.modules.waves.models import Wave

logger = logging.getLogger(__name__)


class VersionedItemStore:
    def __init__(self, traits: EntityTraits, resolve_target: Callable[[str], ExistenceChecker]) -> None:
        self.traits = traits
        self.item_type = traits.item_type
        self.relationships = RelationshipManager(traits.item_type, traits.relationships, resolve_target)
        self.waves = WaveStore()

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------
    def _view(self, item_id: int, version: ItemVersion, relationships: dict[str, list[int]]) -> dict:
        view = {
            "itemId": item_id,
            "itemType": self.item_type,
            "versionId": version.id,
            "version": version.version,
            "createdAt": isoformat(version.created_at),
            "createdBy": version.created_by,
        }
        view.update(copy.deepcopy(version.content or {}))
        view.update(relationships)
        return view

    def _version_view(self, version: ItemVersion, tx: "Transaction") -> dict:
        return self._view(version.item_id, version, self.relationships.view_for_version(version.id, tx))

    def _version_views(self, versions: list[ItemVersion], tx: "Transaction") -> list[dict]:
        rels = self.relationships.views_for_versions([v.id for v in versions], tx)
        return [self._view(v.item_id, v, rels[v.id]) for v in versions]

    def payload_from_view(self, view: dict) -> dict:
        return self.traits.payload_from_view(view)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    def exists(self, item_id: int, tx: "Transaction") -> bool:
        item = tx.get(Item, item_id)
        return item is not None and item.item_type == self.item_type

    def _require_item(self, item_id: int, tx: "Transaction") -> Item:
        item = tx.get(Item, item_id)
        if item is None or item.item_type != self.item_type:
            raise NotFoundError(f"{self.item_type} {item_id} not found")
        return item

    def _latest(self, item: Item, tx: "Transaction") -> ItemVersion:
        version = tx.get(ItemVersion, item.latest_version_id) if item.latest_version_id is not None else None
        if version is None:
            raise StoreError(f"Data integrity error: {self.item_type} {item.id} has no latest version")
        return version

    def _require_baseline(self, baseline_id: int, tx: "Transaction") -> Baseline:
        baseline = tx.get(Baseline, baseline_id)
        if baseline is None:
            raise NotFoundError(f"Baseline {baseline_id} not found")
        return baseline

    def _passes_wave_filter(self, content: dict, reference: "Wave", waves_by_id: dict[int, "Wave"]) -> bool:
        anchors = self.traits.wave_anchor(content)
        if not anchors:
            return self.traits.keep_unanchored
        return anchored_at_or_after(anchors, reference, waves_by_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get_by_id(
        self,
        item_id: int,
        tx: "Transaction",
        baseline_id: int | None = None,
        from_wave_id: int | None = None,
    ) -> dict:
        reference = self.waves.require(from_wave_id, tx) if from_wave_id is not None else None

        if baseline_id is not None:
            self._require_baseline(baseline_id, tx)
            captured = tx.get(BaselineItem, (baseline_id, item_id))
            if captured is None or captured.item_type != self.item_type:
                raise NotFoundError(f"{self.item_type} {item_id} not found in baseline {baseline_id}")
            version = tx.get(ItemVersion, captured.version_id)
            if version is None or version.item_id != item_id:
                raise NotFoundError(f"{self.item_type} {item_id} captured in baseline {baseline_id} no longer exists")
        else:
            version = self._latest(self._require_item(item_id, tx), tx)

        if reference is not None and not self._passes_wave_filter(version.content, reference, load_wave_index(tx)):
            raise NotFoundError(f"{self.item_type} {item_id} not found from wave {reference.name}")

        return self._version_view(version, tx)

    def get_by_id_and_version(self, item_id: int, version_number: int, tx: "Transaction") -> dict:
        self._require_item(item_id, tx)
        version = tx.run(
            select(ItemVersion).where(ItemVersion.item_id == item_id, ItemVersion.version == version_number)
        ).scalar_one_or_none()
        if version is None:
            raise NotFoundError(f"{self.item_type} {item_id} has no version {version_number}")
        return self._version_view(version, tx)

    def get_version_history(self, item_id: int, tx: "Transaction") -> list[dict]:
        self._require_item(item_id, tx)
        rows = tx.run(
            select(ItemVersion.id, ItemVersion.version, ItemVersion.created_at, ItemVersion.created_by)
            .where(ItemVersion.item_id == item_id)
            .order_by(ItemVersion.version.asc())
        ).all()
        if not rows:
            raise StoreError(f"Data integrity error: {self.item_type} {item_id} exists but has no versions")
        return [
            {"versionId": r[0], "version": r[1], "createdAt": isoformat(r[2]), "createdBy": r[3]}
            for r in rows
        ]

    def get_all(
        self,
        tx: "Transaction",
        baseline_id: int | None = None,
        from_wave_id: int | None = None,
    ) -> list[dict]:
        reference = self.waves.require(from_wave_id, tx) if from_wave_id is not None else None

        if baseline_id is not None:
            self._require_baseline(baseline_id, tx)
            stmt = (
                select(ItemVersion)
                .join(
                    BaselineItem,
                    (BaselineItem.version_id == ItemVersion.id) & (BaselineItem.item_id == ItemVersion.item_id),
                )
                .where(BaselineItem.baseline_id == baseline_id, BaselineItem.item_type == self.item_type)
            )
        else:
            stmt = (
                select(ItemVersion)
                .join(Item, Item.latest_version_id == ItemVersion.id)
                .where(Item.item_type == self.item_type)
            )
        versions = list(tx.run(stmt).scalars())

        if reference is not None:
            waves_by_id = load_wave_index(tx)
            versions = [v for v in versions if self._passes_wave_filter(v.content, reference, waves_by_id)]

        versions.sort(key=lambda v: ((v.content or {}).get("title") or "", v.item_id))
        return self._version_views(versions, tx)

    def find_referencing(self, relation_type: str, target_type: str, target_id: int, tx: "Transaction") -> list[dict]:
        """Items of this type whose latest version has the given outgoing edge."""
        stmt = (
            select(ItemVersion)
            .join(Item, Item.latest_version_id == ItemVersion.id)
            .join(ItemRelationship, ItemRelationship.from_version_id == ItemVersion.id)
            .where(
                Item.item_type == self.item_type,
                ItemRelationship.relation_type == relation_type,
                ItemRelationship.target_type == target_type,
                ItemRelationship.target_id == target_id,
            )
        )
        versions = sorted(
            tx.run(stmt).scalars(),
            key=lambda v: ((v.content or {}).get("title") or "", v.item_id),
        )
        return self._version_views(versions, tx)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def create(self, payload: dict, tx: "Transaction") -> dict:
        errors = list(self.traits.validate_create(payload, tx))
        refs, ref_errors = self.relationships.validate(payload, tx)
        errors.extend(ref_errors)
        if errors:
            raise ValidationError(errors)

        content = self.traits.normalize_content(self.traits.extract_content(payload), None)
        user_id = tx.get_user_id()

        item = Item(item_type=self.item_type, created_by=user_id)
        tx.add(item)
        tx.flush()

        version = ItemVersion(item_id=item.id, version=1, content=content, created_by=user_id)
        tx.add(version)
        tx.flush()

        self.relationships.attach(version, refs, None, tx)
        item.latest_version = version
        tx.flush()

        logger.info("Created %s %s (version id %s) by %s", self.item_type, item.id, version.id, user_id)
        return self._version_view(version, tx)

    def update(self, item_id: int, payload: dict, expected_version_id: int | None, tx: "Transaction") -> dict:
        """
        Append version n+1 with complete replacement of content and
        relationships. Fails with VersionConflict unless ``expected_version_id``
        is still the latest version.
        """
        if expected_version_id is None:
            raise ValidationError(["expectedVersionId is required"])

        item = self._require_item(item_id, tx)
        if item.latest_version_id != expected_version_id:
            raise VersionConflict(item_id, expected_version_id, item.latest_version_id)
        current = self._latest(item, tx)

        current_view = self._version_view(current, tx)
        errors = list(self.traits.validate_update(payload, tx, current_view))
        refs, ref_errors = self.relationships.validate(payload, tx, item_id=item_id)
        errors.extend(ref_errors)
        if errors:
            raise ValidationError(errors)

        content = self.traits.normalize_content(self.traits.extract_content(payload), current.content)
        user_id = tx.get_user_id()

        version = ItemVersion(
            item_id=item_id,
            version=current.version + 1,
            previous_version_id=current.id,
            content=content,
            created_by=user_id,
        )
        tx.add(version)
        try:
            tx.flush()
        except StoreError as e:
            # another writer already took version n+1
            if isinstance(e.cause, IntegrityError):
                raise VersionConflict(item_id, expected_version_id, None) from e
            raise

        self.relationships.attach(version, refs, current, tx)

        result = tx.run(
            update(Item)
            .where(Item.id == item_id, Item.latest_version_id == expected_version_id)
            .values(latest_version_id=version.id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise VersionConflict(item_id, expected_version_id, None)
        tx.session.expire(item)
        tx.flush()

        logger.info(
            "Updated %s %s to version %s (version id %s) by %s",
            self.item_type,
            item_id,
            version.version,
            version.id,
            user_id,
        )
        return self._version_view(version, tx)

    def patch(self, item_id: int, partial: dict, expected_version_id: int | None, tx: "Transaction") -> dict:
        """
        Partial update: keys missing from ``partial`` inherit the current value,
        keys present (``None`` included) replace it.
        """
        if expected_version_id is None:
            raise ValidationError(["expectedVersionId is required"])
        item = self._require_item(item_id, tx)
        if item.latest_version_id != expected_version_id:
            raise VersionConflict(item_id, expected_version_id, item.latest_version_id)

        current_view = self._version_view(self._latest(item, tx), tx)
        payload = self.traits.patched_payload(current_view, partial)
        return self.update(item_id, payload, expected_version_id, tx)

    def delete(self, item_id: int, tx: "Transaction") -> None:
        """Remove the item with every version and edge. Baseline captures stay."""
        item = self._require_item(item_id, tx)
        tx.delete(item)
        tx.flush()
        logger.info("Deleted %s %s by %s", self.item_type, item_id, tx.get_user_id())
