"""
Store registry.

Relationship targets are resolved by type name at validation time, so
requirement and change stores can reference each other (and themselves)
without import cycles.
"""
from __future__ import annotations

from app.odp.modules.changes.service import CHANGE_TRAITS, OPERATIONAL_CHANGE
from app.odp.modules.requirements.service import OPERATIONAL_REQUIREMENT, REQUIREMENT_TRAITS
from app.odp.modules.setup.service import SETUP_KINDS, SetupStore
from app.odp.modules.waves.service import WaveStore
from app.odp.relationships import ExistenceChecker
from app.odp.versioned_store import VersionedItemStore

_targets: dict[str, ExistenceChecker] = {}

requirement_store = VersionedItemStore(REQUIREMENT_TRAITS, _targets.__getitem__)
change_store = VersionedItemStore(CHANGE_TRAITS, _targets.__getitem__)
setup_stores: dict[str, SetupStore] = {kind: SetupStore(kind) for kind in SETUP_KINDS}
wave_store = WaveStore()

_targets[OPERATIONAL_REQUIREMENT] = requirement_store
_targets[OPERATIONAL_CHANGE] = change_store
_targets.update(setup_stores)


def store_for(item_type: str) -> VersionedItemStore:
    if item_type == OPERATIONAL_REQUIREMENT:
        return requirement_store
    if item_type == OPERATIONAL_CHANGE:
        return change_store
    raise KeyError(f"No versioned store for item type {item_type!r}")
