from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import func, insert, literal, select

from app.odp.errors import NotFoundError, UnsupportedOperationError, ValidationError
from app.odp.models import Item, ItemVersion
from app.odp.modules.waves.service import WaveStore
from app.odp.utils import isoformat

from .models import Baseline, BaselineItem

if TYPE_CHECKING:
    from app.odp.db import Transaction

logger = logging.getLogger(__name__)

_waves = WaveStore()


def _to_dict(baseline: Baseline, captured_count: int) -> dict:
    return {
        "id": baseline.id,
        "title": baseline.title,
        "startsFromWaveId": baseline.starts_from_wave_id,
        "createdAt": isoformat(baseline.created_at),
        "createdBy": baseline.created_by,
        "capturedItemCount": captured_count,
    }


def _captured_count(baseline_id: int, tx: "Transaction") -> int:
    return tx.run(
        select(func.count()).select_from(BaselineItem).where(BaselineItem.baseline_id == baseline_id)
    ).scalar_one()


def _require(baseline_id: int, tx: "Transaction") -> Baseline:
    baseline = tx.get(Baseline, baseline_id)
    if baseline is None:
        raise NotFoundError(f"Baseline {baseline_id} not found")
    return baseline


def create_baseline(data: dict, tx: "Transaction") -> dict:
    """
    Freeze the latest version of every item.

    The capture is a single INSERT ... SELECT inside the caller's transaction,
    so it sees one consistent cut across items.
    """
    errors: list[str] = []
    title = data.get("title")
    if not isinstance(title, str) or not title.strip():
        errors.append("title is required")
    wave_id = data.get("startsFromWaveId")
    if wave_id is not None:
        if not isinstance(wave_id, int) or isinstance(wave_id, bool):
            errors.append("startsFromWaveId must be an integer id")
        elif not _waves.exists(wave_id, tx):
            errors.append(f"startsFromWaveId: wave {wave_id} does not exist")
    if errors:
        raise ValidationError(errors)

    baseline = Baseline(title=title.strip(), starts_from_wave_id=wave_id, created_by=tx.get_user_id())
    tx.add(baseline)
    tx.flush()

    capture = (
        select(
            literal(baseline.id),
            Item.id,
            Item.item_type,
            ItemVersion.id,
            ItemVersion.version,
        )
        .join(ItemVersion, ItemVersion.id == Item.latest_version_id)
    )
    tx.run(
        insert(BaselineItem).from_select(
            ["baseline_id", "item_id", "item_type", "version_id", "version"],
            capture,
        )
    )
    count = _captured_count(baseline.id, tx)
    logger.info("Created baseline %s (%r) capturing %s item(s)", baseline.id, baseline.title, count)
    return _to_dict(baseline, count)


def get_baseline(baseline_id: int, tx: "Transaction") -> dict:
    baseline = _require(baseline_id, tx)
    return _to_dict(baseline, _captured_count(baseline_id, tx))


def list_baselines(tx: "Transaction") -> list[dict]:
    counts = dict(
        tx.run(select(BaselineItem.baseline_id, func.count()).group_by(BaselineItem.baseline_id)).all()
    )
    baselines = tx.run(select(Baseline).order_by(Baseline.created_at.desc(), Baseline.id.desc())).scalars()
    return [_to_dict(b, counts.get(b.id, 0)) for b in baselines]


def get_baseline_items(baseline_id: int, tx: "Transaction") -> list[dict]:
    """
    Content view of every captured (item, version) pair.

    Items deleted since capture come back as a stub flagged ``orphaned``.
    """
    from app.odp.stores import store_for

    _require(baseline_id, tx)
    captured = tx.run(
        select(BaselineItem).where(BaselineItem.baseline_id == baseline_id).order_by(BaselineItem.item_id.asc())
    ).scalars()

    items = []
    for entry in captured:
        version = tx.get(ItemVersion, entry.version_id)
        if version is None or version.item_id != entry.item_id:
            logger.warning(
                "Baseline %s references deleted %s %s (version id %s)",
                baseline_id,
                entry.item_type,
                entry.item_id,
                entry.version_id,
            )
            items.append(
                {
                    "itemId": entry.item_id,
                    "itemType": entry.item_type,
                    "versionId": entry.version_id,
                    "version": entry.version,
                    "orphaned": True,
                }
            )
            continue
        items.append(store_for(entry.item_type).get_by_id(entry.item_id, tx, baseline_id=baseline_id))
    return items


def update_baseline(baseline_id: int, data: dict, tx: "Transaction") -> dict:
    raise UnsupportedOperationError("Baselines are immutable and cannot be updated")


def delete_baseline(baseline_id: int, tx: "Transaction") -> None:
    raise UnsupportedOperationError("Baselines are immutable and cannot be deleted")
