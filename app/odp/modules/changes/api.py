from __future__ import annotations

from flask import Blueprint, jsonify

from app.odp.routes import (
    expected_version_id,
    int_arg,
    json_body,
    register_versioned_routes,
    tx_scope,
    without_control_fields,
)
from app.odp.stores import change_store

from . import milestones

bp = Blueprint("operational_changes", __name__, url_prefix="/operational-changes")

register_versioned_routes(bp, change_store)


# ---------- Milestones ----------
@bp.get("/<int:item_id>/milestones")
def milestones_list(item_id: int):
    with tx_scope() as tx:
        return jsonify(
            milestones.list_milestones(item_id, tx, baseline_id=int_arg("baseline"), from_wave_id=int_arg("fromWave"))
        )


@bp.get("/<int:item_id>/milestones/<milestone_key>")
def milestone_get(item_id: int, milestone_key: str):
    with tx_scope() as tx:
        return jsonify(
            milestones.get_milestone(
                item_id,
                milestone_key,
                tx,
                baseline_id=int_arg("baseline"),
                from_wave_id=int_arg("fromWave"),
            )
        )


@bp.post("/<int:item_id>/milestones")
def milestone_add(item_id: int):
    body = json_body()
    with tx_scope() as tx:
        result = milestones.add_milestone(item_id, without_control_fields(body), expected_version_id(body), tx)
    return jsonify(result), 201


@bp.put("/<int:item_id>/milestones/<milestone_key>")
def milestone_update(item_id: int, milestone_key: str):
    body = json_body()
    with tx_scope() as tx:
        result = milestones.update_milestone(
            item_id, milestone_key, without_control_fields(body), expected_version_id(body), tx
        )
    return jsonify(result)


@bp.delete("/<int:item_id>/milestones/<milestone_key>")
def milestone_delete(item_id: int, milestone_key: str):
    body = json_body()
    with tx_scope() as tx:
        result = milestones.delete_milestone(item_id, milestone_key, expected_version_id(body), tx)
    return jsonify(result)
