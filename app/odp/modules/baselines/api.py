from __future__ import annotations

from flask import Blueprint, jsonify

from app.odp.routes import json_body, tx_scope

from . import service

bp = Blueprint("baselines", __name__, url_prefix="/baselines")


@bp.get("")
def baselines_list():
    with tx_scope() as tx:
        return jsonify(service.list_baselines(tx))


@bp.post("")
def baselines_create():
    with tx_scope() as tx:
        return jsonify(service.create_baseline(json_body(), tx)), 201


@bp.get("/<int:baseline_id>")
def baselines_get(baseline_id: int):
    with tx_scope() as tx:
        return jsonify(service.get_baseline(baseline_id, tx))


@bp.get("/<int:baseline_id>/items")
def baselines_items(baseline_id: int):
    with tx_scope() as tx:
        return jsonify(service.get_baseline_items(baseline_id, tx))


@bp.route("/<int:baseline_id>", methods=["PUT", "PATCH"])
def baselines_update(baseline_id: int):
    with tx_scope() as tx:
        return jsonify(service.update_baseline(baseline_id, {}, tx))


@bp.delete("/<int:baseline_id>")
def baselines_delete(baseline_id: int):
    with tx_scope() as tx:
        service.delete_baseline(baseline_id, tx)
    return "", 204
