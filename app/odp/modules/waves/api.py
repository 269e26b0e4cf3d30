from __future__ import annotations

from flask import Blueprint, jsonify

from app.odp.modules.changes.milestones import milestones_by_wave
from app.odp.routes import int_arg, json_body, tx_scope
from app.odp.stores import wave_store

bp = Blueprint("waves", __name__, url_prefix="/waves")


@bp.get("")
def waves_list():
    with tx_scope() as tx:
        return jsonify(wave_store.list_waves(tx))


@bp.post("")
def waves_create():
    with tx_scope() as tx:
        return jsonify(wave_store.create_wave(json_body(), tx)), 201


@bp.get("/<int:wave_id>")
def waves_get(wave_id: int):
    with tx_scope() as tx:
        return jsonify(wave_store.get_wave(wave_id, tx))


@bp.get("/<int:wave_id>/milestones")
def waves_milestones(wave_id: int):
    with tx_scope() as tx:
        return jsonify(milestones_by_wave(wave_id, tx, baseline_id=int_arg("baseline")))
