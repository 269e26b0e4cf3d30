from __future__ import annotations

from flask import Blueprint, jsonify

from app.odp.modules.changes.service import changes_satisfying, changes_superseding
from app.odp.routes import register_versioned_routes, tx_scope
from app.odp.stores import requirement_store

from .service import requirement_children, requirement_dependents, requirement_implementers

bp = Blueprint("operational_requirements", __name__, url_prefix="/operational-requirements")

register_versioned_routes(bp, requirement_store)


@bp.get("/<int:item_id>/children")
def children(item_id: int):
    with tx_scope() as tx:
        return jsonify(requirement_children(item_id, tx))


@bp.get("/<int:item_id>/dependents")
def dependents(item_id: int):
    with tx_scope() as tx:
        return jsonify(requirement_dependents(item_id, tx))


@bp.get("/<int:item_id>/implemented-by")
def implemented_by(item_id: int):
    with tx_scope() as tx:
        return jsonify(requirement_implementers(item_id, tx))


@bp.get("/<int:item_id>/satisfied-by")
def satisfied_by(item_id: int):
    with tx_scope() as tx:
        return jsonify(changes_satisfying(item_id, tx))


@bp.get("/<int:item_id>/superseded-by")
def superseded_by(item_id: int):
    with tx_scope() as tx:
        return jsonify(changes_superseding(item_id, tx))
