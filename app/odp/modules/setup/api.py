from __future__ import annotations

from flask import Blueprint, jsonify

from app.odp.errors import NotFoundError
from app.odp.routes import json_body, tx_scope
from app.odp.stores import setup_stores

from .service import DATA_CATEGORY, DOCUMENT, REGULATORY_ASPECT, SERVICE, STAKEHOLDER_CATEGORY

bp = Blueprint("setup", __name__, url_prefix="/setup")

SLUGS = {
    "stakeholder-categories": STAKEHOLDER_CATEGORY,
    "data-categories": DATA_CATEGORY,
    "services": SERVICE,
    "regulatory-aspects": REGULATORY_ASPECT,
    "documents": DOCUMENT,
}


def _store(slug: str):
    kind = SLUGS.get(slug)
    if kind is None:
        raise NotFoundError(f"Unknown setup collection: {slug}")
    return setup_stores[kind]


@bp.get("/<slug>")
def setup_list(slug: str):
    with tx_scope() as tx:
        return jsonify(_store(slug).list_all(tx))


@bp.post("/<slug>")
def setup_create(slug: str):
    with tx_scope() as tx:
        return jsonify(_store(slug).create(json_body(), tx)), 201


@bp.get("/<slug>/<int:element_id>")
def setup_get(slug: str, element_id: int):
    store = _store(slug)
    with tx_scope() as tx:
        element = store.get(element_id, tx)
    if element is None:
        raise NotFoundError(f"{store.kind} {element_id} not found")
    return jsonify(element)
