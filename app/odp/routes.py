from __future__ import annotations

import uuid
from datetime import datetime

from flask import Blueprint, Flask, g, jsonify, request

from app.odp import audit
from app.odp.db import transaction_scope
from app.odp.errors import (
    NotFoundError,
    StoreError,
    UnsupportedOperationError,
    ValidationError,
    VersionConflict,
)
from app.odp.versioned_store import VersionedItemStore

bp = Blueprint("routes", __name__)

ANONYMOUS = "anonymous"


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


# ---------- Request helpers ----------
def current_user_id() -> str:
    """Caller identity for audit attribution only; never checked."""
    return (request.headers.get("X-User-Id") or "").strip() or ANONYMOUS


def tx_scope():
    return transaction_scope(current_user_id())


def json_body() -> dict:
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise ValidationError(["request body must be a JSON object"])
    return body


def int_arg(name: str) -> int | None:
    raw = (request.args.get(name) or "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValidationError([f"{name} must be an integer id"]) from None


def expected_version_id(body: dict) -> int:
    value = body.get("expectedVersionId")
    if value is None:
        raise ValidationError(["expectedVersionId is required"])
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(["expectedVersionId must be an integer id"])
    return value


def without_control_fields(body: dict) -> dict:
    return {k: v for k, v in body.items() if k != "expectedVersionId"}


# ---------- Error translation ----------
def register_error_handlers(app: Flask) -> None:
    @app.before_request
    def _assign_request_id():  # type: ignore[no-redef]
        g.request_id = request.headers.get("X-Request-Id") or uuid.uuid4().hex

    @app.errorhandler(ValidationError)
    def _err_validation(e: ValidationError):  # type: ignore[no-redef]
        return jsonify({"error": "VALIDATION_ERROR", "message": str(e), "details": e.errors}), 400

    @app.errorhandler(NotFoundError)
    def _err_not_found(e: NotFoundError):  # type: ignore[no-redef]
        return jsonify({"error": "NOT_FOUND", "message": str(e)}), 404

    @app.errorhandler(VersionConflict)
    def _err_conflict(e: VersionConflict):  # type: ignore[no-redef]
        app.logger.info("Version conflict (request_id=%s): %s", getattr(g, "request_id", None), e)
        return (
            jsonify(
                {
                    "error": "VERSION_CONFLICT",
                    "message": str(e),
                    "itemId": e.item_id,
                    "expectedVersionId": e.expected_version_id,
                    "currentVersionId": e.current_version_id,
                }
            ),
            409,
        )

    @app.errorhandler(UnsupportedOperationError)
    def _err_unsupported(e: UnsupportedOperationError):  # type: ignore[no-redef]
        return jsonify({"error": "UNSUPPORTED_OPERATION", "message": str(e)}), 405

    @app.errorhandler(StoreError)
    def _err_store(e: StoreError):  # type: ignore[no-redef]
        app.logger.exception("Store failure (request_id=%s): %s", getattr(g, "request_id", None), e)
        return jsonify({"error": "STORE_ERROR", "message": "Internal storage error"}), 500


# ---------- Versioned item routes ----------
def register_versioned_routes(blueprint: Blueprint, store: VersionedItemStore) -> None:
    """CRUD + history routes shared by every versioned item type."""

    def _require(item_id: int, tx) -> None:
        if not store.exists(item_id, tx):
            raise NotFoundError(f"{store.item_type} {item_id} not found")

    @blueprint.get("")
    def list_items():
        with tx_scope() as tx:
            return jsonify(store.get_all(tx, baseline_id=int_arg("baseline"), from_wave_id=int_arg("fromWave")))

    @blueprint.post("")
    def create_item():
        with tx_scope() as tx:
            return jsonify(store.create(json_body(), tx)), 201

    @blueprint.get("/<int:item_id>")
    def get_item(item_id: int):
        with tx_scope() as tx:
            return jsonify(
                store.get_by_id(item_id, tx, baseline_id=int_arg("baseline"), from_wave_id=int_arg("fromWave"))
            )

    @blueprint.put("/<int:item_id>")
    def update_item(item_id: int):
        body = json_body()
        with tx_scope() as tx:
            return jsonify(store.update(item_id, without_control_fields(body), expected_version_id(body), tx))

    @blueprint.patch("/<int:item_id>")
    def patch_item(item_id: int):
        body = json_body()
        with tx_scope() as tx:
            return jsonify(store.patch(item_id, without_control_fields(body), expected_version_id(body), tx))

    @blueprint.delete("/<int:item_id>")
    def delete_item(item_id: int):
        with tx_scope() as tx:
            store.delete(item_id, tx)
        return "", 204

    @blueprint.get("/<int:item_id>/versions")
    def version_history(item_id: int):
        with tx_scope() as tx:
            return jsonify(store.get_version_history(item_id, tx))

    @blueprint.get("/<int:item_id>/versions/<int:version_number>")
    def get_version(item_id: int, version_number: int):
        with tx_scope() as tx:
            return jsonify(store.get_by_id_and_version(item_id, version_number, tx))

    @blueprint.get("/<int:item_id>/audit")
    def audit_trail(item_id: int):
        with tx_scope() as tx:
            _require(item_id, tx)
            return jsonify(audit.audit_trail_for_item(item_id, tx))

    @blueprint.get("/<int:item_id>/audit/statistics")
    def audit_stats(item_id: int):
        with tx_scope() as tx:
            _require(item_id, tx)
            return jsonify(audit.audit_statistics(item_id, tx))

    @blueprint.get("/<int:item_id>/relationships-at")
    def relationships_at(item_id: int):
        raw = (request.args.get("at") or "").strip()
        try:
            at = datetime.fromisoformat(raw)
        except ValueError:
            raise ValidationError(["at must be an ISO 8601 timestamp"]) from None
        with tx_scope() as tx:
            _require(item_id, tx)
            return jsonify(audit.relationships_at(item_id, at, tx))
