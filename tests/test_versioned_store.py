import pytest
from sqlalchemy import func, select

from app.odp import create_app
from app.odp.db import create_transaction, transaction_scope
from app.odp.errors import NotFoundError, ValidationError, VersionConflict
from app.odp.models import Base, Item, ItemRelationship, ItemVersion, RelationshipAuditEntry
from app.odp.modules.changes.service import changes_satisfying, changes_superseding
from app.odp.modules.requirements.service import (
    requirement_children,
    requirement_dependents,
    requirement_implementers,
)
from app.odp.modules.setup.service import DOCUMENT, STAKEHOLDER_CATEGORY
from app.odp.stores import change_store, requirement_store, setup_stores


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)
    return app


def _stakeholders(app, *names):
    with transaction_scope("setup", app) as tx:
        return [setup_stores[STAKEHOLDER_CATEGORY].create({"name": n}, tx)["id"] for n in names]


def _create(app, payload, user="alice"):
    with transaction_scope(user, app) as tx:
        return requirement_store.create(payload, tx)


def test_create_sets_latest_pointer_and_round_trips_references(app):
    atco, pilot = _stakeholders(app, "ATCO", "Pilot")

    created = _create(
        app,
        {
            "title": "Flight plan distribution",
            "type": "ON",
            "statement": "Flight plans shall be distributed.",
            "impactsStakeholderCategories": [pilot, atco, pilot],
        },
    )
    assert created["version"] == 1
    assert created["itemType"] == "OperationalRequirement"
    assert created["createdBy"] == "alice"
    assert created["path"] == []
    assert created["refinesParents"] == []
    assert created["impactsStakeholderCategories"] == sorted([atco, pilot])

    with transaction_scope("bob", app) as tx:
        item = tx.get(Item, created["itemId"])
        assert item.latest_version_id == created["versionId"]
        fetched = requirement_store.get_by_id(created["itemId"], tx)

    for key in ("itemId", "versionId", "version", "title", "statement", "impactsStakeholderCategories"):
        assert fetched[key] == created[key]


def test_stale_expected_version_raises_conflict(app):
    created = _create(app, {"title": "R1", "type": "OR"})

    with transaction_scope("alice", app) as tx:
        v2 = requirement_store.update(created["itemId"], {"title": "R1 v2", "type": "OR"}, created["versionId"], tx)
    assert v2["version"] == 2

    with pytest.raises(VersionConflict) as exc:
        with transaction_scope("bob", app) as tx:
            requirement_store.update(created["itemId"], {"title": "lost", "type": "OR"}, created["versionId"], tx)
    assert exc.value.current_version_id == v2["versionId"]

    with transaction_scope("alice", app) as tx:
        assert requirement_store.get_by_id(created["itemId"], tx)["title"] == "R1 v2"


def test_concurrent_updates_have_exactly_one_winner(app):
    created = _create(app, {"title": "Shared", "type": "OR"})
    item_id, expected = created["itemId"], created["versionId"]

    first = create_transaction("alice", app)
    second = create_transaction("bob", app)
    try:
        # both writers read the same latest version
        assert requirement_store.get_by_id(item_id, first)["versionId"] == expected
        assert requirement_store.get_by_id(item_id, second)["versionId"] == expected

        requirement_store.update(item_id, {"title": "Alice", "type": "OR"}, expected, first)
        first.commit()

        with pytest.raises(VersionConflict):
            requirement_store.update(item_id, {"title": "Bob", "type": "OR"}, expected, second)
        second.rollback()
    finally:
        first.session.close()
        second.session.close()

    with transaction_scope("carol", app) as tx:
        history = requirement_store.get_version_history(item_id, tx)
        latest = requirement_store.get_by_id(item_id, tx)
    assert [h["version"] for h in history] == [1, 2]
    assert latest["title"] == "Alice"


def test_update_replaces_relationships_completely(app):
    a, b, c = _stakeholders(app, "A", "B", "C")
    created = _create(app, {"title": "R", "type": "OR", "impactsStakeholderCategories": [a, b]})

    with transaction_scope("alice", app) as tx:
        v2 = requirement_store.update(
            created["itemId"],
            {"title": "R", "type": "OR", "impactsStakeholderCategories": [c]},
            created["versionId"],
            tx,
        )
    assert v2["impactsStakeholderCategories"] == [c]

    with transaction_scope("alice", app) as tx:
        v1 = requirement_store.get_by_id_and_version(created["itemId"], 1, tx)
        edges = tx.run(
            select(ItemRelationship.target_id).where(ItemRelationship.from_version_id == created["versionId"])
        ).scalars().all()
    assert v1["impactsStakeholderCategories"] == sorted([a, b])
    assert sorted(edges) == sorted([a, b])


def test_patch_inherits_absent_fields_and_applies_explicit_null(app):
    (a,) = _stakeholders(app, "A")
    created = _create(
        app,
        {
            "title": "Original",
            "type": "OR",
            "statement": "keep me",
            "rationale": "drop me",
            "path": ["Network", "Flow"],
            "impactsStakeholderCategories": [a],
        },
    )

    with transaction_scope("alice", app) as tx:
        patched = requirement_store.patch(
            created["itemId"], {"title": "Renamed", "rationale": None}, created["versionId"], tx
        )

    assert patched["version"] == 2
    assert patched["title"] == "Renamed"
    assert patched["statement"] == "keep me"
    assert patched["rationale"] is None
    assert patched["path"] == ["Network", "Flow"]
    assert patched["impactsStakeholderCategories"] == [a]


def test_patch_with_stale_version_is_rejected(app):
    created = _create(app, {"title": "R", "type": "OR"})
    with transaction_scope("alice", app) as tx:
        requirement_store.patch(created["itemId"], {"title": "R2"}, created["versionId"], tx)

    with pytest.raises(VersionConflict):
        with transaction_scope("bob", app) as tx:
            requirement_store.patch(created["itemId"], {"title": "R3"}, created["versionId"], tx)


def test_version_history_is_ascending_and_chained(app):
    created = _create(app, {"title": "v1", "type": "OR"})
    expected = created["versionId"]
    for n in (2, 3, 4):
        with transaction_scope(f"user{n}", app) as tx:
            expected = requirement_store.update(created["itemId"], {"title": f"v{n}", "type": "OR"}, expected, tx)[
                "versionId"
            ]

    with transaction_scope("alice", app) as tx:
        history = requirement_store.get_version_history(created["itemId"], tx)
        versions = tx.run(
            select(ItemVersion).where(ItemVersion.item_id == created["itemId"]).order_by(ItemVersion.version)
        ).scalars().all()

    assert [h["version"] for h in history] == [1, 2, 3, 4]
    assert [h["createdBy"] for h in history] == ["alice", "user2", "user3", "user4"]
    assert versions[0].previous_version_id is None
    for prev, cur in zip(versions, versions[1:]):
        assert cur.previous_version_id == prev.id


def test_validation_reports_every_problem_at_once(app):
    with pytest.raises(ValidationError) as exc:
        _create(
            app,
            {
                "type": "XX",
                "drg": "NOPE",
                "impactsStakeholderCategories": [999],
                "refinesParents": [998],
            },
        )
    errors = exc.value.errors
    assert "title is required" in errors
    assert any(e.startswith("type must be one of") for e in errors)
    assert any(e.startswith("drg must be one of") for e in errors)
    assert any("999" in e for e in errors)
    assert any("998" in e for e in errors)

    with transaction_scope("alice", app) as tx:
        assert tx.run(select(func.count()).select_from(Item)).scalar_one() == 0


def test_reference_arrays_must_hold_integer_ids(app):
    with pytest.raises(ValidationError) as exc:
        _create(app, {"title": "R", "type": "OR", "impactsServices": "1,2", "impactsData": ["x"]})
    assert "impactsServices must be a list of ids" in exc.value.errors
    assert any(e.startswith("impactsData must contain integer ids") for e in exc.value.errors)


def test_self_reference_is_rejected(app):
    created = _create(app, {"title": "R", "type": "OR"})
    with pytest.raises(ValidationError) as exc:
        with transaction_scope("alice", app) as tx:
            requirement_store.update(
                created["itemId"],
                {"title": "R", "type": "OR", "dependsOnRequirements": [created["itemId"]]},
                created["versionId"],
                tx,
            )
    assert any("cannot reference itself" in e for e in exc.value.errors)


def test_on_requirement_cannot_refine_or_requirement(app):
    parent_or = _create(app, {"title": "OR parent", "type": "OR"})
    parent_on = _create(app, {"title": "ON parent", "type": "ON"})

    with pytest.raises(ValidationError) as exc:
        _create(app, {"title": "ON child", "type": "ON", "refinesParents": [parent_or["itemId"]]})
    assert any("cannot refine OR requirement" in e for e in exc.value.errors)

    child = _create(app, {"title": "ON child", "type": "ON", "refinesParents": [parent_on["itemId"]]})
    assert child["refinesParents"] == [parent_on["itemId"]]

    with transaction_scope("alice", app) as tx:
        children = requirement_children(parent_on["itemId"], tx)
    assert [c["itemId"] for c in children] == [child["itemId"]]


def test_failed_transaction_leaves_nothing_behind(app):
    (a,) = _stakeholders(app, "A")
    with pytest.raises(RuntimeError):
        with transaction_scope("alice", app) as tx:
            requirement_store.create({"title": "R", "type": "OR", "impactsStakeholderCategories": [a]}, tx)
            raise RuntimeError("boom")

    with transaction_scope("alice", app) as tx:
        for model in (Item, ItemVersion, ItemRelationship, RelationshipAuditEntry):
            assert tx.run(select(func.count()).select_from(model)).scalar_one() == 0


def test_delete_removes_item_versions_and_edges(app):
    (a,) = _stakeholders(app, "A")
    created = _create(app, {"title": "R", "type": "OR", "impactsStakeholderCategories": [a]})
    with transaction_scope("alice", app) as tx:
        requirement_store.update(
            created["itemId"], {"title": "R2", "type": "OR", "impactsStakeholderCategories": [a]}, created["versionId"], tx
        )

    with transaction_scope("alice", app) as tx:
        requirement_store.delete(created["itemId"], tx)

    with transaction_scope("alice", app) as tx:
        assert tx.get(Item, created["itemId"]) is None
        assert tx.run(select(func.count()).select_from(ItemVersion)).scalar_one() == 0
        assert tx.run(select(func.count()).select_from(ItemRelationship)).scalar_one() == 0
        with pytest.raises(NotFoundError):
            requirement_store.get_by_id(created["itemId"], tx)


def test_lookups_of_missing_items_raise_not_found(app):
    created = _create(app, {"title": "R", "type": "OR"})
    with transaction_scope("alice", app) as tx:
        with pytest.raises(NotFoundError):
            requirement_store.get_by_id(12345, tx)
        with pytest.raises(NotFoundError):
            requirement_store.get_by_id_and_version(created["itemId"], 7, tx)
        with pytest.raises(NotFoundError):
            requirement_store.get_version_history(12345, tx)
        assert requirement_store.exists(created["itemId"], tx)
        assert not requirement_store.exists(12345, tx)


def test_get_all_orders_by_title(app):
    for title in ("Charlie", "alpha", "Bravo"):
        _create(app, {"title": title, "type": "OR"})
    with transaction_scope("alice", app) as tx:
        titles = [r["title"] for r in requirement_store.get_all(tx)]
    assert titles == sorted(titles)
    assert len(titles) == 3


def test_only_or_requirements_implement_on_requirements(app):
    need = _create(app, {"title": "Need", "type": "ON"})
    other_or = _create(app, {"title": "Other OR", "type": "OR"})

    with pytest.raises(ValidationError) as exc:
        _create(app, {"title": "ON", "type": "ON", "implementedONs": [need["itemId"]]})
    assert exc.value.errors == ["implementedONs: only OR requirements can implement ON requirements"]

    with pytest.raises(ValidationError) as exc:
        _create(app, {"title": "OR", "type": "OR", "implementedONs": [other_or["itemId"], 404]})
    assert f"implementedONs: requirement {other_or['itemId']} is OR, not ON" in exc.value.errors
    assert "implementedONs: requirement 404 does not exist" in exc.value.errors

    realisation = _create(app, {"title": "Realisation", "type": "OR", "implementedONs": [need["itemId"]]})
    assert realisation["implementedONs"] == [need["itemId"]]

    with transaction_scope("alice", app) as tx:
        implementers = requirement_implementers(need["itemId"], tx)
    assert [r["itemId"] for r in implementers] == [realisation["itemId"]]


def test_document_references_carry_notes_across_versions(app):
    with transaction_scope("setup", app) as tx:
        icd = setup_stores[DOCUMENT].create({"name": "ICD"}, tx)["id"]
        conops = setup_stores[DOCUMENT].create({"name": "CONOPS"}, tx)["id"]

    created = _create(
        app,
        {
            "title": "R",
            "type": "OR",
            "referencesDocuments": [{"documentId": conops, "note": " section 4 "}, {"documentId": icd}],
        },
    )
    assert created["referencesDocuments"] == sorted(
        [{"documentId": conops, "note": "section 4"}, {"documentId": icd, "note": None}],
        key=lambda r: r["documentId"],
    )

    with transaction_scope("alice", app) as tx:
        patched = requirement_store.patch(created["itemId"], {"title": "R2"}, created["versionId"], tx)
    assert patched["referencesDocuments"] == created["referencesDocuments"]

    with transaction_scope("alice", app) as tx:
        change = change_store.create(
            {"title": "C", "visibility": "NM", "referencesDocuments": [{"documentId": icd, "note": "annex"}]}, tx
        )
    assert change["referencesDocuments"] == [{"documentId": icd, "note": "annex"}]


def test_document_references_are_validated(app):
    (stakeholder,) = _stakeholders(app, "ATCO")
    with pytest.raises(ValidationError) as exc:
        _create(
            app,
            {
                "title": "R",
                "type": "OR",
                "referencesDocuments": [
                    {"documentId": stakeholder},
                    {"documentId": "1"},
                    {"documentId": 1, "note": 5},
                    7,
                ],
            },
        )
    assert exc.value.errors == [
        "referencesDocuments[1].documentId must be an integer id",
        "referencesDocuments[2].note must be a string",
        "referencesDocuments[3] must be an object with documentId",
    ]

    with pytest.raises(ValidationError) as exc:
        _create(app, {"title": "R", "type": "OR", "referencesDocuments": [{"documentId": stakeholder}]})
    assert exc.value.errors == [f"referencesDocuments: document {stakeholder} does not exist"]


def test_reverse_lookups_follow_latest_versions(app):
    target = _create(app, {"title": "Target", "type": "OR"})
    dependent = _create(app, {"title": "Dependent", "type": "OR", "dependsOnRequirements": [target["itemId"]]})

    with transaction_scope("alice", app) as tx:
        satisfier = change_store.create(
            {"title": "Satisfier", "visibility": "NM", "satisfiesRequirements": [target["itemId"]]}, tx
        )
        superseder = change_store.create(
            {"title": "Superseder", "visibility": "NM", "supersedsRequirements": [target["itemId"]]}, tx
        )

    with transaction_scope("alice", app) as tx:
        assert [r["itemId"] for r in requirement_dependents(target["itemId"], tx)] == [dependent["itemId"]]
        assert [c["itemId"] for c in changes_satisfying(target["itemId"], tx)] == [satisfier["itemId"]]
        assert [c["itemId"] for c in changes_superseding(target["itemId"], tx)] == [superseder["itemId"]]
        with pytest.raises(NotFoundError):
            changes_satisfying(999, tx)

    # dropping the edge in a new version removes the item from the lookup
    with transaction_scope("alice", app) as tx:
        requirement_store.patch(dependent["itemId"], {"dependsOnRequirements": []}, dependent["versionId"], tx)
    with transaction_scope("alice", app) as tx:
        assert requirement_dependents(target["itemId"], tx) == []
