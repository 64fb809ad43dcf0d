"""
Water Object Lifecycle Tests — service-level coverage for:
  - create: required fields, geometry validation, errors collected together
  - update: partial patch semantics, status reset, ownership, immutable type
  - submit / approve / reject transition rules
  - single-published invariant across versions (revise → approve)
  - delete rules
  - concurrency: stale row and lost publish race map to ConcurrentUpdateError
  - full Balkhash walk: draft → pending → rejected → draft → pending → published
"""

import pytest
from sqlalchemy import select, text

from watermap.core.exceptions import (
    AuthorizationError,
    CannotDeletePublishedError,
    ConcurrentUpdateError,
    InvalidGeometryError,
    InvalidTransitionError,
    MissingFieldError,
    MissingReasonError,
    NotFoundError,
    ValidationError,
)
from watermap.models import db
from watermap.models.auth import User
from watermap.models.change_log import ChangeLog
from watermap.models.water_object import WaterObject
from watermap.services import catalog_service
from watermap.services import water_object_lifecycle as lifecycle
from watermap.services import water_object_store as store
from watermap.services.water_object_lifecycle import WaterObjectPatch, parse_patch


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════


def _row(object_id):
    db.session.expire_all()
    return db.session.get(WaterObject, object_id)


def _actions(canonical_id):
    return [
        e.action for e in db.session.execute(
            select(ChangeLog).where(ChangeLog.canonical_id == canonical_id).order_by(ChangeLog.id)
        ).scalars()
    ]


def _published(expert, admin, payload):
    obj = lifecycle.create_water_object(expert.id, payload)
    lifecycle.submit_water_object(expert.id, obj["id"])
    return lifecycle.approve_water_object(admin.id, obj["id"])


_SNAPSHOT_FIELDS = (
    "canonical_id", "version", "object_type", "geometry", "created_by",
    "name_kz", "name_ru", "name_en", "area_km2", "max_depth_m", "sources",
    "description_en", "salinity_level",
)


def _snapshot(obj):
    return {f: getattr(obj, f) for f in _SNAPSHOT_FIELDS}


# ═══════════════════════════════════════════════════════════════════════════
# Create
# ═══════════════════════════════════════════════════════════════════════════


class TestCreate:

    def test_create_draft(self, expert, lake_payload):
        result = lifecycle.create_water_object(expert.id, lake_payload())
        assert result["status"] == "draft"
        assert result["version"] == 1
        assert result["created_by"] == expert.id
        assert len(result["canonical_id"]) == 36
        assert result["name_ru"] == "Балхаш"
        assert _actions(result["canonical_id"]) == ["create"]

    def test_each_create_gets_a_fresh_canonical_id(self, expert, lake_payload):
        a = lifecycle.create_water_object(expert.id, lake_payload())
        b = lifecycle.create_water_object(expert.id, lake_payload())
        assert a["canonical_id"] != b["canonical_id"]

    def test_feature_input_is_stored_as_bare_geometry(self, expert, lake_payload):
        feature = {"type": "Feature", "geometry": lake_payload()["geometry"], "properties": {}}
        result = lifecycle.create_water_object(expert.id, lake_payload(geometry=feature))
        assert result["geometry"]["type"] == "Polygon"

    def test_missing_fields_all_reported(self, expert):
        with pytest.raises(MissingFieldError) as exc:
            lifecycle.create_water_object(expert.id, {})
        assert set(exc.value.errors) == {
            "name_kz is required", "object_type is required", "geometry is required",
        }
        assert db.session.execute(select(WaterObject)).first() is None

    def test_invalid_geometry(self, expert, lake_payload):
        line = {"type": "LineString", "coordinates": [[77.0, 43.9], [78.0, 44.0]]}
        with pytest.raises(InvalidGeometryError) as exc:
            lifecycle.create_water_object(expert.id, lake_payload(geometry=line))
        assert "Invalid geometry type" in exc.value.errors[0]

    def test_missing_name_and_bad_geometry_reported_together(self, expert, lake_payload):
        outside = {"type": "Polygon", "coordinates": [[[100.5, 30.0], [101.0, 30.0], [101.0, 31.0], [100.5, 30.0]]]}
        with pytest.raises(ValidationError) as exc:
            lifecycle.create_water_object(expert.id, lake_payload(name_kz="", geometry=outside))
        assert "name_kz is required" in exc.value.errors
        assert "Some coordinates are outside Kazakhstan boundaries" in exc.value.errors

    def test_non_numeric_measurement_rejected(self, expert, lake_payload):
        with pytest.raises(ValidationError) as exc:
            lifecycle.create_water_object(expert.id, lake_payload(area_km2="huge"))
        assert exc.value.errors == ["area_km2 must be a number"]

    def test_plain_user_cannot_create(self, viewer, lake_payload):
        with pytest.raises(AuthorizationError):
            lifecycle.create_water_object(viewer.id, lake_payload())

    def test_unknown_actor_cannot_create(self, lake_payload):
        with pytest.raises(AuthorizationError):
            lifecycle.create_water_object(9999, lake_payload())


# ═══════════════════════════════════════════════════════════════════════════
# Update
# ═══════════════════════════════════════════════════════════════════════════


class TestUpdate:

    def test_partial_update_keeps_absent_fields(self, expert, lake_payload):
        obj = lifecycle.create_water_object(expert.id, lake_payload())
        result = lifecycle.update_water_object(expert.id, obj["id"], {"name_en": "Lake Balkhash"})
        assert result["name_en"] == "Lake Balkhash"
        assert result["name_ru"] == "Балхаш"
        assert result["area_km2"] == 16400.0
        assert result["updated_by"] == expert.id

    def test_null_values_are_ignored(self, expert, lake_payload):
        obj = lifecycle.create_water_object(expert.id, lake_payload())
        result = lifecycle.update_water_object(expert.id, obj["id"], {"name_ru": None, "area_km2": None})
        assert result["name_ru"] == "Балхаш"
        assert result["area_km2"] == 16400.0

    def test_no_op_update_is_idempotent(self, expert, admin, lake_payload):
        obj = lifecycle.create_water_object(expert.id, lake_payload())
        lifecycle.submit_water_object(expert.id, obj["id"])
        lifecycle.reject_water_object(admin.id, obj["id"], "Needs sources")
        before = _snapshot(_row(obj["id"]))

        lifecycle.update_water_object(expert.id, obj["id"], {})

        row = _row(obj["id"])
        assert _snapshot(row) == before
        assert row.status == "draft"
        assert row.rejection_reason is None

    def test_geometry_validated_against_existing_type(self, expert, lake_payload):
        obj = lifecycle.create_water_object(expert.id, lake_payload())
        point = {"type": "Point", "coordinates": [76.9, 43.2]}
        with pytest.raises(InvalidGeometryError):
            lifecycle.update_water_object(expert.id, obj["id"], {"geometry": point})
        assert _row(obj["id"]).geometry["type"] == "Polygon"

    def test_object_type_is_immutable(self, expert, lake_payload):
        obj = lifecycle.create_water_object(expert.id, lake_payload())
        with pytest.raises(ValidationError) as exc:
            lifecycle.update_water_object(expert.id, obj["id"], {"object_type": "reservoir"})
        assert exc.value.errors == ["object_type cannot be changed"]

    def test_blank_name_rejected(self, expert, lake_payload):
        obj = lifecycle.create_water_object(expert.id, lake_payload())
        with pytest.raises(ValidationError):
            lifecycle.update_water_object(expert.id, obj["id"], {"name_kz": "   "})

    def test_other_expert_forbidden(self, expert, other_expert, lake_payload):
        obj = lifecycle.create_water_object(expert.id, lake_payload())
        with pytest.raises(AuthorizationError):
            lifecycle.update_water_object(other_expert.id, obj["id"], {"name_en": "Mine now"})
        assert _row(obj["id"]).name_en == "Balkhash"

    def test_admin_may_update_any_draft(self, expert, admin, lake_payload):
        obj = lifecycle.create_water_object(expert.id, lake_payload())
        result = lifecycle.update_water_object(admin.id, obj["id"], {"name_en": "Balqash"})
        assert result["name_en"] == "Balqash"
        assert result["updated_by"] == admin.id

    def test_pending_row_cannot_be_updated(self, expert, lake_payload):
        obj = lifecycle.create_water_object(expert.id, lake_payload())
        lifecycle.submit_water_object(expert.id, obj["id"])
        with pytest.raises(InvalidTransitionError):
            lifecycle.update_water_object(expert.id, obj["id"], {"name_en": "Late edit"})

    def test_missing_row(self, expert):
        with pytest.raises(NotFoundError):
            lifecycle.update_water_object(expert.id, 424242, {"name_en": "x"})

    def test_update_logs_diff(self, expert, lake_payload):
        obj = lifecycle.create_water_object(expert.id, lake_payload())
        lifecycle.update_water_object(expert.id, obj["id"], {"max_depth_m": 25.6})
        entry = db.session.execute(
            select(ChangeLog).where(ChangeLog.action == "update")
        ).scalar_one()
        assert entry.changed_fields["max_depth_m"] == {"old": 26.0, "new": 25.6}


class TestWaterObjectPatch:

    def test_only_supplied_fields_in_changes(self):
        patch, errors = parse_patch({"name_ru": "Балхаш", "length_km": 3, "name_en": None})
        assert errors == []
        assert patch.changes() == {"name_ru": "Балхаш", "length_km": 3.0}

    def test_empty_patch(self):
        assert WaterObjectPatch().changes() == {}

    def test_type_errors_collected(self):
        _, errors = parse_patch({"length_km": "long", "sources": "one", "name_ru": 5})
        assert set(errors) == {
            "length_km must be a number", "sources must be an array", "name_ru must be a string",
        }


# ═══════════════════════════════════════════════════════════════════════════
# Review transitions
# ═══════════════════════════════════════════════════════════════════════════


class TestReviewTransitions:

    def test_submit(self, expert, lake_payload):
        obj = lifecycle.create_water_object(expert.id, lake_payload())
        assert lifecycle.submit_water_object(expert.id, obj["id"])["status"] == "pending"

    def test_submit_twice_is_invalid(self, expert, lake_payload):
        obj = lifecycle.create_water_object(expert.id, lake_payload())
        lifecycle.submit_water_object(expert.id, obj["id"])
        with pytest.raises(InvalidTransitionError):
            lifecycle.submit_water_object(expert.id, obj["id"])

    def test_approve_requires_pending(self, expert, admin, lake_payload):
        obj = lifecycle.create_water_object(expert.id, lake_payload())
        with pytest.raises(InvalidTransitionError):
            lifecycle.approve_water_object(admin.id, obj["id"])
        assert _row(obj["id"]).status == "draft"

    def test_second_approve_is_invalid_and_mutates_nothing(self, expert, admin, lake_payload):
        obj = _published(expert, admin, lake_payload())
        before = _row(obj["id"]).row_version
        with pytest.raises(InvalidTransitionError):
            lifecycle.approve_water_object(admin.id, obj["id"])
        with pytest.raises(InvalidTransitionError):
            lifecycle.reject_water_object(admin.id, obj["id"], "too late")
        with pytest.raises(InvalidTransitionError):
            lifecycle.submit_water_object(expert.id, obj["id"])
        row = _row(obj["id"])
        assert row.status == "published"
        assert row.row_version == before

    def test_rejected_row_cannot_be_approved(self, expert, admin, lake_payload):
        obj = lifecycle.create_water_object(expert.id, lake_payload())
        lifecycle.submit_water_object(expert.id, obj["id"])
        lifecycle.reject_water_object(admin.id, obj["id"], "Wrong outline")
        with pytest.raises(InvalidTransitionError):
            lifecycle.approve_water_object(admin.id, obj["id"])

    def test_reject_requires_reason(self, expert, admin, lake_payload):
        obj = lifecycle.create_water_object(expert.id, lake_payload())
        lifecycle.submit_water_object(expert.id, obj["id"])
        for reason in (None, "", "   "):
            with pytest.raises(MissingReasonError):
                lifecycle.reject_water_object(admin.id, obj["id"], reason)
        assert _row(obj["id"]).status == "pending"

    def test_expert_cannot_approve(self, expert, lake_payload):
        obj = lifecycle.create_water_object(expert.id, lake_payload())
        lifecycle.submit_water_object(expert.id, obj["id"])
        with pytest.raises(AuthorizationError):
            lifecycle.approve_water_object(expert.id, obj["id"])

    def test_approve_sets_review_fields(self, expert, admin, lake_payload):
        obj = lifecycle.create_water_object(expert.id, lake_payload())
        lifecycle.submit_water_object(expert.id, obj["id"])
        result = lifecycle.approve_water_object(admin.id, obj["id"], notes="Checked against atlas")
        assert result["status"] == "published"
        assert result["published_at"] is not None
        assert result["reviewed_by"] == admin.id
        entry = db.session.execute(
            select(ChangeLog).where(ChangeLog.action == "approve")
        ).scalar_one()
        assert entry.reviewer_notes == "Checked against atlas"


# ═══════════════════════════════════════════════════════════════════════════
# Versions & the single-published invariant
# ═══════════════════════════════════════════════════════════════════════════


class TestVersions:

    def test_revise_opens_next_version(self, expert, admin, lake_payload):
        v1 = _published(expert, admin, lake_payload())
        v2 = lifecycle.revise_water_object(expert.id, v1["canonical_id"])
        assert v2["canonical_id"] == v1["canonical_id"]
        assert v2["version"] == 2
        assert v2["status"] == "draft"
        assert v2["name_kz"] == v1["name_kz"]
        assert v2["geometry"] == v1["geometry"]
        assert _row(v1["id"]).status == "published"

    def test_revise_without_published_row(self, expert, lake_payload):
        obj = lifecycle.create_water_object(expert.id, lake_payload())
        with pytest.raises(NotFoundError):
            lifecycle.revise_water_object(expert.id, obj["canonical_id"])

    def test_approving_v2_archives_v1(self, expert, admin, lake_payload):
        v1 = _published(expert, admin, lake_payload())
        v2 = lifecycle.revise_water_object(expert.id, v1["canonical_id"])
        lifecycle.update_water_object(expert.id, v2["id"], {"max_depth_m": 25.6})
        lifecycle.submit_water_object(expert.id, v2["id"])
        lifecycle.approve_water_object(admin.id, v2["id"])

        assert _row(v1["id"]).status == "archived"
        assert _row(v2["id"]).status == "published"
        assert store.count_published(v1["canonical_id"]) == 1

        feature = catalog_service.get_published(v1["canonical_id"])
        assert feature["properties"]["id"] == v2["id"]
        assert feature["properties"]["max_depth_m"] == 25.6
        assert "archive" in _actions(v1["canonical_id"])

    def test_update_and_resubmit_never_bump_version(self, expert, admin, lake_payload):
        obj = lifecycle.create_water_object(expert.id, lake_payload())
        lifecycle.submit_water_object(expert.id, obj["id"])
        lifecycle.reject_water_object(admin.id, obj["id"], "Check depth")
        lifecycle.update_water_object(expert.id, obj["id"], {"max_depth_m": 25.0})
        result = lifecycle.submit_water_object(expert.id, obj["id"])
        assert result["version"] == 1


# ═══════════════════════════════════════════════════════════════════════════
# Delete
# ═══════════════════════════════════════════════════════════════════════════


class TestDelete:

    def test_delete_draft(self, expert, lake_payload):
        obj = lifecycle.create_water_object(expert.id, lake_payload())
        lifecycle.delete_water_object(expert.id, obj["id"])
        assert _row(obj["id"]) is None
        assert _actions(obj["canonical_id"]) == ["create", "delete"]

    def test_delete_pending(self, expert, lake_payload):
        obj = lifecycle.create_water_object(expert.id, lake_payload())
        lifecycle.submit_water_object(expert.id, obj["id"])
        assert lifecycle.delete_water_object(expert.id, obj["id"])["deleted"] is True

    def test_cannot_delete_published(self, expert, admin, lake_payload):
        obj = _published(expert, admin, lake_payload())
        with pytest.raises(CannotDeletePublishedError):
            lifecycle.delete_water_object(admin.id, obj["id"])
        row = _row(obj["id"])
        assert row is not None
        assert row.status == "published"

    def test_cannot_delete_archived(self, expert, admin, lake_payload):
        v1 = _published(expert, admin, lake_payload())
        v2 = lifecycle.revise_water_object(expert.id, v1["canonical_id"])
        lifecycle.submit_water_object(expert.id, v2["id"])
        lifecycle.approve_water_object(admin.id, v2["id"])
        with pytest.raises(InvalidTransitionError):
            lifecycle.delete_water_object(admin.id, v1["id"])

    def test_other_expert_cannot_delete(self, expert, other_expert, lake_payload):
        obj = lifecycle.create_water_object(expert.id, lake_payload())
        with pytest.raises(AuthorizationError):
            lifecycle.delete_water_object(other_expert.id, obj["id"])


# ═══════════════════════════════════════════════════════════════════════════
# Concurrency
# ═══════════════════════════════════════════════════════════════════════════


class TestConcurrency:

    def test_stale_row_is_rejected(self, expert, lake_payload, monkeypatch):
        """A writer holding an old row_version loses instead of overwriting."""
        obj = lifecycle.create_water_object(expert.id, lake_payload())
        held = db.session.get(WaterObject, obj["id"])
        assert held.status == "draft"  # loads row_version into the identity map

        db.session.execute(
            text("UPDATE water_objects SET row_version = row_version + 1 WHERE id = :id"),
            {"id": obj["id"]},
        )
        monkeypatch.setattr(store, "lock_by_id", lambda object_id: held)

        with pytest.raises(ConcurrentUpdateError):
            lifecycle.update_water_object(expert.id, obj["id"], {"name_en": "Stale write"})
        assert _row(obj["id"]).name_en == "Balkhash"

    def test_lost_publish_race_is_rolled_back(self, expert, admin, lake_payload, monkeypatch):
        """If archive misses the current published row, the unique index stops the second publish."""
        v1 = _published(expert, admin, lake_payload())
        v2 = lifecycle.revise_water_object(expert.id, v1["canonical_id"])
        lifecycle.submit_water_object(expert.id, v2["id"])

        monkeypatch.setattr(store, "archive_published_by_canonical_id", lambda *a, **kw: [])
        with pytest.raises(ConcurrentUpdateError):
            lifecycle.approve_water_object(admin.id, v2["id"])

        assert _row(v1["id"]).status == "published"
        assert _row(v2["id"]).status == "pending"
        assert store.count_published(v1["canonical_id"]) == 1


class TestAtomicity:

    def test_non_database_error_rolls_back_flushed_changes(self, expert, lake_payload, monkeypatch):
        obj = lifecycle.create_water_object(expert.id, lake_payload())

        def _broken_log(**kwargs):
            raise RuntimeError("change log unavailable")

        monkeypatch.setattr(lifecycle, "write_change_log", _broken_log)
        with pytest.raises(RuntimeError):
            lifecycle.update_water_object(expert.id, obj["id"], {"name_en": "Half written"})

        assert not db.session.dirty
        assert _row(obj["id"]).name_en == "Balkhash"
        assert _actions(obj["canonical_id"]) == ["create"]

    def test_transition_logs_carry_workflow_context(self, expert, admin, lake_payload, caplog):
        obj = lifecycle.create_water_object(expert.id, lake_payload())
        lifecycle.submit_water_object(expert.id, obj["id"])
        with caplog.at_level("INFO", logger=lifecycle.logger.name):
            lifecycle.approve_water_object(admin.id, obj["id"])

        record = next(r for r in caplog.records if getattr(r, "action", None) == "approve")
        assert record.water_object_id == obj["id"]
        assert record.canonical_id == obj["canonical_id"]
        assert record.user_id == admin.id
        assert record.status_from == "pending"
        assert record.status_to == "published"


# ═══════════════════════════════════════════════════════════════════════════
# Full walk
# ═══════════════════════════════════════════════════════════════════════════


class TestBalkhashScenario:

    def test_draft_to_published_via_rejection(self, lake_payload):
        db.session.add_all([
            User(id=1, name="Admin", email="admin1@watermap.test", role="admin"),
            User(id=7, name="Owner", email="owner7@watermap.test", role="expert"),
        ])
        db.session.commit()

        created = lifecycle.create_water_object(7, lake_payload(name_kz="Balkhash", name_ru=None))
        assert created["status"] == "draft"
        assert created["version"] == 1
        oid = created["id"]

        assert lifecycle.submit_water_object(7, oid)["status"] == "pending"

        rejected = lifecycle.reject_water_object(1, oid, "Missing Russian name")
        assert rejected["status"] == "rejected"
        assert rejected["rejection_reason"] == "Missing Russian name"

        updated = lifecycle.update_water_object(7, oid, {"name_ru": "Балхаш"})
        assert updated["status"] == "draft"
        assert updated["rejection_reason"] is None

        assert lifecycle.submit_water_object(7, oid)["status"] == "pending"

        approved = lifecycle.approve_water_object(1, oid)
        assert approved["status"] == "published"
        assert approved["published_at"] is not None

        listing = catalog_service.list_published()
        assert [f["id"] for f in listing["features"]] == [created["canonical_id"]]
        assert _actions(created["canonical_id"]) == [
            "create", "submit", "reject", "update", "submit", "approve",
        ]
