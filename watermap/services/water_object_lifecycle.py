"""
Water Object Lifecycle Service

Manages water object status transitions with:
  - Transition validation (WATER_OBJECT_TRANSITIONS)
  - Role capability sets and ownership checks
  - Geometry validation before anything is written
  - Change log entry written in the same transaction as the state change

Transitions:
  create, update, submit, approve, reject, delete, revise

Concurrency:
  Every transition runs inside ``transaction()``: one commit on success,
  one rollback on any failure.  Rows are loaded with SELECT ... FOR UPDATE;
  approve locks the whole canonical_id lineage (in id order) before it
  archives and publishes, then re-counts published rows before commit.
  A writer holding a stale row (row_version mismatch) gets
  ConcurrentUpdateError: stale status is rejected, never overwritten.

Usage:
    from watermap.services.water_object_lifecycle import approve_water_object

    result = approve_water_object(admin_id=1, object_id=42, notes="Looks good")
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, fields
from numbers import Real

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from watermap.core.exceptions import (
    AuthorizationError,
    CannotDeletePublishedError,
    ConcurrentUpdateError,
    InvalidGeometryError,
    InvalidTransitionError,
    MissingFieldError,
    MissingReasonError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from watermap.models import db
from watermap.models.auth import EDITOR_ROLES, REVIEWER_ROLES, User
from watermap.models.change_log import ChangeLog, write_change_log
from watermap.models.water_object import (
    DESCRIPTIVE_FIELDS,
    NUMERIC_FIELDS,
    OBJECT_TYPES,
    OWNER_WORKING_STATUSES,
    STATUS_PENDING,
    STATUS_PUBLISHED,
    WaterObject,
    validate_transition,
)
from watermap.services import water_object_store as store
from watermap.services.geometry_validator import validate_geojson

logger = logging.getLogger(__name__)

_DOMAIN_ERRORS = (
    AuthorizationError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)


# ── Partial update payload ───────────────────────────────────────────────────


@dataclass(frozen=True)
class WaterObjectPatch:
    """Explicit partial update.  ``None`` means "leave the stored value alone"."""

    name_kz: str | None = None
    name_ru: str | None = None
    name_en: str | None = None
    geometry: dict | None = None
    length_km: float | None = None
    area_km2: float | None = None
    max_depth_m: float | None = None
    avg_depth_m: float | None = None
    water_volume_km3: float | None = None
    basin_area_km2: float | None = None
    avg_discharge_m3s: float | None = None
    salinity_level: str | None = None
    pollution_index: float | None = None
    ecological_status: str | None = None
    description_kz: str | None = None
    description_ru: str | None = None
    description_en: str | None = None
    historical_notes: str | None = None
    sources: list | None = None

    def changes(self) -> dict:
        """Only the fields that were supplied."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }


def _parse_fields(data: dict, errors: list[str]) -> dict:
    """Type-check the descriptive fields present in *data*; append problems to *errors*."""
    parsed = {}
    for field in DESCRIPTIVE_FIELDS:
        value = data.get(field)
        if value is None:
            continue
        if field in NUMERIC_FIELDS:
            if not isinstance(value, Real) or isinstance(value, bool):
                errors.append(f"{field} must be a number")
                continue
            parsed[field] = float(value)
        elif field == "sources":
            if not isinstance(value, list):
                errors.append("sources must be an array")
                continue
            parsed[field] = value
        else:
            if not isinstance(value, str):
                errors.append(f"{field} must be a string")
                continue
            parsed[field] = value.strip() if field.startswith("name_") else value
    return parsed


def parse_patch(data: dict) -> tuple[WaterObjectPatch, list[str]]:
    """Build a WaterObjectPatch from a request payload.

    Returns:
        (patch, errors) — errors lists every malformed field.
    """
    errors: list[str] = []
    parsed = _parse_fields(data, errors)
    if "name_kz" in parsed and not parsed["name_kz"]:
        errors.append("name_kz cannot be blank")
        parsed.pop("name_kz")
    if data.get("geometry") is not None:
        parsed["geometry"] = data["geometry"]
    return WaterObjectPatch(**parsed), errors


# ── Helpers ──────────────────────────────────────────────────────────────────


@contextmanager
def transaction(action: str, object_id: int | None = None):
    """One atomic unit of work: commit on success, rollback on any failure."""
    try:
        yield
        db.session.commit()
    except _DOMAIN_ERRORS:
        db.session.rollback()
        raise
    except StaleDataError as exc:
        db.session.rollback()
        logger.warning("Stale row during %s (object=%s): %s", action, object_id, exc,
                       extra=_log_extra(action, object_id=object_id))
        raise ConcurrentUpdateError(object_id, action) from exc
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error during %s (object=%s): %s", action, object_id, exc.orig,
                       extra=_log_extra(action, object_id=object_id))
        raise ConcurrentUpdateError(
            object_id, action, "Another version of this object was published concurrently",
        ) from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Persistence failure during %s (object=%s)", action, object_id,
                         extra=_log_extra(action, object_id=object_id))
        raise PersistenceError(action) from exc
    except Exception:
        db.session.rollback()
        raise


def _log_extra(action: str, obj: WaterObject | None = None, actor_id: int | None = None, *,
               object_id: int | None = None, canonical_id: str | None = None,
               status_from: str | None = None) -> dict:
    """`extra=` payload carrying workflow context into structured logs."""
    if obj is not None:
        object_id, canonical_id = obj.id, obj.canonical_id
    return {
        "action": action,
        "water_object_id": object_id,
        "canonical_id": canonical_id,
        "user_id": actor_id,
        "status_from": status_from,
        "status_to": obj.status if obj is not None else None,
    }


def require_actor(actor_id: int, action: str, allowed_roles) -> User:
    actor = db.session.get(User, actor_id)
    if actor is None:
        raise AuthorizationError(actor_id, action, "unknown user")
    if actor.role not in allowed_roles:
        raise AuthorizationError(
            actor_id, action, f"requires one of {sorted(allowed_roles)}, has '{actor.role}'",
        )
    return actor


def _require_owner_or_admin(obj: WaterObject, actor: User, action: str) -> None:
    if obj.created_by != actor.id and not actor.is_admin:
        raise AuthorizationError(actor.id, action, f"not the owner of water object {obj.id}")


def _lock_or_404(object_id: int) -> WaterObject:
    obj = store.lock_by_id(object_id)
    if obj is None:
        raise NotFoundError(resource="WaterObject", resource_id=object_id)
    return obj


def _check_transition(obj: WaterObject, action: str) -> dict:
    validation = validate_transition(obj, action)
    if not validation["valid"]:
        raise InvalidTransitionError(obj.id, action, obj.status, validation["reason"])
    return validation


def _raise_if_invalid(missing: list[str], geometry_errors: list[str], other: list[str]) -> None:
    if not (missing or geometry_errors or other):
        return
    if missing and not (geometry_errors or other):
        raise MissingFieldError("Required fields are missing", errors=missing)
    if geometry_errors and not (missing or other):
        raise InvalidGeometryError("Invalid geometry", errors=geometry_errors)
    raise ValidationError("Validation failed", errors=missing + other + geometry_errors)


# ═════════════════════════════════════════════════════════════════════════════
# Transitions
# ═════════════════════════════════════════════════════════════════════════════


def create_water_object(owner_id: int, data: dict) -> dict:
    """
    Create a new draft with a freshly allocated canonical_id and version 1.

    Args:
        owner_id: Expert or admin creating the draft.
        data: name_kz, object_type and geometry are required; every other
              descriptive field is optional.

    Raises:
        AuthorizationError, MissingFieldError, InvalidGeometryError, ValidationError
    """
    require_actor(owner_id, "create", EDITOR_ROLES)

    missing: list[str] = []
    other: list[str] = []
    geometry_errors: list[str] = []

    parsed = _parse_fields(data, other)
    if not parsed.get("name_kz"):
        missing.append("name_kz is required")

    object_type = data.get("object_type")
    if not object_type:
        missing.append("object_type is required")

    geometry_input = data.get("geometry")
    geometry = None
    if not geometry_input:
        missing.append("geometry is required")
        if object_type and object_type not in OBJECT_TYPES:
            other.append(f"Unknown object type: {object_type}")
    elif object_type:
        result = validate_geojson(geometry_input, object_type)
        geometry_errors.extend(result["errors"])
        geometry = result["geometry"]

    _raise_if_invalid(missing, geometry_errors, other)

    with transaction("create"):
        obj = store.insert_draft(
            created_by=owner_id,
            object_type=object_type,
            geometry=geometry,
            fields=parsed,
        )
        write_change_log(water_object=obj, action="create", performed_by=owner_id)

    logger.info(
        "Water object %s created canonical_id=%s type=%s by user=%s",
        obj.id, obj.canonical_id, obj.object_type, owner_id,
        extra=_log_extra("create", obj, owner_id),
    )
    return obj.to_dict()


def update_water_object(actor_id: int, object_id: int, data: dict) -> dict:
    """
    Apply a partial update to a draft or rejected row.

    Absent (or null) fields keep their stored value.  The row always returns
    to draft and any rejection reason is cleared.  A supplied geometry is
    validated against the row's existing object_type.

    Raises:
        NotFoundError, InvalidTransitionError, AuthorizationError,
        InvalidGeometryError, ValidationError
    """
    actor = require_actor(actor_id, "update", EDITOR_ROLES)
    patch, errors = parse_patch(data)

    with transaction("update", object_id):
        obj = _lock_or_404(object_id)
        _check_transition(obj, "update")
        _require_owner_or_admin(obj, actor, "update")

        if data.get("object_type") not in (None, obj.object_type):
            errors.append("object_type cannot be changed")

        changes = patch.changes()
        geometry_errors: list[str] = []
        if "geometry" in changes:
            result = validate_geojson(changes["geometry"], obj.object_type)
            geometry_errors = result["errors"]
            changes["geometry"] = result["geometry"]
        _raise_if_invalid([], geometry_errors, errors)

        changes.update(status="draft", rejection_reason=None, updated_by=actor.id)
        diff = store.patch_by_id(obj, changes)
        write_change_log(
            water_object=obj, action="update", performed_by=actor.id, changed_fields=diff,
        )

    logger.info("Water object %s updated fields=%s by user=%s", object_id, sorted(diff), actor_id,
                extra=_log_extra("update", obj, actor_id))
    return obj.to_dict()


def submit_water_object(actor_id: int, object_id: int) -> dict:
    """Send a draft or rejected row to review (status → pending)."""
    actor = require_actor(actor_id, "submit", EDITOR_ROLES)

    with transaction("submit", object_id):
        obj = _lock_or_404(object_id)
        validation = _check_transition(obj, "submit")
        _require_owner_or_admin(obj, actor, "submit")
        previous = obj.status

        diff = store.patch_by_id(obj, {
            "status": validation["to"],
            "rejection_reason": None,
        })
        write_change_log(
            water_object=obj, action="submit", performed_by=actor.id, changed_fields=diff,
        )

    logger.info("Water object %s submitted for review by user=%s", object_id, actor_id,
                extra=_log_extra("submit", obj, actor_id, status_from=previous))
    return obj.to_dict()


def approve_water_object(admin_id: int, object_id: int, notes: str | None = None) -> dict:
    """
    Publish a pending row.

    Any other published row of the same canonical_id is archived first, in
    the same transaction.  After publishing, exactly one published row must
    exist for the canonical_id or the whole unit is rolled back.

    Raises:
        AuthorizationError, NotFoundError, InvalidTransitionError, ConcurrentUpdateError
    """
    require_actor(admin_id, "approve", REVIEWER_ROLES)

    with transaction("approve", object_id):
        target = store.get_by_id(object_id)
        if target is None:
            raise NotFoundError(resource="WaterObject", resource_id=object_id)

        lineage = store.lock_lineage(target.canonical_id)
        obj = next((row for row in lineage if row.id == object_id), None)
        if obj is None:
            raise NotFoundError(resource="WaterObject", resource_id=object_id)
        _check_transition(obj, "approve")

        archived = store.archive_published_by_canonical_id(obj.canonical_id, exclude_id=obj.id)
        for row in archived:
            write_change_log(
                water_object=row,
                action="archive",
                performed_by=admin_id,
                changed_fields={
                    "status": {"old": STATUS_PUBLISHED, "new": row.status},
                    "superseded_by": obj.id,
                },
            )

        store.publish_by_id(obj, reviewed_by=admin_id)
        if store.count_published(obj.canonical_id) != 1:
            raise ConcurrentUpdateError(
                obj.id, "approve", "Single published version invariant violated",
            )

        write_change_log(
            water_object=obj,
            action="approve",
            performed_by=admin_id,
            reviewer_notes=notes or None,
            changed_fields={
                "status": {"old": STATUS_PENDING, "new": STATUS_PUBLISHED},
                "archived_ids": [row.id for row in archived],
            },
        )

    logger.info(
        "Water object %s approved canonical_id=%s archived=%s by admin=%s",
        object_id, obj.canonical_id, [row.id for row in archived], admin_id,
        extra=_log_extra("approve", obj, admin_id, status_from=STATUS_PENDING),
    )
    return obj.to_dict()


def reject_water_object(admin_id: int, object_id: int, reason: str | None) -> dict:
    """Send a pending row back to its owner with a reason (status → rejected)."""
    reason = (reason or "").strip() if isinstance(reason, str) else ""
    if not reason:
        raise MissingReasonError()
    require_actor(admin_id, "reject", REVIEWER_ROLES)

    with transaction("reject", object_id):
        obj = _lock_or_404(object_id)
        validation = _check_transition(obj, "reject")

        diff = store.patch_by_id(obj, {
            "status": validation["to"],
            "rejection_reason": reason,
            "reviewed_by": admin_id,
        })
        write_change_log(
            water_object=obj,
            action="reject",
            performed_by=admin_id,
            reviewer_notes=reason,
            changed_fields=diff,
        )

    logger.info("Water object %s rejected by admin=%s", object_id, admin_id,
                extra=_log_extra("reject", obj, admin_id, status_from=STATUS_PENDING))
    return obj.to_dict()


def delete_water_object(actor_id: int, object_id: int) -> dict:
    """
    Permanently remove a draft, pending or rejected row.

    Published rows are never deleted; archived rows are history and stay.
    """
    actor = require_actor(actor_id, "delete", EDITOR_ROLES)

    with transaction("delete", object_id):
        obj = _lock_or_404(object_id)
        if obj.status == STATUS_PUBLISHED:
            raise CannotDeletePublishedError(obj.id)
        _check_transition(obj, "delete")
        _require_owner_or_admin(obj, actor, "delete")

        canonical_id = obj.canonical_id
        previous = obj.status
        write_change_log(
            water_object=obj,
            action="delete",
            performed_by=actor.id,
            changed_fields={"id": obj.id, "status": obj.status, "version": obj.version},
        )
        store.delete_by_id(obj)

    logger.info(
        "Water object %s deleted canonical_id=%s by user=%s", object_id, canonical_id, actor_id,
        extra=_log_extra("delete", actor_id=actor_id, object_id=object_id,
                         canonical_id=canonical_id, status_from=previous),
    )
    return {"id": object_id, "canonical_id": canonical_id, "deleted": True}


def revise_water_object(actor_id: int, canonical_id: str) -> dict:
    """
    Open a new draft version of a published water object.

    The draft copies the published row's fields, keeps its canonical_id and
    takes the next version number.  The published row is untouched until
    the new version is approved.
    """
    actor = require_actor(actor_id, "revise", EDITOR_ROLES)

    with transaction("revise"):
        store.lock_lineage(canonical_id)
        published = store.get_by_canonical_id_and_status(canonical_id, STATUS_PUBLISHED)
        if published is None:
            raise NotFoundError(resource="Published WaterObject", resource_id=canonical_id)

        version = store.next_version_number(canonical_id)
        obj = store.insert_draft(
            created_by=actor.id,
            object_type=published.object_type,
            geometry=published.geometry,
            fields={field: getattr(published, field) for field in DESCRIPTIVE_FIELDS},
            canonical_id=canonical_id,
            version=version,
        )
        write_change_log(
            water_object=obj,
            action="revise",
            performed_by=actor.id,
            changed_fields={
                "revised_from": published.id,
                "version": {"old": published.version, "new": version},
            },
        )

    logger.info(
        "Water object %s opened as version %s of canonical_id=%s by user=%s",
        obj.id, version, canonical_id, actor_id,
        extra=_log_extra("revise", obj, actor_id),
    )
    return obj.to_dict()


# ═════════════════════════════════════════════════════════════════════════════
# Review queue & owner views
# ═════════════════════════════════════════════════════════════════════════════


def list_pending() -> list[dict]:
    """Pending rows, oldest first, with submitter name/email."""
    rows = store.list_by_status(
        STATUS_PENDING, order_by=(WaterObject.updated_at.asc(), WaterObject.id.asc()),
    )
    items = []
    for row in rows:
        d = row.to_dict()
        d["submitted_by_name"] = row.creator.name if row.creator else None
        d["submitted_by_email"] = row.creator.email if row.creator else None
        items.append(d)
    return items


def get_diff(object_id: int) -> dict:
    """
    A pending row next to the currently published row of its canonical_id.

    Returns:
        {"pending": dict, "published": dict | None, "is_new_object": bool}
    """
    pending = store.get_by_id(object_id)
    if pending is None or pending.status != STATUS_PENDING:
        raise NotFoundError(resource="Pending WaterObject", resource_id=object_id)

    published = store.get_by_canonical_id_and_status(pending.canonical_id, STATUS_PUBLISHED)
    return {
        "pending": pending.to_dict(),
        "published": published.to_dict() if published else None,
        "is_new_object": published is None,
    }


def list_by_owner(owner_id: int, statuses=OWNER_WORKING_STATUSES) -> list[dict]:
    """An owner's rows in the given statuses, most recently touched first."""
    return [row.to_dict() for row in store.list_by_owner(owner_id, statuses)]


def list_change_log(*, canonical_id: str | None = None, water_object_id: int | None = None) -> list[dict]:
    """Change log entries, oldest first, optionally narrowed to one lineage or row."""
    stmt = select(ChangeLog)
    if canonical_id:
        stmt = stmt.where(ChangeLog.canonical_id == canonical_id)
    if water_object_id is not None:
        stmt = stmt.where(ChangeLog.water_object_id == water_object_id)
    stmt = stmt.order_by(ChangeLog.performed_at.asc(), ChangeLog.id.asc())
    return [entry.to_dict() for entry in db.session.execute(stmt).scalars()]


def validate_object_type(object_type: str | None) -> None:
    if object_type is not None and object_type not in OBJECT_TYPES:
        raise ValidationError(
            "Unknown object type",
            errors=[f"object_type must be one of: {', '.join(sorted(OBJECT_TYPES))}"],
        )
