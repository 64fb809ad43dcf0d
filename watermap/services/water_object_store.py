"""
Water object persistence layer.

A deliberately dumb store: it reads and writes ``water_objects`` rows and
NEVER checks ownership or status.  Those rules live in
``water_object_lifecycle``.

Rules:
  - Functions flush, they never commit.  The caller owns the transaction.
  - Archive and publish are separate calls so the archive-before-publish
    ordering stays visible (and testable) in the workflow.
  - ``lock_*`` functions take row locks (SELECT ... FOR UPDATE).  SQLite
    ignores FOR UPDATE; the optimistic row_version check still applies.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import func, select

from watermap.models import db
from watermap.models.water_object import (
    STATUS_ARCHIVED,
    STATUS_DRAFT,
    STATUS_PUBLISHED,
    WaterObject,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Writes ───────────────────────────────────────────────────────────────────


def insert_draft(
    *,
    created_by: int,
    object_type: str,
    geometry: dict,
    fields: dict,
    canonical_id: str | None = None,
    version: int = 1,
) -> WaterObject:
    """Insert a new draft row.  A fresh canonical_id is allocated unless one is given."""
    now = _utcnow()
    obj = WaterObject(
        object_type=object_type,
        geometry=geometry,
        status=STATUS_DRAFT,
        version=version,
        created_by=created_by,
        created_at=now,
        updated_at=now,
        **fields,
    )
    if canonical_id is not None:
        obj.canonical_id = canonical_id
    db.session.add(obj)
    db.session.flush()
    return obj


def patch_by_id(obj: WaterObject, changes: dict) -> dict:
    """
    Apply *changes* field by field to a loaded row.

    Returns:
        {field: {"old": ..., "new": ...}} for the fields whose value changed.
    """
    diff = {}
    for field, value in changes.items():
        old = getattr(obj, field)
        if old != value:
            diff[field] = {"old": old, "new": value}
            setattr(obj, field, value)
    obj.updated_at = _utcnow()
    db.session.flush()
    return diff


def archive_published_by_canonical_id(canonical_id: str, *, exclude_id: int | None = None) -> list[WaterObject]:
    """Set every published row of *canonical_id* (other than *exclude_id*) to archived."""
    stmt = select(WaterObject).where(
        WaterObject.canonical_id == canonical_id,
        WaterObject.status == STATUS_PUBLISHED,
    )
    if exclude_id is not None:
        stmt = stmt.where(WaterObject.id != exclude_id)

    archived = list(db.session.execute(stmt).scalars())
    now = _utcnow()
    for row in archived:
        row.status = STATUS_ARCHIVED
        row.updated_at = now
    db.session.flush()
    return archived


def publish_by_id(obj: WaterObject, *, reviewed_by: int) -> WaterObject:
    now = _utcnow()
    obj.status = STATUS_PUBLISHED
    obj.published_at = now
    obj.reviewed_by = reviewed_by
    obj.updated_at = now
    db.session.flush()
    return obj


def delete_by_id(obj: WaterObject) -> None:
    db.session.delete(obj)
    db.session.flush()


# ── Reads ────────────────────────────────────────────────────────────────────


def get_by_id(object_id: int) -> WaterObject | None:
    return db.session.get(WaterObject, object_id)


def lock_by_id(object_id: int) -> WaterObject | None:
    """Load a row with a row-level lock held until the transaction ends."""
    return db.session.execute(
        select(WaterObject)
        .where(WaterObject.id == object_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def lock_lineage(canonical_id: str) -> list[WaterObject]:
    """Lock every row of a canonical_id, in id order to keep lock acquisition consistent."""
    return list(db.session.execute(
        select(WaterObject)
        .where(WaterObject.canonical_id == canonical_id)
        .order_by(WaterObject.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalars())


def get_by_canonical_id_and_status(canonical_id: str, status: str) -> WaterObject | None:
    return db.session.execute(
        select(WaterObject).where(
            WaterObject.canonical_id == canonical_id,
            WaterObject.status == status,
        ).order_by(WaterObject.id.desc())
    ).scalars().first()


def count_published(canonical_id: str) -> int:
    return db.session.execute(
        select(func.count(WaterObject.id)).where(
            WaterObject.canonical_id == canonical_id,
            WaterObject.status == STATUS_PUBLISHED,
        )
    ).scalar_one()


def list_by_status(status: str, *, object_type: str | None = None, order_by=None) -> list[WaterObject]:
    stmt = select(WaterObject).where(WaterObject.status == status)
    if object_type:
        stmt = stmt.where(WaterObject.object_type == object_type)
    stmt = stmt.order_by(*(order_by if order_by is not None else (WaterObject.id,)))
    return list(db.session.execute(stmt).scalars())


def list_by_owner(owner_id: int, statuses) -> list[WaterObject]:
    return list(db.session.execute(
        select(WaterObject)
        .where(WaterObject.created_by == owner_id, WaterObject.status.in_(list(statuses)))
        .order_by(WaterObject.updated_at.desc(), WaterObject.id.desc())
    ).scalars())


def list_versions(canonical_id: str) -> list[WaterObject]:
    return list(db.session.execute(
        select(WaterObject)
        .where(WaterObject.canonical_id == canonical_id)
        .order_by(WaterObject.version.desc(), WaterObject.id.desc())
    ).scalars())


def next_version_number(canonical_id: str) -> int:
    current = db.session.execute(
        select(func.max(WaterObject.version)).where(WaterObject.canonical_id == canonical_id)
    ).scalar_one()
    return (current or 0) + 1


def count_by_status() -> dict[str, int]:
    rows = db.session.execute(
        select(WaterObject.status, func.count(WaterObject.id)).group_by(WaterObject.status)
    ).all()
    return {status: count for status, count in rows}
