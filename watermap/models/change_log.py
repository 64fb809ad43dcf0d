"""
WaterMap Catalog
Change log model.

Models:
    - ChangeLog: immutable, append-only record of every lifecycle action
      on a water object version.
"""

import json
from datetime import datetime, timezone

from sqlalchemy import event

from watermap.models import db

# ── Constants ────────────────────────────────────────────────────────────────

CHANGE_ACTIONS = {
    "create",
    "update",
    "submit",
    "approve",
    "reject",
    "archive",
    "revise",
    "delete",
}


class ChangeLog(db.Model):
    """
    One row per lifecycle action.

    ``water_object_id`` is nulled by the database when the referenced draft
    is deleted (the ``delete`` entry keeps the removed id in changed_fields);
    ``canonical_id`` always survives.
    """

    __tablename__ = "change_logs"
    __table_args__ = (
        db.Index("idx_cl_canonical", "canonical_id"),
        db.Index("idx_cl_object", "water_object_id"),
        db.Index("idx_cl_performed_by", "performed_by"),
        db.Index("idx_cl_action", "action"),
    )

    id = db.Column(db.Integer, primary_key=True)
    water_object_id = db.Column(
        db.Integer,
        db.ForeignKey("water_objects.id", ondelete="SET NULL"),
        nullable=True,
    )
    canonical_id = db.Column(db.String(36), nullable=False)
    action = db.Column(
        db.String(20), nullable=False,
        comment="create | update | submit | approve | reject | archive | revise | delete",
    )
    changed_fields_json = db.Column(
        db.Text, default="{}",
        comment="JSON: {field: {old, new}}",
    )
    reviewer_notes = db.Column(db.Text)
    performed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    performed_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def changed_fields(self) -> dict:
        try:
            return json.loads(self.changed_fields_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "water_object_id": self.water_object_id,
            "canonical_id": self.canonical_id,
            "action": self.action,
            "changed_fields": self.changed_fields,
            "reviewer_notes": self.reviewer_notes,
            "performed_by": self.performed_by,
            "performed_at": self.performed_at.isoformat() if self.performed_at else None,
        }

    def __repr__(self):
        return f"<ChangeLog {self.id}: {self.action} on {self.water_object_id}/{self.canonical_id}>"


@event.listens_for(ChangeLog, "before_update")
def _block_change_log_update(mapper, connection, target):
    raise RuntimeError(f"change_logs is append-only; refusing to update entry {target.id}")


@event.listens_for(ChangeLog, "before_delete")
def _block_change_log_delete(mapper, connection, target):
    raise RuntimeError(f"change_logs is append-only; refusing to delete entry {target.id}")


# ── Convenience writer ───────────────────────────────────────────────────────

def write_change_log(
    *,
    water_object,
    action: str,
    performed_by: int,
    reviewer_notes: str | None = None,
    changed_fields: dict | None = None,
) -> ChangeLog:
    """
    Append a single change-log row.  Uses ``flush`` so callers keep
    transaction control.

    Returns the (flushed) ChangeLog instance.
    """
    if action not in CHANGE_ACTIONS:
        raise ValueError(f"Unknown change-log action: {action}")

    entry = ChangeLog(
        water_object_id=water_object.id,
        canonical_id=water_object.canonical_id,
        action=action,
        performed_by=performed_by,
        reviewer_notes=reviewer_notes,
        changed_fields_json=json.dumps(changed_fields or {}, default=str),
    )
    db.session.add(entry)
    db.session.flush()
    return entry
