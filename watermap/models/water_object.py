"""
WaterMap Catalog
Water object domain model.

Models:
    - WaterObject: one row per version of a water feature.

Lifecycle: draft → pending → published | rejected;  published → archived
when a newer version of the same canonical_id is approved.  Rejected rows
are editable again (update/submit).  Archived rows are history only.

One canonical_id may have many rows, but at most ONE published row.  The
workflow service sequences archive-before-publish inside a transaction; the
partial unique index below is the database-side backstop.
"""

import uuid
from datetime import datetime, timezone

from watermap.models import db

# ── Constants ────────────────────────────────────────────────────────────────

OBJECT_TYPES = {"river", "canal", "lake", "reservoir", "glacier", "spring"}

STATUS_DRAFT = "draft"
STATUS_PENDING = "pending"
STATUS_PUBLISHED = "published"
STATUS_ARCHIVED = "archived"
STATUS_REJECTED = "rejected"

OBJECT_STATUSES = {
    STATUS_DRAFT, STATUS_PENDING, STATUS_PUBLISHED, STATUS_ARCHIVED, STATUS_REJECTED,
}

EDITABLE_STATUSES = (STATUS_DRAFT, STATUS_REJECTED)

# Statuses shown on an expert's "my drafts" page
OWNER_WORKING_STATUSES = (STATUS_DRAFT, STATUS_PENDING, STATUS_REJECTED)

WATER_OBJECT_TRANSITIONS = {
    "update":  {"from": [STATUS_DRAFT, STATUS_REJECTED], "to": STATUS_DRAFT},
    "submit":  {"from": [STATUS_DRAFT, STATUS_REJECTED], "to": STATUS_PENDING},
    "approve": {"from": [STATUS_PENDING], "to": STATUS_PUBLISHED},
    "reject":  {"from": [STATUS_PENDING], "to": STATUS_REJECTED},
    "archive": {"from": [STATUS_PUBLISHED], "to": STATUS_ARCHIVED},
    "delete":  {"from": [STATUS_DRAFT, STATUS_PENDING, STATUS_REJECTED], "to": None},
}

NAME_FIELDS = ("name_kz", "name_ru", "name_en")

NUMERIC_FIELDS = (
    "length_km",
    "area_km2",
    "max_depth_m",
    "avg_depth_m",
    "water_volume_km3",
    "basin_area_km2",
    "avg_discharge_m3s",
    "pollution_index",
)

TEXT_FIELDS = (
    "salinity_level",
    "ecological_status",
    "description_kz",
    "description_ru",
    "description_en",
    "historical_notes",
)

# Every field a create/update payload may carry besides object_type
DESCRIPTIVE_FIELDS = NAME_FIELDS + NUMERIC_FIELDS + TEXT_FIELDS + ("sources",)
PATCHABLE_FIELDS = DESCRIPTIVE_FIELDS + ("geometry",)


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


def validate_transition(obj, action: str) -> dict:
    """
    Check whether *action* is legal from the object's current status.

    Returns:
        {"valid": bool, "from": str, "to": str|None, "reason": str|None}
    """
    rule = WATER_OBJECT_TRANSITIONS.get(action)
    if not rule:
        return {"valid": False, "from": obj.status, "to": None,
                "reason": f"Unknown action: {action}"}

    if obj.status not in rule["from"]:
        return {"valid": False, "from": obj.status, "to": rule["to"],
                "reason": f"Cannot '{action}' from status '{obj.status}'"}

    return {"valid": True, "from": obj.status, "to": rule["to"], "reason": None}


class WaterObject(db.Model):
    """
    A single version of a water feature.

    ``version`` is the informational lineage counter shown to users;
    ``row_version`` is SQLAlchemy's optimistic-concurrency counter and is
    bumped on every UPDATE.  A writer holding a stale row gets StaleDataError.
    """

    __tablename__ = "water_objects"
    __table_args__ = (
        db.Index("idx_wo_canonical_status", "canonical_id", "status"),
        db.Index("idx_wo_status_type", "status", "object_type"),
        db.Index("idx_wo_created_by_status", "created_by", "status"),
        db.Index(
            "uq_wo_one_published_per_canonical",
            "canonical_id",
            unique=True,
            postgresql_where=db.text("status = 'published'"),
            sqlite_where=db.text("status = 'published'"),
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    canonical_id = db.Column(db.String(36), nullable=False, default=_uuid, index=True)
    version = db.Column(db.Integer, nullable=False, default=1)

    # Names
    name_kz = db.Column(db.String(255), nullable=False)
    name_ru = db.Column(db.String(255))
    name_en = db.Column(db.String(255))

    # Classification
    object_type = db.Column(db.String(20), nullable=False,
                            comment="river | canal | lake | reservoir | glacier | spring")
    geometry = db.Column(db.JSON, nullable=False)

    # Measurements
    length_km = db.Column(db.Float)
    area_km2 = db.Column(db.Float)
    max_depth_m = db.Column(db.Float)
    avg_depth_m = db.Column(db.Float)
    water_volume_km3 = db.Column(db.Float)
    basin_area_km2 = db.Column(db.Float)
    avg_discharge_m3s = db.Column(db.Float)

    # Water quality
    salinity_level = db.Column(db.String(50))
    pollution_index = db.Column(db.Float)
    ecological_status = db.Column(db.String(50))

    # Content
    description_kz = db.Column(db.Text)
    description_ru = db.Column(db.Text)
    description_en = db.Column(db.Text)
    historical_notes = db.Column(db.Text)
    sources = db.Column(db.JSON, default=list)

    # Workflow
    status = db.Column(db.String(20), nullable=False, default=STATUS_DRAFT,
                       comment="draft | pending | published | archived | rejected")
    rejection_reason = db.Column(db.Text)

    # Audit
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    updated_by = db.Column(db.Integer, db.ForeignKey("users.id"))
    reviewed_by = db.Column(db.Integer, db.ForeignKey("users.id"))
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    published_at = db.Column(db.DateTime(timezone=True))

    row_version = db.Column(db.Integer, nullable=False)

    __mapper_args__ = {"version_id_col": row_version}

    creator = db.relationship("User", foreign_keys=[created_by])

    # ── Serialisation ────────────────────────────────────────────────────

    def to_dict(self) -> dict:
        d = {
            "id": self.id,
            "canonical_id": self.canonical_id,
            "version": self.version,
            "object_type": self.object_type,
            "geometry": self.geometry,
            "status": self.status,
            "rejection_reason": self.rejection_reason,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "reviewed_by": self.reviewed_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "published_at": _iso(self.published_at),
        }
        for field in DESCRIPTIVE_FIELDS:
            d[field] = getattr(self, field)
        return d

    def to_feature(self, centroid=None) -> dict:
        """GeoJSON Feature: geometry at top level, everything else in properties."""
        properties = self.to_dict()
        properties.pop("geometry")
        properties["centroid"] = centroid
        return {
            "type": "Feature",
            "id": self.canonical_id,
            "geometry": self.geometry,
            "properties": properties,
        }

    def __repr__(self):
        return f"<WaterObject {self.id} v{self.version} [{self.status}] {self.canonical_id}>"
