"""
WaterMap Catalog
Identity mirror model.

Users are owned by the external identity collaborator; this table mirrors
the fields the catalog needs (display name, email, role) so ownership and
review columns can reference them.

Roles are NOT ranked.  Each operation names the explicit set of roles that
may perform it (EDITOR_ROLES, REVIEWER_ROLES).
"""

from datetime import datetime, timezone

from watermap.models import db

# ── Roles & capability sets ─────────────────────────────────────────────────

ROLE_USER = "user"
ROLE_EXPERT = "expert"
ROLE_ADMIN = "admin"

ROLES = {ROLE_USER, ROLE_EXPERT, ROLE_ADMIN}

# Who may draft, edit, submit and open revisions
EDITOR_ROLES = frozenset({ROLE_EXPERT, ROLE_ADMIN})

# Who may approve / reject and manage users
REVIEWER_ROLES = frozenset({ROLE_ADMIN})


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(200), nullable=False, unique=True)
    role = db.Column(db.String(20), nullable=False, default=ROLE_USER)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.Index("ix_users_role", "role"),
    )

    @property
    def is_admin(self) -> bool:
        return self.role in REVIEWER_ROLES

    @property
    def can_edit(self) -> bool:
        return self.role in EDITOR_ROLES

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.email} ({self.role})>"
