"""initial_water_catalog

Create `users`, `water_objects` and `change_logs`.

water_objects carries the partial unique index that backs the
one-published-row-per-canonical_id rule; change_logs.water_object_id is
ON DELETE SET NULL so a delete entry outlives the removed draft.

Revision ID: a1f3c9d2e7b4
Revises:
Create Date: 2026-10-18 12:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "a1f3c9d2e7b4"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("email", sa.String(length=200), nullable=False),
            sa.Column("role", sa.String(length=20), nullable=False, server_default="user"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("email", name="uq_users_email"),
        )
        op.create_index("ix_users_role", "users", ["role"])

    if "water_objects" not in existing_tables:
        op.create_table(
            "water_objects",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("canonical_id", sa.String(length=36), nullable=False),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("name_kz", sa.String(length=255), nullable=False),
            sa.Column("name_ru", sa.String(length=255), nullable=True),
            sa.Column("name_en", sa.String(length=255), nullable=True),
            sa.Column("object_type", sa.String(length=20), nullable=False),
            sa.Column("geometry", sa.JSON(), nullable=False),
            sa.Column("length_km", sa.Float(), nullable=True),
            sa.Column("area_km2", sa.Float(), nullable=True),
            sa.Column("max_depth_m", sa.Float(), nullable=True),
            sa.Column("avg_depth_m", sa.Float(), nullable=True),
            sa.Column("water_volume_km3", sa.Float(), nullable=True),
            sa.Column("basin_area_km2", sa.Float(), nullable=True),
            sa.Column("avg_discharge_m3s", sa.Float(), nullable=True),
            sa.Column("salinity_level", sa.String(length=50), nullable=True),
            sa.Column("pollution_index", sa.Float(), nullable=True),
            sa.Column("ecological_status", sa.String(length=50), nullable=True),
            sa.Column("description_kz", sa.Text(), nullable=True),
            sa.Column("description_ru", sa.Text(), nullable=True),
            sa.Column("description_en", sa.Text(), nullable=True),
            sa.Column("historical_notes", sa.Text(), nullable=True),
            sa.Column("sources", sa.JSON(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
            sa.Column("rejection_reason", sa.Text(), nullable=True),
            sa.Column("created_by", sa.Integer(), nullable=False),
            sa.Column("updated_by", sa.Integer(), nullable=True),
            sa.Column("reviewed_by", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("row_version", sa.Integer(), nullable=False, server_default="1"),
            sa.ForeignKeyConstraint(["created_by"], ["users.id"]),
            sa.ForeignKeyConstraint(["updated_by"], ["users.id"]),
            sa.ForeignKeyConstraint(["reviewed_by"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_water_objects_canonical_id", "water_objects", ["canonical_id"])
        op.create_index("idx_wo_canonical_status", "water_objects", ["canonical_id", "status"])
        op.create_index("idx_wo_status_type", "water_objects", ["status", "object_type"])
        op.create_index("idx_wo_created_by_status", "water_objects", ["created_by", "status"])
        op.create_index(
            "uq_wo_one_published_per_canonical",
            "water_objects",
            ["canonical_id"],
            unique=True,
            postgresql_where=sa.text("status = 'published'"),
            sqlite_where=sa.text("status = 'published'"),
        )

    if "change_logs" not in existing_tables:
        op.create_table(
            "change_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("water_object_id", sa.Integer(), nullable=True),
            sa.Column("canonical_id", sa.String(length=36), nullable=False),
            sa.Column("action", sa.String(length=20), nullable=False),
            sa.Column("changed_fields_json", sa.Text(), nullable=True),
            sa.Column("reviewer_notes", sa.Text(), nullable=True),
            sa.Column("performed_by", sa.Integer(), nullable=False),
            sa.Column("performed_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["water_object_id"], ["water_objects.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["performed_by"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_cl_canonical", "change_logs", ["canonical_id"])
        op.create_index("idx_cl_object", "change_logs", ["water_object_id"])
        op.create_index("idx_cl_performed_by", "change_logs", ["performed_by"])
        op.create_index("idx_cl_action", "change_logs", ["action"])


def downgrade():
    op.drop_table("change_logs")
    op.drop_index("uq_wo_one_published_per_canonical", table_name="water_objects")
    op.drop_table("water_objects")
    op.drop_table("users")
