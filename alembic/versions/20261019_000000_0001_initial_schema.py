"""Initial schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


ENUMS = {
    "user_role": ("citizen", "purok_leader", "operator"),
    "concern_type": ("manual", "voice", "device"),
    "concern_category": ("safety", "security", "infrastructure", "environment", "noise", "other"),
    "severity_level": ("low", "medium", "high"),
    "concern_status": ("pending", "ongoing", "escalated", "resolved"),
    "distribution_status": ("assigned", "in_progress", "escalated", "resolved"),
    "media_source_type": ("concern", "accident", "device"),
    "media_category": ("citizen_concern", "device_snapshot", "cctv_detection"),
    "media_type": ("image", "audio"),
    "device_status": ("active", "inactive"),
    "accident_type": ("fire", "flood", "accident"),
    "accident_status": ("pending", "ongoing", "resolved"),
}

UPDATED_AT_TABLES = [
    "users",
    "concerns",
    "concern_distributions",
    "cctv_devices",
    "accidents",
]


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _uuid_pk() -> sa.Column:
    return sa.Column("id", sa.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False)


def _timestamps(*, updated: bool = True) -> list[sa.Column]:
    columns = [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]
    if updated:
        columns.append(
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False)
        )
    return columns


def upgrade() -> None:
    # Create extensions
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    # Create ENUM types
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name, create_type=False).create(op.get_bind(), checkfirst=True)

    # Create users table
    op.create_table(
        "users",
        _uuid_pk(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("role", _enum("user_role"), server_default="citizen", nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default="true", nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_index("idx_users_role_active", "users", ["role", "is_active"])

    # Create concerns table
    op.create_table(
        "concerns",
        _uuid_pk(),
        sa.Column("citizen_id", sa.UUID(), nullable=True),
        sa.Column("tracking_code", sa.String(32), nullable=False),
        sa.Column("title", sa.String(100), nullable=False),
        sa.Column("type", _enum("concern_type"), server_default="manual", nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", _enum("concern_category"), server_default="other", nullable=False),
        sa.Column("severity", _enum("severity_level"), nullable=True),
        sa.Column("status", _enum("concern_status"), server_default="pending", nullable=False),
        sa.Column("transcript_text", sa.Text(), nullable=True),
        sa.Column("latitude", sa.Numeric(10, 7), nullable=True),
        sa.Column("longitude", sa.Numeric(10, 7), nullable=True),
        sa.Column("address", sa.String(255), nullable=True),
        sa.Column("custom_location", sa.String(255), nullable=True),
        sa.Column("version", sa.Integer(), server_default="1", nullable=False),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["citizen_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tracking_code"),
        sa.CheckConstraint(
            "latitude IS NULL OR (latitude >= -90 AND latitude <= 90)",
            name="valid_latitude",
        ),
        sa.CheckConstraint(
            "longitude IS NULL OR (longitude >= -180 AND longitude <= 180)",
            name="valid_longitude",
        ),
    )
    op.create_index("idx_concerns_citizen_status", "concerns", ["citizen_id", "status"])
    op.create_index("idx_concerns_created", "concerns", [sa.text("created_at DESC")])
    op.create_index(
        "idx_concerns_live",
        "concerns",
        ["citizen_id"],
        postgresql_where=sa.text("deleted_at IS NULL"),
    )

    # Create concern_distributions table
    op.create_table(
        "concern_distributions",
        _uuid_pk(),
        sa.Column("concern_id", sa.UUID(), nullable=False),
        sa.Column("purok_leader_id", sa.UUID(), nullable=False),
        sa.Column("status", _enum("distribution_status"), server_default="assigned", nullable=False),
        sa.Column("assigned_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("acknowledged_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["concern_id"], ["concerns.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["purok_leader_id"], ["users.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("concern_id"),
    )
    op.create_index(
        "idx_distributions_leader_status",
        "concern_distributions",
        ["purok_leader_id", "status"],
    )

    # Create concern_histories table
    op.create_table(
        "concern_histories",
        _uuid_pk(),
        sa.Column("concern_id", sa.UUID(), nullable=False),
        sa.Column("acted_by", sa.UUID(), nullable=True),
        sa.Column("status", _enum("concern_status"), nullable=False),
        sa.Column("previous_status", _enum("concern_status"), nullable=True),
        sa.Column("remarks", sa.Text(), nullable=True),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(["concern_id"], ["concerns.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["acted_by"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_histories_concern_created",
        "concern_histories",
        ["concern_id", "created_at"],
    )

    # Create incident_media table
    op.create_table(
        "incident_media",
        _uuid_pk(),
        sa.Column("source_type", _enum("media_source_type"), nullable=False),
        sa.Column("source_id", sa.UUID(), nullable=False),
        sa.Column("source_category", _enum("media_category"), nullable=False),
        sa.Column("media_type", _enum("media_type"), server_default="image", nullable=False),
        sa.Column("original_path", sa.String(500), nullable=False),
        sa.Column("storage_key", sa.String(255), nullable=False),
        sa.Column("original_filename", sa.String(255), nullable=True),
        sa.Column("file_size", sa.Integer(), server_default="0", nullable=False),
        sa.Column("mime_type", sa.String(100), nullable=True),
        sa.Column("detection_metadata", postgresql.JSONB(), nullable=True),
        sa.Column("device_identifier", sa.String(100), nullable=True),
        sa.Column("captured_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_incident_media_source", "incident_media", ["source_type", "source_id"])

    # Create cctv_devices table
    op.create_table(
        "cctv_devices",
        _uuid_pk(),
        sa.Column("device_name", sa.String(100), nullable=False),
        sa.Column("location_name", sa.String(255), nullable=True),
        sa.Column("latitude", sa.Numeric(10, 7), nullable=True),
        sa.Column("longitude", sa.Numeric(10, 7), nullable=True),
        sa.Column("status", _enum("device_status"), server_default="active", nullable=False),
        sa.Column("yolo_enabled", sa.Boolean(), server_default="true", nullable=False),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    # Create accidents table
    op.create_table(
        "accidents",
        _uuid_pk(),
        sa.Column("cctv_device_id", sa.UUID(), nullable=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("accident_type", _enum("accident_type"), nullable=False),
        sa.Column("severity", _enum("severity_level"), server_default="medium", nullable=False),
        sa.Column("status", _enum("accident_status"), server_default="pending", nullable=False),
        sa.Column("latitude", sa.Numeric(10, 7), nullable=True),
        sa.Column("longitude", sa.Numeric(10, 7), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["cctv_device_id"], ["cctv_devices.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_accidents_status", "accidents", ["status"])

    # Create false_alarms table
    op.create_table(
        "false_alarms",
        _uuid_pk(),
        sa.Column("cctv_device_id", sa.UUID(), nullable=False),
        sa.Column("attempted_accident_type", sa.String(50), nullable=True),
        sa.Column("reasoning", sa.Text(), nullable=True),
        sa.Column("confidence_score", sa.Float(), server_default="0", nullable=False),
        sa.Column("detected_objects", postgresql.JSONB(), server_default="[]", nullable=False),
        sa.Column("analysis_metadata", postgresql.JSONB(), server_default="{}", nullable=False),
        sa.Column("detected_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(["cctv_device_id"], ["cctv_devices.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_false_alarms_detected_at", "false_alarms", ["detected_at"])

    # Create updated_at trigger function
    op.execute("""
        CREATE OR REPLACE FUNCTION update_updated_at_column()
        RETURNS TRIGGER AS $$
        BEGIN
            NEW.updated_at = NOW();
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
    """)

    # Apply triggers
    for table in UPDATED_AT_TABLES:
        op.execute(f"""
            CREATE TRIGGER update_{table}_updated_at
                BEFORE UPDATE ON {table}
                FOR EACH ROW EXECUTE FUNCTION update_updated_at_column();
        """)

    # History rows are append-only
    op.execute("""
        CREATE OR REPLACE FUNCTION reject_history_mutation()
        RETURNS TRIGGER AS $$
        BEGIN
            RAISE EXCEPTION 'concern_histories is append-only';
        END;
        $$ LANGUAGE plpgsql;
    """)
    op.execute("""
        CREATE TRIGGER concern_histories_append_only
            BEFORE UPDATE OR DELETE ON concern_histories
            FOR EACH ROW EXECUTE FUNCTION reject_history_mutation();
    """)


def downgrade() -> None:
    # Drop triggers
    op.execute("DROP TRIGGER IF EXISTS concern_histories_append_only ON concern_histories")
    op.execute("DROP FUNCTION IF EXISTS reject_history_mutation()")

    for table in UPDATED_AT_TABLES:
        op.execute(f"DROP TRIGGER IF EXISTS update_{table}_updated_at ON {table}")

    op.execute("DROP FUNCTION IF EXISTS update_updated_at_column()")

    # Drop tables
    op.drop_table("false_alarms")
    op.drop_table("accidents")
    op.drop_table("cctv_devices")
    op.drop_table("incident_media")
    op.drop_table("concern_histories")
    op.drop_table("concern_distributions")
    op.drop_table("concerns")
    op.drop_table("users")

    # Drop ENUM types
    for name in reversed(list(ENUMS)):
        op.execute(f"DROP TYPE IF EXISTS {name}")
