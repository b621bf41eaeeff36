"""create_fire_incidents_and_detections

Revision ID: 3e1a9c5d7b20
Revises:
Create Date: 2026-03-02 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import geoalchemy2
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "3e1a9c5d7b20"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS postgis")

    op.create_table(
        "fire_incidents",
        sa.Column("id", sa.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("status", sa.String(length=20), server_default=sa.text("'active'"), nullable=False),
        sa.Column("center_latitude", sa.Float(), nullable=False),
        sa.Column("center_longitude", sa.Float(), nullable=False),
        sa.Column("min_latitude", sa.Float(), nullable=False),
        sa.Column("max_latitude", sa.Float(), nullable=False),
        sa.Column("min_longitude", sa.Float(), nullable=False),
        sa.Column("max_longitude", sa.Float(), nullable=False),
        sa.Column("fire_count", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("first_detected_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_detected_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("max_frp", sa.Float()),
        sa.Column("min_frp", sa.Float()),
        sa.Column("avg_frp", sa.Float()),
        sa.Column("total_frp", sa.Float()),
        sa.Column("ended_at", sa.DateTime(timezone=True)),
        sa.Column("inserted_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint("status IN ('active', 'ended')", name="ck_fire_incidents_status"),
        sa.CheckConstraint("fire_count >= 0", name="ck_fire_incidents_fire_count"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_fire_incidents_status_last_detected_at",
        "fire_incidents",
        ["status", "last_detected_at"],
        unique=False,
    )
    op.create_index(
        "ix_fire_incidents_status_ended_at",
        "fire_incidents",
        ["status", "ended_at"],
        unique=False,
    )

    op.create_table(
        "fire_detections",
        sa.Column("id", sa.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("natural_key", sa.String(), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=False),
        sa.Column("longitude", sa.Float(), nullable=False),
        sa.Column("detected_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "location",
            geoalchemy2.Geography(geometry_type="POINT", srid=4326, spatial_index=False),
            nullable=False,
        ),
        sa.Column("acquisition_date", sa.Date()),
        sa.Column("acquisition_time", sa.String(length=5)),
        sa.Column("satellite", sa.String(), nullable=False),
        sa.Column("instrument", sa.String()),
        sa.Column("version", sa.String()),
        sa.Column("confidence", sa.String(length=1), nullable=False),
        sa.Column("daynight", sa.String(length=1)),
        sa.Column("bright_ti4", sa.Float()),
        sa.Column("bright_ti5", sa.Float()),
        sa.Column("frp", sa.Float()),
        sa.Column("scan", sa.Float()),
        sa.Column("track", sa.Float()),
        sa.Column("fire_incident_id", sa.UUID(), nullable=True),
        sa.Column("inserted_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(
            ["fire_incident_id"],
            ["fire_incidents.id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("natural_key", name="uq_fire_detections_natural_key"),
    )
    op.create_index("ix_fire_detections_detected_at", "fire_detections", ["detected_at"], unique=False)
    op.create_index("ix_fire_detections_lat_lng", "fire_detections", ["latitude", "longitude"], unique=False)
    op.create_index(
        "ix_fire_detections_location",
        "fire_detections",
        ["location"],
        unique=False,
        postgresql_using="gist",
    )
    op.create_index(
        "ix_fire_detections_clustering_lookup",
        "fire_detections",
        ["detected_at", "fire_incident_id"],
        unique=False,
    )
    op.create_index("ix_fire_detections_fire_incident_id", "fire_detections", ["fire_incident_id"], unique=False)
    op.create_index("ix_fire_detections_inserted_at", "fire_detections", ["inserted_at"], unique=False)
    # sweep lookup: only rows still waiting for an incident
    op.execute(
        "CREATE INDEX ix_fire_detections_unassigned "
        "ON fire_detections (inserted_at) WHERE fire_incident_id IS NULL"
    )

    op.execute(
        "COMMENT ON TABLE fire_incidents IS "
        "'Clusters of spatially and temporally adjacent FIRMS detections'"
    )
    op.execute(
        "COMMENT ON COLUMN fire_detections.natural_key IS "
        "'lat_lng_date_time_satellite (coordinates rounded to 4 decimals); dedup key'"
    )


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS ix_fire_detections_unassigned")
    op.drop_index("ix_fire_detections_inserted_at", table_name="fire_detections")
    op.drop_index("ix_fire_detections_fire_incident_id", table_name="fire_detections")
    op.drop_index("ix_fire_detections_clustering_lookup", table_name="fire_detections")
    op.drop_index("ix_fire_detections_location", table_name="fire_detections")
    op.drop_index("ix_fire_detections_lat_lng", table_name="fire_detections")
    op.drop_index("ix_fire_detections_detected_at", table_name="fire_detections")
    op.drop_table("fire_detections")
    op.drop_index("ix_fire_incidents_status_ended_at", table_name="fire_incidents")
    op.drop_index("ix_fire_incidents_status_last_detected_at", table_name="fire_incidents")
    op.drop_table("fire_incidents")
