from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Uuid,
    text,
)
from sqlalchemy.orm import relationship

from app.db.base import Base, TimestampMixin, UUIDMixin
from app.db.types import GeographyPoint, UtcDateTime, point_ewkt

INCIDENT_STATUS_ACTIVE = "active"
INCIDENT_STATUS_ENDED = "ended"
INCIDENT_STATUSES = (INCIDENT_STATUS_ACTIVE, INCIDENT_STATUS_ENDED)


def _location_default(context):
    params = context.get_current_parameters()
    return point_ewkt(params["latitude"], params["longitude"])


class FireIncident(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "fire_incidents"

    # Estado
    status = Column(
        String(20),
        nullable=False,
        default=INCIDENT_STATUS_ACTIVE,
        server_default=text("'active'"),
    )

    # Centroide (media de las detecciones)
    center_latitude = Column(Float, nullable=False)
    center_longitude = Column(Float, nullable=False)

    # Bounding box
    min_latitude = Column(Float, nullable=False)
    max_latitude = Column(Float, nullable=False)
    min_longitude = Column(Float, nullable=False)
    max_longitude = Column(Float, nullable=False)

    # Métricas
    fire_count = Column(Integer, nullable=False, default=0)
    first_detected_at = Column(UtcDateTime, nullable=False)
    last_detected_at = Column(UtcDateTime, nullable=False)

    # Intensidad (FRP, MW)
    max_frp = Column(Float)
    min_frp = Column(Float)
    avg_frp = Column(Float)
    total_frp = Column(Float)

    # Ciclo de vida
    ended_at = Column(UtcDateTime)

    detections = relationship(
        "FireDetection",
        back_populates="incident",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'ended')", name="ck_fire_incidents_status"
        ),
        CheckConstraint("fire_count >= 0", name="ck_fire_incidents_fire_count"),
        Index("ix_fire_incidents_status_last_detected_at", "status", "last_detected_at"),
        Index("ix_fire_incidents_status_ended_at", "status", "ended_at"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == INCIDENT_STATUS_ACTIVE

    def __repr__(self) -> str:
        return (
            f"<FireIncident id={self.id} status={self.status} "
            f"fire_count={self.fire_count}>"
        )


class FireDetection(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "fire_detections"

    # Clave natural (deduplicación)
    natural_key = Column(String, nullable=False, unique=True)

    # Espaciotemporal
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    detected_at = Column(UtcDateTime, nullable=False)
    # Punto geografico para consultas espaciales (ST_DWithin + GIST)
    location = Column(GeographyPoint, nullable=False, default=_location_default)

    # Metadatos originales
    acquisition_date = Column(Date)
    acquisition_time = Column(String(5))
    satellite = Column(String, nullable=False)
    instrument = Column(String)
    version = Column(String)
    confidence = Column(String(1), nullable=False)
    daynight = Column(String(1))

    # Canales del sensor
    bright_ti4 = Column(Float)
    bright_ti5 = Column(Float)
    frp = Column(Float)

    # Calidad del pixel
    scan = Column(Float)
    track = Column(Float)

    fire_incident_id = Column(
        Uuid,
        ForeignKey("fire_incidents.id", ondelete="CASCADE"),
        nullable=True,
    )

    incident = relationship("FireIncident", back_populates="detections")

    __table_args__ = (
        Index("ix_fire_detections_detected_at", "detected_at"),
        Index("ix_fire_detections_lat_lng", "latitude", "longitude"),
        Index("ix_fire_detections_location", "location", postgresql_using="gist"),
        Index(
            "ix_fire_detections_clustering_lookup", "detected_at", "fire_incident_id"
        ),
        Index("ix_fire_detections_fire_incident_id", "fire_incident_id"),
        Index("ix_fire_detections_inserted_at", "inserted_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<FireDetection id={self.id} natural_key={self.natural_key} "
            f"incident={self.fire_incident_id}>"
        )
