"""
SQLAlchemy 2.0 async models for the UrbanWatch database.

Uses mapped_column syntax with full type hints. Column types are kept
portable (Uuid, JSON with a JSONB variant, timezone-aware timestamps)
so the same models run on PostgreSQL and on SQLite in tests.
"""

from datetime import UTC, datetime
from enum import Enum as PyEnum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    TypeDecorator,
    Uuid,
    event,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
)

from urbanwatch.errors import PersistenceError


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator):
    """Timestamp column that always round-trips as an aware UTC datetime."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


JSONType = JSON().with_variant(JSONB(), "postgresql")
Coordinate = Numeric(10, 7, asdecimal=False)


def _enum(enum_cls: type[PyEnum], name: str) -> Enum:
    """Store enums by value, not by member name."""
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
    )


# =============================================================================
# Enum Types
# =============================================================================


class UserRole(str, PyEnum):
    """Roles recognised by the workflow."""

    citizen = "citizen"
    purok_leader = "purok_leader"
    operator = "operator"


class ConcernType(str, PyEnum):
    """How a concern entered the system."""

    manual = "manual"
    voice = "voice"
    device = "device"


class ConcernCategory(str, PyEnum):
    """Concern categories."""

    safety = "safety"
    security = "security"
    infrastructure = "infrastructure"
    environment = "environment"
    noise = "noise"
    other = "other"


class Severity(str, PyEnum):
    """Severity levels shared by concerns and accidents."""

    low = "low"
    medium = "medium"
    high = "high"


class ConcernStatus(str, PyEnum):
    """Concern-level status workflow."""

    pending = "pending"
    ongoing = "ongoing"
    escalated = "escalated"
    resolved = "resolved"


class DistributionStatus(str, PyEnum):
    """Status track of a concern's assignment to a purok leader."""

    assigned = "assigned"
    in_progress = "in_progress"
    escalated = "escalated"
    resolved = "resolved"


class MediaSourceType(str, PyEnum):
    """Discriminant for the entity an IncidentMedia row belongs to."""

    concern = "concern"
    accident = "accident"
    device = "device"


class MediaCategory(str, PyEnum):
    """Where a piece of media came from."""

    citizen_concern = "citizen_concern"
    device_snapshot = "device_snapshot"
    cctv_detection = "cctv_detection"


class MediaType(str, PyEnum):
    """Kind of stored media."""

    image = "image"
    audio = "audio"


class DeviceStatus(str, PyEnum):
    """CCTV device operational status."""

    active = "active"
    inactive = "inactive"


class AccidentType(str, PyEnum):
    """Emergency types recognised by detection."""

    fire = "fire"
    flood = "flood"
    accident = "accident"


class AccidentStatus(str, PyEnum):
    """Accident response workflow."""

    pending = "pending"
    ongoing = "ongoing"
    resolved = "resolved"


# Shared by several tables
ConcernStatusType = _enum(ConcernStatus, "concern_status")
SeverityType = _enum(Severity, "severity_level")


# =============================================================================
# Base Model
# =============================================================================


class Base(DeclarativeBase):
    """Base class for all models."""

    type_annotation_map = {
        datetime: UTCDateTime(),
    }


# =============================================================================
# Models
# =============================================================================


class User(Base):
    """Citizens, purok leaders and operators."""

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    phone: Mapped[str | None] = mapped_column(String(20), default=None)
    role: Mapped[UserRole] = mapped_column(
        _enum(UserRole, "user_role"), default=UserRole.citizen
    )
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow)


class Concern(Base):
    """Citizen or device concerns."""

    __tablename__ = "concerns"
    __table_args__ = (
        CheckConstraint(
            "latitude IS NULL OR (latitude >= -90 AND latitude <= 90)",
            name="valid_latitude",
        ),
        CheckConstraint(
            "longitude IS NULL OR (longitude >= -180 AND longitude <= 180)",
            name="valid_longitude",
        ),
        Index("idx_concerns_citizen_status", "citizen_id", "status"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    citizen_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), default=None
    )
    tracking_code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[ConcernType] = mapped_column(
        _enum(ConcernType, "concern_type"), default=ConcernType.manual
    )
    description: Mapped[str | None] = mapped_column(Text, default=None)
    category: Mapped[ConcernCategory] = mapped_column(
        _enum(ConcernCategory, "concern_category"), default=ConcernCategory.other
    )
    severity: Mapped[Severity | None] = mapped_column(
        SeverityType, default=None
    )
    status: Mapped[ConcernStatus] = mapped_column(
        ConcernStatusType, default=ConcernStatus.pending
    )
    transcript_text: Mapped[str | None] = mapped_column(Text, default=None)
    latitude: Mapped[float | None] = mapped_column(Coordinate, default=None)
    longitude: Mapped[float | None] = mapped_column(Coordinate, default=None)
    address: Mapped[str | None] = mapped_column(String(255), default=None)
    custom_location: Mapped[str | None] = mapped_column(String(255), default=None)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow)
    deleted_at: Mapped[datetime | None] = mapped_column(default=None)

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    citizen: Mapped["User | None"] = relationship("User", lazy="selectin")
    distribution: Mapped["ConcernDistribution | None"] = relationship(
        "ConcernDistribution",
        back_populates="concern",
        uselist=False,
        lazy="selectin",
        passive_deletes=True,
    )
    histories: Mapped[list["ConcernHistory"]] = relationship(
        "ConcernHistory",
        back_populates="concern",
        order_by="ConcernHistory.created_at",
        lazy="selectin",
        passive_deletes=True,
    )


class ConcernDistribution(Base):
    """Binds a concern to the purok leader responsible for it."""

    __tablename__ = "concern_distributions"
    __table_args__ = (
        Index("idx_distributions_leader_status", "purok_leader_id", "status"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    concern_id: Mapped[UUID] = mapped_column(
        ForeignKey("concerns.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    purok_leader_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    status: Mapped[DistributionStatus] = mapped_column(
        _enum(DistributionStatus, "distribution_status"),
        default=DistributionStatus.assigned,
    )
    assigned_at: Mapped[datetime] = mapped_column(default=utcnow)
    acknowledged_at: Mapped[datetime | None] = mapped_column(default=None)
    created_at: Mapped[datetime] = mapped_column(default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow)

    # Relationships
    concern: Mapped["Concern"] = relationship(
        "Concern", back_populates="distribution", lazy="selectin"
    )
    purok_leader: Mapped["User"] = relationship("User", lazy="selectin")


class ConcernHistory(Base):
    """Append-only audit trail of concern status changes."""

    __tablename__ = "concern_histories"
    __table_args__ = (
        Index("idx_histories_concern_created", "concern_id", "created_at"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    concern_id: Mapped[UUID] = mapped_column(
        ForeignKey("concerns.id", ondelete="CASCADE"), nullable=False
    )
    acted_by: Mapped[UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), default=None
    )
    status: Mapped[ConcernStatus] = mapped_column(
        ConcernStatusType, nullable=False
    )
    previous_status: Mapped[ConcernStatus | None] = mapped_column(
        ConcernStatusType, default=None
    )
    remarks: Mapped[str | None] = mapped_column(Text, default=None)
    created_at: Mapped[datetime] = mapped_column(default=utcnow)

    # Relationships
    concern: Mapped["Concern"] = relationship("Concern", back_populates="histories")
    actor: Mapped["User | None"] = relationship("User", lazy="selectin")


class IncidentMedia(Base):
    """
    Media attached to a concern, accident or device.

    The owning entity is identified by the (source_type, source_id) pair
    rather than a foreign key; see queries.resolve_media_source.
    """

    __tablename__ = "incident_media"
    __table_args__ = (
        Index("idx_incident_media_source", "source_type", "source_id"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    source_type: Mapped[MediaSourceType] = mapped_column(
        _enum(MediaSourceType, "media_source_type"), nullable=False
    )
    source_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    source_category: Mapped[MediaCategory] = mapped_column(
        _enum(MediaCategory, "media_category"), nullable=False
    )
    media_type: Mapped[MediaType] = mapped_column(
        _enum(MediaType, "media_type"), default=MediaType.image
    )
    original_path: Mapped[str] = mapped_column(String(500), nullable=False)
    storage_key: Mapped[str] = mapped_column(String(255), nullable=False)
    original_filename: Mapped[str | None] = mapped_column(String(255), default=None)
    file_size: Mapped[int] = mapped_column(Integer, default=0)
    mime_type: Mapped[str | None] = mapped_column(String(100), default=None)
    detection_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        JSONType, default=None
    )
    device_identifier: Mapped[str | None] = mapped_column(String(100), default=None)
    captured_at: Mapped[datetime | None] = mapped_column(default=None)
    created_at: Mapped[datetime] = mapped_column(default=utcnow)


class CctvDevice(Base):
    """CCTV cameras that submit detection snapshots."""

    __tablename__ = "cctv_devices"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    device_name: Mapped[str] = mapped_column(String(100), nullable=False)
    location_name: Mapped[str | None] = mapped_column(String(255), default=None)
    latitude: Mapped[float | None] = mapped_column(Coordinate, default=None)
    longitude: Mapped[float | None] = mapped_column(Coordinate, default=None)
    status: Mapped[DeviceStatus] = mapped_column(
        _enum(DeviceStatus, "device_status"), default=DeviceStatus.active
    )
    yolo_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow)
    deleted_at: Mapped[datetime | None] = mapped_column(default=None)

    @property
    def accepts_detections(self) -> bool:
        """Registered, enabled and not retired."""
        return (
            self.deleted_at is None
            and self.status == DeviceStatus.active
            and self.yolo_enabled
        )


class Accident(Base):
    """Emergencies confirmed from CCTV detections."""

    __tablename__ = "accidents"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    cctv_device_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("cctv_devices.id", ondelete="SET NULL"), default=None
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    accident_type: Mapped[AccidentType] = mapped_column(
        _enum(AccidentType, "accident_type"), nullable=False
    )
    severity: Mapped[Severity] = mapped_column(
        SeverityType, default=Severity.medium
    )
    status: Mapped[AccidentStatus] = mapped_column(
        _enum(AccidentStatus, "accident_status"), default=AccidentStatus.pending
    )
    latitude: Mapped[float | None] = mapped_column(Coordinate, default=None)
    longitude: Mapped[float | None] = mapped_column(Coordinate, default=None)
    occurred_at: Mapped[datetime] = mapped_column(default=utcnow)
    created_at: Mapped[datetime] = mapped_column(default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow)

    device: Mapped["CctvDevice | None"] = relationship("CctvDevice", lazy="selectin")


class FalseAlarm(Base):
    """Detections rejected by snapshot verification."""

    __tablename__ = "false_alarms"
    __table_args__ = (
        Index("idx_false_alarms_detected_at", "detected_at"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    cctv_device_id: Mapped[UUID] = mapped_column(
        ForeignKey("cctv_devices.id", ondelete="CASCADE"), nullable=False
    )
    attempted_accident_type: Mapped[str | None] = mapped_column(String(50), default=None)
    reasoning: Mapped[str | None] = mapped_column(Text, default=None)
    confidence_score: Mapped[float] = mapped_column(Float, default=0.0)
    detected_objects: Mapped[list[Any]] = mapped_column(JSONType, default=list)
    analysis_metadata: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    detected_at: Mapped[datetime] = mapped_column(default=utcnow)
    created_at: Mapped[datetime] = mapped_column(default=utcnow)

    device: Mapped["CctvDevice"] = relationship("CctvDevice", lazy="selectin")


# =============================================================================
# Immutability guards
# =============================================================================


@event.listens_for(ConcernHistory, "before_update")
@event.listens_for(ConcernHistory, "before_delete")
def _reject_history_mutation(mapper, connection, target: ConcernHistory) -> None:
    raise PersistenceError(
        "Concern history entries are append-only",
        details={"history_id": str(target.id)},
    )


@event.listens_for(IncidentMedia, "before_update")
def _reject_media_update(mapper, connection, target: IncidentMedia) -> None:
    raise PersistenceError(
        "Incident media is immutable after insert",
        details={"media_id": str(target.id)},
    )
