"""
Pydantic schemas for the concern endpoints.
"""

from datetime import datetime
from uuid import UUID

from pydantic import Field

from urbanwatch.api.schemas.base import CamelCaseModel, IDMixin, PaginatedResponse, TimestampMixin
from urbanwatch.db.models import (
    ConcernCategory,
    ConcernStatus,
    ConcernType,
    DistributionStatus,
    MediaType,
    Severity,
)


class MediaResponse(IDMixin):
    """Media attached to a concern."""

    media_type: MediaType
    original_path: str
    original_filename: str | None = None
    mime_type: str | None = None
    file_size: int = 0


class PersonSummary(CamelCaseModel):
    """Minimal user reference."""

    id: UUID | None = None
    name: str


class TimelineEntry(IDMixin):
    """One history entry of a concern."""

    status: ConcernStatus
    previous_status: ConcernStatus | None = None
    remarks: str | None = None
    acted_by: PersonSummary
    created_at: datetime


class DistributionSummary(IDMixin):
    """Who handles a concern and where that stands."""

    status: DistributionStatus
    assigned_at: datetime
    acknowledged_at: datetime | None = None
    purok_leader: PersonSummary | None = None


class ConcernResponse(IDMixin, TimestampMixin):
    """A concern as seen by the citizen who submitted it."""

    tracking_code: str
    type: ConcernType
    title: str
    description: str | None = None
    category: ConcernCategory
    severity: Severity | None = None
    status: ConcernStatus
    latitude: float | None = None
    longitude: float | None = None
    address: str | None = None
    custom_location: str | None = None
    transcript_text: str | None = None
    citizen_id: UUID | None = None
    images: list[str] = Field(default_factory=list)
    media: list[MediaResponse] = Field(default_factory=list)
    distribution: DistributionSummary | None = None
    timeline: list[TimelineEntry] = Field(default_factory=list)


class ConcernListResponse(PaginatedResponse[ConcernResponse]):
    """Paginated list of a citizen's concerns."""


class ConcernCountResponse(CamelCaseModel):
    """Number of concerns matching the filters."""

    count: int


class ConcernDeletedResponse(CamelCaseModel):
    """Identifier of a soft-deleted concern."""

    concern_id: UUID


class AssignedConcernResponse(IDMixin, TimestampMixin):
    """A concern as seen by the purok leader it is distributed to."""

    distribution_id: UUID
    tracking_code: str
    title: str
    description: str | None = None
    category: ConcernCategory
    severity: Severity | None = None
    status: ConcernStatus
    distribution_status: DistributionStatus
    latitude: float | None = None
    longitude: float | None = None
    address: str | None = None
    custom_location: str | None = None
    images: list[str] = Field(default_factory=list)
    audio: str | None = None
    transcript: str | None = None
    citizen: PersonSummary
    citizen_phone: str | None = None
    assigned_at: datetime
    acknowledged_at: datetime | None = None


class AssignedConcernListResponse(PaginatedResponse[AssignedConcernResponse]):
    """Paginated list of concerns distributed to a purok leader."""


class StatusUpdateRequest(CamelCaseModel):
    """Requested concern status with an optional remark."""

    status: str = Field(..., min_length=1)
    remarks: str | None = Field(None, max_length=1000)


class StatusUpdateResponse(CamelCaseModel):
    """Result of an accepted status change."""

    concern_id: UUID
    previous_status: ConcernStatus
    new_status: ConcernStatus
