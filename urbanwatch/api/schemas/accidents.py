"""
Pydantic schemas for the operator accident endpoints.
"""

from datetime import datetime
from uuid import UUID

from pydantic import Field

from urbanwatch.api.schemas.base import CamelCaseModel, IDMixin, PaginatedResponse, TimestampMixin
from urbanwatch.api.schemas.concerns import MediaResponse
from urbanwatch.db.models import AccidentStatus, AccidentType, Severity


class AccidentResponse(IDMixin, TimestampMixin):
    """A detected accident as seen by operators."""

    title: str
    description: str | None = None
    accident_type: AccidentType
    severity: Severity
    status: AccidentStatus
    latitude: float | None = None
    longitude: float | None = None
    occurred_at: datetime
    device_name: str | None = None
    location_name: str | None = None
    media: list[MediaResponse] = Field(default_factory=list)


class AccidentListResponse(PaginatedResponse[AccidentResponse]):
    """Paginated list of accidents."""


class AccidentMarker(IDMixin):
    """Minimal accident data for a map marker."""

    latitude: float | None = None
    longitude: float | None = None
    accident_type: AccidentType
    severity: Severity


class AccidentStatusUpdateRequest(CamelCaseModel):
    status: str = Field(..., min_length=1)


class AccidentStatusUpdateResponse(CamelCaseModel):
    """Result of an accepted accident status change."""

    accident_id: UUID
    previous_status: AccidentStatus
    new_status: AccidentStatus
