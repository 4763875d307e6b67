"""
Pydantic schemas for the CCTV detection endpoints.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import Field

from urbanwatch.api.schemas.base import CamelCaseModel, IDMixin
from urbanwatch.db.models import AccidentType, Severity


class DetectionResponse(CamelCaseModel):
    """Outcome of a processed snapshot."""

    false_alarm: bool
    device_name: str
    location_name: str | None = None
    confidence: float
    reasoning: str | None = None

    # Genuine emergency
    accident_id: UUID | None = None
    media_id: UUID | None = None
    accident_type: AccidentType | None = None
    severity: Severity | None = None
    title: str | None = None
    description: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    image_url: str | None = None

    # False alarm
    false_alarm_id: UUID | None = None


class FalseAlarmItem(IDMixin):
    """A rejected detection."""

    device_name: str
    location_name: str | None = None
    attempted_accident_type: str | None = None
    reasoning: str | None = None
    confidence_score: float
    detected_objects: list[Any] = Field(default_factory=list)
    detected_at: datetime


class FalseAlarmPeakHour(CamelCaseModel):
    """Busiest hour of the day (UTC)."""

    hour: int
    count: int
    formatted: str


class FalseAlarmCounts(CamelCaseModel):
    """False alarm counts for the current day, week and hour."""

    today: int
    this_week: int
    this_hour: int
    peak_hour: FalseAlarmPeakHour | None = None


class FalseAlarmDevice(CamelCaseModel):
    """One device's share of today's false alarms."""

    device_id: UUID
    device_name: str
    count: int
    percentage: float


class FalseAlarmStatsResponse(CamelCaseModel):
    """Operator dashboard statistics."""

    statistics: FalseAlarmCounts
    device_breakdown: list[FalseAlarmDevice] = Field(default_factory=list)
    recent_false_alarms: list[FalseAlarmItem]
