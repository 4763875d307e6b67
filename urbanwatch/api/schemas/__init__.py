"""UrbanWatch API schemas."""

from urbanwatch.api.schemas.accidents import (
    AccidentListResponse,
    AccidentMarker,
    AccidentResponse,
    AccidentStatusUpdateRequest,
    AccidentStatusUpdateResponse,
)
from urbanwatch.api.schemas.auth import LoginRequest, LoginResponse, UserResponse
from urbanwatch.api.schemas.base import (
    ApiResponse,
    CamelCaseModel,
    ErrorDetail,
    IDMixin,
    PaginatedResponse,
    TimestampMixin,
)
from urbanwatch.api.schemas.concerns import (
    AssignedConcernListResponse,
    AssignedConcernResponse,
    ConcernCountResponse,
    ConcernDeletedResponse,
    ConcernListResponse,
    ConcernResponse,
    DistributionSummary,
    MediaResponse,
    PersonSummary,
    StatusUpdateRequest,
    StatusUpdateResponse,
    TimelineEntry,
)
from urbanwatch.api.schemas.detections import (
    DetectionResponse,
    FalseAlarmCounts,
    FalseAlarmDevice,
    FalseAlarmItem,
    FalseAlarmPeakHour,
    FalseAlarmStatsResponse,
)

__all__ = [
    # Base
    "ApiResponse",
    "CamelCaseModel",
    "ErrorDetail",
    "IDMixin",
    "TimestampMixin",
    "PaginatedResponse",
    # Auth
    "LoginRequest",
    "LoginResponse",
    "UserResponse",
    # Concerns
    "ConcernResponse",
    "ConcernListResponse",
    "ConcernCountResponse",
    "ConcernDeletedResponse",
    "MediaResponse",
    "PersonSummary",
    "TimelineEntry",
    "DistributionSummary",
    "AssignedConcernResponse",
    "AssignedConcernListResponse",
    "StatusUpdateRequest",
    "StatusUpdateResponse",
    # Detections
    "DetectionResponse",
    "FalseAlarmItem",
    "FalseAlarmCounts",
    "FalseAlarmStatsResponse",
    "FalseAlarmDevice",
    "FalseAlarmPeakHour",
    # Accidents
    "AccidentResponse",
    "AccidentListResponse",
    "AccidentMarker",
    "AccidentStatusUpdateRequest",
    "AccidentStatusUpdateResponse",
]
