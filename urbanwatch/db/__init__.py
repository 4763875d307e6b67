"""UrbanWatch database module."""

from urbanwatch.db.models import (
    Accident,
    AccidentStatus,
    AccidentType,
    Base,
    CctvDevice,
    Concern,
    ConcernCategory,
    ConcernDistribution,
    ConcernHistory,
    ConcernStatus,
    ConcernType,
    DeviceStatus,
    DistributionStatus,
    FalseAlarm,
    IncidentMedia,
    MediaCategory,
    MediaSourceType,
    MediaType,
    Severity,
    User,
    UserRole,
)
from urbanwatch.db.session import (
    close_db,
    create_session_factory,
    get_session,
    health_check,
    init_db,
)

__all__ = [
    # Base
    "Base",
    # Models
    "User",
    "Concern",
    "ConcernDistribution",
    "ConcernHistory",
    "IncidentMedia",
    "CctvDevice",
    "Accident",
    "FalseAlarm",
    # Enums
    "UserRole",
    "ConcernType",
    "ConcernCategory",
    "Severity",
    "ConcernStatus",
    "DistributionStatus",
    "MediaSourceType",
    "MediaCategory",
    "MediaType",
    "DeviceStatus",
    "AccidentType",
    "AccidentStatus",
    # Session
    "init_db",
    "close_db",
    "create_session_factory",
    "get_session",
    "health_check",
]
