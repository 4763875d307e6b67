"""
Database queries for UrbanWatch.

Common query patterns for users, concerns, distributions, history,
media, devices and false alarms. All queries use async SQLAlchemy patterns.
"""

from collections import Counter
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import and_, desc, func, or_, select, true
from sqlalchemy.ext.asyncio import AsyncSession

from urbanwatch.db.models import (
    Accident,
    AccidentStatus,
    AccidentType,
    CctvDevice,
    Concern,
    ConcernCategory,
    ConcernDistribution,
    ConcernHistory,
    ConcernStatus,
    DistributionStatus,
    FalseAlarm,
    IncidentMedia,
    MediaSourceType,
    Severity,
    User,
    UserRole,
)


# =============================================================================
# User Queries
# =============================================================================


async def get_user_by_id(
    session: AsyncSession,
    user_id: UUID,
) -> User | None:
    """Get a user by ID."""
    result = await session.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_email(
    session: AsyncSession,
    email: str,
) -> User | None:
    """Get a user by email."""
    result = await session.execute(
        select(User).where(User.email == email.lower())
    )
    return result.scalar_one_or_none()


async def get_active_purok_leader(
    session: AsyncSession,
    leader_id: UUID,
) -> User | None:
    """Get a purok leader by ID if the account is active."""
    result = await session.execute(
        select(User).where(
            and_(
                User.id == leader_id,
                User.role == UserRole.purok_leader,
                User.is_active.is_(True),
            )
        )
    )
    return result.scalar_one_or_none()


async def get_least_loaded_purok_leader(session: AsyncSession) -> User | None:
    """
    Get the active purok leader with the fewest unresolved distributions.

    Ties are broken by account age so the choice is deterministic.
    """
    open_count = (
        select(func.count(ConcernDistribution.id))
        .where(
            and_(
                ConcernDistribution.purok_leader_id == User.id,
                ConcernDistribution.status != DistributionStatus.resolved,
            )
        )
        .correlate(User)
        .scalar_subquery()
    )
    result = await session.execute(
        select(User)
        .where(
            and_(
                User.role == UserRole.purok_leader,
                User.is_active.is_(True),
            )
        )
        .order_by(open_count, User.created_at, User.id)
        .limit(1)
    )
    return result.scalar_one_or_none()


# =============================================================================
# Concern Queries
# =============================================================================


async def get_concern_by_id(
    session: AsyncSession,
    concern_id: UUID,
    *,
    include_deleted: bool = False,
) -> Concern | None:
    """Get a concern by ID, skipping soft-deleted rows unless asked."""
    query = select(Concern).where(Concern.id == concern_id)
    if not include_deleted:
        query = query.where(Concern.deleted_at.is_(None))
    result = await session.execute(query)
    return result.scalar_one_or_none()


async def get_concern_for_update(
    session: AsyncSession,
    concern_id: UUID,
) -> Concern | None:
    """
    Lock and reload a live concern row.

    populate_existing makes sure the status seen by the caller is the one
    committed before the lock was granted, not a stale identity-map copy.
    """
    result = await session.execute(
        select(Concern)
        .where(
            and_(
                Concern.id == concern_id,
                Concern.deleted_at.is_(None),
            )
        )
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_citizen_concern(
    session: AsyncSession,
    concern_id: UUID,
    citizen_id: UUID,
    *,
    refresh: bool = False,
) -> Concern | None:
    """
    Get a live concern owned by the given citizen.

    With refresh=True the row and its eager relationships are reloaded
    even if the concern is already in the session.
    """
    query = select(Concern).where(
        and_(
            Concern.id == concern_id,
            Concern.citizen_id == citizen_id,
            Concern.deleted_at.is_(None),
        )
    )
    if refresh:
        query = query.execution_options(populate_existing=True)
    result = await session.execute(query)
    return result.scalar_one_or_none()


async def tracking_code_exists(session: AsyncSession, tracking_code: str) -> bool:
    """Check whether a tracking code is already taken."""
    result = await session.execute(
        select(func.count(Concern.id)).where(Concern.tracking_code == tracking_code)
    )
    return result.scalar_one() > 0


def _citizen_concern_filter(
    citizen_id: UUID,
    status: ConcernStatus | None,
    category: ConcernCategory | None,
    severity: Severity | None,
):
    conditions: list = [
        Concern.citizen_id == citizen_id,
        Concern.deleted_at.is_(None),
    ]
    if status is not None:
        conditions.append(Concern.status == status)
    if category is not None:
        conditions.append(Concern.category == category)
    if severity is not None:
        conditions.append(Concern.severity == severity)
    return and_(*conditions)


async def list_citizen_concerns(
    session: AsyncSession,
    citizen_id: UUID,
    *,
    status: ConcernStatus | None = None,
    category: ConcernCategory | None = None,
    severity: Severity | None = None,
    page: int = 1,
    page_size: int = 15,
) -> tuple[list[Concern], int]:
    """
    List a citizen's live concerns with filters and pagination.

    Args:
        session: Async database session.
        citizen_id: Owner of the concerns.
        status: Filter by concern status.
        category: Filter by category.
        severity: Filter by severity.
        page: Page number (1-indexed).
        page_size: Number of results per page.

    Returns:
        Tuple of (list of Concern objects, total matching count).
    """
    where_clause = _citizen_concern_filter(citizen_id, status, category, severity)

    count_result = await session.execute(
        select(func.count(Concern.id)).where(where_clause)
    )
    total = count_result.scalar_one()

    offset = (page - 1) * page_size
    result = await session.execute(
        select(Concern)
        .where(where_clause)
        .order_by(desc(Concern.created_at))
        .limit(page_size)
        .offset(offset)
    )
    return list(result.scalars().all()), total


async def count_citizen_concerns(
    session: AsyncSession,
    citizen_id: UUID,
    *,
    status: ConcernStatus | None = None,
    category: ConcernCategory | None = None,
    severity: Severity | None = None,
) -> int:
    """Count a citizen's live concerns using the same filters as the list."""
    result = await session.execute(
        select(func.count(Concern.id)).where(
            _citizen_concern_filter(citizen_id, status, category, severity)
        )
    )
    return result.scalar_one()


# =============================================================================
# Distribution Queries
# =============================================================================


async def get_distribution_for_update(
    session: AsyncSession,
    concern_id: UUID,
    purok_leader_id: UUID | None,
) -> ConcernDistribution | None:
    """
    Lock the distribution of a live concern.

    Args:
        session: Async database session.
        concern_id: Concern being transitioned.
        purok_leader_id: Required handler, or None to match any handler.

    Returns:
        The locked ConcernDistribution, or None when absent or not the
        caller's.
    """
    conditions = [
        ConcernDistribution.concern_id == concern_id,
        Concern.deleted_at.is_(None),
    ]
    if purok_leader_id is not None:
        conditions.append(ConcernDistribution.purok_leader_id == purok_leader_id)

    result = await session.execute(
        select(ConcernDistribution)
        .join(Concern, Concern.id == ConcernDistribution.concern_id)
        .where(and_(*conditions))
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_assigned_distribution(
    session: AsyncSession,
    concern_id: UUID,
    purok_leader_id: UUID,
) -> ConcernDistribution | None:
    """Get a purok leader's distribution for a live concern, freshly loaded."""
    result = await session.execute(
        select(ConcernDistribution)
        .join(Concern, Concern.id == ConcernDistribution.concern_id)
        .where(
            and_(
                ConcernDistribution.concern_id == concern_id,
                ConcernDistribution.purok_leader_id == purok_leader_id,
                Concern.deleted_at.is_(None),
            )
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_assigned_distributions(
    session: AsyncSession,
    purok_leader_id: UUID,
    *,
    status: DistributionStatus | None = None,
    page: int = 1,
    page_size: int = 15,
) -> tuple[list[ConcernDistribution], int]:
    """
    List distributions assigned to a purok leader, newest assignment first.

    Returns:
        Tuple of (list of ConcernDistribution objects, total matching count).
    """
    conditions: list = [
        ConcernDistribution.purok_leader_id == purok_leader_id,
        Concern.deleted_at.is_(None),
    ]
    if status is not None:
        conditions.append(ConcernDistribution.status == status)

    where_clause = and_(*conditions)

    count_result = await session.execute(
        select(func.count(ConcernDistribution.id))
        .join(Concern, Concern.id == ConcernDistribution.concern_id)
        .where(where_clause)
    )
    total = count_result.scalar_one()

    offset = (page - 1) * page_size
    result = await session.execute(
        select(ConcernDistribution)
        .join(Concern, Concern.id == ConcernDistribution.concern_id)
        .where(where_clause)
        .order_by(desc(ConcernDistribution.assigned_at))
        .execution_options(populate_existing=True)
        .limit(page_size)
        .offset(offset)
    )
    return list(result.scalars().all()), total


# =============================================================================
# History Queries
# =============================================================================


async def append_history(
    session: AsyncSession,
    *,
    concern_id: UUID,
    status: ConcernStatus,
    previous_status: ConcernStatus | None = None,
    remarks: str | None = None,
    acted_by: UUID | None = None,
) -> ConcernHistory:
    """
    Append a history entry for a concern.

    Entries are never updated or deleted once flushed.
    """
    entry = ConcernHistory(
        concern_id=concern_id,
        status=status,
        previous_status=previous_status,
        remarks=remarks,
        acted_by=acted_by,
    )
    session.add(entry)
    await session.flush()
    return entry


async def get_history_for_concern(
    session: AsyncSession,
    concern_id: UUID,
) -> list[ConcernHistory]:
    """Get all history entries for a concern, ordered chronologically."""
    result = await session.execute(
        select(ConcernHistory)
        .where(ConcernHistory.concern_id == concern_id)
        .order_by(ConcernHistory.created_at, ConcernHistory.id)
    )
    return list(result.scalars().all())


# =============================================================================
# Media Queries
# =============================================================================


async def get_media_for_source(
    session: AsyncSession,
    source_type: MediaSourceType,
    source_id: UUID,
) -> list[IncidentMedia]:
    """Get all media attached to one source entity."""
    result = await session.execute(
        select(IncidentMedia)
        .where(
            and_(
                IncidentMedia.source_type == source_type,
                IncidentMedia.source_id == source_id,
            )
        )
        .order_by(IncidentMedia.created_at)
    )
    return list(result.scalars().all())


async def get_media_for_sources(
    session: AsyncSession,
    source_type: MediaSourceType,
    source_ids: list[UUID],
) -> dict[UUID, list[IncidentMedia]]:
    """Get media for several entities of one type, grouped by source ID."""
    grouped: dict[UUID, list[IncidentMedia]] = {source_id: [] for source_id in source_ids}
    if not source_ids:
        return grouped

    result = await session.execute(
        select(IncidentMedia)
        .where(
            and_(
                IncidentMedia.source_type == source_type,
                IncidentMedia.source_id.in_(source_ids),
            )
        )
        .order_by(IncidentMedia.created_at)
    )
    for media in result.scalars().all():
        grouped.setdefault(media.source_id, []).append(media)
    return grouped


async def _resolve_concern(session: AsyncSession, source_id: UUID) -> Concern | None:
    return await get_concern_by_id(session, source_id, include_deleted=True)


async def _resolve_accident(session: AsyncSession, source_id: UUID) -> Accident | None:
    return await get_accident_by_id(session, source_id)


async def _resolve_device(session: AsyncSession, source_id: UUID) -> CctvDevice | None:
    result = await session.execute(select(CctvDevice).where(CctvDevice.id == source_id))
    return result.scalar_one_or_none()


MediaSource = Concern | Accident | CctvDevice

_MEDIA_SOURCE_RESOLVERS: dict[
    MediaSourceType,
    Callable[[AsyncSession, UUID], Awaitable[MediaSource | None]],
] = {
    MediaSourceType.concern: _resolve_concern,
    MediaSourceType.accident: _resolve_accident,
    MediaSourceType.device: _resolve_device,
}


async def resolve_media_source(
    session: AsyncSession,
    media: IncidentMedia,
) -> MediaSource | None:
    """
    Load the entity a media row belongs to.

    Dispatches on the source_type discriminant; each variant has its
    own lookup.
    """
    resolver = _MEDIA_SOURCE_RESOLVERS[MediaSourceType(media.source_type)]
    return await resolver(session, media.source_id)


# =============================================================================
# Accident Queries
# =============================================================================


def _accident_filter(
    search: str | None,
    accident_type: AccidentType | None,
    status: AccidentStatus | None,
):
    conditions = []
    if search:
        pattern = f"%{search}%"
        conditions.append(
            or_(
                Accident.title.ilike(pattern),
                Accident.description.ilike(pattern),
            )
        )
    if accident_type is not None:
        conditions.append(Accident.accident_type == accident_type)
    if status is not None:
        conditions.append(Accident.status == status)
    return and_(true(), *conditions)


async def list_accidents(
    session: AsyncSession,
    *,
    search: str | None = None,
    accident_type: AccidentType | None = None,
    status: AccidentStatus | None = None,
    page: int = 1,
    page_size: int = 10,
) -> tuple[list[Accident], int]:
    """
    List accidents for the operator console, newest first.

    Args:
        session: Async database session.
        search: Case-insensitive match on title or description.
        accident_type: Filter by accident type.
        status: Filter by response status.
        page: Page number (1-indexed).
        page_size: Number of results per page.

    Returns:
        Tuple of (list of Accident objects, total matching count).
    """
    where_clause = _accident_filter(search, accident_type, status)

    count_result = await session.execute(
        select(func.count(Accident.id)).where(where_clause)
    )
    total = count_result.scalar_one()

    offset = (page - 1) * page_size
    result = await session.execute(
        select(Accident)
        .where(where_clause)
        .order_by(desc(Accident.created_at))
        .limit(page_size)
        .offset(offset)
    )
    return list(result.scalars().all()), total


async def get_accident_by_id(
    session: AsyncSession,
    accident_id: UUID,
) -> Accident | None:
    result = await session.execute(select(Accident).where(Accident.id == accident_id))
    return result.scalar_one_or_none()


async def get_accident_for_update(
    session: AsyncSession,
    accident_id: UUID,
) -> Accident | None:
    """Lock and reload an accident row before changing its status."""
    result = await session.execute(
        select(Accident)
        .where(Accident.id == accident_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_active_accidents(session: AsyncSession) -> list[Accident]:
    """Accidents currently being responded to, most recent first."""
    result = await session.execute(
        select(Accident)
        .where(Accident.status == AccidentStatus.ongoing)
        .order_by(desc(Accident.occurred_at))
    )
    return list(result.scalars().all())


# =============================================================================
# Device & Detection Queries
# =============================================================================


async def get_device_by_id(
    session: AsyncSession,
    device_id: UUID,
) -> CctvDevice | None:
    """Get a CCTV device by ID (including retired devices)."""
    result = await session.execute(
        select(CctvDevice).where(CctvDevice.id == device_id)
    )
    return result.scalar_one_or_none()


async def get_false_alarm_stats(
    session: AsyncSession,
    now: datetime,
    *,
    device_id: UUID | None = None,
    recent_limit: int = 10,
) -> dict[str, Any]:
    """
    Count false alarms for the operator dashboard.

    Args:
        session: Async database session.
        now: Reference time (aware UTC).
        device_id: Restrict every figure to one CCTV device.
        recent_limit: Number of most recent false alarms to include.

    Returns:
        Dict with today, this_week, this_hour counts, the busiest hour of
        today (peak_hour, None when there were none), today's per-device
        breakdown and the recent entries.
    """
    start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
    start_of_week = start_of_day - timedelta(days=start_of_day.weekday())
    start_of_hour = now.replace(minute=0, second=0, microsecond=0)

    device_clause = (
        FalseAlarm.cctv_device_id == device_id if device_id is not None else true()
    )

    async def _count_since(since: datetime) -> int:
        result = await session.execute(
            select(func.count(FalseAlarm.id)).where(
                and_(FalseAlarm.detected_at >= since, device_clause)
            )
        )
        return result.scalar_one()

    today = await _count_since(start_of_day)

    # Hours are bucketed on the stored UTC timestamps
    today_result = await session.execute(
        select(FalseAlarm.detected_at).where(
            and_(FalseAlarm.detected_at >= start_of_day, device_clause)
        )
    )
    per_hour = Counter(detected_at.hour for detected_at in today_result.scalars().all())
    peak_hour = None
    if per_hour:
        hour, count = min(per_hour.items(), key=lambda item: (-item[1], item[0]))
        peak_hour = {"hour": hour, "count": count, "formatted": f"{hour:02d}:00"}

    breakdown_result = await session.execute(
        select(
            FalseAlarm.cctv_device_id,
            CctvDevice.device_name,
            func.count(FalseAlarm.id).label("count"),
        )
        .join(CctvDevice, CctvDevice.id == FalseAlarm.cctv_device_id, isouter=True)
        .where(and_(FalseAlarm.detected_at >= start_of_day, device_clause))
        .group_by(FalseAlarm.cctv_device_id, CctvDevice.device_name)
        .order_by(desc("count"))
    )
    device_breakdown = [
        {
            "device_id": row.cctv_device_id,
            "device_name": row.device_name or "Unknown",
            "count": row.count,
            "percentage": round(row.count / today * 100, 1) if today else 0.0,
        }
        for row in breakdown_result.all()
    ]

    recent_result = await session.execute(
        select(FalseAlarm)
        .where(device_clause)
        .order_by(desc(FalseAlarm.detected_at))
        .limit(recent_limit)
    )

    return {
        "today": today,
        "this_week": await _count_since(start_of_week),
        "this_hour": await _count_since(start_of_hour),
        "peak_hour": peak_hour,
        "device_breakdown": device_breakdown,
        "recent": list(recent_result.scalars().all()),
    }
