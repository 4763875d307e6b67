"""
Operator handling of detected accidents.

Accidents are created by detection ingestion and then worked by
operators: pending until someone responds, ongoing while responders are
on site (these are the markers on the live map), resolved afterwards.
Every status change is broadcast on the live accident feed after commit.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from urbanwatch.config import get_logger
from urbanwatch.db.models import (
    Accident,
    AccidentStatus,
    AccidentType,
    IncidentMedia,
    MediaSourceType,
)
from urbanwatch.db.queries import (
    get_accident_by_id,
    get_accident_for_update,
    get_media_for_source,
    get_media_for_sources,
    list_accidents,
)
from urbanwatch.errors import NotFoundOrUnauthorized, PersistenceError, ValidationError
from urbanwatch.services.auth import Actor
from urbanwatch.services.events import (
    AccidentStatusUpdated,
    EventPublisher,
    accident_snapshot,
    publish_safely,
)

logger = get_logger(__name__)

ACCIDENT_NOT_FOUND_MESSAGE = "Accident not found"


@dataclass(frozen=True)
class AccidentDetail:
    """An accident with the frames that confirmed it."""

    accident: Accident
    media: list[IncidentMedia]


@dataclass(frozen=True)
class AccidentStatusChange:
    previous_status: AccidentStatus
    new_status: AccidentStatus
    accident: Accident


def parse_accident_status(value: str | AccidentStatus) -> AccidentStatus:
    """
    Validate a requested accident status.

    Raises:
        ValidationError: If the value is not a known accident status.
    """
    try:
        return AccidentStatus(value)
    except ValueError:
        raise ValidationError(
            f"Invalid status '{value}'. Must be one of: "
            + ", ".join(s.value for s in AccidentStatus),
            field="status",
        ) from None


async def list_operator_accidents(
    session: AsyncSession,
    *,
    search: str | None = None,
    accident_type: AccidentType | None = None,
    status: AccidentStatus | None = None,
    page: int = 1,
    page_size: int = 10,
) -> tuple[list[AccidentDetail], int]:
    """List accidents with their media, newest first."""
    accidents, total = await list_accidents(
        session,
        search=search,
        accident_type=accident_type,
        status=status,
        page=page,
        page_size=page_size,
    )
    media = await get_media_for_sources(
        session, MediaSourceType.accident, [accident.id for accident in accidents]
    )
    return [AccidentDetail(accident, media.get(accident.id, [])) for accident in accidents], total


async def get_accident_detail(session: AsyncSession, accident_id: UUID) -> AccidentDetail:
    """
    Load one accident and its media.

    Raises:
        NotFoundOrUnauthorized: If the accident does not exist.
    """
    accident = await get_accident_by_id(session, accident_id)
    if accident is None:
        raise NotFoundOrUnauthorized(ACCIDENT_NOT_FOUND_MESSAGE)
    media = await get_media_for_source(session, MediaSourceType.accident, accident.id)
    return AccidentDetail(accident, media)


async def update_accident_status(
    session: AsyncSession,
    accident_id: UUID,
    requested_status: str | AccidentStatus,
    actor: Actor,
    *,
    publisher: EventPublisher | None = None,
) -> AccidentStatusChange:
    """
    Move an accident to a new response status.

    Args:
        session: Async database session; committed by this call.
        accident_id: Accident to update.
        requested_status: Target accident status.
        actor: The operator making the change.
        publisher: Receives AccidentStatusUpdated after commit.

    Raises:
        ValidationError: If requested_status is not an accident status.
        NotFoundOrUnauthorized: If the accident does not exist.
        PersistenceError: If the write fails; nothing is applied.
    """
    new_status = parse_accident_status(requested_status)

    try:
        accident = await get_accident_for_update(session, accident_id)
        if accident is None:
            raise NotFoundOrUnauthorized(ACCIDENT_NOT_FOUND_MESSAGE)

        previous_status = AccidentStatus(accident.status)
        accident.status = new_status
        await session.commit()
    except NotFoundOrUnauthorized:
        await session.rollback()
        raise
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(
            "Accident status update failed, rolled back",
            accident_id=str(accident_id),
            actor_id=str(actor.id),
            error=str(e),
        )
        raise PersistenceError(
            "Failed to update accident status",
            details={"accident_id": str(accident_id)},
        ) from e

    logger.info(
        "Accident status updated",
        accident_id=str(accident.id),
        actor_id=str(actor.id),
        previous_status=previous_status.value,
        new_status=new_status.value,
    )

    await publish_safely(
        publisher,
        AccidentStatusUpdated(
            accident=accident_snapshot(accident),
            previous_status=previous_status.value,
            new_status=new_status.value,
            actor={"id": str(actor.id), "name": actor.name, "role": actor.role.value},
        ),
    )

    return AccidentStatusChange(
        previous_status=previous_status,
        new_status=new_status,
        accident=accident,
    )
