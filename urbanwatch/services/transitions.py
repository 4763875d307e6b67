"""
Concern status transitions.

A transition changes a concern's status and its distribution's status
together, appends one history entry and commits, all inside a single
unit of work. The ConcernStatusUpdated event is published only after
the commit and its failure never undoes the change.

Racing writers are serialized by locking the distribution and concern
rows (SELECT ... FOR UPDATE); the concern's version counter rejects any
write that slipped past the lock with a stale view.
"""

from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from urbanwatch.config import get_logger
from urbanwatch.db.models import (
    Concern,
    ConcernDistribution,
    ConcernStatus,
    DistributionStatus,
    utcnow,
)
from urbanwatch.db.queries import (
    append_history,
    get_concern_for_update,
    get_distribution_for_update,
)
from urbanwatch.errors import NotFoundOrUnauthorized, PersistenceError, ValidationError
from urbanwatch.services.auth import Actor
from urbanwatch.services.events import (
    ConcernStatusUpdated,
    EventPublisher,
    concern_snapshot,
    distribution_snapshot,
    publish_safely,
)

logger = get_logger(__name__)

DEFAULT_TRANSITION_REMARK = "Status updated by Purok Leader"
NOT_ASSIGNED_MESSAGE = "Concern not found or not assigned to you"

DISTRIBUTION_STATUS_FOR: dict[ConcernStatus, DistributionStatus] = {
    ConcernStatus.pending: DistributionStatus.assigned,
    ConcernStatus.ongoing: DistributionStatus.in_progress,
    ConcernStatus.escalated: DistributionStatus.escalated,
    ConcernStatus.resolved: DistributionStatus.resolved,
}

_unmapped = set(ConcernStatus) - set(DISTRIBUTION_STATUS_FOR)
if _unmapped:
    raise RuntimeError(
        f"Concern statuses without a distribution mapping: {sorted(s.value for s in _unmapped)}"
    )


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of an accepted transition."""

    previous_status: ConcernStatus
    new_status: ConcernStatus
    concern: Concern
    distribution: ConcernDistribution


def parse_concern_status(value: str | ConcernStatus) -> ConcernStatus:
    """
    Validate a requested status against the closed status set.

    Raises:
        ValidationError: If the value is not a known concern status.
    """
    try:
        return ConcernStatus(value)
    except ValueError:
        raise ValidationError(
            f"Invalid status '{value}'. Must be one of: "
            + ", ".join(s.value for s in ConcernStatus),
            field="status",
        ) from None


def map_distribution_status(status: ConcernStatus) -> DistributionStatus:
    """Distribution status that mirrors a concern status."""
    return DISTRIBUTION_STATUS_FOR[status]


async def apply_transition(
    session: AsyncSession,
    concern_id,
    requested_status: str | ConcernStatus,
    actor: Actor,
    remarks: str | None = None,
    *,
    publisher: EventPublisher | None = None,
) -> TransitionResult:
    """
    Move a concern to a new status on behalf of an actor.

    Args:
        session: Async database session; committed by this call.
        concern_id: Concern to transition.
        requested_status: Target concern status.
        actor: The purok leader (or operator) making the change.
        remarks: Optional remark recorded in history.
        publisher: Receives ConcernStatusUpdated after commit.

    Returns:
        TransitionResult with previous/new status and fresh records.

    Raises:
        ValidationError: If requested_status is not a concern status.
        NotFoundOrUnauthorized: If the concern does not exist, is deleted,
            or is not assigned to the actor.
        PersistenceError: If the unit of work fails; nothing is applied.
    """
    new_status = parse_concern_status(requested_status)
    remarks = remarks or DEFAULT_TRANSITION_REMARK

    try:
        distribution = await get_distribution_for_update(
            session,
            concern_id,
            None if actor.can_override_assignment else actor.id,
        )
        if distribution is None:
            raise NotFoundOrUnauthorized(NOT_ASSIGNED_MESSAGE)

        concern = await get_concern_for_update(session, concern_id)
        if concern is None:
            raise NotFoundOrUnauthorized(NOT_ASSIGNED_MESSAGE)

        previous_status = ConcernStatus(concern.status)
        concern.status = new_status

        mapped_status = map_distribution_status(new_status)
        if (
            distribution.status == DistributionStatus.assigned
            and mapped_status != DistributionStatus.assigned
            and distribution.acknowledged_at is None
        ):
            distribution.acknowledged_at = utcnow()
        distribution.status = mapped_status

        await append_history(
            session,
            concern_id=concern.id,
            status=new_status,
            previous_status=previous_status,
            remarks=remarks,
            acted_by=actor.id,
        )

        await session.commit()

    except NotFoundOrUnauthorized:
        await session.rollback()
        logger.info(
            "Transition rejected, concern not assigned to actor",
            concern_id=str(concern_id),
            actor_id=str(actor.id),
        )
        raise
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(
            "Transition failed, rolled back",
            concern_id=str(concern_id),
            actor_id=str(actor.id),
            error=str(e),
        )
        raise PersistenceError(
            "Failed to update concern status",
            details={"concern_id": str(concern_id)},
        ) from e

    logger.info(
        "Concern status updated",
        concern_id=str(concern.id),
        actor_id=str(actor.id),
        previous_status=previous_status.value,
        new_status=new_status.value,
        distribution_status=distribution.status.value,
    )

    await publish_safely(
        publisher,
        ConcernStatusUpdated(
            concern=concern_snapshot(concern),
            distribution=distribution_snapshot(distribution),
            previous_status=previous_status.value,
            new_status=new_status.value,
            actor={"id": str(actor.id), "name": actor.name, "role": actor.role.value},
            remarks=remarks,
        ),
    )

    return TransitionResult(
        previous_status=previous_status,
        new_status=new_status,
        concern=concern,
        distribution=distribution,
    )
