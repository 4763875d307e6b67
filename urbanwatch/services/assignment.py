"""
Purok leader assignment for new concerns.

Every submitted concern is distributed to exactly one purok leader. The
policy is a small protocol so the location-based routing planned for
later can replace the default without touching concern submission.
"""

from typing import Protocol
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from urbanwatch.config import get_logger, get_settings
from urbanwatch.db.models import Concern, User
from urbanwatch.db.queries import get_active_purok_leader, get_least_loaded_purok_leader
from urbanwatch.errors import ValidationError

logger = get_logger(__name__)

NO_LEADER_MESSAGE = "Purok Leader not found for distribution."


class AssignmentPolicy(Protocol):
    """Chooses the purok leader responsible for a concern."""

    async def choose_purok_leader(self, session: AsyncSession, concern: Concern) -> User: ...


class DefaultPurokLeaderPolicy:
    """
    Route to the configured default leader, else the least-loaded one.

    The configured leader is skipped when the account is missing, not a
    purok leader, or deactivated.
    """

    def __init__(self, default_leader_id: UUID | None = None) -> None:
        self._default_leader_id = default_leader_id

    @classmethod
    def from_settings(cls) -> "DefaultPurokLeaderPolicy":
        return cls(get_settings().default_purok_leader_id)

    async def choose_purok_leader(self, session: AsyncSession, concern: Concern) -> User:
        """
        Raises:
            ValidationError: If no active purok leader exists.
        """
        if self._default_leader_id is not None:
            leader = await get_active_purok_leader(session, self._default_leader_id)
            if leader is not None:
                return leader
            logger.warning(
                "Configured default purok leader unavailable, falling back",
                purok_leader_id=str(self._default_leader_id),
            )

        leader = await get_least_loaded_purok_leader(session)
        if leader is None:
            raise ValidationError(NO_LEADER_MESSAGE)
        return leader
