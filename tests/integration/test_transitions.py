"""
Integration tests for concern status transitions and the history trail.
"""

import uuid

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

pytestmark = pytest.mark.asyncio(loop_scope="session")

from urbanwatch.db.models import (
    ConcernCategory,
    ConcernDistribution,
    ConcernHistory,
    ConcernStatus,
    ConcernType,
    DistributionStatus,
)
from urbanwatch.db.queries import get_concern_by_id, get_history_for_concern
from urbanwatch.errors import NotFoundOrUnauthorized, PersistenceError, ValidationError
from urbanwatch.services.auth import Actor
from urbanwatch.services.concerns import ConcernDraft, create_concern, delete_citizen_concern
import urbanwatch.services.transitions as transitions_mod
from urbanwatch.services.transitions import DEFAULT_TRANSITION_REMARK, apply_transition


@pytest_asyncio.fixture(loop_scope="session")
async def submitted(db_session, citizen, storage, assignment):
    return await create_concern(
        db_session,
        ConcernDraft(
            type=ConcernType.manual,
            category=ConcernCategory.security,
            title="Suspicious vehicle",
            description="A van has been parked near the school for days.",
        ),
        citizen.id,
        storage=storage,
        assignment=assignment,
    )


async def _distribution(session, concern_id) -> ConcernDistribution:
    result = await session.execute(
        select(ConcernDistribution).where(ConcernDistribution.concern_id == concern_id)
    )
    return result.scalar_one()


class TestApplyTransition:
    """Tests for apply_transition."""

    async def test_pending_to_ongoing_acknowledges(
        self, session_factory, submitted, purok_leader, publisher
    ):
        concern_id = submitted.concern.id

        async with session_factory() as session:
            result = await apply_transition(
                session,
                concern_id,
                "ongoing",
                Actor.from_user(purok_leader),
                "Checking it now",
                publisher=publisher,
            )

        assert result.previous_status == ConcernStatus.pending
        assert result.new_status == ConcernStatus.ongoing
        assert result.distribution.status == DistributionStatus.in_progress
        assert result.distribution.acknowledged_at is not None

        async with session_factory() as session:
            concern = await get_concern_by_id(session, concern_id)
            assert concern.status == ConcernStatus.ongoing
            distribution = await _distribution(session, concern_id)
            assert distribution.status == DistributionStatus.in_progress

            history = await get_history_for_concern(session, concern_id)
            assert [h.status for h in history] == [ConcernStatus.pending, ConcernStatus.ongoing]
            assert history[-1].previous_status == ConcernStatus.pending
            assert history[-1].acted_by == purok_leader.id
            assert history[-1].remarks == "Checking it now"

        assert publisher.names() == ["concern.status.updated"]
        event = publisher.events[0]
        assert event.previous_status == "pending"
        assert event.new_status == "ongoing"
        assert event.actor["name"] == purok_leader.name
        assert event.distribution["status"] == "in_progress"

    async def test_acknowledged_at_set_once(
        self, session_factory, submitted, purok_leader
    ):
        actor = Actor.from_user(purok_leader)
        concern_id = submitted.concern.id

        async with session_factory() as session:
            first = await apply_transition(session, concern_id, "ongoing", actor)
        acknowledged_at = first.distribution.acknowledged_at

        async with session_factory() as session:
            second = await apply_transition(session, concern_id, ConcernStatus.resolved, actor)

        assert second.previous_status == ConcernStatus.ongoing
        assert second.distribution.status == DistributionStatus.resolved
        assert second.distribution.acknowledged_at == acknowledged_at

    async def test_default_remark(self, session_factory, submitted, purok_leader):
        async with session_factory() as session:
            await apply_transition(
                session, submitted.concern.id, "escalated", Actor.from_user(purok_leader)
            )

        async with session_factory() as session:
            history = await get_history_for_concern(session, submitted.concern.id)
        assert history[-1].remarks == DEFAULT_TRANSITION_REMARK

    async def test_same_status_still_recorded(self, session_factory, submitted, purok_leader):
        async with session_factory() as session:
            result = await apply_transition(
                session, submitted.concern.id, "pending", Actor.from_user(purok_leader)
            )

        assert result.previous_status == ConcernStatus.pending
        assert result.distribution.acknowledged_at is None

        async with session_factory() as session:
            history = await get_history_for_concern(session, submitted.concern.id)
        assert len(history) == 2

    async def test_unassigned_leader_rejected(
        self, session_factory, submitted, other_leader, publisher
    ):
        async with session_factory() as session:
            with pytest.raises(NotFoundOrUnauthorized):
                await apply_transition(
                    session,
                    submitted.concern.id,
                    "resolved",
                    Actor.from_user(other_leader),
                    publisher=publisher,
                )

        async with session_factory() as session:
            concern = await get_concern_by_id(session, submitted.concern.id)
            assert concern.status == ConcernStatus.pending
            history = await get_history_for_concern(session, submitted.concern.id)
            assert len(history) == 1
        assert publisher.events == []

    async def test_operator_override(self, session_factory, submitted, operator):
        async with session_factory() as session:
            result = await apply_transition(
                session, submitted.concern.id, "escalated", Actor.from_user(operator)
            )

        assert result.new_status == ConcernStatus.escalated
        assert result.distribution.status == DistributionStatus.escalated

    async def test_unknown_concern(self, session_factory, purok_leader):
        async with session_factory() as session:
            with pytest.raises(NotFoundOrUnauthorized):
                await apply_transition(
                    session, uuid.uuid4(), "ongoing", Actor.from_user(purok_leader)
                )

    async def test_deleted_concern(self, session_factory, submitted, citizen, purok_leader):
        async with session_factory() as session:
            await delete_citizen_concern(session, submitted.concern.id, citizen.id)

        async with session_factory() as session:
            with pytest.raises(NotFoundOrUnauthorized):
                await apply_transition(
                    session, submitted.concern.id, "ongoing", Actor.from_user(purok_leader)
                )

    async def test_invalid_status(self, session_factory, submitted, purok_leader):
        async with session_factory() as session:
            with pytest.raises(ValidationError):
                await apply_transition(
                    session, submitted.concern.id, "archived", Actor.from_user(purok_leader)
                )

    async def test_write_failure_rolls_back_everything(
        self, session_factory, submitted, purok_leader, publisher, monkeypatch
    ):
        async def failing_append(session, **kwargs):
            await session.flush()
            raise SQLAlchemyError("disk I/O error")

        monkeypatch.setattr(transitions_mod, "append_history", failing_append)

        async with session_factory() as session:
            with pytest.raises(PersistenceError):
                await apply_transition(
                    session,
                    submitted.concern.id,
                    "ongoing",
                    Actor.from_user(purok_leader),
                    publisher=publisher,
                )

        async with session_factory() as session:
            concern = await get_concern_by_id(session, submitted.concern.id)
            assert concern.status == ConcernStatus.pending
            distribution = await _distribution(session, submitted.concern.id)
            assert distribution.status == DistributionStatus.assigned
            assert distribution.acknowledged_at is None
            history = await get_history_for_concern(session, submitted.concern.id)
            assert len(history) == 1
        assert publisher.events == []

    async def test_publisher_failure_keeps_change(
        self, session_factory, submitted, purok_leader
    ):
        class Broken:
            async def publish(self, event):
                raise ConnectionError("redis down")

        async with session_factory() as session:
            result = await apply_transition(
                session,
                submitted.concern.id,
                "ongoing",
                Actor.from_user(purok_leader),
                publisher=Broken(),
            )
        assert result.new_status == ConcernStatus.ongoing

        async with session_factory() as session:
            concern = await get_concern_by_id(session, submitted.concern.id)
            assert concern.status == ConcernStatus.ongoing


class TestHistoryIsAppendOnly:
    """History rows reject updates and deletes."""

    async def test_update_rejected(self, session_factory, submitted):
        async with session_factory() as session:
            entry = (
                await session.execute(
                    select(ConcernHistory).where(ConcernHistory.concern_id == submitted.concern.id)
                )
            ).scalar_one()
            entry.remarks = "rewritten"
            with pytest.raises(PersistenceError):
                await session.flush()
            await session.rollback()

    async def test_delete_rejected(self, session_factory, submitted):
        async with session_factory() as session:
            entry = (
                await session.execute(
                    select(ConcernHistory).where(ConcernHistory.concern_id == submitted.concern.id)
                )
            ).scalar_one()
            await session.delete(entry)
            with pytest.raises(PersistenceError):
                await session.flush()
            await session.rollback()


class TestStaleSessions:
    """Each transition records the status that was committed before it."""

    async def test_stale_reader_sees_committed_status(
        self, session_factory, submitted, purok_leader
    ):
        actor = Actor.from_user(purok_leader)
        concern_id = submitted.concern.id

        async with session_factory() as stale:
            cached = await get_concern_by_id(stale, concern_id)
            assert cached.status == ConcernStatus.pending

            async with session_factory() as other:
                await apply_transition(other, concern_id, "ongoing", actor)

            result = await apply_transition(stale, concern_id, "resolved", actor)

        assert result.previous_status == ConcernStatus.ongoing

        async with session_factory() as session:
            history = await get_history_for_concern(session, concern_id)
        assert [(h.previous_status, h.status) for h in history] == [
            (None, ConcernStatus.pending),
            (ConcernStatus.pending, ConcernStatus.ongoing),
            (ConcernStatus.ongoing, ConcernStatus.resolved),
        ]

    async def test_version_counter_rejects_stale_write(
        self, session_factory, submitted, purok_leader
    ):
        concern_id = submitted.concern.id

        async with session_factory() as stale:
            cached = await get_concern_by_id(stale, concern_id)

            async with session_factory() as other:
                await apply_transition(other, concern_id, "ongoing", Actor.from_user(purok_leader))

            cached.status = ConcernStatus.resolved
            with pytest.raises(StaleDataError):
                await stale.flush()
            await stale.rollback()

        async with session_factory() as session:
            concern = await get_concern_by_id(session, concern_id)
        assert concern.status == ConcernStatus.ongoing
