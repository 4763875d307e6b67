"""
Integration tests for operator accident handling.
"""

import uuid
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy.exc import SQLAlchemyError

pytestmark = pytest.mark.asyncio(loop_scope="session")

from urbanwatch.db.models import Accident, AccidentStatus, AccidentType, Severity
from urbanwatch.db.queries import get_accident_by_id, list_active_accidents
from urbanwatch.errors import NotFoundOrUnauthorized, PersistenceError, ValidationError
from urbanwatch.services.accidents import (
    get_accident_detail,
    list_operator_accidents,
    update_accident_status,
)
from urbanwatch.services.auth import Actor
from urbanwatch.services.ingestion import ingest_detection

FRAME = b"\xff\xd8\xff\xe0camera-frame"
OCCURRED_AT = datetime(2026, 10, 19, 7, 45, tzinfo=UTC)


@pytest_asyncio.fixture(loop_scope="session")
async def detected(db_session, device, storage, emergency_classifier) -> Accident:
    result = await ingest_detection(
        db_session,
        FRAME,
        device.id,
        OCCURRED_AT,
        classifier=emergency_classifier,
        storage=storage,
        mime_type="image/jpeg",
    )
    return result.accident


async def _add_accident(session, device, title, **extra) -> Accident:
    accident = Accident(
        cctv_device_id=device.id,
        title=title,
        accident_type=extra.pop("accident_type", AccidentType.accident),
        severity=extra.pop("severity", Severity.medium),
        latitude=device.latitude,
        longitude=device.longitude,
        **extra,
    )
    session.add(accident)
    await session.commit()
    return accident


class TestUpdateAccidentStatus:
    """Tests for update_accident_status."""

    async def test_pending_to_ongoing(self, session_factory, detected, operator, publisher):
        async with session_factory() as session:
            change = await update_accident_status(
                session,
                detected.id,
                "ongoing",
                Actor.from_user(operator),
                publisher=publisher,
            )

        assert change.previous_status == AccidentStatus.pending
        assert change.new_status == AccidentStatus.ongoing

        async with session_factory() as session:
            accident = await get_accident_by_id(session, detected.id)
        assert accident.status == AccidentStatus.ongoing

        assert publisher.names() == ["accident.status.updated"]
        event = publisher.events[0]
        assert event.previous_status == "pending"
        assert event.new_status == "ongoing"
        assert event.accident["id"] == str(detected.id)
        assert event.accident["status"] == "ongoing"
        assert event.actor["name"] == operator.name

    async def test_invalid_status(self, session_factory, detected, operator, publisher):
        async with session_factory() as session:
            with pytest.raises(ValidationError) as exc_info:
                await update_accident_status(
                    session, detected.id, "closed", Actor.from_user(operator), publisher=publisher
                )
        assert exc_info.value.field == "status"
        assert publisher.events == []

    async def test_unknown_accident(self, session_factory, operator):
        async with session_factory() as session:
            with pytest.raises(NotFoundOrUnauthorized):
                await update_accident_status(
                    session, uuid.uuid4(), "resolved", Actor.from_user(operator)
                )

    async def test_write_failure_rolls_back(
        self, session_factory, detected, operator, publisher, monkeypatch
    ):
        async with session_factory() as session:

            async def failing_commit():
                await session.flush()
                raise SQLAlchemyError("database is locked")

            monkeypatch.setattr(session, "commit", failing_commit)

            with pytest.raises(PersistenceError):
                await update_accident_status(
                    session, detected.id, "resolved", Actor.from_user(operator), publisher=publisher
                )

        async with session_factory() as session:
            accident = await get_accident_by_id(session, detected.id)
        assert accident.status == AccidentStatus.pending
        assert publisher.events == []


class TestAccidentReads:
    """Tests for the operator accident listing, detail and markers."""

    async def test_detail_includes_media(self, session_factory, detected):
        async with session_factory() as session:
            detail = await get_accident_detail(session, detected.id)

        assert detail.accident.title == "Fire near the market"
        assert len(detail.media) == 1
        assert detail.media[0].original_path.startswith("/media/cctv-detections/")

    async def test_unknown_detail(self, session_factory):
        async with session_factory() as session:
            with pytest.raises(NotFoundOrUnauthorized):
                await get_accident_detail(session, uuid.uuid4())

    async def test_search_and_filters(self, db_session, session_factory, detected, device):
        await _add_accident(db_session, device, "Jeepney collision on Mabini St.")
        await _add_accident(
            db_session,
            device,
            "Flooded underpass",
            accident_type=AccidentType.flood,
            status=AccidentStatus.resolved,
        )

        async with session_factory() as session:
            items, total = await list_operator_accidents(session)
            assert total == 3

            items, total = await list_operator_accidents(session, search="COLLISION")
            assert [item.accident.title for item in items] == ["Jeepney collision on Mabini St."]

            items, total = await list_operator_accidents(session, accident_type=AccidentType.fire)
            assert total == 1
            assert len(items[0].media) == 1

            items, total = await list_operator_accidents(session, status=AccidentStatus.resolved)
            assert [item.accident.title for item in items] == ["Flooded underpass"]

            items, total = await list_operator_accidents(session, page=2, page_size=2)
            assert total == 3
            assert len(items) == 1

    async def test_active_markers(self, db_session, session_factory, device):
        older = await _add_accident(
            db_session,
            device,
            "Car overturned",
            status=AccidentStatus.ongoing,
            occurred_at=OCCURRED_AT - timedelta(hours=1),
        )
        newer = await _add_accident(
            db_session, device, "Grass fire", status=AccidentStatus.ongoing, occurred_at=OCCURRED_AT
        )
        await _add_accident(db_session, device, "Minor fender bender")

        async with session_factory() as session:
            active = await list_active_accidents(session)

        assert [accident.id for accident in active] == [newer.id, older.id]
