"""
Tests for domain events: stream encoding, publishing and dispatch retries.
"""

import json

import pytest

from urbanwatch.services.event_stream import decode_event, encode_event
from urbanwatch.services.events import (
    AccidentStatusUpdated,
    ConcernAssigned,
    ConcernStatusUpdated,
    FalseAlarmDetected,
    dispatch_event,
    event_from_payload,
    publish_safely,
)

pytestmark = pytest.mark.asyncio(loop_scope="session")


class _NoSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


# =============================================================================
# Stream encoding
# =============================================================================


class TestStreamEncoding:
    """Tests for encode_event / decode_event."""

    async def test_entry_fields(self, status_event):
        fields = encode_event(status_event)
        assert fields["event"] == "concern.status.updated"
        assert json.loads(fields["payload"])["new_status"] == "ongoing"
        assert "emitted_at" in fields

    async def test_decode_restores_event(self, assigned_event):
        decoded = decode_event(encode_event(assigned_event))
        assert isinstance(decoded, ConcernAssigned)
        assert decoded == assigned_event

    async def test_unknown_event_name(self):
        with pytest.raises(KeyError):
            decode_event({"event": "concern.vanished", "payload": "{}"})

    async def test_invalid_payload(self):
        with pytest.raises(ValueError):
            decode_event({"event": "concern.assigned", "payload": "not json"})

    async def test_event_from_payload(self):
        event = event_from_payload("false_alarm.detected", {"false_alarm": {"id": "x"}})
        assert event == FalseAlarmDetected(false_alarm={"id": "x"})

    async def test_accident_status_round_trip(self):
        event = AccidentStatusUpdated(
            accident={"id": "a1", "status": "resolved", "latitude": 14.6, "longitude": 120.98},
            previous_status="ongoing",
            new_status="resolved",
            actor={"id": "u1", "name": "Ops Garcia", "role": "operator"},
        )
        fields = encode_event(event)
        assert fields["event"] == "accident.status.updated"
        assert decode_event(fields) == event


# =============================================================================
# Publishing
# =============================================================================


class TestPublishSafely:
    """Tests for publish_safely."""

    async def test_publishes(self, status_event):
        received = []

        class Publisher:
            async def publish(self, event):
                received.append(event)

        assert await publish_safely(Publisher(), status_event) is True
        assert received == [status_event]

    async def test_failure_is_swallowed(self, status_event):
        class Broken:
            async def publish(self, event):
                raise ConnectionError("redis down")

        assert await publish_safely(Broken(), status_event) is False

    async def test_missing_publisher(self, status_event):
        assert await publish_safely(None, status_event) is False


# =============================================================================
# Dispatch
# =============================================================================


class TestDispatchEvent:
    """Tests for dispatch_event."""

    async def test_all_handlers_succeed(self, status_event):
        calls = []

        async def email(event):
            calls.append("email")

        async def push(event):
            calls.append("push")

        outcome = await dispatch_event(status_event, [email, push], sleep=_NoSleep())
        assert calls == ["email", "push"]
        assert len(outcome.succeeded) == 2
        assert outcome.failed == []

    async def test_retries_then_succeeds(self, status_event):
        attempts = {"count": 0}
        sleep = _NoSleep()

        async def flaky(event):
            attempts["count"] += 1
            if attempts["count"] < 3:
                raise RuntimeError("gateway busy")

        outcome = await dispatch_event(
            status_event, [flaky], max_attempts=3, backoff_seconds=60, sleep=sleep
        )
        assert attempts["count"] == 3
        assert sleep.delays == [60, 60]
        assert len(outcome.succeeded) == 1

    async def test_gives_up_after_max_attempts(self, status_event):
        attempts = {"count": 0}
        sleep = _NoSleep()

        async def broken(event):
            attempts["count"] += 1
            raise RuntimeError("always fails")

        outcome = await dispatch_event(
            status_event, [broken], max_attempts=3, backoff_seconds=5, sleep=sleep
        )
        assert attempts["count"] == 3
        assert sleep.delays == [5, 5]
        assert len(outcome.failed) == 1
        assert outcome.succeeded == []

    async def test_failing_handler_does_not_block_others(self, status_event):
        delivered = []

        async def broken(event):
            raise RuntimeError("smtp down")

        async def push(event):
            delivered.append(event)

        outcome = await dispatch_event(
            status_event, [broken, push], max_attempts=2, sleep=_NoSleep()
        )
        assert delivered == [status_event]
        assert len(outcome.failed) == 1
        assert len(outcome.succeeded) == 1

    async def test_event_name_constants(self):
        assert ConcernStatusUpdated.name == "concern.status.updated"
        assert ConcernAssigned.name == "concern.assigned"
