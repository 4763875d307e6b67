"""
Domain events and their dispatch.

Events are emitted after the owning transaction commits and carry JSON
snapshots of the records involved, so consumers never read half-applied
state. The API process publishes them to a Redis Stream (see
event_stream); the notification worker reads them back and hands each
one to the handlers registered for its name.

Handlers are registered explicitly at startup via build_subscriptions in
the notifications module; nothing is discovered by scanning.
"""

import asyncio
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Protocol
from uuid import UUID

from urbanwatch.config import get_logger
from urbanwatch.db.models import (
    Accident,
    Concern,
    ConcernDistribution,
    FalseAlarm,
    IncidentMedia,
)

logger = get_logger(__name__)


# =============================================================================
# Snapshots
# =============================================================================


def _plain(value: Any) -> Any:
    """Convert a column value to something json.dumps accepts."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def concern_snapshot(concern: Concern) -> dict[str, Any]:
    """Serializable view of a concern at emission time."""
    return {
        "id": _plain(concern.id),
        "tracking_code": concern.tracking_code,
        "citizen_id": _plain(concern.citizen_id),
        "title": concern.title,
        "description": concern.description,
        "type": _plain(concern.type),
        "category": _plain(concern.category),
        "severity": _plain(concern.severity),
        "status": _plain(concern.status),
        "latitude": concern.latitude,
        "longitude": concern.longitude,
        "address": concern.address,
        "custom_location": concern.custom_location,
        "created_at": _plain(concern.created_at),
        "updated_at": _plain(concern.updated_at),
    }


def distribution_snapshot(distribution: ConcernDistribution) -> dict[str, Any]:
    """Serializable view of a distribution at emission time."""
    return {
        "id": _plain(distribution.id),
        "concern_id": _plain(distribution.concern_id),
        "purok_leader_id": _plain(distribution.purok_leader_id),
        "status": _plain(distribution.status),
        "assigned_at": _plain(distribution.assigned_at),
        "acknowledged_at": _plain(distribution.acknowledged_at),
    }


def media_snapshot(media: IncidentMedia) -> dict[str, Any]:
    """Serializable view of an incident media row."""
    return {
        "id": _plain(media.id),
        "source_type": _plain(media.source_type),
        "source_id": _plain(media.source_id),
        "source_category": _plain(media.source_category),
        "media_type": _plain(media.media_type),
        "original_path": media.original_path,
        "mime_type": media.mime_type,
        "detection_metadata": media.detection_metadata,
    }


def accident_snapshot(accident: Accident) -> dict[str, Any]:
    """Serializable view of a detected accident."""
    return {
        "id": _plain(accident.id),
        "cctv_device_id": _plain(accident.cctv_device_id),
        "title": accident.title,
        "description": accident.description,
        "accident_type": _plain(accident.accident_type),
        "severity": _plain(accident.severity),
        "status": _plain(accident.status),
        "latitude": accident.latitude,
        "longitude": accident.longitude,
        "occurred_at": _plain(accident.occurred_at),
    }


def false_alarm_snapshot(false_alarm: FalseAlarm, device_name: str | None) -> dict[str, Any]:
    """Serializable view of a rejected detection."""
    return {
        "id": _plain(false_alarm.id),
        "cctv_device_id": _plain(false_alarm.cctv_device_id),
        "device_name": device_name,
        "attempted_accident_type": false_alarm.attempted_accident_type,
        "reasoning": false_alarm.reasoning,
        "confidence_score": false_alarm.confidence_score,
        "detected_objects": false_alarm.detected_objects,
        "detected_at": _plain(false_alarm.detected_at),
    }


# =============================================================================
# Events
# =============================================================================


@dataclass(frozen=True)
class ConcernStatusUpdated:
    """A purok leader (or operator) changed a concern's status."""

    name: ClassVar[str] = "concern.status.updated"

    concern: dict[str, Any]
    distribution: dict[str, Any]
    previous_status: str
    new_status: str
    actor: dict[str, Any]
    remarks: str | None = None


@dataclass(frozen=True)
class ConcernAssigned:
    """A new concern was distributed to a purok leader."""

    name: ClassVar[str] = "concern.assigned"

    concern: dict[str, Any]
    distribution: dict[str, Any]
    images: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class AccidentDetected:
    """A CCTV snapshot was verified as a genuine emergency."""

    name: ClassVar[str] = "accident.detected"

    accident: dict[str, Any]
    media: dict[str, Any]
    device_name: str | None = None


@dataclass(frozen=True)
class AccidentStatusUpdated:
    """An operator moved an accident through its response workflow."""

    name: ClassVar[str] = "accident.status.updated"

    accident: dict[str, Any]
    previous_status: str
    new_status: str
    actor: dict[str, Any]


@dataclass(frozen=True)
class FalseAlarmDetected:
    """A CCTV snapshot was rejected by verification."""

    name: ClassVar[str] = "false_alarm.detected"

    false_alarm: dict[str, Any]


DomainEvent = (
    ConcernStatusUpdated
    | ConcernAssigned
    | AccidentDetected
    | AccidentStatusUpdated
    | FalseAlarmDetected
)

EVENT_TYPES: dict[str, type[DomainEvent]] = {
    cls.name: cls
    for cls in (
        ConcernStatusUpdated,
        ConcernAssigned,
        AccidentDetected,
        AccidentStatusUpdated,
        FalseAlarmDetected,
    )
}


def event_to_payload(event: DomainEvent) -> dict[str, Any]:
    """Serialize an event body (without its name)."""
    return asdict(event)


def event_from_payload(name: str, payload: Mapping[str, Any]) -> DomainEvent:
    """
    Rebuild an event from its name and serialized body.

    Raises:
        KeyError: If the event name is unknown.
    """
    return EVENT_TYPES[name](**payload)


# =============================================================================
# Publishing
# =============================================================================


class EventPublisher(Protocol):
    """Anything that can hand a committed domain event to consumers."""

    async def publish(self, event: DomainEvent) -> None: ...


async def publish_safely(
    publisher: EventPublisher | None,
    event: DomainEvent,
) -> bool:
    """
    Publish an event without letting failures reach the caller.

    The triggering state change is already committed when this runs, so
    a broken publisher is logged and otherwise ignored.

    Returns:
        True if the publisher accepted the event.
    """
    if publisher is None:
        logger.warning("No event publisher configured, event dropped", event_name=event.name)
        return False

    try:
        await publisher.publish(event)
        return True
    except Exception as e:
        logger.error(
            "Failed to publish domain event",
            event_name=event.name,
            error=str(e),
        )
        return False


# =============================================================================
# Dispatch
# =============================================================================

EventHandler = Callable[[DomainEvent], Awaitable[None]]
Subscriptions = dict[str, list[EventHandler]]


@dataclass
class DispatchOutcome:
    """Per-event result of running every subscribed handler."""

    succeeded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


def _handler_name(handler: EventHandler) -> str:
    return getattr(handler, "__qualname__", None) or repr(handler)


async def dispatch_event(
    event: DomainEvent,
    handlers: Sequence[EventHandler],
    *,
    max_attempts: int = 3,
    backoff_seconds: float = 60.0,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> DispatchOutcome:
    """
    Run each handler for an event with bounded retries.

    Handlers are isolated from each other: one failing SMS send does not
    stop the realtime push or the email. Each handler gets up to
    max_attempts tries with a fixed backoff between them.

    Args:
        event: The event to deliver.
        handlers: Handlers registered for the event's name.
        max_attempts: Attempts per handler before giving up.
        backoff_seconds: Fixed delay between attempts.
        sleep: Awaitable sleep, injectable for tests.

    Returns:
        DispatchOutcome naming handlers that succeeded and failed.
    """
    outcome = DispatchOutcome()

    for handler in handlers:
        name = _handler_name(handler)

        for attempt in range(1, max_attempts + 1):
            try:
                await handler(event)
                outcome.succeeded.append(name)
                break
            except Exception as e:
                if attempt < max_attempts:
                    logger.warning(
                        "Event handler failed, retrying",
                        event_name=event.name,
                        handler=name,
                        attempt=attempt,
                        max_attempts=max_attempts,
                        backoff_seconds=backoff_seconds,
                        error=str(e),
                    )
                    await sleep(backoff_seconds)
                else:
                    logger.error(
                        "Event handler failed after all retries",
                        event_name=event.name,
                        handler=name,
                        attempts=max_attempts,
                        error=str(e),
                    )
                    outcome.failed.append(name)

    return outcome
