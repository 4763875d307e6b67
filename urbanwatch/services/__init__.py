"""UrbanWatch Services Layer."""

from urbanwatch.services import (
    assignment,
    auth,
    classifier,
    concerns,
    event_stream,
    events,
    ingestion,
    mailer,
    notifications,
    realtime,
    sms,
    storage,
    transitions,
)

__all__ = [
    "assignment",
    "auth",
    "classifier",
    "concerns",
    "event_stream",
    "events",
    "ingestion",
    "mailer",
    "notifications",
    "realtime",
    "sms",
    "storage",
    "transitions",
]
