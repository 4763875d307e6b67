"""
Pytest configuration and shared fixtures for unit tests.
"""

import pytest

from urbanwatch.services.events import ConcernAssigned, ConcernStatusUpdated


# =============================================================================
# Common Test Data
# =============================================================================


@pytest.fixture
def concern_payload() -> dict:
    """Concern snapshot as carried by domain events."""
    return {
        "id": "0b7e1b4e-5d1c-4c55-9a8e-1f3f0f6a1c10",
        "tracking_code": "CN-20261019-AB12",
        "citizen_id": "7a1d3c52-1f0e-4b7a-8f43-2a4b6f9e0d21",
        "title": "Broken streetlight",
        "description": "The streetlight near the chapel has been out for a week.",
        "type": "manual",
        "category": "infrastructure",
        "severity": "medium",
        "status": "ongoing",
        "latitude": 14.5995,
        "longitude": 120.9842,
        "address": "Rizal St.",
        "custom_location": "Near the chapel",
        "created_at": "2026-10-19T08:00:00+00:00",
        "updated_at": "2026-10-19T09:00:00+00:00",
    }


@pytest.fixture
def distribution_payload() -> dict:
    return {
        "id": "c3f0d7a2-9b61-4d0e-8e8f-6f1a2b3c4d5e",
        "concern_id": "0b7e1b4e-5d1c-4c55-9a8e-1f3f0f6a1c10",
        "purok_leader_id": "e2b9f6c1-7a3d-4f08-b5c4-9d8e7f6a5b4c",
        "status": "in_progress",
        "assigned_at": "2026-10-19T08:00:00+00:00",
        "acknowledged_at": "2026-10-19T09:00:00+00:00",
    }


@pytest.fixture
def status_event(concern_payload, distribution_payload) -> ConcernStatusUpdated:
    return ConcernStatusUpdated(
        concern=concern_payload,
        distribution=distribution_payload,
        previous_status="pending",
        new_status="ongoing",
        actor={"id": distribution_payload["purok_leader_id"], "name": "Leader Cruz", "role": "purok_leader"},
        remarks="On my way",
    )


@pytest.fixture
def assigned_event(concern_payload, distribution_payload) -> ConcernAssigned:
    return ConcernAssigned(
        concern=concern_payload,
        distribution=distribution_payload,
        images=[
            {
                "id": "a1b2c3d4-0000-4000-8000-000000000001",
                "original_path": "/media/concerns/2026/10/abc.jpg",
            }
        ],
    )
