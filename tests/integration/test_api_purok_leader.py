"""
Integration tests for the purok leader API endpoints.
"""

import uuid

import pytest

pytestmark = pytest.mark.asyncio(loop_scope="session")

MANUAL_FORM = {
    "type": "manual",
    "category": "safety",
    "title": "Loose electrical wires",
    "description": "Wires hanging low over the basketball court.",
    "severity": "high",
}


async def _submit_as(client, headers) -> dict:
    resp = await client.post("/api/concerns", data=MANUAL_FORM, headers=headers)
    assert resp.status_code == 201
    return resp.json()["data"]


class TestAssignedConcerns:
    """Tests for GET /api/purok-leader/concerns."""

    async def test_list_and_detail(self, app_client, citizen, purok_leader, auth_headers):
        created = await _submit_as(app_client, auth_headers(citizen))

        resp = await app_client.get("/api/purok-leader/concerns", headers=auth_headers(purok_leader))
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["total"] == 1
        item = data["items"][0]
        assert item["id"] == created["id"]
        assert item["distributionStatus"] == "assigned"
        assert item["citizen"]["name"] == citizen.name
        assert item["citizenPhone"] == citizen.phone

        resp = await app_client.get(
            f"/api/purok-leader/concerns/{created['id']}", headers=auth_headers(purok_leader)
        )
        assert resp.status_code == 200
        assert resp.json()["data"]["trackingCode"] == created["trackingCode"]

    async def test_status_filter(self, app_client, citizen, purok_leader, auth_headers):
        await _submit_as(app_client, auth_headers(citizen))

        resp = await app_client.get(
            "/api/purok-leader/concerns",
            params={"status": "resolved"},
            headers=auth_headers(purok_leader),
        )
        assert resp.json()["data"]["total"] == 0

    async def test_other_leader_sees_nothing(
        self, app_client, citizen, other_leader, auth_headers
    ):
        created = await _submit_as(app_client, auth_headers(citizen))

        resp = await app_client.get("/api/purok-leader/concerns", headers=auth_headers(other_leader))
        assert resp.json()["data"]["total"] == 0

        resp = await app_client.get(
            f"/api/purok-leader/concerns/{created['id']}", headers=auth_headers(other_leader)
        )
        assert resp.status_code == 404

    async def test_citizen_forbidden(self, app_client, citizen, auth_headers):
        resp = await app_client.get("/api/purok-leader/concerns", headers=auth_headers(citizen))
        assert resp.status_code == 403


class TestUpdateStatus:
    """Tests for PUT /api/purok-leader/concerns/{id}/status."""

    async def test_update_and_timeline(
        self, app_client, citizen, purok_leader, auth_headers, publisher
    ):
        created = await _submit_as(app_client, auth_headers(citizen))

        resp = await app_client.put(
            f"/api/purok-leader/concerns/{created['id']}/status",
            json={"status": "ongoing", "remarks": "Crew dispatched"},
            headers=auth_headers(purok_leader),
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["message"] == "Concern status updated successfully"
        assert body["data"] == {
            "concernId": created["id"],
            "previousStatus": "pending",
            "newStatus": "ongoing",
        }
        assert publisher.names() == ["concern.assigned", "concern.status.updated"]

        resp = await app_client.get(
            f"/api/purok-leader/concerns/{created['id']}", headers=auth_headers(purok_leader)
        )
        data = resp.json()["data"]
        assert data["status"] == "ongoing"
        assert data["distributionStatus"] == "in_progress"
        assert data["acknowledgedAt"] is not None

        resp = await app_client.get(f"/api/concerns/{created['id']}", headers=auth_headers(citizen))
        timeline = resp.json()["data"]["timeline"]
        assert [entry["status"] for entry in timeline] == ["pending", "ongoing"]
        assert timeline[-1]["remarks"] == "Crew dispatched"
        assert timeline[-1]["actedBy"]["name"] == purok_leader.name

    async def test_invalid_status(self, app_client, citizen, purok_leader, auth_headers):
        created = await _submit_as(app_client, auth_headers(citizen))

        resp = await app_client.put(
            f"/api/purok-leader/concerns/{created['id']}/status",
            json={"status": "closed"},
            headers=auth_headers(purok_leader),
        )
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["type"] == "ValidationError"
        assert error["field"] == "status"

    async def test_not_assigned_is_404(
        self, app_client, citizen, other_leader, auth_headers, publisher
    ):
        created = await _submit_as(app_client, auth_headers(citizen))

        resp = await app_client.put(
            f"/api/purok-leader/concerns/{created['id']}/status",
            json={"status": "resolved"},
            headers=auth_headers(other_leader),
        )
        assert resp.status_code == 404
        assert resp.json()["message"] == "Concern not found or not assigned to you"
        assert publisher.names() == ["concern.assigned"]

    async def test_unknown_concern(self, app_client, purok_leader, auth_headers):
        resp = await app_client.put(
            f"/api/purok-leader/concerns/{uuid.uuid4()}/status",
            json={"status": "ongoing"},
            headers=auth_headers(purok_leader),
        )
        assert resp.status_code == 404

    async def test_operator_override(self, app_client, citizen, operator, auth_headers):
        created = await _submit_as(app_client, auth_headers(citizen))

        resp = await app_client.put(
            f"/api/purok-leader/concerns/{created['id']}/status",
            json={"status": "escalated"},
            headers=auth_headers(operator),
        )
        assert resp.status_code == 200
        assert resp.json()["data"]["newStatus"] == "escalated"

    async def test_citizen_cannot_update(self, app_client, citizen, auth_headers):
        created = await _submit_as(app_client, auth_headers(citizen))

        resp = await app_client.put(
            f"/api/purok-leader/concerns/{created['id']}/status",
            json={"status": "resolved"},
            headers=auth_headers(citizen),
        )
        assert resp.status_code == 403
