"""
Integration tests for the citizen concern API endpoints.
"""

import uuid

import pytest

pytestmark = pytest.mark.asyncio(loop_scope="session")

JPEG = ("pothole.jpg", b"\xff\xd8\xff\xe0fake-jpeg", "image/jpeg")

MANUAL_FORM = {
    "type": "manual",
    "category": "infrastructure",
    "title": "Broken streetlight",
    "description": "The streetlight in front of the barangay hall is out.",
    "severity": "medium",
    "latitude": "14.5995",
    "longitude": "120.9842",
    "address": "Mabini St.",
}


async def _submit(client, headers, form=None, files=None):
    return await client.post(
        "/api/concerns",
        data=form or MANUAL_FORM,
        files=files,
        headers=headers,
    )


# =============================================================================
# Submission
# =============================================================================


class TestSubmitConcern:
    """Tests for POST /api/concerns."""

    async def test_submit_with_image(self, app_client, citizen, purok_leader, auth_headers, publisher):
        resp = await _submit(app_client, auth_headers(citizen), files=[("files", JPEG)])

        assert resp.status_code == 201
        body = resp.json()
        assert body["success"] is True
        assert body["message"] == "Concern submitted successfully!"

        data = body["data"]
        assert data["trackingCode"].startswith("CN-")
        assert data["status"] == "pending"
        assert data["citizenId"] == str(citizen.id)
        assert data["distribution"]["status"] == "assigned"
        assert data["distribution"]["purokLeader"]["name"] == purok_leader.name
        assert len(data["images"]) == 1
        assert data["media"][0]["mediaType"] == "image"
        assert data["timeline"][0]["actedBy"]["name"] == "UrbanWatch System"

        assert publisher.names() == ["concern.assigned"]

    async def test_manual_without_title(self, app_client, citizen, auth_headers):
        form = {key: value for key, value in MANUAL_FORM.items() if key != "title"}
        resp = await _submit(app_client, auth_headers(citizen), form=form)

        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["type"] == "ValidationError"
        assert error["field"] == "title"

    async def test_unknown_category(self, app_client, citizen, auth_headers):
        resp = await _submit(app_client, auth_headers(citizen), form={**MANUAL_FORM, "category": "ufo"})
        assert resp.status_code == 422
        assert resp.json()["message"] == "Validation failed"

    async def test_purok_leader_cannot_submit(self, app_client, purok_leader, auth_headers):
        resp = await _submit(app_client, auth_headers(purok_leader))
        assert resp.status_code == 403

    async def test_requires_authentication(self, app_client):
        resp = await _submit(app_client, {})
        assert resp.status_code == 401


# =============================================================================
# Listing, counting, detail and deletion
# =============================================================================


class TestCitizenConcerns:
    """Tests for GET and DELETE on /api/concerns."""

    async def test_list_and_count(self, app_client, citizen, other_citizen, auth_headers):
        await _submit(app_client, auth_headers(citizen))
        await _submit(app_client, auth_headers(citizen), form={**MANUAL_FORM, "category": "noise"})
        await _submit(app_client, auth_headers(other_citizen))

        resp = await app_client.get("/api/concerns", headers=auth_headers(citizen))
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["total"] == 2
        assert data["pages"] == 1
        assert len(data["items"]) == 2

        resp = await app_client.get(
            "/api/concerns",
            params={"category": "noise", "pageSize": 1},
            headers=auth_headers(citizen),
        )
        data = resp.json()["data"]
        assert data["total"] == 1
        assert data["pageSize"] == 1
        assert data["items"][0]["category"] == "noise"

        resp = await app_client.get(
            "/api/concerns/count",
            params={"status": "pending"},
            headers=auth_headers(citizen),
        )
        assert resp.json()["data"]["count"] == 2

    async def test_detail(self, app_client, citizen, auth_headers):
        created = (await _submit(app_client, auth_headers(citizen))).json()["data"]

        resp = await app_client.get(f"/api/concerns/{created['id']}", headers=auth_headers(citizen))
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["trackingCode"] == created["trackingCode"]
        assert [entry["status"] for entry in data["timeline"]] == ["pending"]

    async def test_other_citizen_gets_404(self, app_client, citizen, other_citizen, auth_headers):
        created = (await _submit(app_client, auth_headers(citizen))).json()["data"]

        resp = await app_client.get(
            f"/api/concerns/{created['id']}", headers=auth_headers(other_citizen)
        )
        assert resp.status_code == 404
        assert resp.json()["error"]["type"] == "NotFoundOrUnauthorized"

        resp = await app_client.delete(
            f"/api/concerns/{created['id']}", headers=auth_headers(other_citizen)
        )
        assert resp.status_code == 404

    async def test_unknown_concern(self, app_client, citizen, auth_headers):
        resp = await app_client.get(f"/api/concerns/{uuid.uuid4()}", headers=auth_headers(citizen))
        assert resp.status_code == 404

    async def test_delete(self, app_client, citizen, auth_headers):
        created = (await _submit(app_client, auth_headers(citizen))).json()["data"]

        resp = await app_client.delete(f"/api/concerns/{created['id']}", headers=auth_headers(citizen))
        assert resp.status_code == 200
        body = resp.json()
        assert body["message"] == "Concern deleted successfully"
        assert body["data"]["concernId"] == created["id"]

        resp = await app_client.get(f"/api/concerns/{created['id']}", headers=auth_headers(citizen))
        assert resp.status_code == 404

        resp = await app_client.get("/api/concerns/count", headers=auth_headers(citizen))
        assert resp.json()["data"]["count"] == 0
