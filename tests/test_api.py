"""
HTTP-level tests: authentication, error mapping and a few end-to-end flows.

The app runs in-process through httpx's ASGI transport against the test
session; the ITSM source is the in-memory fake.
"""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from ensemble.api.itsm import get_itsm_source
from ensemble.core import get_settings
from ensemble.core.database import get_session
from ensemble.core.security import create_access_token
from ensemble.main import app

API = get_settings().api_prefix


@pytest_asyncio.fixture
async def client(session, itsm_source):
    async def override_session():
        yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_itsm_source] = lambda: itsm_source
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


def auth(email: str, team, role: str) -> dict[str, str]:
    token = create_access_token(
        email,
        name=email.split("@")[0],
        permissions=[{"team_id": str(team.id), "role": role}],
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(team) -> dict[str, str]:
    return auth("admin@example.com", team, "ADMIN")


@pytest.fixture
def member_headers(team) -> dict[str, str]:
    return auth("member@example.com", team, "MEMBER")


# =============================================================================
# TEST: PLUMBING
# =============================================================================


class TestPlumbing:
    async def test_health(self, client: AsyncClient):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    async def test_missing_token(self, client: AsyncClient):
        response = await client.get(f"{API}/scorecard/global", params={"year": 2025})
        assert response.status_code == 401

    async def test_garbage_token(self, client: AsyncClient):
        response = await client.get(
            f"{API}/scorecard/global",
            params={"year": 2025},
            headers={"Authorization": "Bearer not-a-jwt"},
        )
        assert response.status_code == 401

    async def test_request_validation(self, client: AsyncClient, admin_headers, team):
        response = await client.post(
            f"{API}/scorecard/teams/{team.id}/publish",
            json={"year": 2025, "month": 13},
            headers=admin_headers,
        )
        assert response.status_code == 422


# =============================================================================
# TEST: ERROR MAPPING
# =============================================================================


class TestErrorMapping:
    async def test_conflict(self, client: AsyncClient, admin_headers, app_a, app_b):
        payload = {"application_id": str(app_a.id), "name": "Gateway", "scorecard_identifier": "pgw"}
        first = await client.post(f"{API}/scorecard/entries", json=payload, headers=admin_headers)
        assert first.status_code == 201

        payload["application_id"] = str(app_b.id)
        second = await client.post(f"{API}/scorecard/entries", json=payload, headers=admin_headers)

        assert second.status_code == 409
        assert second.json() == {
            "error": "conflict",
            "message": 'Scorecard identifier "pgw" is already in use',
            "details": [],
        }

    async def test_permission_denied(self, client: AsyncClient, member_headers, team):
        response = await client.post(
            f"{API}/links/teams/{team.id}",
            json={"title": "x", "url": "https://x.example.com", "visibility": "public"},
            headers=member_headers,
        )

        assert response.status_code == 403
        assert response.json()["error"] == "permission_denied"
        assert response.json()["message"] == "Only Admins can create Public links"

    async def test_not_found(self, client: AsyncClient, member_headers):
        response = await client.put(
            f"{API}/scorecard/entries/00000000-0000-0000-0000-000000000000/availability",
            json={"year": 2025, "month": 3, "availability": "99.5"},
            headers=member_headers,
        )

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    async def test_domain_validation(self, client: AsyncClient, admin_headers):
        response = await client.get(
            f"{API}/scorecard/global",
            params={"year": 2025, "leadership_filter": "x", "leadership_type": "ceo"},
            headers=admin_headers,
        )

        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"


# =============================================================================
# TEST: END-TO-END FLOWS
# =============================================================================


class TestScorecardFlow:
    async def test_publish_then_read_global_view(
        self,
        client: AsyncClient,
        admin_headers,
        member_headers,
        team,
        app_a,
    ):
        created = await client.post(
            f"{API}/scorecard/entries",
            json={
                "application_id": str(app_a.id),
                "name": "Gateway availability",
                "availability_threshold": "99.9",
            },
            headers=admin_headers,
        )
        entry_id = created.json()["id"]

        upserted = await client.put(
            f"{API}/scorecard/entries/{entry_id}/availability",
            json={"year": 2025, "month": 3, "availability": "99.5"},
            headers=member_headers,
        )
        assert upserted.status_code == 200

        hidden = await client.get(
            f"{API}/scorecard/global", params={"year": 2025}, headers=member_headers
        )
        assert hidden.json()["availability"] == []

        published = await client.post(
            f"{API}/scorecard/teams/{team.id}/publish",
            json={"year": 2025, "month": 3},
            headers=admin_headers,
        )
        assert published.json()["is_published"] is True

        body = (
            await client.get(f"{API}/scorecard/global", params={"year": 2025}, headers=member_headers)
        ).json()
        [record] = body["availability"]
        assert record["scorecard_entry_id"] == entry_id
        assert record["is_breach"] is True
        assert body["stats"]["breach_count"] == 1
        assert "2025-3" in body["publish_timestamps"][str(team.id)]

    async def test_unpublish_of_unknown_month_returns_null(
        self,
        client: AsyncClient,
        admin_headers,
        team,
    ):
        response = await client.post(
            f"{API}/scorecard/teams/{team.id}/unpublish",
            json={"year": 2025, "month": 1},
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.json() is None


class TestItsmFlow:
    async def test_sync_import_and_double_submit(
        self,
        client: AsyncClient,
        admin_headers,
        member_headers,
        itsm_source,
        team,
        app_a,
    ):
        settings = await client.put(
            f"{API}/itsm/teams/{team.id}/settings",
            json={
                "app_workgroups": [
                    {"application_id": str(app_a.id), "type": "INC", "group_name": "Payments-Ops"}
                ],
                "app_cmdb_cis": [{"application_id": str(app_a.id), "cmdb_ci_name": "paymentsgw"}],
            },
            headers=admin_headers,
        )
        assert settings.status_code == 200
        assert settings.json()["app_cmdb_cis"] == [
            {"application_id": str(app_a.id), "cmdb_ci_name": "paymentsgw"}
        ]

        itsm_source.incidents = [
            {
                "number": "INC0012345",
                "assignment_group": "Network-Ops",
                "cmdb_ci": "PaymentsGW",
                "short_description": "Gateway timeouts",
                "incident_state": "In Progress",
            }
        ]
        synced = await client.post(
            f"{API}/itsm/teams/{team.id}/sync", json={}, headers=member_headers
        )
        assert synced.json()["queued"] == 1

        [item] = (
            await client.get(f"{API}/itsm/teams/{team.id}/queue", headers=member_headers)
        ).json()
        assert item["application_id"] == str(app_a.id)
        assert item["match_source"] == "CMDB_CI"

        imported = await client.post(
            f"{API}/itsm/queue/{item['id']}", json={"action": "IMPORT"}, headers=member_headers
        )
        assert imported.status_code == 200
        assert imported.json()["item"]["status"] == "IMPORTED"
        assert imported.json()["entry_id"] is not None

        again = await client.post(
            f"{API}/itsm/queue/{item['id']}", json={"action": "IMPORT"}, headers=member_headers
        )
        assert again.status_code == 404

    async def test_sync_outage_is_reported_not_raised(
        self,
        client: AsyncClient,
        admin_headers,
        member_headers,
        itsm_source,
        team,
        app_a,
    ):
        from ensemble.core.exceptions import ExternalSyncError

        await client.put(
            f"{API}/itsm/teams/{team.id}/settings",
            json={
                "app_workgroups": [
                    {"application_id": str(app_a.id), "type": "RFC", "group_name": "Payments-CAB"}
                ]
            },
            headers=admin_headers,
        )
        itsm_source.changes_error = ExternalSyncError("ITSM request to /change timed out")

        response = await client.post(
            f"{API}/itsm/teams/{team.id}/sync", json={}, headers=member_headers
        )

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert response.json()["errors"] == ["RFC sync failed: ITSM request to /change timed out"]


class TestAuditLog:
    async def test_admin_only(
        self,
        client: AsyncClient,
        admin_headers,
        member_headers,
        team,
    ):
        await client.post(
            f"{API}/scorecard/teams/{team.id}/publish",
            json={"year": 2025, "month": 3},
            headers=admin_headers,
        )

        denied = await client.get(f"{API}/audit/teams/{team.id}", headers=member_headers)
        assert denied.status_code == 403

        events = (await client.get(f"{API}/audit/teams/{team.id}", headers=admin_headers)).json()
        assert [e["action"] for e in events] == ["publish"]
        assert events[0]["actor"] == "admin@example.com"


class TestLinks:
    async def test_paging_token_and_null_clears_category(
        self,
        client: AsyncClient,
        member_headers,
        team,
    ):
        category = await client.post(
            f"{API}/links/categories",
            json={"team_id": str(team.id), "name": "Dashboards"},
            headers=member_headers,
        )
        created = await client.post(
            f"{API}/links/bulk",
            json={
                "team_id": str(team.id),
                "links": [
                    {
                        "title": f"board {i}",
                        "url": f"https://{i}.example.com",
                        "category_id": category.json()["id"],
                    }
                    for i in range(3)
                ],
            },
            headers=member_headers,
        )
        assert created.status_code == 201

        first = (
            await client.get(
                f"{API}/links/teams/{team.id}", params={"limit": 2}, headers=member_headers
            )
        ).json()
        second = (
            await client.get(
                f"{API}/links/teams/{team.id}",
                params={"limit": 2, "cursor": first["next_cursor"]},
                headers=member_headers,
            )
        ).json()
        ids = [l["id"] for l in first["items"] + second["items"]]
        assert len(set(ids)) == 3
        assert second["next_cursor"] is None

        link_id = ids[0]
        renamed = await client.patch(
            f"{API}/links/{link_id}", json={"title": "renamed"}, headers=member_headers
        )
        assert renamed.json()["category_id"] == category.json()["id"]

        cleared = await client.patch(
            f"{API}/links/{link_id}", json={"category_id": None}, headers=member_headers
        )
        assert cleared.status_code == 200
        assert cleared.json()["category_id"] is None
        assert cleared.json()["category_name"] is None

    async def test_malformed_cursor(self, client: AsyncClient, member_headers, team):
        response = await client.get(
            f"{API}/links/teams/{team.id}",
            params={"cursor": "yesterday"},
            headers=member_headers,
        )

        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"
