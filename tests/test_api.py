"""
Tests for the HTTP API.

These tests verify:
1. AUTH: every endpoint requires a bearer token
2. FLOW: a report can be created, initiated and approved over HTTP
3. ERRORS: workflow errors map onto 403/404/409/422 with the error envelope
4. PERIODS: day slice upserts roll up and the period can be submitted
"""

from datetime import timedelta
from uuid import uuid4

import pytest
from httpx import AsyncClient

from npt_workflow.core.clock import utcnow

from conftest import DS, OSE, RIG_ID, TOOL_PUSHER, auth, staff_rig

API = "/api/v1"


@pytest.fixture
async def committed_rig(session_factory):
    async with session_factory() as session:
        async with session.begin():
            await staff_rig(session)
    return RIG_ID


async def create_report(client: AsyncClient, category: str = "Drilling") -> dict:
    response = await client.post(
        f"{API}/reports",
        json={
            "rig_id": RIG_ID,
            "category": category,
            "fields": {"report_date": "2025-05-02", "hours": 3.5, "npt_type": "Abraj"},
        },
        headers=auth(TOOL_PUSHER),
    )
    assert response.status_code == 201
    return response.json()


# =============================================================================
# TEST: AUTH & HEALTH
# =============================================================================


class TestAuth:

    async def test_health(self, client: AsyncClient):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    async def test_missing_token_is_401(self, client: AsyncClient):
        response = await client.get(f"{API}/reports/pending")

        assert response.status_code == 401

    async def test_garbage_token_is_401(self, client: AsyncClient):
        response = await client.get(
            f"{API}/reports/pending",
            headers={"Authorization": "Bearer not-a-token"},
        )

        assert response.status_code == 401


# =============================================================================
# TEST: REPORT WORKFLOW
# =============================================================================


class TestReportWorkflow:

    async def test_create_initiate_approve(self, client: AsyncClient, committed_rig):
        report = await create_report(client)
        assert report["workflow_status"] == "draft"

        initiated = await client.post(
            f"{API}/reports/{report['id']}/initiate",
            json={"comment": "Top drive down"},
            headers=auth(TOOL_PUSHER),
        )
        assert initiated.status_code == 200
        assert initiated.json()["report"]["workflow_status"] == "pending:ds"
        assert initiated.json()["record"]["action"] == "initiate"

        pending = await client.get(f"{API}/reports/pending", headers=auth(DS))
        assert [r["id"] for r in pending.json()] == [report["id"]]

        await client.post(f"{API}/reports/{report['id']}/approve", json={}, headers=auth(DS))
        final = await client.post(
            f"{API}/reports/{report['id']}/approve", json={}, headers=auth(OSE)
        )
        assert final.status_code == 200
        assert final.json()["report"]["workflow_status"] == "approved"

        audit = await client.get(f"{API}/reports/{report['id']}/audit", headers=auth(OSE))
        assert [r["action"] for r in audit.json()] == ["initiate", "approve", "approve"]

    async def test_wrong_approver_is_403(self, client: AsyncClient, committed_rig):
        report = await create_report(client)
        await client.post(f"{API}/reports/{report['id']}/initiate", json={}, headers=auth(TOOL_PUSHER))

        response = await client.post(
            f"{API}/reports/{report['id']}/approve", json={}, headers=auth(OSE)
        )

        assert response.status_code == 403
        assert response.json()["error"] == "unauthorized"

    async def test_unknown_report_is_404(self, client: AsyncClient):
        response = await client.get(f"{API}/reports/{uuid4()}", headers=auth(DS))

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    async def test_closed_report_is_409(self, client: AsyncClient, committed_rig):
        report = await create_report(client)
        await client.post(f"{API}/reports/{report['id']}/initiate", json={}, headers=auth(TOOL_PUSHER))
        rejected = await client.post(
            f"{API}/reports/{report['id']}/reject",
            json={"comment": "missing evidence"},
            headers=auth(DS),
        )
        assert rejected.json()["report"]["rejection_reason"] == "missing evidence"

        response = await client.post(
            f"{API}/reports/{report['id']}/approve", json={}, headers=auth(DS)
        )

        assert response.status_code == 409
        assert response.json()["error"] == "invalid_transition"

    async def test_stale_version_is_409(self, client: AsyncClient, committed_rig):
        report = await create_report(client)
        await client.post(f"{API}/reports/{report['id']}/initiate", json={}, headers=auth(TOOL_PUSHER))

        response = await client.post(
            f"{API}/reports/{report['id']}/approve",
            json={"expected_version": report["version"]},
            headers=auth(DS),
        )

        assert response.status_code == 409
        assert response.json()["error"] == "concurrency_conflict"

    async def test_reject_without_comment_is_422(self, client: AsyncClient, committed_rig):
        report = await create_report(client)
        await client.post(f"{API}/reports/{report['id']}/initiate", json={}, headers=auth(TOOL_PUSHER))

        response = await client.post(
            f"{API}/reports/{report['id']}/reject", json={"comment": ""}, headers=auth(DS)
        )

        assert response.status_code == 422

    async def test_vacant_role_is_422(self, client: AsyncClient):
        report = await create_report(client)

        response = await client.post(
            f"{API}/reports/{report['id']}/initiate", json={}, headers=auth(TOOL_PUSHER)
        )

        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"

    async def test_request_changes_patch(self, client: AsyncClient, committed_rig):
        report = await create_report(client)
        await client.post(f"{API}/reports/{report['id']}/initiate", json={}, headers=auth(TOOL_PUSHER))

        response = await client.post(
            f"{API}/reports/{report['id']}/request-changes",
            json={"comment": "hours were wrong", "patch": {"hours": 5}},
            headers=auth(DS),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["report"]["hours"] == 5.0
        assert body["record"]["edited_fields"] == ["hours"]
        assert body["record"]["previous_values"] == {"hours": 3.5}

    async def test_workflow_state(self, client: AsyncClient, committed_rig):
        report = await create_report(client, category="E.Maintenance")

        response = await client.get(
            f"{API}/reports/{report['id']}/state", headers=auth(TOOL_PUSHER)
        )

        assert response.status_code == 200
        assert response.json()["can_initiate"] is True
        assert response.json()["path"] == ["tool_pusher", "pme", "ds", "ose"]


# =============================================================================
# TEST: DIRECTORY
# =============================================================================


class TestDirectory:

    async def test_assign_and_resolve(self, client: AsyncClient):
        assigned = await client.post(
            f"{API}/role-assignments",
            json={"rig_id": RIG_ID, "role": "Drilling Supervisor", "principal_id": DS},
            headers=auth("admin"),
        )
        assert assigned.status_code == 201
        assert assigned.json()["role_key"] == "ds"

        response = await client.get(
            f"{API}/approvers/effective",
            params={"rig_id": RIG_ID, "role": "ds"},
            headers=auth(TOOL_PUSHER),
        )

        assert response.json()["principal_id"] == DS
        assert response.json()["is_delegated"] is False

    async def test_delegation_redirects_effective_approver(self, client: AsyncClient, committed_rig):
        now = utcnow()
        created = await client.post(
            f"{API}/delegations",
            json={
                "delegate_id": "ds-relief",
                "starts_at": (now - timedelta(hours=1)).isoformat(),
                "ends_at": (now + timedelta(days=2)).isoformat(),
                "rig_id": RIG_ID,
                "role": "ds",
            },
            headers=auth(DS),
        )
        assert created.status_code == 201
        assert created.json()["delegator_id"] == DS

        response = await client.get(
            f"{API}/approvers/effective",
            params={"rig_id": RIG_ID, "role": "ds"},
            headers=auth(TOOL_PUSHER),
        )
        assert response.json()["principal_id"] == "ds-relief"
        assert response.json()["nominal_id"] == DS

        forbidden = await client.delete(
            f"{API}/delegations/{created.json()['id']}", headers=auth("ds-relief")
        )
        assert forbidden.status_code == 403

    async def test_delegating_a_role_you_do_not_hold_is_403(
        self, client: AsyncClient, committed_rig
    ):
        now = utcnow()
        response = await client.post(
            f"{API}/delegations",
            json={
                "delegate_id": "mallory-alt",
                "starts_at": now.isoformat(),
                "ends_at": (now + timedelta(days=2)).isoformat(),
                "rig_id": RIG_ID,
                "role": "ds",
            },
            headers=auth("mallory"),
        )
        assert response.status_code == 403
        assert response.json()["error"] == "unauthorized"

        resolved = await client.get(
            f"{API}/approvers/effective",
            params={"rig_id": RIG_ID, "role": "ds"},
            headers=auth(TOOL_PUSHER),
        )
        assert resolved.json()["principal_id"] == DS

    async def test_unknown_role_is_422(self, client: AsyncClient):
        response = await client.post(
            f"{API}/role-assignments",
            json={"rig_id": RIG_ID, "role": "cook", "principal_id": "someone"},
            headers=auth("admin"),
        )

        assert response.status_code == 422


# =============================================================================
# TEST: PERIOD REPORTS
# =============================================================================


class TestPeriods:

    async def test_day_slices_and_submit(self, client: AsyncClient, committed_rig):
        for day, hours in (("2025-05-01", 2), ("2025-05-02", 3), ("2025-05-03", 1)):
            response = await client.put(
                f"{API}/periods/2025-05/{RIG_ID}/days/{day}",
                json={"hours": hours, "npt_type": "Abraj"},
                headers=auth(TOOL_PUSHER),
            )
            assert response.status_code == 200

        period = await client.post(
            f"{API}/periods",
            json={"month": "2025-05", "rig_id": RIG_ID},
            headers=auth(TOOL_PUSHER),
        )
        assert period.json()["abraj_hours"] == 6.0

        submitted = await client.post(
            f"{API}/periods/{period.json()['id']}/submit", json={}, headers=auth(TOOL_PUSHER)
        )
        assert submitted.status_code == 200
        assert submitted.json()["status"] == "Submitted"

        timeline = await client.get(
            f"{API}/periods/{period.json()['id']}/timeline", headers=auth(DS)
        )
        body = timeline.json()
        assert len(body["day_slices"]) == 3
        assert [e["stage"] for e in body["stage_events"]] == ["Created", "Submitted"]

    async def test_period_reject_needs_reason(self, client: AsyncClient, committed_rig):
        period = await client.post(
            f"{API}/periods",
            json={"month": "2025-05", "rig_id": RIG_ID},
            headers=auth(TOOL_PUSHER),
        )
        await client.post(
            f"{API}/periods/{period.json()['id']}/submit", json={}, headers=auth(TOOL_PUSHER)
        )

        response = await client.post(
            f"{API}/periods/{period.json()['id']}/reject", json={}, headers=auth(DS)
        )

        assert response.status_code == 422

    async def test_bad_month_is_422(self, client: AsyncClient):
        response = await client.post(
            f"{API}/periods",
            json={"month": "2025-13", "rig_id": RIG_ID},
            headers=auth(TOOL_PUSHER),
        )

        assert response.status_code == 422
