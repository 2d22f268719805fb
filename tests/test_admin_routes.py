from datetime import timedelta

import pytest

import complaint_portal.database as database
from complaint_portal.models import Complaint
from complaint_portal.time_utils import utcnow


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


async def _stale_complaint(hours_old: int = 30, priority: str = "high") -> int:
    async with database.async_session_factory() as session:
        complaint = Complaint(
            category="security",
            description="Door lock broken",
            priority=priority,
            created_at=utcnow() - timedelta(hours=hours_old),
        )
        session.add(complaint)
        await session.commit()
        await session.refresh(complaint)
        return complaint.id


@pytest.mark.asyncio
async def test_trigger_escalation(client, notifier, admin_token, make_user):
    cid = await _stale_complaint()
    await _stale_complaint(hours_old=2)

    r = await client.post("/api/admin/trigger-escalation")
    assert r.status_code == 401
    _, user_token = await make_user("plain@example.com")
    r = await client.post("/api/admin/trigger-escalation", headers=_auth(user_token))
    assert r.status_code == 403

    r = await client.post("/api/admin/trigger-escalation", headers=_auth(admin_token))
    assert r.status_code == 200
    body = r.json()
    assert body["processed"] == 2
    assert body["escalated"] == 1
    assert body["failed"] == 0
    assert body["trigger"] == "manual"
    assert [c.id for c, _ in notifier.escalations] == [cid]

    r = await client.get("/api/admin/escalated-complaints", headers=_auth(admin_token))
    assert [c["id"] for c in r.json()] == [cid]
    assert r.json()[0]["escalation_level"] == 1

    r = await client.get(f"/api/admin/complaints/{cid}/escalation-history", headers=_auth(admin_token))
    assert r.status_code == 200
    assert [row["escalation_level"] for row in r.json()] == [1]

    r = await client.get("/api/admin/escalation-stats", headers=_auth(admin_token))
    assert r.json()["summary"]["total_escalated"] == 1


@pytest.mark.asyncio
async def test_trigger_while_sweep_running_conflicts(client, scheduler, admin_token):
    async with scheduler._sweep_lock():
        r = await client.post("/api/admin/trigger-escalation", headers=_auth(admin_token))
    assert r.status_code == 409


@pytest.mark.asyncio
async def test_history_for_unknown_complaint(client, admin_token):
    r = await client.get("/api/admin/complaints/4242/escalation-history", headers=_auth(admin_token))
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_role_elevation_requires_whitelist(client, make_user, admin_token, superadmin_token):
    target, target_token = await make_user("candidate@example.com")

    r = await client.put(f"/api/admin/users/{target.id}/role", json={"role": "admin"}, headers=_auth(admin_token))
    assert r.status_code == 403

    r = await client.put(f"/api/admin/users/{target.id}/role", json={"role": "admin"}, headers=_auth(superadmin_token))
    assert r.status_code == 403

    r = await client.post("/api/admin/admin-whitelist", json={"email": "Candidate@example.com"}, headers=_auth(superadmin_token))
    assert r.status_code == 201
    r = await client.post("/api/admin/admin-whitelist", json={"email": "candidate@example.com"}, headers=_auth(superadmin_token))
    assert r.status_code == 409

    r = await client.put(f"/api/admin/users/{target.id}/role", json={"role": "admin"}, headers=_auth(superadmin_token))
    assert r.status_code == 200
    assert r.json()["role"] == "admin"

    r = await client.put(f"/api/admin/users/{target.id}/role", json={"role": "wizard"}, headers=_auth(superadmin_token))
    assert r.status_code == 400

    r = await client.get("/api/admin/admin-whitelist", headers=_auth(superadmin_token))
    assert [e["email"] for e in r.json()] == ["candidate@example.com"]
    r = await client.delete("/api/admin/admin-whitelist/candidate@example.com", headers=_auth(superadmin_token))
    assert r.status_code == 200
    r = await client.delete("/api/admin/admin-whitelist/candidate@example.com", headers=_auth(superadmin_token))
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_demotion_needs_no_whitelist(client, make_user, superadmin_token):
    target, _ = await make_user("former-admin@example.com", role="admin")
    r = await client.put(f"/api/admin/users/{target.id}/role", json={"role": "user"}, headers=_auth(superadmin_token))
    assert r.status_code == 200
    assert r.json()["role"] == "user"


@pytest.mark.asyncio
async def test_account_status_blocks_login(client, make_user, superadmin_token):
    target, _ = await make_user("suspend-me@example.com", password="rightpass1")

    r = await client.patch(f"/api/admin/users/{target.id}/status", json={"status": "suspended"}, headers=_auth(superadmin_token))
    assert r.status_code == 200
    assert r.json()["status"] == "suspended"

    r = await client.post("/api/auth/login", json={"email": "suspend-me@example.com", "password": "rightpass1"})
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_superadmin_cannot_change_own_account(client, make_user):
    me, token = await make_user("self@example.com", role="superadmin")
    r = await client.put(f"/api/admin/users/{me.id}/role", json={"role": "user"}, headers=_auth(token))
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_health_reports_scheduler(client):
    r = await client.get("/health")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "healthy"
    assert body["escalation_scheduler"]["running"] is False
    assert body["escalation_scheduler"]["sweep_in_progress"] is False


@pytest.mark.asyncio
async def test_metrics_endpoint(client):
    await client.get("/health")
    r = await client.get("/metrics")
    assert r.status_code == 200
    assert "http_requests_total" in r.text
