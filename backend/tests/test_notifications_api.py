"""
Tests for the notifications HTTP surface.

Covers:
  - Batch endpoints hidden (404) without a valid scheduler token
  - process-events / run return batch stats, validate the optional body
  - Pipeline kill switch
  - GET /notifications/{id}: RBAC, tenant isolation, attempts listed
"""

from __future__ import annotations

import pytest
from sqlalchemy import select

from conftest import OTHER_TENANT_ID, SCHEDULER_TOKEN, build_auth_header, make_event, make_rule
from notifier.core.config import get_settings
from notifier.models.notification import Notification

SCHEDULER_HEADERS = {"X-Scheduler-Token": SCHEDULER_TOKEN}


async def _schedule_one(client, db) -> Notification:
    make_rule(db)
    make_event(db)
    resp = await client.post("/api/v1/notifications/process-events", headers=SCHEDULER_HEADERS)
    assert resp.status_code == 200
    db.expire_all()
    return db.execute(select(Notification)).scalars().one()


# ═══════════════════════════════════════════════════════════════
# Scheduler token
# ═══════════════════════════════════════════════════════════════


@pytest.mark.asyncio
@pytest.mark.parametrize("path", ["/api/v1/notifications/process-events", "/api/v1/notifications/run"])
async def test_batch_endpoints_hidden_without_token(client, path):
    assert (await client.post(path)).status_code == 404
    assert (await client.post(path, headers={"X-Scheduler-Token": "wrong"})).status_code == 404


@pytest.mark.asyncio
async def test_batch_endpoints_hidden_when_token_unset(client, monkeypatch):
    monkeypatch.delenv("SCHEDULER_TOKEN", raising=False)
    get_settings.cache_clear()

    resp = await client.post("/api/v1/notifications/run", headers=SCHEDULER_HEADERS)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_pipeline_kill_switch(client, monkeypatch):
    monkeypatch.setenv("ENABLE_NOTIFICATION_PIPELINE", "false")
    get_settings.cache_clear()

    resp = await client.post("/api/v1/notifications/process-events", headers=SCHEDULER_HEADERS)
    assert resp.status_code == 404


# ═══════════════════════════════════════════════════════════════
# Batches
# ═══════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_process_events_returns_stats(client, db):
    make_rule(db, channels=["email", "whatsapp"])
    make_event(db)

    resp = await client.post(
        "/api/v1/notifications/process-events",
        headers=SCHEDULER_HEADERS,
        json={"limit": 10},
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["events_fetched"] == 1
    assert body["events_processed"] == 1
    assert body["notifications_created"] == 2
    assert body["unmapped_statuses"] == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("limit", [0, 501])
async def test_batch_limit_is_validated(client, limit):
    resp = await client.post(
        "/api/v1/notifications/process-events",
        headers=SCHEDULER_HEADERS,
        json={"limit": limit},
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_run_without_sender_config_records_failed_attempt(client, db):
    notification = await _schedule_one(client, db)

    resp = await client.post("/api/v1/notifications/run", headers=SCHEDULER_HEADERS)

    assert resp.status_code == 200
    body = resp.json()
    assert body["claimed_count"] == 1
    assert body["processed_error"] == 1
    assert body["scheduled_retries"] == 1

    db.expire_all()
    row = db.get(Notification, notification.id)
    assert row.status == "retrying"
    assert row.attempt_count == 1


# ═══════════════════════════════════════════════════════════════
# GET /notifications/{id}
# ═══════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_get_notification_with_attempts(client, db):
    notification = await _schedule_one(client, db)
    await client.post("/api/v1/notifications/run", headers=SCHEDULER_HEADERS)

    resp = await client.get(f"/api/v1/notifications/{notification.id}", headers=build_auth_header("OPERATOR"))

    assert resp.status_code == 200
    body = resp.json()
    assert body["id"] == str(notification.id)
    assert body["channel"] == "email"
    assert body["recipient"] == "ana@example.com"
    assert body["status"] == "retrying"
    assert body["attempt_count"] == 1
    assert body["rendered_payload"]["email_subject"] == "Pedido 1001 aprovado"
    assert len(body["attempts"]) == 1
    assert body["attempts"][0]["status"] == "error"
    assert body["attempts"][0]["error_code"] == "EMAIL_SENDER_NOT_CONFIGURED"


@pytest.mark.asyncio
async def test_get_notification_other_tenant_is_not_found(client, db):
    notification = await _schedule_one(client, db)

    resp = await client.get(
        f"/api/v1/notifications/{notification.id}",
        headers=build_auth_header("ADMIN", tenant_id=OTHER_TENANT_ID),
    )
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_get_notification_unknown_or_malformed_id(client):
    headers = build_auth_header("ADMIN")
    assert (await client.get("/api/v1/notifications/not-a-uuid", headers=headers)).status_code == 404
    missing = "/api/v1/notifications/00000000-0000-0000-0000-00000000abcd"
    assert (await client.get(missing, headers=headers)).status_code == 404


@pytest.mark.asyncio
async def test_get_notification_requires_auth_and_role(client, db):
    notification = await _schedule_one(client, db)
    path = f"/api/v1/notifications/{notification.id}"

    assert (await client.get(path)).status_code == 401
    assert (await client.get(path, headers={"Authorization": "Bearer garbage"})).status_code == 401
    assert (await client.get(path, headers=build_auth_header("VIEWER"))).status_code == 403
    assert (await client.get(path, headers=build_auth_header("ADMIN", tenant_id=None))).status_code == 403
