"""End-to-end credential lifecycle with step-up verification.

create -> list (no secret) -> reveal refused -> verify password -> reveal,
then the audit trail shows each step in order.
"""

import pytest

from strongroom.core.audit_log import AuditAction, AuditOutcome
from strongroom.core.exceptions import Forbidden


def test_store_level_flow(store, gate, settings, admin, entries):
    settings.update("alice", require_password_verification=True)

    cred = store.create(
        admin,
        label="svc account",
        type="username_password",
        payload={"username": "svc", "password": "p@ss"},
    )

    listed = store.list(admin)
    assert [c.id for c in listed] == [cred.id]
    assert "p@ss" not in repr(listed)

    with pytest.raises(Forbidden):
        store.reveal(admin, cred.id)

    gate.verify_step_up(admin, "admin-pass-123")
    assert store.reveal(admin, cred.id) == {"username": "svc", "password": "p@ss"}

    trail = [(e.action, e.outcome) for e in entries()
             if e.action is not AuditAction.SETTINGS_UPDATE]
    assert trail == [
        (AuditAction.CREATE, AuditOutcome.SUCCESS),
        (AuditAction.VIEW, AuditOutcome.FAILURE),
        (AuditAction.VERIFY_SUCCESS, AuditOutcome.SUCCESS),
        (AuditAction.VIEW, AuditOutcome.SUCCESS),
    ]
    assert {e.actor for e in entries()} == {"alice"}


def test_api_level_flow(api_client, login, services):
    headers = login()
    api_client.put("/api/settings", json={"require_password_verification": True},
                   headers=headers)

    resp = api_client.post("/api/credentials", headers=headers, json={
        "label": "svc account",
        "type": "username_password",
        "payload": {"username": "svc", "password": "p@ss"},
    })
    cred_id = resp.json()["id"]

    listing = api_client.get("/api/credentials", headers=headers)
    assert "p@ss" not in listing.text

    refused = api_client.post(f"/api/credentials/{cred_id}/reveal", headers=headers)
    assert refused.status_code == 403
    assert refused.json()["error"] == "forbidden"

    api_client.post("/api/credentials/verify-password",
                    json={"password": "admin-pass-123"}, headers=headers)
    revealed = api_client.post(f"/api/credentials/{cred_id}/reveal", headers=headers)
    assert revealed.json()["payload"]["password"] == "p@ss"

    body = api_client.get("/api/audit-log", headers=headers).json()
    trail = [(e["action"], e["outcome"]) for e in reversed(body["entries"])]
    assert trail == [
        ("settings_update", "success"),
        ("create", "success"),
        ("view", "failure"),
        ("verify_success", "success"),
        ("view", "success"),
    ]
