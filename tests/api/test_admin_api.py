"""Tests for the admin approval queue, dashboard and role management."""

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tests.helpers import approve, create_client, onboard_client


@pytest.mark.asyncio
async def test_approval_queue_and_decision(
    user_client: AsyncClient,
    admin_client: AsyncClient,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    created = await onboard_client(user_client, session_factory)

    queue = await admin_client.get("/api/admin/approvals")
    assert queue.status_code == 200
    (item,) = queue.json()["items"]
    assert item["client_id"] == created["id"]
    assert item["client_name"] == "Anna de Vries"
    assert item["status"] == "PENDING_APPROVAL"
    assert item["validation_checks"]["email_confirmed"] is True

    decision = await approve(admin_client, created["id"])
    assert decision == {
        "success": True,
        "message": "Client approved successfully",
        "client_id": created["id"],
        "onboarding_status": "APPROVED",
        "approval_status": "APPROVED",
    }

    assert (await admin_client.get("/api/admin/approvals")).json()["total"] == 0
    approved = await admin_client.get("/api/admin/approvals", params={"status": "APPROVED"})
    assert approved.json()["items"][0]["approval_notes"] == "Akkoord"

    client = (await user_client.get(f"/api/clients/{created['id']}")).json()
    assert client["can_create_invoices"] is True


@pytest.mark.asyncio
async def test_rejection_needs_a_reason(
    user_client: AsyncClient,
    admin_client: AsyncClient,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    created = await onboard_client(user_client, session_factory)

    response = await admin_client.post(
        "/api/admin/approvals", json={"client_id": created["id"], "action": "reject"}
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Rejection reason is required"

    rejected = await admin_client.post(
        "/api/admin/approvals",
        json={"client_id": created["id"], "action": "reject", "rejection_reason": "Onvolledig"},
    )
    assert rejected.json()["message"] == "Client rejected successfully"
    client = (await user_client.get(f"/api/clients/{created['id']}")).json()
    assert client["rejection_reason"] == "Onvolledig"


@pytest.mark.asyncio
async def test_decisions_on_unknown_or_unready_clients(
    user_client: AsyncClient, admin_client: AsyncClient
) -> None:
    unknown = await admin_client.post(
        "/api/admin/approvals", json={"client_id": 999, "action": "approve"}
    )
    assert unknown.status_code == 404

    created = await create_client(user_client)
    early = await admin_client.post(
        "/api/admin/approvals", json={"client_id": created["id"], "action": "approve"}
    )
    assert early.status_code == 409


@pytest.mark.asyncio
async def test_bulk_decisions(
    user_client: AsyncClient,
    admin_client: AsyncClient,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    ready = await onboard_client(user_client, session_factory)
    waiting = await create_client(
        user_client,
        name="Kees Smit",
        email="kees@smit-bouw.nl",
        company="Smit Bouw VOF",
        kvk_number="23456789",
        vat_number="NL987654321B01",
        account_holder="Smit Bouw VOF",
    )

    response = await admin_client.put(
        "/api/admin/approvals",
        json={"client_ids": [ready["id"], waiting["id"], 999], "action": "approve"},
    )

    assert response.status_code == 200
    results = response.json()["results"]
    assert [(r["client_id"], r["status"]) for r in results] == [
        (ready["id"], "approved"),
        (waiting["id"], "error"),
        (999, "error"),
    ]
    assert results[2]["error"] == "Client not found"


@pytest.mark.asyncio
async def test_admin_routes_are_closed_to_users(user_client: AsyncClient) -> None:
    for method, path in (
        ("GET", "/api/admin/approvals"),
        ("GET", "/api/admin/dashboard"),
        ("GET", "/api/audit/trail"),
    ):
        response = await user_client.request(method, path)
        assert response.status_code == 403, path
        assert response.json()["detail"] == "Access denied: Missing required permissions"


@pytest.mark.asyncio
async def test_admin_dashboard(
    user_client: AsyncClient,
    admin_client: AsyncClient,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    await onboard_client(user_client, session_factory)

    stats = (await admin_client.get("/api/admin/dashboard")).json()

    assert stats["pending_approvals"] == 1
    assert stats["new_clients_this_week"] == 1
    assert stats["clients_by_status"] == {"ADMIN_REVIEW": 1}
    assert stats["emails_sent_today"] == 2


@pytest.mark.asyncio
async def test_role_assignment_and_revocation(
    user_client: AsyncClient, admin_client: AsyncClient
) -> None:
    me = (await user_client.get("/api/auth/me")).json()

    unknown = await admin_client.post(
        f"/api/admin/users/{me['id']}/roles",
        json={"role": "ADMIN", "permissions": ["admin:everything"]},
    )
    assert unknown.status_code == 400

    granted = await admin_client.post(f"/api/admin/users/{me['id']}/roles", json={"role": "ADMIN"})
    assert granted.status_code == 201
    role = granted.json()
    assert role["role"] == "ADMIN"
    assert role["assigned_by"] is not None

    assert (await user_client.get("/api/admin/dashboard")).status_code == 200

    revoked = await admin_client.delete(f"/api/admin/roles/{role['id']}")
    assert revoked.json()["is_active"] is False
    assert (await user_client.get("/api/admin/dashboard")).status_code == 403

    assert (await admin_client.delete("/api/admin/roles/999")).status_code == 404
    missing_user = await admin_client.post("/api/admin/users/999/roles", json={"role": "USER"})
    assert missing_user.status_code == 404
