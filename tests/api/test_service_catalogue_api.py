"""Tests for the standard service catalogue endpoints."""

from decimal import Decimal

import pytest
from httpx import AsyncClient

URL = "/api/standard-services"


@pytest.mark.asyncio
async def test_create_list_and_soft_delete(user_client: AsyncClient) -> None:
    created = await user_client.post(
        URL,
        json={"name": "Advieswerk", "default_rate": "85", "category": "Consultancy"},
    )
    assert created.status_code == 201
    service = created.json()
    assert service["unit_type"] == "HOURS"
    assert service["usage_count"] == 0

    listing = (await user_client.get(URL)).json()
    assert listing["total"] == 1
    assert listing["categories"][0]["name"] == "Consultancy"
    assert listing["statistics"]["active_services"] == 1

    deleted = await user_client.delete(f"{URL}/{service['id']}")
    assert deleted.status_code == 200
    assert deleted.json()["is_active"] is False

    active = (await user_client.get(URL, params={"active": "true"})).json()
    assert active["total"] == 0
    assert (await user_client.get(URL)).json()["statistics"]["active_services"] == 0


@pytest.mark.asyncio
async def test_validation_and_duplicates(user_client: AsyncClient) -> None:
    invalid = await user_client.post(URL, json={"name": "", "default_rate": "-1"})
    assert invalid.status_code == 400
    assert invalid.json()["detail"]["errors"] == [
        "Servicenaam is verplicht",
        "Standaardtarief moet 0 of hoger zijn",
    ]

    await user_client.post(URL, json={"name": "Advieswerk", "default_rate": "85"})
    duplicate = await user_client.post(URL, json={"name": "advieswerk", "default_rate": "90"})
    assert duplicate.status_code == 409


@pytest.mark.asyncio
async def test_update_and_usage(user_client: AsyncClient) -> None:
    service = (
        await user_client.post(URL, json={"name": "Training", "default_rate": "100"})
    ).json()

    patched = await user_client.patch(
        f"{URL}/{service['id']}", json={"default_rate": "120.50", "unit_type": "DAYS"}
    )
    assert patched.status_code == 200
    assert Decimal(patched.json()["default_rate"]) == Decimal("120.50")
    assert patched.json()["unit_type"] == "DAYS"

    used = await user_client.post(f"{URL}/{service['id']}/usage")
    assert used.json()["usage_count"] == 1


@pytest.mark.asyncio
async def test_defaults_and_categories(user_client: AsyncClient) -> None:
    installed = await user_client.post(f"{URL}/defaults")
    assert installed.status_code == 201
    assert len(installed.json()) == 8

    again = await user_client.post(f"{URL}/defaults")
    assert again.json() == []

    categories = await user_client.get(f"{URL}/categories")
    assert "Anders" in categories.json()


@pytest.mark.asyncio
async def test_services_are_private(
    user_client: AsyncClient, other_client: AsyncClient
) -> None:
    service = (
        await user_client.post(URL, json={"name": "Advieswerk", "default_rate": "85"})
    ).json()

    assert (await other_client.patch(f"{URL}/{service['id']}", json={"name": "X"})).status_code == 404
    assert (await other_client.delete(f"{URL}/{service['id']}")).status_code == 404
    assert (await other_client.get(URL)).json()["total"] == 0
