"""Site settings API and not-found page branding tests."""

from unittest.mock import AsyncMock

import pytest
from httpx import AsyncClient

from shortlink.dependencies import ServiceManager
from shortlink.errors import StorageFailure
from shortlink.repository import LinkRepository


def _defaults(manager: ServiceManager) -> dict[str, str | None]:
    return {
        "logoUrl": None,
        "defaultQrStyle": manager.settings.DEFAULT_QR_STYLE,
        "custom404Title": manager.settings.NOT_FOUND_TITLE,
        "custom404Description": manager.settings.NOT_FOUND_DESCRIPTION,
        "custom404ButtonText": manager.settings.NOT_FOUND_BUTTON_TEXT,
        "custom404ButtonUrl": manager.settings.NOT_FOUND_BUTTON_URL,
    }


# ============================================================================
# REPOSITORY
# ============================================================================


class TestSiteSettingStorage:
    @pytest.mark.asyncio
    async def test_row_is_created_once(self, repository: LinkRepository) -> None:
        defaults = {
            "logo_url": None,
            "default_qr_style": "square",
            "not_found_title": "Gone",
            "not_found_description": "Nothing here",
            "not_found_button_text": "Home",
            "not_found_button_url": "/",
        }
        assert await repository.find_site_setting() is None

        first = await repository.get_or_create_site_setting(defaults)
        second = await repository.get_or_create_site_setting({**defaults, "not_found_title": "Other"})

        assert first.id == second.id
        assert second.not_found_title == "Gone"

    @pytest.mark.asyncio
    async def test_update_creates_missing_row(self, repository: LinkRepository) -> None:
        defaults = {
            "logo_url": None,
            "default_qr_style": "square",
            "not_found_title": "Gone",
            "not_found_description": "Nothing here",
            "not_found_button_text": "Home",
            "not_found_button_url": "/",
        }

        setting = await repository.update_site_setting({"default_qr_style": "dots"}, defaults)

        assert setting.default_qr_style == "dots"
        assert setting.not_found_title == "Gone"
        assert (await repository.find_site_setting()).default_qr_style == "dots"


# ============================================================================
# ADMIN API
# ============================================================================


@pytest.mark.asyncio
async def test_get_settings_returns_defaults(
    client: AsyncClient, admin_headers: dict[str, str], manager: ServiceManager
) -> None:
    response = await client.get("/api/settings", headers=admin_headers)

    assert response.status_code == 200
    assert response.json() == _defaults(manager)
    assert await manager.repository.find_site_setting() is not None


@pytest.mark.asyncio
async def test_settings_require_admin(client: AsyncClient) -> None:
    assert (await client.get("/api/settings")).status_code == 401
    assert (await client.put("/api/settings", json={"defaultQrStyle": "dots"})).status_code == 401


@pytest.mark.asyncio
async def test_partial_update_keeps_other_fields(
    client: AsyncClient, admin_headers: dict[str, str], manager: ServiceManager
) -> None:
    response = await client.put(
        "/api/settings",
        json={"defaultQrStyle": "rounded", "custom404Title": "Nope", "custom404ButtonUrl": "https://example.com/"},
        headers=admin_headers,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["defaultQrStyle"] == "rounded"
    assert data["custom404Title"] == "Nope"
    assert data["custom404ButtonUrl"] == "https://example.com/"
    assert data["custom404Description"] == manager.settings.NOT_FOUND_DESCRIPTION

    again = await client.get("/api/settings", headers=admin_headers)
    assert again.json() == data


@pytest.mark.asyncio
async def test_blank_fields_are_ignored(client: AsyncClient, admin_headers: dict[str, str]) -> None:
    await client.put("/api/settings", json={"custom404Title": "Custom"}, headers=admin_headers)

    response = await client.put(
        "/api/settings",
        json={"custom404Title": "   ", "custom404ButtonText": "", "custom404ButtonUrl": ""},
        headers=admin_headers,
    )

    assert response.status_code == 200
    assert response.json()["custom404Title"] == "Custom"


@pytest.mark.asyncio
async def test_logo_can_be_cleared(client: AsyncClient, admin_headers: dict[str, str]) -> None:
    set_logo = await client.put("/api/settings", json={"logoUrl": "https://cdn.example.com/logo.png"}, headers=admin_headers)
    assert set_logo.json()["logoUrl"] == "https://cdn.example.com/logo.png"

    untouched = await client.put("/api/settings", json={"defaultQrStyle": "dots"}, headers=admin_headers)
    assert untouched.json()["logoUrl"] == "https://cdn.example.com/logo.png"

    cleared = await client.put("/api/settings", json={"logoUrl": ""}, headers=admin_headers)
    assert cleared.json()["logoUrl"] is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"defaultQrStyle": "hexagons"},
        {"custom404ButtonUrl": "javascript:alert(1)"},
        {"custom404ButtonUrl": "//evil.example.com"},
        {"custom404Title": "x" * 201},
    ],
)
async def test_invalid_settings_rejected(client: AsyncClient, admin_headers: dict[str, str], payload: dict) -> None:
    response = await client.put("/api/settings", json=payload, headers=admin_headers)
    assert response.status_code == 422


# ============================================================================
# PUBLIC READS
# ============================================================================


@pytest.mark.asyncio
async def test_public_settings_need_no_auth(
    client: AsyncClient, admin_headers: dict[str, str], manager: ServiceManager
) -> None:
    before = await client.get("/api/settings/public")
    assert before.status_code == 200
    assert before.json() == _defaults(manager)
    assert await manager.repository.find_site_setting() is None

    await client.put("/api/settings", json={"custom404Title": "Lost?"}, headers=admin_headers)

    after = await client.get("/api/settings/public")
    assert after.json()["custom404Title"] == "Lost?"


@pytest.mark.asyncio
async def test_public_settings_fall_back_when_storage_fails(
    client: AsyncClient, manager: ServiceManager, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(manager.repository, "find_site_setting", AsyncMock(side_effect=StorageFailure("down")))

    response = await client.get("/api/settings/public")

    assert response.status_code == 200
    assert response.json() == _defaults(manager)


@pytest.mark.asyncio
async def test_not_found_page_uses_stored_settings(client: AsyncClient, admin_headers: dict[str, str]) -> None:
    await client.put(
        "/api/settings",
        json={
            "logoUrl": "https://cdn.example.com/logo.png",
            "custom404Title": "Lost?",
            "custom404Description": "That link went away.",
            "custom404ButtonText": "Start over",
            "custom404ButtonUrl": "/start",
        },
        headers=admin_headers,
    )

    response = await client.get("/404")

    assert response.status_code == 404
    assert response.json() == {
        "title": "Lost?",
        "description": "That link went away.",
        "buttonText": "Start over",
        "buttonUrl": "/start",
        "logoUrl": "https://cdn.example.com/logo.png",
    }
