"""Admin link API tests."""

import datetime

import pytest
from httpx import AsyncClient

from shortlink.dependencies import ServiceManager
from shortlink.slugs import SLUG_ALPHABET

EPOCH = datetime.datetime(2000, 1, 1, tzinfo=datetime.timezone.utc)


async def _create(client: AsyncClient, headers: dict[str, str], **payload) -> dict:
    body = {"targetUrl": "https://www.example.com", **payload}
    response = await client.post("/api/links", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio
async def test_create_link(client: AsyncClient, admin_headers: dict[str, str], manager: ServiceManager) -> None:
    response = await client.post(
        "/api/links",
        json={"targetUrl": "https://www.example.com/page", "title": "Example", "tag": "docs"},
        headers=admin_headers,
    )
    assert response.status_code == 201
    data = response.json()
    assert len(data["slug"]) == manager.settings.SLUG_LENGTH
    assert all(char in SLUG_ALPHABET for char in data["slug"])
    assert data["shortUrl"] == f"{manager.settings.BASE_URL}/{data['slug']}"
    assert data["targetUrl"] == "https://www.example.com/page"
    assert data["title"] == "Example"
    assert data["tag"] == "docs"
    assert data["clickCount"] == 0
    assert data["lastClickAt"] is None


@pytest.mark.asyncio
async def test_create_link_with_custom_slug(client: AsyncClient, admin_headers: dict[str, str]) -> None:
    data = await _create(client, admin_headers, customSlug="my-link")
    assert data["slug"] == "my-link"


@pytest.mark.asyncio
async def test_create_link_duplicate_custom_slug(client: AsyncClient, admin_headers: dict[str, str]) -> None:
    await _create(client, admin_headers, customSlug="taken")

    response = await client.post(
        "/api/links",
        json={"targetUrl": "https://www.other.com", "customSlug": "taken"},
        headers=admin_headers,
    )
    assert response.status_code == 409
    assert "taken" in response.json()["detail"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"targetUrl": "not-a-valid-url"},
        {"targetUrl": "ftp://files.example.com/a.txt"},
        {"targetUrl": "https://www.example.com", "customSlug": "ab"},
        {"targetUrl": "https://www.example.com", "customSlug": "bad slug!"},
        {"targetUrl": "https://www.example.com", "clickLimit": 0},
        {"targetUrl": "https://www.example.com", "title": "x" * 201},
    ],
)
async def test_create_link_validation_errors(
    client: AsyncClient, admin_headers: dict[str, str], payload: dict
) -> None:
    response = await client.post("/api/links", json=payload, headers=admin_headers)
    assert response.status_code == 422


@pytest.mark.asyncio
@pytest.mark.parametrize("slug", ["health", "404", "metrics", "docs", "redoc", "api"])
async def test_custom_slug_cannot_shadow_fixed_routes(
    client: AsyncClient, admin_headers: dict[str, str], slug: str
) -> None:
    response = await client.post(
        "/api/links",
        json={"targetUrl": "https://www.example.com", "customSlug": slug},
        headers=admin_headers,
    )
    assert response.status_code == 422
    assert "reserved" in response.text


@pytest.mark.asyncio
async def test_admin_routes_require_token(client: AsyncClient) -> None:
    response = await client.get("/api/links")
    assert response.status_code == 401

    response = await client.get("/api/links", headers={"Authorization": "Bearer wrong"})
    assert response.status_code == 401

    response = await client.post("/api/links", json={"targetUrl": "https://www.example.com"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_get_link(client: AsyncClient, admin_headers: dict[str, str], manager: ServiceManager) -> None:
    created = await _create(client, admin_headers)
    await client.get(f"/{created['slug']}", follow_redirects=False)
    await manager.supervisor.drain()

    response = await client.get(f"/api/links/{created['id']}", headers=admin_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["slug"] == created["slug"]
    assert data["clickCount"] == 1
    assert data["lastClickAt"] is not None


@pytest.mark.asyncio
async def test_get_unknown_link(client: AsyncClient, admin_headers: dict[str, str]) -> None:
    response = await client.get("/api/links/does-not-exist", headers=admin_headers)
    assert response.status_code == 404
    assert "does-not-exist" in response.json()["detail"]


@pytest.mark.asyncio
async def test_list_links_sorted_by_click_count(
    client: AsyncClient, admin_headers: dict[str, str], manager: ServiceManager
) -> None:
    quiet = await _create(client, admin_headers, customSlug="quiet")
    busy = await _create(client, admin_headers, customSlug="busy")
    for _ in range(2):
        await client.get("/busy", follow_redirects=False)
    await manager.supervisor.drain()

    response = await client.get("/api/links?sort=clickCount&order=desc", headers=admin_headers)
    assert response.status_code == 200
    data = response.json()
    assert [item["id"] for item in data] == [busy["id"], quiet["id"]]
    assert [item["clickCount"] for item in data] == [2, 0]


@pytest.mark.asyncio
async def test_list_links_sorted_by_title_puts_missing_last(
    client: AsyncClient, admin_headers: dict[str, str]
) -> None:
    await _create(client, admin_headers, customSlug="untitled")
    await _create(client, admin_headers, customSlug="beta", title="Beta")
    await _create(client, admin_headers, customSlug="alpha", title="Alpha")

    response = await client.get("/api/links?sort=title&order=asc", headers=admin_headers)
    assert [item["slug"] for item in response.json()] == ["alpha", "beta", "untitled"]


@pytest.mark.asyncio
async def test_list_links_rejects_unknown_sort(client: AsyncClient, admin_headers: dict[str, str]) -> None:
    response = await client.get("/api/links?sort=slug", headers=admin_headers)
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_delete_link_cascades_to_clicks(
    client: AsyncClient, admin_headers: dict[str, str], manager: ServiceManager
) -> None:
    created = await _create(client, admin_headers)
    await client.get(f"/{created['slug']}", follow_redirects=False)
    await manager.supervisor.drain()
    assert await manager.repository.count_clicks_for_link(created["id"]) == 1

    response = await client.delete(f"/api/links/{created['id']}", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["success"] is True

    assert await manager.repository.count_clicks_for_link(created["id"]) == 0
    assert (await client.get(f"/api/links/{created['id']}", headers=admin_headers)).status_code == 404
    redirect = await client.get(f"/{created['slug']}", follow_redirects=False)
    assert redirect.headers["location"] == "/404"


@pytest.mark.asyncio
async def test_delete_unknown_link(client: AsyncClient, admin_headers: dict[str, str]) -> None:
    response = await client.delete("/api/links/does-not-exist", headers=admin_headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_list_tags(client: AsyncClient, admin_headers: dict[str, str]) -> None:
    await _create(client, admin_headers, tag=" marketing ")
    await _create(client, admin_headers, tag="docs")
    await _create(client, admin_headers, tag="marketing")
    await _create(client, admin_headers, tag="   ")
    await _create(client, admin_headers)

    response = await client.get("/api/tags", headers=admin_headers)
    assert response.status_code == 200
    assert response.json() == ["docs", "marketing"]
