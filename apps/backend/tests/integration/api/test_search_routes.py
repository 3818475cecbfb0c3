"""Public read endpoints over the seeded go/python registries."""
import pytest
from unittest.mock import AsyncMock, patch

from sqlalchemy.exc import OperationalError


def titles(response):
    return [item["title"] for item in response.json()["data"]]


class TestSearch:
    @pytest.mark.asyncio
    async def test_no_filters_returns_everything(self, api_client):
        response = await api_client.get("/search")

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 5
        assert body["hasMore"] is False
        assert body["offset"] == 0
        assert titles(response) == ["Gin", "Django", "Flask", "Echo", "Testify"]
        assert response.headers["cache-control"] == "public, max-age=300"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("query,expected_total", [
        ("archived=false", 4),
        ("archived=true", 1),
        ("archived=maybe", 5),
        ("minStars=10000", 3),
        ("minStars=0", 5),
        ("minStars=100000", 0),
        ("registry=go&language=Go&minStars=5000", 2),
        ("registry=python", 2),
        ("language=Python&archived=false", 1),
        ("q=framework", 4),
        ("q=nothing-matches", 0),
        ("q=description", 5),
        ("category=Testing", 1),
    ])
    async def test_filters(self, api_client, query, expected_total):
        response = await api_client.get(f"/search?{query}")

        assert response.status_code == 200
        assert response.json()["total"] == expected_total

    @pytest.mark.asyncio
    async def test_archived_true_returns_only_archived(self, api_client):
        response = await api_client.get("/search?archived=true")
        assert titles(response) == ["Flask"]

    @pytest.mark.asyncio
    async def test_sort_by_name(self, api_client):
        response = await api_client.get("/search?sortBy=name")
        assert titles(response)[0] == "Django"

    @pytest.mark.asyncio
    async def test_unknown_sort_falls_back_to_stars(self, api_client):
        response = await api_client.get("/search?sortBy=random")
        assert titles(response)[0] == "Gin"

    @pytest.mark.asyncio
    async def test_pagination(self, api_client):
        response = await api_client.get("/search?limit=2&offset=2")

        body = response.json()
        assert len(body["data"]) == 2
        assert body["hasMore"] is True
        assert body["offset"] == 2

        last = await api_client.get("/search?limit=2&offset=4")
        assert last.json()["hasMore"] is False

    @pytest.mark.asyncio
    async def test_item_shape(self, api_client):
        response = await api_client.get("/search?q=gin")

        item = response.json()["data"][0]
        assert item["registry"] == "go"
        assert item["category"] == "Web Frameworks"
        assert item["repo_info"]["owner"] == "gin-gonic"
        assert item["repo_info"]["stars"] == 50000
        assert item["repo_info"]["archived"] is False
        assert "qualityScore" in item

    @pytest.mark.asyncio
    async def test_invalid_limit_is_rejected(self, api_client):
        response = await api_client.get("/search?limit=0")
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_store_error_returns_500_json(self, api_client):
        with patch(
            "src.api.routes.search.search_registry_items",
            new_callable=AsyncMock,
            side_effect=OperationalError("SELECT", {}, Exception("database is locked")),
        ):
            response = await api_client.get("/search")

        assert response.status_code == 500
        assert "database is locked" in response.json()["error"]


class TestQuickSearch:
    @pytest.mark.asyncio
    async def test_blank_query_sorted_by_stars_excluding_archived(self, api_client):
        response = await api_client.get("/search/quick")

        body = response.json()
        assert body["usedFallback"] is False
        assert [hit["title"] for hit in body["data"]] == ["Gin", "Django", "Echo", "Testify"]

    @pytest.mark.asyncio
    async def test_text_query_uses_index(self, api_client, fake_cache):
        response = await api_client.get("/search/quick?q=flask&archived=true")

        body = response.json()
        assert [hit["title"] for hit in body["data"]] == ["Flask"]
        assert fake_cache.puts == 1

    @pytest.mark.asyncio
    async def test_falls_back_to_relational_search(self, api_client):
        from src.services.search_index import ServerSearchResult

        with patch(
            "src.api.routes.search.server_search",
            new_callable=AsyncMock,
            return_value=ServerSearchResult(used_fallback=True),
        ):
            response = await api_client.get("/search/quick?q=django")

        body = response.json()
        assert body["usedFallback"] is True
        assert [hit["title"] for hit in body["data"]] == ["Django"]


class TestFacets:
    @pytest.mark.asyncio
    async def test_categories(self, api_client):
        response = await api_client.get("/categories")

        assert response.status_code == 200
        assert response.headers["cache-control"] == "public, max-age=3600"
        assert response.json()[0] == {
            "category": "Testing",
            "count": 1,
            "key": "go::Testing",
            "registry": "go",
        }

    @pytest.mark.asyncio
    async def test_categories_filtered_by_registry(self, api_client):
        response = await api_client.get("/categories?registry=python")
        assert [c["key"] for c in response.json()] == ["python::Web Frameworks"]

    @pytest.mark.asyncio
    async def test_languages(self, api_client):
        response = await api_client.get("/languages")

        assert response.json() == ["Go", "Python"]
        assert response.headers["cache-control"] == "public, max-age=3600"

    @pytest.mark.asyncio
    async def test_metadata(self, api_client):
        response = await api_client.get("/metadata")

        body = response.json()
        assert [m["name"] for m in body] == ["go", "python"]
        stats = body[1]["stats"]
        assert stats["totalRepos"] == 2
        assert stats["totalStars"] == 30000
        assert stats["latestUpdate"] == "2024-06-01T00:00:00Z"
        assert stats["languages"] == ["Python"]


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, api_client):
        response = await api_client.get("/health")
        assert response.json() == {"status": "ok"}
