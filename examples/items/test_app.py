"""Tests for the items example — ranking, guards, forwarding."""

from perch.testing import TestClient


class TestItems:
    async def test_numeric_id(self, example_app) -> None:
        async with TestClient(example_app) as client:
            response = await client.get("/items/42")
            assert response.status == 200
            assert response.json == {"id": 42, "name": "the answer"}

    async def test_non_numeric_id_is_rejected(self, example_app) -> None:
        async with TestClient(example_app) as client:
            response = await client.get("/items/abc")
            assert response.status == 422

    async def test_literal_route_wins(self, example_app) -> None:
        async with TestClient(example_app) as client:
            response = await client.get("/items/new")
            assert response.text == "new item form"

    async def test_unknown_path(self, example_app) -> None:
        async with TestClient(example_app) as client:
            response = await client.get("/other")
            assert response.status == 404


class TestCatalog:
    async def test_named_entry(self, example_app) -> None:
        async with TestClient(example_app) as client:
            response = await client.get("/catalog/banana")
            assert response.json == {"id": 2, "name": "banana"}

    async def test_unknown_name_fails(self, example_app) -> None:
        async with TestClient(example_app) as client:
            response = await client.get("/catalog/cherry")
            assert response.status == 404
            assert "cherry" in response.text

    async def test_forward_reaches_wildcard(self, example_app) -> None:
        async with TestClient(example_app) as client:
            response = await client.get("/catalog/2024-spring")
            assert response.status == 200
            assert response.text == "catalog page for 2024-spring"

    async def test_wildcard_takes_deeper_paths(self, example_app) -> None:
        async with TestClient(example_app) as client:
            response = await client.get("/catalog/fruit/red")
            assert response.text == "catalog page for fruit/red"

    async def test_encoded_name_is_decoded(self, example_app) -> None:
        async with TestClient(example_app) as client:
            response = await client.get("/catalog/the%20answer")
            assert response.json == {"id": 42, "name": "the answer"}


class TestSearch:
    async def test_query_guards(self, example_app) -> None:
        async with TestClient(example_app) as client:
            response = await client.get("/search", query={"q": "an", "limit": "1"})
            assert response.json == ["banana"]

    async def test_missing_query_is_422(self, example_app) -> None:
        async with TestClient(example_app) as client:
            response = await client.get("/search")
            assert response.status == 422

    async def test_bad_limit_is_422(self, example_app) -> None:
        async with TestClient(example_app) as client:
            response = await client.get("/search?q=a&limit=lots")
            assert response.status == 422
