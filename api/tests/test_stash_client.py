"""Tests for the local Stash client."""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from rate_limiter import Priority
from stash_client import StashClient

ENDPOINT = "https://stashdb.org/graphql"


def _make_mock_http_client(status_code=200, json_data=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.is_success = 200 <= status_code < 300
    response.json.return_value = json_data
    response.text = text
    client = AsyncMock()
    client.post.return_value = response
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=False)
    return client


class TestStashClientRequests:

    def test_graphql_url_and_headers(self):
        client = StashClient("http://localhost:9999/", api_key="k")
        assert client.graphql_url == "http://localhost:9999/graphql"
        assert client.headers["ApiKey"] == "k"
        assert "ApiKey" not in StashClient("http://localhost:9999").headers

    @pytest.mark.asyncio
    async def test_returns_data(self):
        client = StashClient("http://localhost:9999")
        http = _make_mock_http_client(json_data={"data": {"ok": True}})

        with patch("stash_client.httpx.AsyncClient", return_value=http):
            result = await client._execute("query { ok }")

        assert result == {"ok": True}
        assert http.post.call_args[0][0] == "http://localhost:9999/graphql"

    @pytest.mark.asyncio
    async def test_http_error_includes_body(self):
        client = StashClient("http://localhost:9999")
        http = _make_mock_http_client(status_code=422, json_data={"message": "bad input"})

        with patch("stash_client.httpx.AsyncClient", return_value=http):
            with pytest.raises(RuntimeError, match="HTTP 422"):
                await client._execute("mutation { x }")

    @pytest.mark.asyncio
    async def test_graphql_errors(self):
        client = StashClient("http://localhost:9999")
        http = _make_mock_http_client(json_data={"errors": [{"message": "nope"}]})

        with patch("stash_client.httpx.AsyncClient", return_value=http):
            with pytest.raises(RuntimeError, match="GraphQL error"):
                await client._execute("query { x }")

    @pytest.mark.asyncio
    async def test_non_json_success_body(self):
        client = StashClient("http://localhost:9999")
        http = _make_mock_http_client(text="<html>login</html>")
        http.post.return_value.json.side_effect = ValueError("Expecting value")

        with patch("stash_client.httpx.AsyncClient", return_value=http):
            with pytest.raises(RuntimeError, match="non-JSON"):
                await client._execute("query { x }")

    @pytest.mark.asyncio
    async def test_uses_rate_limiter_priority(self):
        limiter = MagicMock()
        ctx = AsyncMock()
        ctx.__aenter__ = AsyncMock(return_value=None)
        ctx.__aexit__ = AsyncMock(return_value=False)
        limiter.acquire.return_value = ctx
        client = StashClient("http://localhost:9999", rate_limiter=limiter)
        http = _make_mock_http_client(json_data={"data": {"sceneUpdate": {"id": "1"}}})

        with patch("stash_client.httpx.AsyncClient", return_value=http):
            await client.update_scene("1", title="x")

        limiter.acquire.assert_called_once_with(Priority.CRITICAL)


class TestStashClientQueries:

    @pytest.mark.asyncio
    async def test_find_scenes_with_term(self):
        client = StashClient("http://localhost:9999")
        with patch.object(client, "_execute", new_callable=AsyncMock) as mock_execute:
            mock_execute.return_value = {"findScenes": {"count": 3, "scenes": [{"id": "1"}]}}

            scenes, count = await client.find_scenes("brand", page=2, per_page=10)

            assert count == 3
            assert scenes == [{"id": "1"}]
            variables = mock_execute.call_args[0][1]
            assert variables["filter"]["q"] == "brand"
            assert variables["filter"]["page"] == 2
            assert variables["filter"]["per_page"] == 10

    @pytest.mark.asyncio
    async def test_find_scenes_without_term(self):
        client = StashClient("http://localhost:9999")
        with patch.object(client, "_execute", new_callable=AsyncMock) as mock_execute:
            mock_execute.return_value = {"findScenes": {"count": 0, "scenes": []}}
            await client.find_scenes()
            assert "q" not in mock_execute.call_args[0][1]["filter"]

    @pytest.mark.asyncio
    async def test_find_performer_by_stash_id(self):
        client = StashClient("http://localhost:9999")
        with patch.object(client, "_execute", new_callable=AsyncMock) as mock_execute:
            mock_execute.return_value = {"findPerformers": {"performers": [{"id": "7"}]}}

            result = await client.find_performer_by_stash_id(ENDPOINT, "abc")

            assert result == {"id": "7"}
            query, variables = mock_execute.call_args[0]
            assert "performer_filter" in query
            assert variables["performer_filter"]["stash_id_endpoint"] == {
                "endpoint": ENDPOINT, "stash_id": "abc", "modifier": "EQUALS",
            }

    @pytest.mark.asyncio
    async def test_find_studio_by_stash_id_none(self):
        client = StashClient("http://localhost:9999")
        with patch.object(client, "_execute", new_callable=AsyncMock) as mock_execute:
            mock_execute.return_value = {"findStudios": {"studios": []}}
            assert await client.find_studio_by_stash_id(ENDPOINT, "abc") is None

    @pytest.mark.asyncio
    async def test_find_tag_by_id(self):
        client = StashClient("http://localhost:9999")
        with patch.object(client, "_execute", new_callable=AsyncMock) as mock_execute:
            mock_execute.return_value = {"findTag": {"id": "4", "stash_ids": []}}
            assert await client.find_tag("4") == {"id": "4", "stash_ids": []}
            assert "findTag(id: $id)" in mock_execute.call_args[0][0]

    @pytest.mark.asyncio
    async def test_get_all_tags(self):
        client = StashClient("http://localhost:9999")
        with patch.object(client, "_execute", new_callable=AsyncMock) as mock_execute:
            mock_execute.return_value = {"findTags": {"tags": [{"id": "1", "name": "A", "aliases": []}]}}
            assert await client.get_all_tags() == [{"id": "1", "name": "A", "aliases": []}]

    @pytest.mark.asyncio
    async def test_create_performer_passes_input(self):
        client = StashClient("http://localhost:9999")
        with patch.object(client, "_execute", new_callable=AsyncMock) as mock_execute:
            mock_execute.return_value = {"performerCreate": {"id": "9", "name": "Jane"}}

            result = await client.create_performer(name="Jane", gender="FEMALE")

            assert result["id"] == "9"
            assert mock_execute.call_args[0][1] == {"input": {"name": "Jane", "gender": "FEMALE"}}
            assert mock_execute.call_args[1]["priority"] == Priority.CRITICAL

    @pytest.mark.asyncio
    async def test_update_scene_includes_id(self):
        client = StashClient("http://localhost:9999")
        with patch.object(client, "_execute", new_callable=AsyncMock) as mock_execute:
            mock_execute.return_value = {"sceneUpdate": {"id": "1"}}
            await client.update_scene("1", title="New", organized=True)
            assert mock_execute.call_args[0][1] == {
                "input": {"id": "1", "title": "New", "organized": True}
            }

    @pytest.mark.asyncio
    async def test_get_stashbox_connections(self):
        client = StashClient("http://localhost:9999")
        boxes = [{"endpoint": ENDPOINT, "api_key": "k", "name": "StashDB",
                  "max_requests_per_minute": 240}]
        with patch.object(client, "_execute", new_callable=AsyncMock) as mock_execute:
            mock_execute.return_value = {"configuration": {"general": {"stashBoxes": boxes}}}
            assert await client.get_stashbox_connections() == boxes
