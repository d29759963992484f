"""Tests for CandidateFetcher - text and fingerprint searches against stash-box."""

import asyncio

import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from candidate_fetcher import (
    CancellationToken,
    CandidateFetcher,
    OperationCancelled,
    SearchState,
)
from models import LocalScene
from stashbox_client import StashBoxClient


def _raw_scene(id, **extra):
    return {"id": id, "title": f"Scene {id}", "fingerprints": [], **extra}


def _make_client():
    client = MagicMock()
    client.search_scene = AsyncMock(return_value=[])
    client.find_scene_by_fingerprint = AsyncMock(return_value=[])
    return client


class TestCancellationToken:

    def test_not_cancelled_by_default(self):
        token = CancellationToken()
        assert token.cancelled is False
        token.raise_if_cancelled()

    def test_cancel_raises(self):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(OperationCancelled):
            token.raise_if_cancelled()


class TestSearch:

    @pytest.mark.asyncio
    async def test_populated_keeps_endpoint_order(self):
        client = _make_client()
        client.search_scene.return_value = [_raw_scene("b"), _raw_scene("a")]
        fetcher = CandidateFetcher(client)

        result = await fetcher.search("query")

        client.search_scene.assert_awaited_once_with("query")
        assert result.state == SearchState.POPULATED
        assert [c.id for c in result.candidates] == ["b", "a"]

    @pytest.mark.asyncio
    async def test_empty(self):
        fetcher = CandidateFetcher(_make_client())
        result = await fetcher.search("nothing")
        assert result.state == SearchState.EMPTY
        assert result.candidates == []

    @pytest.mark.asyncio
    async def test_network_failure_is_unknown(self):
        client = _make_client()
        client.search_scene.side_effect = httpx.ConnectError("refused")
        fetcher = CandidateFetcher(client)

        result = await fetcher.search("query")

        assert result.state == SearchState.UNKNOWN
        assert "refused" in result.error

    @pytest.mark.asyncio
    async def test_graphql_error_is_unknown(self):
        client = _make_client()
        client.search_scene.side_effect = RuntimeError("GraphQL error: bad")
        result = await CandidateFetcher(client).search("query")

    @pytest.mark.asyncio
    async def test_non_json_response_is_unknown(self):
        response = MagicMock()
        response.raise_for_status.return_value = None
        response.json.side_effect = ValueError("Expecting value")
        response.text = "<html>Bad Gateway</html>"
        http = AsyncMock()
        http.post.return_value = response
        http.__aenter__ = AsyncMock(return_value=http)
        http.__aexit__ = AsyncMock(return_value=False)
        fetcher = CandidateFetcher(StashBoxClient("https://stashdb.org/graphql", "key"))

        with patch("stashbox_client.httpx.AsyncClient", return_value=http):
            result = await fetcher.search("query")

        assert result.state == SearchState.UNKNOWN
        assert "Invalid response" in result.error
        assert result.state == SearchState.UNKNOWN

    @pytest.mark.asyncio
    async def test_cancelled_before_request(self):
        client = _make_client()
        token = CancellationToken()
        token.cancel()

        with pytest.raises(OperationCancelled):
            await CandidateFetcher(client).search("query", token)
        client.search_scene.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancelled_while_in_flight_discards_result(self):
        client = _make_client()
        token = CancellationToken()

        async def slow_search(term):
            token.cancel()
            return [_raw_scene("a")]

        client.search_scene.side_effect = slow_search

        with pytest.raises(OperationCancelled):
            await CandidateFetcher(client).search("query", token)


class TestFingerprintSearch:

    @pytest.mark.asyncio
    async def test_keeps_first_match_only(self):
        client = _make_client()
        client.find_scene_by_fingerprint.return_value = [_raw_scene("a"), _raw_scene("b")]

        result = await CandidateFetcher(client).search_fingerprint("abc", "MD5")

        client.find_scene_by_fingerprint.assert_awaited_once_with("abc", "MD5")
        assert [c.id for c in result.candidates] == ["a"]

    @pytest.mark.asyncio
    async def test_scene_hashes_tried_in_order_until_match(self):
        client = _make_client()
        client.find_scene_by_fingerprint.side_effect = [[], [_raw_scene("hit")]]
        scene = LocalScene(id="1", checksum="md5", oshash="os", phash="ph")

        result = await CandidateFetcher(client).search_scene_fingerprints(scene)

        assert result.state == SearchState.POPULATED
        assert result.candidates[0].id == "hit"
        calls = [c.args for c in client.find_scene_by_fingerprint.await_args_list]
        assert calls == [("md5", "MD5"), ("os", "OSHASH")]

    @pytest.mark.asyncio
    async def test_scene_without_hashes_is_empty(self):
        client = _make_client()
        result = await CandidateFetcher(client).search_scene_fingerprints(LocalScene(id="1"))
        assert result.state == SearchState.EMPTY
        client.find_scene_by_fingerprint.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_all_lookups_failing_is_unknown(self):
        client = _make_client()
        client.find_scene_by_fingerprint.side_effect = httpx.ReadTimeout("slow")
        scene = LocalScene(id="1", checksum="md5", phash="ph")

        result = await CandidateFetcher(client).search_scene_fingerprints(scene)

        assert result.state == SearchState.UNKNOWN

    @pytest.mark.asyncio
    async def test_batch_results_keyed_by_scene(self):
        client = _make_client()

        async def lookup(hash, algorithm):
            return [_raw_scene(f"remote-{hash}")] if hash == "h1" else []

        client.find_scene_by_fingerprint.side_effect = lookup
        scenes = [LocalScene(id="1", checksum="h1"), LocalScene(id="2", checksum="h2")]

        results = await CandidateFetcher(client).search_fingerprints(scenes)

        assert results["1"].candidates[0].id == "remote-h1"
        assert results["2"].state == SearchState.EMPTY

    @pytest.mark.asyncio
    async def test_batch_runs_concurrently(self):
        client = _make_client()
        in_flight = 0
        peak = 0

        async def lookup(hash, algorithm):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return []

        client.find_scene_by_fingerprint.side_effect = lookup
        scenes = [LocalScene(id=str(i), checksum=f"h{i}") for i in range(3)]

        await CandidateFetcher(client).search_fingerprints(scenes)

        assert peak == 3

    @pytest.mark.asyncio
    async def test_batch_omits_cancelled_scenes(self):
        client = _make_client()
        cancelled = CancellationToken()
        cancelled.cancel()
        scenes = [LocalScene(id="1", checksum="a"), LocalScene(id="2", checksum="b")]

        results = await CandidateFetcher(client).search_fingerprints(
            scenes, {"1": cancelled}
        )

        assert set(results) == {"2"}
