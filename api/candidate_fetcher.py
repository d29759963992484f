"""
Fetch stash-box candidates for local scenes.

Two search paths: free-text search with the derived (or user-edited) query,
and exact fingerprint lookup by the scene's MD5, OSHASH and PHASH. A failed
request never raises; it resolves to SearchState.UNKNOWN so one bad scene
does not stop a batch.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import httpx

from models import LocalScene, RemoteScene
from stashbox_client import StashBoxClient

logger = logging.getLogger(__name__)


class OperationCancelled(Exception):
    """The scene's work was torn down while a request was in flight."""


class CancellationToken:
    """Stop signal for one scene's in-flight work."""

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise OperationCancelled()


class SearchState(str, Enum):
    UNKNOWN = "unknown"      # Not searched yet, or the search failed
    EMPTY = "empty"          # Searched, nothing found
    POPULATED = "populated"  # Searched, one or more candidates


@dataclass
class SearchResult:
    state: SearchState
    candidates: list[RemoteScene] = field(default_factory=list)
    error: Optional[str] = None

    @classmethod
    def found(cls, candidates: list[RemoteScene]) -> "SearchResult":
        state = SearchState.POPULATED if candidates else SearchState.EMPTY
        return cls(state=state, candidates=list(candidates))

    @classmethod
    def failed(cls, error: str) -> "SearchResult":
        return cls(state=SearchState.UNKNOWN, error=error)


class CandidateFetcher:
    """Runs text and fingerprint searches against one stash-box endpoint."""

    def __init__(self, stashbox_client: StashBoxClient):
        self.client = stashbox_client

    async def search(self, query: str, token: Optional[CancellationToken] = None) -> SearchResult:
        """Free-text search. Candidates keep the order the endpoint returned."""
        token = token or CancellationToken()
        token.raise_if_cancelled()
        try:
            raw = await self.client.search_scene(query)
        except (httpx.HTTPError, RuntimeError) as e:
            token.raise_if_cancelled()
            logger.warning(f"Scene search failed for {query!r}: {e}")
            return SearchResult.failed(str(e))
        token.raise_if_cancelled()
        return SearchResult.found([RemoteScene.from_dict(s) for s in raw])

    async def search_fingerprint(
        self, hash: str, algorithm: str, token: Optional[CancellationToken] = None
    ) -> SearchResult:
        """Look up one fingerprint. Only the first match is kept."""
        token = token or CancellationToken()
        token.raise_if_cancelled()
        try:
            raw = await self.client.find_scene_by_fingerprint(hash, algorithm)
        except (httpx.HTTPError, RuntimeError) as e:
            token.raise_if_cancelled()
            logger.warning(f"Fingerprint lookup failed for {algorithm} {hash}: {e}")
            return SearchResult.failed(str(e))
        token.raise_if_cancelled()
        return SearchResult.found([RemoteScene.from_dict(s) for s in raw[:1]])

    async def search_scene_fingerprints(
        self, scene: LocalScene, token: Optional[CancellationToken] = None
    ) -> SearchResult:
        """Try the scene's MD5, OSHASH then PHASH; stop at the first match.

        A scene with no hashes is EMPTY. If every lookup failed the result is
        UNKNOWN.
        """
        token = token or CancellationToken()
        errors = []
        for algorithm, value in scene.hashes:
            result = await self.search_fingerprint(value, algorithm, token)
            if result.state == SearchState.POPULATED:
                return result
            if result.state == SearchState.UNKNOWN:
                errors.append(result.error)

        if errors and len(errors) == len(scene.hashes):
            return SearchResult.failed("; ".join(e for e in errors if e))
        return SearchResult.found([])

    async def search_fingerprints(
        self,
        scenes: list[LocalScene],
        tokens: Optional[dict[str, CancellationToken]] = None,
    ) -> dict[str, SearchResult]:
        """Fingerprint-search many scenes concurrently.

        Results are keyed by scene id. Scenes cancelled mid-flight are left
        out of the result.
        """
        tokens = tokens or {}

        async def search_one(scene: LocalScene) -> tuple[str, Optional[SearchResult]]:
            try:
                result = await self.search_scene_fingerprints(
                    scene, tokens.get(scene.id)
                )
            except OperationCancelled:
                logger.debug(f"Fingerprint search cancelled for scene {scene.id}")
                return scene.id, None
            return scene.id, result

        pairs = await asyncio.gather(*(search_one(s) for s in scenes))
        return {scene_id: result for scene_id, result in pairs if result is not None}
