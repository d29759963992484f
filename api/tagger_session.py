"""
Tagger session state.

One TaggerSession holds everything the tagger tracks while a user works
through a page of scenes: query overrides, search and fingerprint results,
the selected candidate and its reconciliation, finished saves, and one
cancellation token per scene. Settings are snapshotted when the session is
created.
"""

import logging
from typing import Optional

from candidate_fetcher import (
    CancellationToken,
    CandidateFetcher,
    OperationCancelled,
    SearchResult,
    SearchState,
)
from entity_reconciler import (
    EntityKind,
    EntityReconciler,
    EntityResolution,
    SceneReconciliation,
)
from models import LocalScene, RemoteScene
from query_builder import prepare_query_string
from save_orchestrator import SaveOrchestrator, SaveResult
from scene_matching import rank_candidates
from settings import TaggerConfig
from stash_client import StashClient
from stashbox_client import StashBoxClient

logger = logging.getLogger(__name__)

RESOLVE_ACTIONS = ("link", "create", "skip")


class TaggerSession:
    """Per-user tagger context against one stash-box endpoint."""

    def __init__(
        self,
        stash: StashClient,
        stashbox_client: StashBoxClient,
        endpoint: str,
        config: TaggerConfig,
        reconciler: Optional[EntityReconciler] = None,
        orchestrator: Optional[SaveOrchestrator] = None,
    ):
        self.stash = stash
        self.endpoint = endpoint
        self.config = config
        self.fetcher = CandidateFetcher(stashbox_client)
        self.reconciler = reconciler or EntityReconciler(stash, endpoint, config)
        self.orchestrator = orchestrator or SaveOrchestrator(
            stash, self.reconciler, stashbox_client, config
        )

        self.queries: dict[str, str] = {}
        self.search_results: dict[str, SearchResult] = {}
        self.fingerprint_results: dict[str, SearchResult] = {}
        self.selected: dict[str, RemoteScene] = {}
        self.reconciliations: dict[str, SceneReconciliation] = {}
        self.tagged: dict[str, SaveResult] = {}
        self._tokens: dict[str, CancellationToken] = {}

    def _token(self, scene_id: str) -> CancellationToken:
        token = self._tokens.get(scene_id)
        if token is None or token.cancelled:
            token = CancellationToken()
            self._tokens[scene_id] = token
        return token

    # ==================== Queries ====================

    def query_for(self, scene: LocalScene) -> str:
        """The user's edited query, or the one derived from the scene."""
        if scene.id in self.queries:
            return self.queries[scene.id]
        return prepare_query_string(scene, self.config.mode, list(self.config.blacklist))

    def set_query(self, scene_id: str, query: str):
        self.queries[scene_id] = query

    def is_already_tagged(self, scene: LocalScene) -> bool:
        return scene.id in self.tagged or scene.stash_id_for(self.endpoint) is not None

    # ==================== Searching ====================

    async def search(self, scene: LocalScene, query: Optional[str] = None) -> Optional[SearchResult]:
        """Text search for one scene. Returns None if cancelled."""
        if query is not None:
            self.set_query(scene.id, query)
        term = self.query_for(scene)

        try:
            result = await self.fetcher.search(term, self._token(scene.id))
        except OperationCancelled:
            logger.info(f"Search cancelled for scene {scene.id}")
            return None

        result.candidates = rank_candidates(scene.duration, result.candidates)
        self.search_results[scene.id] = result
        return result

    async def search_fingerprints(self, scenes: list[LocalScene]) -> dict[str, SearchResult]:
        """Fingerprint-search scenes without a settled result.

        Scenes whose last lookup failed (UNKNOWN) are searched again.
        """
        pending = [
            s for s in scenes
            if s.id not in self.fingerprint_results
            or self.fingerprint_results[s.id].state == SearchState.UNKNOWN
        ]
        if not pending:
            return {}
        tokens = {s.id: self._token(s.id) for s in pending}
        results = await self.fetcher.search_fingerprints(pending, tokens)
        self.fingerprint_results.update(results)
        return results

    def candidates_for(self, scene_id: str) -> list[RemoteScene]:
        """Fingerprint match first, then text search results, without repeats."""
        candidates = []
        seen = set()
        for results in (self.fingerprint_results, self.search_results):
            result = results.get(scene_id)
            if result is None:
                continue
            for candidate in result.candidates:
                if candidate.id not in seen:
                    seen.add(candidate.id)
                    candidates.append(candidate)
        return candidates

    # ==================== Selection & resolution ====================

    async def select_candidate(self, scene: LocalScene, candidate_id: str) -> SceneReconciliation:
        """Select a candidate and auto-resolve its entities.

        Raises:
            KeyError: the candidate is not among this scene's results
        """
        candidate = next(
            (c for c in self.candidates_for(scene.id) if c.id == candidate_id), None
        )
        if candidate is None:
            raise KeyError(f"Candidate {candidate_id} not found for scene {scene.id}")

        reconciliation = await self.reconciler.reconcile(scene, candidate)
        self.selected[scene.id] = candidate
        self.reconciliations[scene.id] = reconciliation
        return reconciliation

    def resolve(
        self,
        scene_id: str,
        kind: EntityKind | str,
        remote_id: str,
        action: str,
        local_id: Optional[str] = None,
    ) -> EntityResolution:
        """
        Apply a user decision to one entity of the selected candidate.

        Raises:
            KeyError: no candidate selected, or unknown remote entity
            ValueError: invalid action, missing local_id, or skipping a studio
        """
        kind = EntityKind(kind)
        if action not in RESOLVE_ACTIONS:
            raise ValueError(f"Unknown action: {action}")
        reconciliation = self.reconciliations.get(scene_id)
        if reconciliation is None:
            raise KeyError(f"No candidate selected for scene {scene_id}")

        if kind == EntityKind.STUDIO:
            remote = reconciliation.candidate.studio
            if remote is None or remote.id != remote_id:
                raise KeyError(f"Unknown studio {remote_id}")
        elif kind == EntityKind.PERFORMER:
            remote = reconciliation.remote_performer(remote_id)
            if remote is None or remote_id not in reconciliation.performers:
                raise KeyError(f"Unknown performer {remote_id}")
        else:
            remote = reconciliation.remote_tag(remote_id)
            if remote is None:
                raise KeyError(f"Unknown tag {remote_id}")

        if action == "link":
            if not local_id:
                raise ValueError("local_id is required to link")
            resolution = self.reconciler.link(local_id)
        elif action == "skip":
            resolution = self.reconciler.skip(kind)
        else:
            resolution = self.reconciler.mark_create(remote)

        if kind == EntityKind.STUDIO:
            reconciliation.studio = resolution
        elif kind == EntityKind.PERFORMER:
            reconciliation.performers[remote_id] = resolution
        else:
            reconciliation.tags[remote_id] = resolution
        return resolution

    # ==================== Saving ====================

    async def save(self, scene: LocalScene) -> Optional[SaveResult]:
        """Save the selected candidate. Returns None if cancelled.

        Raises:
            KeyError: no candidate selected
            SaveError: a save step failed
        """
        reconciliation = self.reconciliations.get(scene.id)
        if reconciliation is None:
            raise KeyError(f"No candidate selected for scene {scene.id}")

        try:
            result = await self.orchestrator.save(
                scene, reconciliation.candidate, reconciliation, self._token(scene.id)
            )
        except OperationCancelled:
            logger.info(f"Save cancelled for scene {scene.id}")
            return None

        self.tagged[scene.id] = result
        return result

    def cancel(self, scene_id: str) -> bool:
        """Cancel in-flight work for one scene. Returns True if anything was running."""
        token = self._tokens.pop(scene_id, None)
        if token is None:
            return False
        token.cancel()
        return True

    def cancel_all(self) -> int:
        """Cancel in-flight work for every scene. Returns how many tokens were cancelled."""
        tokens, self._tokens = self._tokens, {}
        for token in tokens.values():
            token.cancel()
        return len(tokens)
