"""
Save a reconciled stash-box candidate onto a local scene.

Order matters: the studio must exist before the scene can reference it, and
performers must exist before the scene update lists them. Steps:

    1. Create the studio (if marked CREATE)
    2. Append the studio's stash id (if linked by name)
    3. Create / link performers, concurrently
    4. Resolve tags (create missing, merge or overwrite)
    5. Fetch the cover image
    6. One sceneUpdate with everything
    7. Submit the local fingerprints to stash-box

A failure in steps 1-3 or 6 aborts the save with a SaveError naming the step.
Earlier writes are not rolled back; entities created before the failure are
remembered on the reconciliation so a retry links instead of creating again.
"""

import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

import httpx

from candidate_fetcher import CancellationToken
from entity_mapper import replace_stash_id
from entity_reconciler import (
    EntityCreationError,
    EntityKind,
    EntityReconciler,
    EntityResolution,
    ResolutionType,
    SceneReconciliation,
)
from image_utils import fetch_image_data
from models import LocalScene, RemoteScene
from settings import TaggerConfig
from stash_client import StashClient
from stashbox_client import StashBoxClient

logger = logging.getLogger(__name__)


class SaveError(Exception):
    """A save step failed. Carries the step and the entity involved."""

    def __init__(self, step: str, message: str, entity: Optional[str] = None):
        self.step = step
        self.entity = entity
        self.message = message
        super().__init__(f"[{step}] {message}")

    def to_dict(self) -> dict:
        return {"step": self.step, "entity": self.entity, "message": self.message}


@dataclass
class SaveResult:
    scene_id: str
    studio_id: Optional[str] = None
    performer_ids: list[str] = field(default_factory=list)
    tag_ids: Optional[list[str]] = None
    fingerprints_submitted: int = 0
    fingerprints_failed: int = 0

    def to_dict(self) -> dict:
        return {
            "scene_id": self.scene_id,
            "studio_id": self.studio_id,
            "performer_ids": self.performer_ids,
            "tag_ids": self.tag_ids,
            "fingerprints_submitted": self.fingerprints_submitted,
            "fingerprints_failed": self.fingerprints_failed,
        }


def _dedupe(ids: list[str]) -> list[str]:
    return list(dict.fromkeys(ids))


class SaveOrchestrator:
    """Runs the ordered save steps for one scene at a time."""

    def __init__(
        self,
        stash: StashClient,
        reconciler: EntityReconciler,
        stashbox_client: Optional[StashBoxClient],
        config: TaggerConfig,
        image_fetcher: Callable[[Optional[str]], Awaitable[Optional[str]]] = fetch_image_data,
    ):
        self.stash = stash
        self.reconciler = reconciler
        self.stashbox_client = stashbox_client
        self.config = config
        self._fetch_image = image_fetcher

    @property
    def endpoint(self) -> str:
        return self.reconciler.endpoint

    async def save(
        self,
        scene: LocalScene,
        candidate: RemoteScene,
        reconciliation: SceneReconciliation,
        token: Optional[CancellationToken] = None,
    ) -> SaveResult:
        """
        Apply the candidate to the scene.

        Raises:
            SaveError: a required step failed, or the reconciliation still
                has undecided entities
            OperationCancelled: the token was cancelled between steps
        """
        token = token or CancellationToken()
        reasons = reconciliation.blocking_reasons()
        if reasons:
            raise SaveError("validate", "; ".join(reasons))
        token.raise_if_cancelled()

        result = SaveResult(scene_id=scene.id)
        result.studio_id = await self._save_studio(scene, candidate, reconciliation)
        token.raise_if_cancelled()

        result.performer_ids = await self._save_performers(reconciliation)
        token.raise_if_cancelled()

        if self.config.set_tags:
            result.tag_ids = await self._resolve_tag_ids(scene, reconciliation)
            token.raise_if_cancelled()

        cover_image = None
        if self.config.set_cover_image and not self.config.is_excluded("cover_image"):
            cover_image = await self._fetch_image(candidate.cover_url)
            token.raise_if_cancelled()

        update = self._scene_update(scene, candidate, result, cover_image)
        try:
            await self.stash.update_scene(scene.id, **update)
        except (httpx.HTTPError, RuntimeError) as e:
            raise SaveError("scene", f"Scene update failed: {e}", entity=scene.id) from e
        logger.info(f"Saved scene {scene.id} from {self.endpoint} scene {candidate.id}")

        submitted, failed = await self._submit_fingerprints(scene, candidate)
        result.fingerprints_submitted = submitted
        result.fingerprints_failed = failed
        return result

    # ==================== Steps ====================

    async def _save_studio(
        self,
        scene: LocalScene,
        candidate: RemoteScene,
        reconciliation: SceneReconciliation,
    ) -> Optional[str]:
        resolution = reconciliation.studio
        if resolution is None:
            return scene.studio_id

        studio = candidate.studio
        if resolution.type == ResolutionType.CREATE:
            try:
                resolution = await self.reconciler.create_studio(resolution.remote or studio)
            except EntityCreationError as e:
                raise SaveError("studio", str(e), entity=e.name) from e
            reconciliation.studio = resolution

        elif (
            resolution.type == ResolutionType.LINK
            and resolution.needs_stash_id
            and self.config.add_stash_ids
        ):
            try:
                await self.reconciler.update_stash_ids(
                    EntityKind.STUDIO, resolution.local_id, studio.id
                )
            except (httpx.HTTPError, RuntimeError) as e:
                raise SaveError("studio", f"Failed to link studio: {e}", entity=studio.name) from e
            reconciliation.studio = EntityResolution.link(resolution.local_id)

        return resolution.local_id

    async def _save_performer(
        self, reconciliation: SceneReconciliation, remote_id: str, resolution: EntityResolution
    ) -> EntityResolution:
        performer = reconciliation.remote_performer(remote_id)
        name = performer.name if performer else remote_id
        if resolution.type == ResolutionType.CREATE:
            try:
                return await self.reconciler.create_performer(resolution.remote or performer)
            except EntityCreationError as e:
                raise SaveError("performers", str(e), entity=name) from e

        if (
            resolution.type == ResolutionType.LINK
            and resolution.needs_stash_id
            and self.config.add_stash_ids
        ):
            try:
                await self.reconciler.update_stash_ids(
                    EntityKind.PERFORMER, resolution.local_id, remote_id
                )
            except (httpx.HTTPError, RuntimeError) as e:
                raise SaveError("performers", f"Failed to link performer: {e}", entity=name) from e
            return EntityResolution.link(resolution.local_id)

        return resolution

    async def _save_performers(self, reconciliation: SceneReconciliation) -> list[str]:
        """Create or link every non-skipped performer concurrently.

        Returns local performer ids in candidate order.
        """
        pending = {
            remote_id: resolution
            for remote_id, resolution in reconciliation.performers.items()
            if resolution.type != ResolutionType.SKIP
        }
        results = await asyncio.gather(
            *(self._save_performer(reconciliation, k, r) for k, r in pending.items()),
            return_exceptions=True,
        )

        first_error = None
        for remote_id, outcome in zip(pending, results):
            if isinstance(outcome, SaveError):
                first_error = first_error or outcome
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                reconciliation.performers[remote_id] = outcome
        if first_error is not None:
            raise first_error

        return [
            reconciliation.performers[remote_id].local_id
            for remote_id in pending
        ]

    async def _resolve_tag_ids(
        self, scene: LocalScene, reconciliation: SceneReconciliation
    ) -> list[str]:
        tags = reconciliation.tags
        if self.config.create_tags:
            tags = await self.reconciler.create_missing_tags(tags)
            reconciliation.tags = tags

        matched = [
            r.local_id for r in tags.values()
            if r.type in (ResolutionType.LINK, ResolutionType.CREATED)
        ]
        if self.config.tag_operation == "overwrite":
            return _dedupe(matched)
        return _dedupe([*scene.tag_ids, *matched])

    def _scene_update(
        self,
        scene: LocalScene,
        candidate: RemoteScene,
        result: SaveResult,
        cover_image: Optional[str],
    ) -> dict:
        config = self.config

        def pick(field_name: str, remote_value, local_value):
            return local_value if config.is_excluded(field_name) else remote_value

        if config.is_excluded("url") or not candidate.studio_url:
            urls = list(scene.urls)
        else:
            urls = _dedupe([candidate.studio_url, *scene.urls])

        update = {
            "title": pick("title", candidate.title, scene.title),
            "details": pick("details", candidate.details, scene.details),
            "date": pick("date", candidate.date, scene.date),
            "urls": urls,
            "studio_id": result.studio_id,
            "performer_ids": result.performer_ids or list(scene.performer_ids),
        }
        if result.tag_ids is not None:
            update["tag_ids"] = result.tag_ids
        if cover_image:
            update["cover_image"] = cover_image
        if config.set_organized:
            update["organized"] = True
        if config.add_stash_ids:
            update["stash_ids"] = replace_stash_id(
                [s.to_dict() for s in scene.stash_ids], self.endpoint, candidate.id
            )
        return update

    async def _submit_fingerprints(
        self, scene: LocalScene, candidate: RemoteScene
    ) -> tuple[int, int]:
        """Submit each local hash. Failures are logged, never raised."""
        if self.stashbox_client is None or not scene.duration:
            return 0, 0

        duration = math.floor(scene.duration)
        hashes = scene.hashes
        results = await asyncio.gather(
            *(
                self.stashbox_client.submit_fingerprint(candidate.id, value, algorithm, duration)
                for algorithm, value in hashes
            ),
            return_exceptions=True,
        )

        submitted = failed = 0
        for (algorithm, value), outcome in zip(hashes, results):
            if isinstance(outcome, Exception):
                failed += 1
                logger.warning(
                    f"Fingerprint submission failed for scene {scene.id} ({algorithm} {value}): {outcome}"
                )
            elif outcome:
                submitted += 1
            else:
                failed += 1
                logger.warning(f"Fingerprint {algorithm} {value} was not accepted by {self.endpoint}")
        return submitted, failed
