"""
Entity reconciliation between a stash-box candidate and the local library.

Every studio, performer and tag on a selected candidate gets an
EntityResolution saying what will happen to it on save: link to an existing
local entity, create a new one, or skip it. Automatic resolution only ever
looks things up; nothing is created until the user saves (or explicitly
asks for a create).

Matching rules, in order:
    1. Exact stash id match for the endpoint: LINK, no cross-reference write
    2. Exact case-insensitive name or alias match: LINK, cross-reference
       appended on save
    3. Otherwise UNDECIDED (tags become CREATE or SKIP instead, depending on
       the create_tags setting)
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import httpx

from entity_mapper import (
    append_stash_id,
    get_image,
    performer_create_input,
    studio_create_input,
    tag_create_input,
)
from image_utils import fetch_image_data
from models import LocalScene, RemotePerformer, RemoteScene, RemoteStudio, RemoteTag
from settings import TaggerConfig
from stash_client import StashClient

logger = logging.getLogger(__name__)


class EntityKind(str, Enum):
    STUDIO = "studio"
    PERFORMER = "performer"
    TAG = "tag"


class ResolutionType(str, Enum):
    UNDECIDED = "undecided"
    LINK = "link"          # Use an existing local entity
    CREATE = "create"      # Create from the remote entity on save
    CREATED = "created"    # Created during this session
    SKIP = "skip"          # Leave off the scene


class EntityCreationError(Exception):
    """Creating a local entity from a remote one failed."""

    def __init__(self, kind: EntityKind, name: str, cause: Exception):
        self.kind = kind
        self.name = name
        self.cause = cause
        super().__init__(f"Failed to create {kind.value} '{name}': {cause}")


@dataclass(frozen=True)
class EntityResolution:
    """The decision for one remote entity. Exactly one variant applies."""
    type: ResolutionType
    local_id: Optional[str] = None
    remote: Any = None
    needs_stash_id: bool = False

    @classmethod
    def undecided(cls) -> "EntityResolution":
        return cls(ResolutionType.UNDECIDED)

    @classmethod
    def link(cls, local_id: str, needs_stash_id: bool = False) -> "EntityResolution":
        return cls(ResolutionType.LINK, local_id=local_id, needs_stash_id=needs_stash_id)

    @classmethod
    def create(cls, remote) -> "EntityResolution":
        return cls(ResolutionType.CREATE, remote=remote)

    @classmethod
    def created(cls, local_id: str) -> "EntityResolution":
        return cls(ResolutionType.CREATED, local_id=local_id)

    @classmethod
    def skip(cls) -> "EntityResolution":
        return cls(ResolutionType.SKIP)

    @property
    def is_decided(self) -> bool:
        return self.type != ResolutionType.UNDECIDED

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "local_id": self.local_id,
            "needs_stash_id": self.needs_stash_id,
        }


@dataclass
class SceneReconciliation:
    """Resolution state for one (local scene, candidate) pair."""
    scene: LocalScene
    candidate: RemoteScene
    studio: Optional[EntityResolution] = None
    performers: dict[str, EntityResolution] = field(default_factory=dict)
    tags: dict[str, EntityResolution] = field(default_factory=dict)

    def remote_performer(self, remote_id: str) -> Optional[RemotePerformer]:
        for appearance in self.candidate.performers:
            if appearance.performer.id == remote_id:
                return appearance.performer
        return None

    def remote_tag(self, remote_id: str) -> Optional[RemoteTag]:
        for tag in self.candidate.tags:
            if tag.id == remote_id:
                return tag
        return None

    def blocking_reasons(self) -> list[str]:
        reasons = []
        if self.studio is not None and not self.studio.is_decided:
            reasons.append(f"Studio '{self.candidate.studio.name}' is not resolved")
        for remote_id, resolution in self.performers.items():
            if not resolution.is_decided:
                performer = self.remote_performer(remote_id)
                name = performer.name if performer else remote_id
                reasons.append(f"Performer '{name}' is not resolved")
        return reasons

    def can_save(self) -> bool:
        return not self.blocking_reasons()

    def to_dict(self) -> dict:
        return {
            "scene_id": self.scene.id,
            "candidate_id": self.candidate.id,
            "studio": self.studio.to_dict() if self.studio else None,
            "performers": {k: v.to_dict() for k, v in self.performers.items()},
            "tags": {k: v.to_dict() for k, v in self.tags.items()},
            "can_save": self.can_save(),
            "blocking_reasons": self.blocking_reasons(),
        }


def _names(entity: dict, alias_key: str) -> set[str]:
    names = {(entity.get("name") or "").lower()}
    names.update(a.lower() for a in (entity.get(alias_key) or []) if a)
    names.discard("")
    return names


class EntityReconciler:
    """Resolves remote entities against the local Stash library.

    The full local studio/performer/tag lists are fetched once per
    reconciler and extended as entities are created.
    """

    def __init__(
        self,
        stash: StashClient,
        endpoint: str,
        config: TaggerConfig,
        image_fetcher: Callable[[Optional[str]], Awaitable[Optional[str]]] = fetch_image_data,
    ):
        self.stash = stash
        self.endpoint = endpoint
        self.config = config
        self._fetch_image = image_fetcher
        self._all: dict[EntityKind, Optional[list[dict]]] = {
            EntityKind.STUDIO: None,
            EntityKind.PERFORMER: None,
            EntityKind.TAG: None,
        }
        # Concurrent resolutions share one fetch per kind
        self._list_locks = {kind: asyncio.Lock() for kind in EntityKind}

    async def _list_all(self, kind: EntityKind) -> list[dict]:
        async with self._list_locks[kind]:
            if self._all[kind] is None:
                if kind == EntityKind.STUDIO:
                    self._all[kind] = await self.stash.get_all_studios()
                elif kind == EntityKind.PERFORMER:
                    self._all[kind] = await self.stash.get_all_performers()
                else:
                    self._all[kind] = await self.stash.get_all_tags()
        return self._all[kind]

    def _remember(self, kind: EntityKind, entity: dict):
        if self._all[kind] is not None:
            self._all[kind].append(entity)

    async def _match_by_name(self, kind: EntityKind, name: str) -> Optional[str]:
        """Local id of the single entity whose name or alias equals name."""
        alias_key = "alias_list" if kind == EntityKind.PERFORMER else "aliases"
        wanted = name.lower()
        matches = [
            e["id"] for e in await self._list_all(kind)
            if wanted in _names(e, alias_key)
        ]
        if len(matches) > 1:
            logger.info(f"{kind.value.title()} '{name}' matches {len(matches)} local entries; leaving undecided")
            return None
        return matches[0] if matches else None

    # ==================== Automatic resolution ====================

    async def resolve_studio(self, studio: RemoteStudio) -> EntityResolution:
        existing = await self.stash.find_studio_by_stash_id(self.endpoint, studio.id)
        if existing:
            return EntityResolution.link(existing["id"])
        local_id = await self._match_by_name(EntityKind.STUDIO, studio.name)
        if local_id:
            return EntityResolution.link(local_id, needs_stash_id=True)
        return EntityResolution.undecided()

    async def resolve_performer(self, performer: RemotePerformer) -> EntityResolution:
        existing = await self.stash.find_performer_by_stash_id(self.endpoint, performer.id)
        if existing:
            return EntityResolution.link(existing["id"])
        local_id = await self._match_by_name(EntityKind.PERFORMER, performer.name)
        if local_id:
            return EntityResolution.link(local_id, needs_stash_id=True)
        return EntityResolution.undecided()

    async def resolve_tags(self, tags: tuple[RemoteTag, ...] | list[RemoteTag]) -> dict[str, EntityResolution]:
        """Match tags by name or alias. Unmatched tags are created or skipped."""
        resolutions = {}
        for tag in tags:
            local_id = await self._match_by_name(EntityKind.TAG, tag.name)
            if local_id:
                resolutions[tag.id] = EntityResolution.link(local_id)
            elif self.config.create_tags:
                resolutions[tag.id] = EntityResolution.create(tag)
            else:
                resolutions[tag.id] = EntityResolution.skip()
        return resolutions

    async def reconcile(self, scene: LocalScene, candidate: RemoteScene) -> SceneReconciliation:
        """Build the initial resolution state for a selected candidate."""
        reconciliation = SceneReconciliation(scene=scene, candidate=candidate)
        if candidate.studio is not None:
            reconciliation.studio = await self.resolve_studio(candidate.studio)

        performers = [
            a.performer for a in candidate.performers
            if self.config.show_males or a.performer.gender != "MALE"
        ]
        resolutions = await asyncio.gather(*(self.resolve_performer(p) for p in performers))
        reconciliation.performers = {p.id: r for p, r in zip(performers, resolutions)}

        if self.config.set_tags:
            reconciliation.tags = await self.resolve_tags(candidate.tags)
        return reconciliation

    # ==================== User actions ====================

    def link(self, local_id: str) -> EntityResolution:
        """User picked an existing local entity; its stash id is added on save."""
        return EntityResolution.link(local_id, needs_stash_id=True)

    def skip(self, kind: EntityKind) -> EntityResolution:
        if kind == EntityKind.STUDIO:
            raise ValueError("Studios cannot be skipped")
        return EntityResolution.skip()

    def mark_create(self, remote) -> EntityResolution:
        return EntityResolution.create(remote)

    # ==================== Creation ====================

    async def create_studio(self, studio: RemoteStudio) -> EntityResolution:
        try:
            image = await self._fetch_image(get_image(studio.images, "landscape"))
            input_dict = studio_create_input(studio, self.endpoint, image)
            created = await self.stash.create_studio(**input_dict)
        except (httpx.HTTPError, RuntimeError) as e:
            raise EntityCreationError(EntityKind.STUDIO, studio.name, e) from e
        logger.info(f"Created studio '{studio.name}' ({created['id']})")
        self._remember(EntityKind.STUDIO, {"id": created["id"], "name": studio.name, "aliases": []})
        return EntityResolution.created(created["id"])

    async def create_performer(self, performer: RemotePerformer) -> EntityResolution:
        try:
            image_url = performer.images[0].url if performer.images else None
            image = await self._fetch_image(image_url)
            input_dict = performer_create_input(performer, self.endpoint, image)
            created = await self.stash.create_performer(**input_dict)
        except (httpx.HTTPError, RuntimeError) as e:
            raise EntityCreationError(EntityKind.PERFORMER, performer.name, e) from e
        logger.info(f"Created performer '{performer.name}' ({created['id']})")
        self._remember(
            EntityKind.PERFORMER,
            {"id": created["id"], "name": performer.name, "alias_list": list(performer.aliases)},
        )
        return EntityResolution.created(created["id"])

    async def create_tag(self, tag: RemoteTag) -> EntityResolution:
        try:
            created = await self.stash.create_tag(**tag_create_input(tag, self.endpoint))
        except (httpx.HTTPError, RuntimeError) as e:
            raise EntityCreationError(EntityKind.TAG, tag.name, e) from e
        logger.info(f"Created tag '{tag.name}' ({created['id']})")
        self._remember(EntityKind.TAG, {"id": created["id"], "name": tag.name, "aliases": []})
        return EntityResolution.created(created["id"])

    async def create_missing_tags(
        self, resolutions: dict[str, EntityResolution]
    ) -> dict[str, EntityResolution]:
        """Create every CREATE tag. A tag that fails to create is skipped."""
        pending = {k: r for k, r in resolutions.items() if r.type == ResolutionType.CREATE}
        results = await asyncio.gather(
            *(self.create_tag(r.remote) for r in pending.values()),
            return_exceptions=True,
        )

        updated = dict(resolutions)
        for remote_id, result in zip(pending, results):
            if isinstance(result, EntityCreationError):
                logger.warning(str(result))
                updated[remote_id] = EntityResolution.skip()
            elif isinstance(result, BaseException):
                raise result
            else:
                updated[remote_id] = result
        return updated

    # ==================== Cross-references ====================

    async def update_stash_ids(self, kind: EntityKind, local_id: str, remote_id: str) -> bool:
        """Append the endpoint's stash id to a local entity.

        Existing stash ids are kept. Returns False when nothing changed.
        """
        if kind == EntityKind.STUDIO:
            entity = await self.stash.find_studio(local_id)
        elif kind == EntityKind.PERFORMER:
            entity = await self.stash.find_performer(local_id)
        else:
            entity = await self.stash.find_tag(local_id)
        if entity is None:
            raise RuntimeError(f"{kind.value.title()} {local_id} not found in Stash")

        existing = entity.get("stash_ids") or []
        stash_ids = append_stash_id(existing, self.endpoint, remote_id)
        if stash_ids == existing:
            return False

        if kind == EntityKind.STUDIO:
            await self.stash.update_studio(local_id, stash_ids=stash_ids)
        elif kind == EntityKind.PERFORMER:
            await self.stash.update_performer(local_id, stash_ids=stash_ids)
        else:
            await self.stash.update_tag(local_id, stash_ids=stash_ids)
        logger.info(f"Linked {kind.value} {local_id} to {self.endpoint} {remote_id}")
        return True
