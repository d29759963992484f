"""Scene tagger API Router.

Endpoints for listing local scenes with their derived queries, searching
stash-box (text and fingerprint), selecting a candidate, resolving its
studio/performers/tags, and saving.
"""

import dataclasses
import logging
from typing import Callable, Optional

import httpx
from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from candidate_fetcher import SearchResult
from models import LocalScene, RemoteScene
from save_orchestrator import SaveError
from scene_matching import get_duration_status, get_fingerprint_status
from stash_client import StashClient
from tagger_session import TaggerSession

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tagger", tags=["tagger"])

# Module-level globals set by init
_stash: Optional[StashClient] = None
_session_factory: Optional[Callable[[], Optional[TaggerSession]]] = None
_session: Optional[TaggerSession] = None


def init_tagger_router(stash: StashClient, session_factory: Callable[[], Optional[TaggerSession]]):
    """Initialize the tagger router with runtime dependencies."""
    global _stash, _session_factory, _session
    _stash = stash
    _session_factory = session_factory
    _session = None


def set_session(session: Optional[TaggerSession]):
    """Set the active session directly (for testing)."""
    global _session
    _session = session


def _get_session() -> TaggerSession:
    global _session
    if _session is None and _session_factory is not None:
        _session = _session_factory()
    if _session is None:
        raise HTTPException(
            status_code=503,
            detail="No stash-box endpoint with an API key is configured in Stash",
        )
    return _session


def _get_stash() -> StashClient:
    if _stash is None:
        raise HTTPException(status_code=503, detail="Tagger not initialized")
    return _stash


async def _load_scene(scene_id: str) -> LocalScene:
    try:
        data = await _get_stash().find_scene(scene_id)
    except (httpx.HTTPError, RuntimeError) as e:
        raise HTTPException(status_code=502, detail=f"Stash request failed: {e}")
    if data is None:
        raise HTTPException(status_code=404, detail=f"Scene {scene_id} not found")
    return LocalScene.from_dict(data)


# ==================== Request models ====================

class SearchRequest(BaseModel):
    query: Optional[str] = None


class FingerprintSearchRequest(BaseModel):
    scene_ids: list[str] = Field(..., min_length=1)


class SelectCandidateRequest(BaseModel):
    candidate_id: str


class ResolveRequest(BaseModel):
    kind: str = Field(..., description="studio, performer or tag")
    remote_id: str
    action: str = Field(..., description="link, create or skip")
    local_id: Optional[str] = None


# ==================== Serialization ====================

def _candidate_to_dict(candidate: RemoteScene, scene: LocalScene) -> dict:
    data = dataclasses.asdict(candidate)
    data["studio_url"] = candidate.studio_url
    data["cover_url"] = candidate.cover_url

    duration = get_duration_status(candidate, scene.duration)
    fingerprint = get_fingerprint_status(candidate, scene)
    data["duration_status"] = (
        {**dataclasses.asdict(duration), "message": duration.message} if duration else None
    )
    data["fingerprint_status"] = (
        {**dataclasses.asdict(fingerprint), "message": fingerprint.message} if fingerprint else None
    )
    return data


def _result_to_dict(result: SearchResult, scene: LocalScene) -> dict:
    return {
        "state": result.state.value,
        "error": result.error,
        "candidates": [_candidate_to_dict(c, scene) for c in result.candidates],
    }


# ==================== Endpoints ====================

@router.get("/scenes")
async def list_scenes(q: str = "", page: int = 1, per_page: int = 20):
    """Local scenes with their search query and tagged state."""
    session = _get_session()
    try:
        raw_scenes, count = await _get_stash().find_scenes(q, page=page, per_page=per_page)
    except (httpx.HTTPError, RuntimeError) as e:
        raise HTTPException(status_code=502, detail=f"Stash request failed: {e}")

    scenes = []
    for raw in raw_scenes:
        scene = LocalScene.from_dict(raw)
        search = session.search_results.get(scene.id)
        scenes.append({
            "id": scene.id,
            "title": scene.title,
            "path": scene.path,
            "duration": scene.duration,
            "query": session.query_for(scene),
            "already_tagged": session.is_already_tagged(scene),
            "search_state": search.state.value if search else None,
        })
    return {"count": count, "page": page, "per_page": per_page, "scenes": scenes}


@router.post("/scenes/{scene_id}/search")
async def search_scene(scene_id: str, request: SearchRequest):
    """Search stash-box for a scene, optionally with an edited query."""
    session = _get_session()
    scene = await _load_scene(scene_id)
    result = await session.search(scene, request.query)
    if result is None:
        raise HTTPException(status_code=409, detail=f"Search for scene {scene_id} was cancelled")
    return {"query": session.query_for(scene), **_result_to_dict(result, scene)}


@router.post("/fingerprints")
async def search_fingerprints(request: FingerprintSearchRequest):
    """Fingerprint-search scenes that have not been searched yet."""
    session = _get_session()
    scenes = [await _load_scene(scene_id) for scene_id in request.scene_ids]
    results = await session.search_fingerprints(scenes)
    by_id = {s.id: s for s in scenes}
    return {
        "results": {
            scene_id: _result_to_dict(result, by_id[scene_id])
            for scene_id, result in results.items()
        }
    }


@router.post("/scenes/{scene_id}/select")
async def select_candidate(scene_id: str, request: SelectCandidateRequest):
    """Select a candidate and auto-resolve its entities."""
    session = _get_session()
    scene = await _load_scene(scene_id)
    try:
        reconciliation = await session.select_candidate(scene, request.candidate_id)
    except KeyError as e:
        raise HTTPException(status_code=404, detail=str(e.args[0]))
    except (httpx.HTTPError, RuntimeError) as e:
        raise HTTPException(status_code=502, detail=f"Stash request failed: {e}")
    return reconciliation.to_dict()


@router.post("/scenes/{scene_id}/resolve")
async def resolve_entity(scene_id: str, request: ResolveRequest):
    """Link, create or skip one studio, performer or tag."""
    session = _get_session()
    try:
        resolution = session.resolve(
            scene_id, request.kind, request.remote_id, request.action, request.local_id
        )
    except KeyError as e:
        raise HTTPException(status_code=404, detail=str(e.args[0]))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {
        "resolution": resolution.to_dict(),
        "reconciliation": session.reconciliations[scene_id].to_dict(),
    }


@router.post("/scenes/{scene_id}/save")
async def save_scene(scene_id: str):
    """Save the selected candidate to the local scene."""
    session = _get_session()
    scene = await _load_scene(scene_id)
    try:
        result = await session.save(scene)
    except KeyError as e:
        raise HTTPException(status_code=404, detail=str(e.args[0]))
    except SaveError as e:
        logger.warning(f"Save failed for scene {scene_id}: {e}")
        status = 422 if e.step == "validate" else 502
        raise HTTPException(status_code=status, detail=e.to_dict())
    if result is None:
        raise HTTPException(status_code=409, detail=f"Save for scene {scene_id} was cancelled")
    return result.to_dict()


@router.delete("/scenes/{scene_id}")
async def cancel_scene(scene_id: str):
    """Cancel in-flight search or save work for a scene."""
    session = _get_session()
    return {"scene_id": scene_id, "cancelled": session.cancel(scene_id)}


@router.post("/session/reset")
async def reset_session():
    """Start a fresh session so changed settings take effect."""
    global _session
    if _session is not None:
        cancelled = _session.cancel_all()
        if cancelled:
            logger.info(f"Cancelled {cancelled} in-flight operation(s) from the previous session")
    _session = None
    session = _get_session()
    return {"endpoint": session.endpoint}
