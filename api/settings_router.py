"""Settings API Router.

Tagger settings (read, override, reset), the query modes the UI offers, and
the stash-box endpoints Stash has configured.
"""

import time
from typing import Any, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from query_builder import MODE_DESCRIPTIONS
from settings import SETTING_DEFS, SettingsManager, get_settings_manager
from stashbox_connection_manager import get_connection_manager

router = APIRouter(tags=["settings"])

_start_time: Optional[float] = None
_version: str = "0.1.0"


def init_settings_router():
    """Record startup time. Called once during lifespan."""
    global _start_time
    _start_time = time.monotonic()


class UpdateSettingRequest(BaseModel):
    value: Any


class BulkUpdateRequest(BaseModel):
    settings: dict[str, Any]


def _require_known(key: str):
    if key not in SETTING_DEFS:
        raise HTTPException(status_code=404, detail=f"Unknown setting: {key}")


def _describe(mgr: SettingsManager, key: str) -> dict:
    defn = SETTING_DEFS[key]
    info = {
        "key": key,
        "value": mgr.get(key),
        "default": mgr.get_default(key),
        "is_override": mgr.has_override(key),
        "type": defn.type.value,
        "label": defn.label,
        "description": defn.description,
        "category": defn.category,
    }
    for name, value in (("min", defn.min_val), ("max", defn.max_val)):
        if value is not None:
            info[name] = value
    if defn.choices is not None:
        info["choices"] = list(defn.choices)
    return info


# ==================== Settings ====================

@router.get("/settings")
async def get_all_settings():
    """All settings grouped by category, for rendering the settings form."""
    return get_settings_manager().get_all_with_metadata()


@router.get("/settings/modes")
async def get_query_modes():
    """Query modes with their descriptions."""
    return {"modes": {mode.value: desc for mode, desc in MODE_DESCRIPTIONS.items()}}


@router.get("/settings/snapshot")
async def get_tagger_config():
    """The resolved settings a new tagger session would start with."""
    config = get_settings_manager().get_tagger_config()
    return {
        "mode": config.mode.value,
        "blacklist": list(config.blacklist),
        "show_males": config.show_males,
        "set_cover_image": config.set_cover_image,
        "set_tags": config.set_tags,
        "tag_operation": config.tag_operation,
        "create_tags": config.create_tags,
        "set_organized": config.set_organized,
        "add_stash_ids": config.add_stash_ids,
        "selected_endpoint": config.selected_endpoint,
        "excluded_fields": sorted(config.excluded_fields),
    }


@router.get("/settings/{key}")
async def get_setting(key: str):
    _require_known(key)
    return _describe(get_settings_manager(), key)


@router.put("/settings/{key}")
async def update_setting(key: str, request: UpdateSettingRequest):
    """Store an override. Invalid values are rejected with 422."""
    _require_known(key)
    try:
        stored = get_settings_manager().set(key, request.value)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {"key": key, "value": stored, "is_override": True}


@router.put("/settings")
async def bulk_update_settings(request: BulkUpdateRequest):
    """Store several overrides.

    Valid keys are stored even when others fail; the 422 detail lists both.
    """
    mgr = get_settings_manager()
    stored, errors = {}, {}
    for key, value in request.settings.items():
        if key not in SETTING_DEFS:
            errors[key] = f"Unknown setting: {key}"
            continue
        try:
            stored[key] = mgr.set(key, value)
        except ValueError as e:
            errors[key] = str(e)

    if errors:
        raise HTTPException(status_code=422, detail={"errors": errors, "stored": stored})
    return {"stored": stored}


@router.delete("/settings/{key}")
async def reset_setting(key: str):
    _require_known(key)
    mgr = get_settings_manager()
    mgr.delete(key)
    return {"key": key, "value": mgr.get_default(key), "is_override": False}


@router.delete("/settings")
async def reset_all_settings():
    """Drop every override."""
    mgr = get_settings_manager()
    reset = [key for key in SETTING_DEFS if mgr.has_override(key)]
    for key in reset:
        mgr.delete(key)
    return {"reset": reset}


# ==================== System ====================

@router.get("/system/info")
async def get_system_info():
    uptime_seconds = time.monotonic() - _start_time if _start_time else 0
    return {"version": _version, "uptime_seconds": round(uptime_seconds)}


@router.get("/system/stashbox-connections")
async def get_stashbox_connections():
    """Endpoints configured in Stash, and the one the tagger will search."""
    mgr = get_connection_manager()
    selected = get_settings_manager().get("selected_endpoint")
    return {
        "connections": mgr.get_connections(),
        "active_endpoint": mgr.resolve_endpoint(selected),
    }


@router.post("/system/refresh-stashbox-config")
async def refresh_stashbox_config():
    """Re-read the endpoint list from Stash without restarting."""
    mgr = get_connection_manager()
    count = await mgr.refresh()
    return {"endpoints_loaded": count, "connections": mgr.get_connections()}
