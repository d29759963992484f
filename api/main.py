"""FastAPI sidecar for the Stash scene tagger.

Provides REST API endpoints for:
- Matching local scenes against a stash-box endpoint
- Reconciling studios, performers and tags, and saving the result
- Tagger settings
"""
import logging
import os

from dotenv import load_dotenv
load_dotenv()

from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from config import DataConfig, StashConfig
from rate_limiter import RateLimiter
from settings import init_settings, migrate_env_vars
from settings_db import SettingsDB
from settings_router import router as settings_router, init_settings_router
from stash_client import StashClient
from stashbox_connection_manager import (
    get_connection_manager,
    init_connection_manager,
    set_connection_manager,
    StashBoxConnectionManager,
)
from tagger_router import router as tagger_router, init_tagger_router
from tagger_session import TaggerSession

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

stash_client: Optional[StashClient] = None


def create_session() -> Optional[TaggerSession]:
    """Build a tagger session from the current settings and stash-box config."""
    from settings import get_settings_manager

    config = get_settings_manager().get_tagger_config()
    mgr = get_connection_manager()
    endpoint = mgr.resolve_endpoint(config.selected_endpoint)
    if endpoint is None:
        logger.warning("No stash-box endpoints configured in Stash")
        return None
    client = mgr.get_client(endpoint)
    if client is None:
        logger.warning(f"Stash-box endpoint {endpoint} has no API key")
        return None
    logger.info(f"Tagger session started against {endpoint}")
    return TaggerSession(stash_client, client, endpoint, config)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open settings, discover stash-box endpoints and wire the routers."""
    global stash_client

    data_config = DataConfig.from_env()
    stash_config = StashConfig.from_env()

    settings_db = SettingsDB(data_config.settings_db_path)
    settings_mgr = init_settings(settings_db)
    init_settings_router()

    migrated = migrate_env_vars(settings_mgr)
    if migrated:
        logger.warning(f"Migrated {migrated} env var(s) to settings system")

    limiter = RateLimiter(requests_per_second=settings_mgr.get("stash_api_rate"))
    stash_client = StashClient(stash_config.url, stash_config.api_key, rate_limiter=limiter)

    if stash_config.url:
        logger.info(f"Stash connection configured: {stash_config.url}")
    try:
        await init_connection_manager(stash_client)
    except (httpx.HTTPError, RuntimeError) as e:
        logger.warning(f"Could not load stash-box endpoints from Stash: {e}")
        set_connection_manager(StashBoxConnectionManager(stash_client))

    init_tagger_router(stash_client, create_session)

    yield

    stash_client = None


app = FastAPI(
    title="Stash Tagger API",
    description="Match Stash scenes against stash-box and save the metadata",
    version="0.1.0",
    lifespan=lifespan,
)

# Enable CORS for Stash plugin
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Stash runs on various ports
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(tagger_router)
app.include_router(settings_router)


class HealthResponse(BaseModel):
    status: str
    stash_configured: bool
    stashbox_endpoints: int = 0


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Check API health and stash-box discovery."""
    try:
        mgr = get_connection_manager()
    except RuntimeError:
        return HealthResponse(status="starting", stash_configured=stash_client is not None)

    endpoints = len(mgr.get_connections())
    return HealthResponse(
        status="healthy" if endpoints else "degraded",
        stash_configured=stash_client is not None,
        stashbox_endpoints=endpoints,
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.environ.get("PORT", "5000")))
