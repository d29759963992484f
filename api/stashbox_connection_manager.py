"""
Stash-box endpoints discovered from the local Stash.

The tagger never asks for stash-box URLs or API keys itself. Whatever the user
configured under Stash's Settings > Metadata Providers is read over GraphQL,
and each endpoint gets one StashBoxClient with its own RateLimiter sized from
that endpoint's max_requests_per_minute.
"""

import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

from rate_limiter import RateLimiter
from stash_client import StashClient
from stashbox_client import StashBoxClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StashBoxConnection:
    """One configured stash-box endpoint. The API key never leaves the sidecar."""
    endpoint: str
    api_key: str
    name: str
    max_requests_per_minute: int = 0

    @property
    def domain(self) -> str:
        """Host part of the endpoint, e.g. 'stashdb.org' or 'localhost:9999'."""
        parsed = urlparse(self.endpoint)
        if parsed.netloc:
            return parsed.netloc
        return self.endpoint.split("/", 1)[0]

    def matches(self, key: str) -> bool:
        return key in (self.endpoint, self.domain)

    def to_dict(self) -> dict:
        return {
            "endpoint": self.endpoint,
            "name": self.name,
            "domain": self.domain,
            "max_requests_per_minute": self.max_requests_per_minute,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "StashBoxConnection":
        return cls(
            endpoint=data["endpoint"],
            api_key=data.get("api_key") or "",
            name=data.get("name") or "",
            max_requests_per_minute=data.get("max_requests_per_minute") or 0,
        )


class StashBoxConnectionManager:
    """Endpoint list plus lazily built, per-endpoint clients."""

    # Stash reports 0 for "no limit"; stash-box servers still throttle
    DEFAULT_REQUESTS_PER_MINUTE = 240

    def __init__(self, stash: StashClient):
        self._stash = stash
        self._connections: list[StashBoxConnection] = []
        self._clients: dict[str, StashBoxClient] = {}
        self._loaded = False

    @property
    def loaded(self) -> bool:
        return self._loaded

    async def load(self) -> int:
        """Read the endpoint list from Stash. Returns how many were found.

        Clients built from a previous load are dropped, so changed keys and
        rate limits take effect.
        """
        raw = await self._stash.get_stashbox_connections()
        self._connections = [
            StashBoxConnection.from_dict(c) for c in raw if c.get("endpoint")
        ]
        self._clients = {}
        self._loaded = True

        if self._connections:
            summary = ", ".join(
                f"{c.domain} ({c.max_requests_per_minute or 'unlimited'}/min)"
                for c in self._connections
            )
            logger.info(f"Loaded {len(self._connections)} stash-box endpoint(s) from Stash: {summary}")
        else:
            logger.warning("Stash has no stash-box endpoints configured")
        return len(self._connections)

    async def refresh(self) -> int:
        return await self.load()

    def get_connections(self) -> list[dict]:
        """Endpoint list for API responses (no API keys)."""
        return [c.to_dict() for c in self._connections]

    def _find_connection(self, key: str) -> Optional[StashBoxConnection]:
        return next((c for c in self._connections if c.matches(key)), None)

    def resolve_endpoint(self, selected: str = "") -> Optional[str]:
        """Endpoint URL to search: the selected one if configured, else the first."""
        if selected:
            conn = self._find_connection(selected)
            if conn:
                return conn.endpoint
            logger.warning(f"Selected stash-box endpoint {selected} is not configured in Stash")
        return self._connections[0].endpoint if self._connections else None

    def get_client(self, key: str) -> Optional[StashBoxClient]:
        """Client for an endpoint given by URL or domain.

        None when the endpoint is unknown or has no API key.
        """
        conn = self._find_connection(key)
        if conn is None or not conn.api_key:
            return None

        client = self._clients.get(conn.endpoint)
        if client is None:
            rpm = conn.max_requests_per_minute or self.DEFAULT_REQUESTS_PER_MINUTE
            limiter = RateLimiter(requests_per_second=rpm / 60.0)
            logger.info(f"Rate limiter for {conn.domain}: {rpm}/min")
            client = StashBoxClient(conn.endpoint, conn.api_key, rate_limiter=limiter)
            self._clients[conn.endpoint] = client
        return client


_manager: Optional[StashBoxConnectionManager] = None


async def init_connection_manager(stash: StashClient) -> StashBoxConnectionManager:
    """Create and load the process-wide manager. Called once at startup."""
    global _manager
    _manager = StashBoxConnectionManager(stash)
    await _manager.load()
    return _manager


def get_connection_manager() -> StashBoxConnectionManager:
    if _manager is None:
        raise RuntimeError(
            "StashBoxConnectionManager not initialized. "
            "Call init_connection_manager() during startup."
        )
    return _manager


def set_connection_manager(mgr: StashBoxConnectionManager):
    """Replace the process-wide manager (startup fallback and tests)."""
    global _manager
    _manager = mgr
