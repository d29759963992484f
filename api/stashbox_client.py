"""
Stash-Box GraphQL Client

Client for the stash-box endpoints (StashDB, FansDB, etc.) the tagger searches
against. This is separate from StashClient which only talks to local Stash.

Each client takes the per-endpoint RateLimiter created by the
StashBoxConnectionManager from Stash's max_requests_per_minute config.
"""

import httpx
import logging
from typing import Optional

from rate_limiter import RateLimiter, Priority

logger = logging.getLogger(__name__)

# Everything the tagger needs to create performers from a search result
PERFORMER_FIELDS = """
    id
    name
    disambiguation
    aliases
    gender
    merged_ids
    urls { url type }
    images { id url width height }
    birthdate { date accuracy }
    ethnicity
    country
    eye_color
    hair_color
    height
    measurements { band_size cup_size waist hip }
    breast_type
    career_start_year
    career_end_year
    tattoos { location description }
    piercings { location description }
"""

# Fragment shared by text and fingerprint search
SCENE_FIELDS = f"""
    id
    title
    details
    duration
    date
    urls {{ url type }}
    images {{ id url width height }}
    studio {{
        id
        name
        urls {{ url type }}
        images {{ id url width height }}
    }}
    tags {{ id name }}
    performers {{
        as
        performer {{
            {PERFORMER_FIELDS}
        }}
    }}
    fingerprints {{ hash algorithm duration }}
"""


class StashBoxClient:
    """
    Client for querying stash-box GraphQL endpoints.

    Supports StashDB, FansDB, and other stash-box compatible servers.
    """

    def __init__(
        self,
        endpoint: str,
        api_key: str = "",
        rate_limiter: Optional[RateLimiter] = None,
        timeout: float = 30.0,
    ):
        """
        Initialize the stash-box client.

        Args:
            endpoint: The GraphQL URL (e.g. "https://stashdb.org/graphql")
            api_key: API key for authentication (optional)
            rate_limiter: Per-endpoint rate limiter. If None, requests are
                not rate limited.
            timeout: HTTP timeout in seconds
        """
        self.endpoint = endpoint
        self.timeout = timeout
        self._rate_limiter = rate_limiter
        self.headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if api_key:
            self.headers["ApiKey"] = api_key

    async def _execute(
        self,
        query: str,
        variables: dict | None = None,
        priority: Priority = Priority.HIGH,
    ) -> dict:
        """
        Execute a GraphQL query against the stash-box endpoint.

        Returns:
            The 'data' portion of the GraphQL response.

        Raises:
            RuntimeError: If the GraphQL response contains errors.
            httpx.HTTPStatusError: If the HTTP request fails.
        """
        payload = {"query": query}
        if variables:
            payload["variables"] = variables

        if self._rate_limiter is None:
            return await self._do_request(payload)
        async with self._rate_limiter.acquire(priority):
            return await self._do_request(payload)

    async def _do_request(self, payload: dict) -> dict:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                self.endpoint,
                json=payload,
                headers=self.headers,
            )
            response.raise_for_status()

            try:
                result = response.json()
            except ValueError as e:
                raise RuntimeError(
                    f"Invalid response from {self.endpoint}: {response.text[:200]!r}"
                ) from e
            if not isinstance(result, dict):
                raise RuntimeError(f"Unexpected response from {self.endpoint}: {result!r}")
            if result.get("errors"):
                raise RuntimeError(f"GraphQL error: {result['errors']}")
            if result.get("data") is None:
                raise RuntimeError(f"No data in response from {self.endpoint}")

            return result["data"]

    async def search_scene(self, term: str) -> list[dict]:
        """
        Free-text scene search.

        stash-box matches the term against title, date, studio and performer
        names and only returns scenes where every term matches.

        Returns:
            Scene dicts in the order the endpoint ranked them.
        """
        query = f"""
        query SearchScene($term: String!) {{
            searchScene(term: $term) {{
                {SCENE_FIELDS}
            }}
        }}
        """
        data = await self._execute(query, variables={"term": term})
        return data.get("searchScene") or []

    async def find_scene_by_fingerprint(self, hash: str, algorithm: str) -> list[dict]:
        """
        Look up scenes carrying a fingerprint.

        Args:
            hash: The fingerprint value
            algorithm: MD5, OSHASH or PHASH

        Returns:
            Matching scene dicts (usually zero or one).
        """
        query = f"""
        query FindSceneByFingerprint($fingerprint: FingerprintQueryInput!) {{
            findSceneByFingerprint(fingerprint: $fingerprint) {{
                {SCENE_FIELDS}
            }}
        }}
        """
        variables = {"fingerprint": {"hash": hash, "algorithm": algorithm}}
        data = await self._execute(query, variables=variables)
        return data.get("findSceneByFingerprint") or []

    async def submit_fingerprint(
        self, scene_id: str, hash: str, algorithm: str, duration: int
    ) -> bool:
        """
        Submit a local file's fingerprint for a stash-box scene.

        Returns:
            True if the endpoint accepted the submission.
        """
        query = """
        mutation SubmitFingerprint($input: FingerprintSubmission!) {
            submitFingerprint(input: $input)
        }
        """
        variables = {
            "input": {
                "scene_id": scene_id,
                "fingerprint": {
                    "hash": hash,
                    "algorithm": algorithm,
                    "duration": duration,
                },
            }
        }
        data = await self._execute(query, variables=variables, priority=Priority.LOW)
        return bool(data.get("submitFingerprint"))
