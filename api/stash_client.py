"""
Local Stash GraphQL Client

Repository interface the tagger uses to read and write the local library:
find-by-stash-id lookups, list-all caches, and create/update mutations for
scenes, studios, performers and tags.

All requests go through a rate limiter so a save never floods Stash.
"""

import httpx
from typing import Optional

from rate_limiter import RateLimiter, Priority

SCENE_FIELDS = """
    id
    title
    details
    date
    urls
    organized
    files {
        path
        duration
        fingerprints {
            type
            value
        }
    }
    studio {
        id
        name
    }
    performers {
        id
        name
    }
    tags {
        id
        name
    }
    stash_ids {
        endpoint
        stash_id
    }
"""

# Fields returned by find-by-stash-id and find-by-id lookups
_ENTITY_FIELDS = {
    "studio": """
        id
        name
        aliases
        stash_ids { endpoint stash_id }
    """,
    "performer": """
        id
        name
        disambiguation
        alias_list
        stash_ids { endpoint stash_id }
    """,
    "tag": """
        id
        name
        aliases
        stash_ids { endpoint stash_id }
    """,
}

_FIND_MANY = {
    "studio": ("findStudios", "studios", "studio_filter", "StudioFilterType"),
    "performer": ("findPerformers", "performers", "performer_filter", "PerformerFilterType"),
    "tag": ("findTags", "tags", "tag_filter", "TagFilterType"),
}


class StashClient:
    """
    Client for the local Stash GraphQL API.

    Provides every query and mutation the tagger needs.
    """

    def __init__(
        self,
        url: str,
        api_key: str = "",
        rate_limiter: Optional[RateLimiter] = None,
        timeout: float = 60.0,
    ):
        self.base_url = url.rstrip("/")
        self.graphql_url = f"{self.base_url}/graphql"
        self.api_key = api_key
        self.timeout = timeout
        self._rate_limiter = rate_limiter
        self.headers = {
            "Content-Type": "application/json",
        }
        if api_key:
            self.headers["ApiKey"] = api_key

    async def _execute(
        self,
        query: str,
        variables: dict | None = None,
        priority: Priority = Priority.NORMAL,
    ) -> dict:
        """
        Execute a GraphQL query asynchronously.

        Raises:
            RuntimeError: on a non-2xx response or GraphQL errors.
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
            response = await client.post(self.graphql_url, json=payload, headers=self.headers)

            if not response.is_success:
                # Include response body in error for debugging
                try:
                    body = response.json()
                except ValueError:
                    body = response.text
                raise RuntimeError(
                    f"Stash API error (HTTP {response.status_code}): {body}"
                )

            try:
                result = response.json()
            except ValueError as e:
                raise RuntimeError(f"Stash returned a non-JSON response: {response.text[:200]!r}") from e
            if not isinstance(result, dict):
                raise RuntimeError(f"Unexpected Stash response: {result!r}")
            if result.get("errors"):
                raise RuntimeError(f"GraphQL error: {result['errors']}")
            if result.get("data") is None:
                raise RuntimeError("Stash response has no data")

            return result["data"]

    # ==================== Connection ====================

    async def test_connection(self) -> bool:
        """Test connection to Stash. Returns True if successful."""
        query = "query { systemStatus { databaseSchema databasePath } }"
        await self._execute(query, priority=Priority.CRITICAL)
        return True

    async def get_stashbox_connections(self) -> list[dict]:
        """Get configured stash-box connections."""
        query = """
        query StashBoxConnections {
          configuration {
            general {
              stashBoxes {
                endpoint
                api_key
                name
                max_requests_per_minute
              }
            }
          }
        }
        """
        data = await self._execute(query)
        return data["configuration"]["general"]["stashBoxes"]

    # ==================== Scenes ====================

    async def find_scenes(
        self, query: str = "", page: int = 1, per_page: int = 20
    ) -> tuple[list[dict], int]:
        """
        Page through local scenes, optionally filtered by a search term.
        Returns (scenes, total_count).
        """
        gql = f"""
        query FindScenes($filter: FindFilterType) {{
          findScenes(filter: $filter) {{
            count
            scenes {{
              {SCENE_FIELDS}
            }}
          }}
        }}
        """
        filter_input: dict = {"page": page, "per_page": per_page, "sort": "path", "direction": "ASC"}
        if query:
            filter_input["q"] = query
        data = await self._execute(gql, {"filter": filter_input}, priority=Priority.HIGH)
        return data["findScenes"]["scenes"], data["findScenes"]["count"]

    async def find_scene(self, scene_id: str) -> Optional[dict]:
        """Get a scene by ID."""
        gql = f"""
        query FindScene($id: ID!) {{
          findScene(id: $id) {{
            {SCENE_FIELDS}
          }}
        }}
        """
        data = await self._execute(gql, {"id": scene_id}, priority=Priority.HIGH)
        return data.get("findScene")

    async def find_scene_by_stash_id(self, endpoint: str, stash_id: str) -> Optional[dict]:
        """Find the local scene already linked to a stash-box scene."""
        gql = f"""
        query FindScenesByStashID($scene_filter: SceneFilterType) {{
          findScenes(scene_filter: $scene_filter) {{
            scenes {{
              {SCENE_FIELDS}
            }}
          }}
        }}
        """
        variables = {
            "scene_filter": {
                "stash_id_endpoint": {
                    "endpoint": endpoint,
                    "stash_id": stash_id,
                    "modifier": "EQUALS",
                }
            }
        }
        data = await self._execute(gql, variables, priority=Priority.HIGH)
        scenes = data["findScenes"]["scenes"]
        return scenes[0] if scenes else None

    async def update_scene(self, scene_id: str, **fields) -> dict:
        """Generic scene update via SceneUpdateInput mutation."""
        query = f"""
        mutation SceneUpdate($input: SceneUpdateInput!) {{
          sceneUpdate(input: $input) {{
            {SCENE_FIELDS}
          }}
        }}
        """
        input_dict = {"id": scene_id, **fields}
        data = await self._execute(query, {"input": input_dict}, priority=Priority.CRITICAL)
        return data["sceneUpdate"]

    # ==================== Studios / Performers / Tags ====================

    async def _find_by_stash_id(self, kind: str, endpoint: str, stash_id: str) -> Optional[dict]:
        operation, key, filter_name, filter_type = _FIND_MANY[kind]
        query = f"""
        query Find{key.title()}ByStashID(${filter_name}: {filter_type}) {{
          {operation}({filter_name}: ${filter_name}) {{
            {key} {{
              {_ENTITY_FIELDS[kind]}
            }}
          }}
        }}
        """
        variables = {
            filter_name: {
                "stash_id_endpoint": {
                    "endpoint": endpoint,
                    "stash_id": stash_id,
                    "modifier": "EQUALS",
                }
            }
        }
        data = await self._execute(query, variables, priority=Priority.HIGH)
        results = data[operation][key]
        return results[0] if results else None

    async def _find_by_id(self, kind: str, entity_id: str) -> Optional[dict]:
        operation = f"find{kind.title()}"
        query = f"""
        query {operation.title()}($id: ID!) {{
          {operation}(id: $id) {{
            {_ENTITY_FIELDS[kind]}
          }}
        }}
        """
        data = await self._execute(query, {"id": entity_id}, priority=Priority.HIGH)
        return data.get(operation)

    async def find_studio_by_stash_id(self, endpoint: str, stash_id: str) -> Optional[dict]:
        return await self._find_by_stash_id("studio", endpoint, stash_id)

    async def find_performer_by_stash_id(self, endpoint: str, stash_id: str) -> Optional[dict]:
        return await self._find_by_stash_id("performer", endpoint, stash_id)

    async def find_tag_by_stash_id(self, endpoint: str, stash_id: str) -> Optional[dict]:
        return await self._find_by_stash_id("tag", endpoint, stash_id)

    async def find_studio(self, studio_id: str) -> Optional[dict]:
        return await self._find_by_id("studio", studio_id)

    async def find_performer(self, performer_id: str) -> Optional[dict]:
        return await self._find_by_id("performer", performer_id)

    async def find_tag(self, tag_id: str) -> Optional[dict]:
        return await self._find_by_id("tag", tag_id)

    async def get_all_studios(self) -> list[dict]:
        """Fetch all studios with aliases."""
        query = """
        query AllStudios {
          findStudios(filter: { per_page: -1 }) {
            studios {
              id
              name
              aliases
            }
          }
        }
        """
        data = await self._execute(query)
        return data["findStudios"]["studios"]

    async def get_all_performers(self) -> list[dict]:
        """Fetch all performers with aliases and disambiguation."""
        query = """
        query AllPerformers {
          findPerformers(filter: { per_page: -1 }) {
            performers {
              id
              name
              disambiguation
              alias_list
            }
          }
        }
        """
        data = await self._execute(query)
        return data["findPerformers"]["performers"]

    async def get_all_tags(self) -> list[dict]:
        """Fetch all tags with aliases."""
        query = """
        query AllTags {
          findTags(filter: { per_page: -1 }) {
            tags {
              id
              name
              aliases
            }
          }
        }
        """
        data = await self._execute(query)
        return data["findTags"]["tags"]

    async def create_studio(self, **fields) -> dict:
        """Create a new studio in Stash."""
        query = """
        mutation StudioCreate($input: StudioCreateInput!) {
          studioCreate(input: $input) {
            id
            name
          }
        }
        """
        data = await self._execute(query, {"input": fields}, priority=Priority.CRITICAL)
        return data["studioCreate"]

    async def create_performer(self, **fields) -> dict:
        """Create a new performer in Stash."""
        query = """
        mutation PerformerCreate($input: PerformerCreateInput!) {
          performerCreate(input: $input) {
            id
            name
          }
        }
        """
        data = await self._execute(query, {"input": fields}, priority=Priority.CRITICAL)
        return data["performerCreate"]

    async def create_tag(self, **fields) -> dict:
        """Create a new tag in Stash."""
        query = """
        mutation TagCreate($input: TagCreateInput!) {
          tagCreate(input: $input) {
            id
            name
          }
        }
        """
        data = await self._execute(query, {"input": fields}, priority=Priority.CRITICAL)
        return data["tagCreate"]

    async def update_studio(self, studio_id: str, **fields) -> dict:
        """Generic studio update via StudioUpdateInput mutation."""
        query = """
        mutation StudioUpdate($input: StudioUpdateInput!) {
          studioUpdate(input: $input) {
            id
          }
        }
        """
        input_dict = {"id": studio_id, **fields}
        data = await self._execute(query, {"input": input_dict}, priority=Priority.CRITICAL)
        return data["studioUpdate"]

    async def update_performer(self, performer_id: str, **fields) -> dict:
        """Generic performer update via PerformerUpdateInput mutation."""
        query = """
        mutation PerformerUpdate($input: PerformerUpdateInput!) {
          performerUpdate(input: $input) {
            id
          }
        }
        """
        input_dict = {"id": performer_id, **fields}
        data = await self._execute(query, {"input": input_dict}, priority=Priority.CRITICAL)
        return data["performerUpdate"]

    async def update_tag(self, tag_id: str, **fields) -> dict:
        """Generic tag update via TagUpdateInput mutation."""
        query = """
        mutation TagUpdate($input: TagUpdateInput!) {
          tagUpdate(input: $input) {
            id
          }
        }
        """
        input_dict = {"id": tag_id, **fields}
        data = await self._execute(query, {"input": input_dict}, priority=Priority.CRITICAL)
        return data["tagUpdate"]
