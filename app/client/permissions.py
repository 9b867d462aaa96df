"""
Client-side cache of the caller's permissions in one organization.

Mirrors what a frontend keeps in memory to show or hide controls. It is a
convenience only: the server checks every privileged request again.
"""
from typing import FrozenSet, Optional

import httpx

from app.utils import get_logger


log = get_logger(__name__)

ORGANIZATION_HEADER = "X-Organization-Id"
MY_PERMISSIONS_PATH = "/organizations/my-permissions"


class PermissionCache:
    """
    Permission set of the active organization, fetched once and reused.

    Usage:
        async with httpx.AsyncClient(base_url=API_URL, headers=auth) as http:
            cache = PermissionCache(http)
            await cache.load(org_id)
            if cache.has_permission("members.invite"):
                ...

    Any failure to fetch leaves the cache empty, so every check answers False.
    """

    def __init__(self, client: httpx.AsyncClient):
        self._client = client
        self._organization_id: Optional[str] = None
        self._permissions: FrozenSet[str] = frozenset()
        self._loaded = False
        # Bumped on every switch so a slow response for an old org is dropped
        self._generation = 0

    @property
    def organization_id(self) -> Optional[str]:
        return self._organization_id

    @property
    def permissions(self) -> FrozenSet[str]:
        return self._permissions

    @property
    def loaded(self) -> bool:
        return self._loaded

    async def load(self, organization_id: str) -> FrozenSet[str]:
        """
        Fetch the permission set for an organization.

        Reuses the cached set when it already belongs to that organization.
        A failed fetch leaves the cache empty and unloaded so the next call
        retries.
        """
        if self._loaded and organization_id == self._organization_id:
            return self._permissions

        self._generation += 1
        generation = self._generation
        self._organization_id = organization_id
        self._permissions = frozenset()
        self._loaded = False

        permissions = await self._fetch(organization_id)

        if generation != self._generation:
            log.debug("Dropping permissions for %s; organization switched meanwhile", organization_id)
            return self._permissions

        if permissions is None:
            return self._permissions

        self._permissions = permissions
        self._loaded = True
        return self._permissions

    def has_permission(self, key: str) -> bool:
        """True only if the loaded set contains the key."""
        return self._loaded and key in self._permissions

    async def switch_organization(self, organization_id: str) -> FrozenSet[str]:
        """Drop the current set and load the one for another organization."""
        self.invalidate()
        return await self.load(organization_id)

    def invalidate(self) -> None:
        """Forget the cached set; checks answer False until the next load."""
        self._generation += 1
        self._permissions = frozenset()
        self._loaded = False

    async def _fetch(self, organization_id: str) -> Optional[FrozenSet[str]]:
        try:
            response = await self._client.get(
                MY_PERMISSIONS_PATH,
                headers={ORGANIZATION_HEADER: organization_id},
            )
            response.raise_for_status()
            return frozenset(str(key) for key in response.json().get("permissions", []))
        except httpx.HTTPStatusError as exc:
            log.warning(
                "Permission fetch for %s failed with status %s",
                organization_id, exc.response.status_code
            )
        except (httpx.HTTPError, ValueError, AttributeError) as exc:
            log.warning("Permission fetch for %s failed: %s", organization_id, exc)
        return None
