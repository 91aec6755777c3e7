"""Availability lookups against self-hosted Jellyfin servers."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

import httpx

from ..cache import CacheStore
from ..errors import ProviderDegraded
from ..models import JellyfinInstance, ProviderAvailabilityResult, TitleIdentity

logger = logging.getLogger(__name__)


class JellyfinProvider:
    """Resolve titles inside a Jellyfin library by their TMDB id."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        cache_seconds: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._client = http_client
        self._library_cache: CacheStore[list[dict[str, Any]]] = CacheStore(
            cache_seconds, clock=clock
        )

    def clear_cache(self) -> None:
        self._library_cache.clear()

    async def check(
        self, instance: JellyfinInstance, identity: TitleIdentity
    ) -> ProviderAvailabilityResult:
        """Return whether ``identity`` exists in the instance's library.

        Raises :class:`ProviderDegraded` when the library cannot be listed.
        """

        base_url = instance.url.strip().rstrip("/")
        item_type = "Movie" if identity.media_type == "movie" else "Series"
        items = await self._library_items(instance, base_url, item_type)

        match = next(
            (item for item in items if self._tmdb_id(item) == identity.external_id),
            None,
        )
        if match is None or not match.get("Id"):
            return ProviderAvailabilityResult(provider_name=instance.name, available=False)

        item_id = str(match["Id"])
        watched = False
        if instance.user_id:
            watched = await self._watched(instance, base_url, item_id)
        return ProviderAvailabilityResult(
            provider_name=instance.name,
            available=True,
            item_id=item_id,
            watched=watched,
        )

    async def _library_items(
        self, instance: JellyfinInstance, base_url: str, item_type: str
    ) -> list[dict[str, Any]]:
        cache_key = f"{base_url}:{item_type}"
        cached = self._library_cache.get(cache_key)
        if cached is not None:
            return cached

        try:
            response = await self._client.get(
                f"{base_url}/Items",
                params={
                    "Recursive": "true",
                    "IncludeItemTypes": item_type,
                    "Fields": "ProviderIds",
                },
                headers=self._headers(instance),
            )
        except httpx.HTTPError as exc:
            raise ProviderDegraded(f"{instance.name} is unreachable: {exc}") from exc

        if response.status_code != 200:
            raise ProviderDegraded(
                f"{instance.name} returned {response.status_code}",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderDegraded(f"{instance.name} returned invalid JSON") from exc

        raw_items = payload.get("Items") if isinstance(payload, dict) else None
        items = [item for item in raw_items or [] if isinstance(item, dict)]
        self._library_cache.set(cache_key, items)
        return items

    async def _watched(self, instance: JellyfinInstance, base_url: str, item_id: str) -> bool:
        url = f"{base_url}/Users/{instance.user_id}/Items/{item_id}"
        try:
            response = await self._client.get(url, headers=self._headers(instance))
        except httpx.HTTPError as exc:
            logger.info("Watch state lookup on %s failed: %s", instance.name, exc)
            return False
        if response.status_code != 200:
            return False
        try:
            payload = response.json()
        except ValueError:
            return False
        user_data = payload.get("UserData") if isinstance(payload, dict) else None
        return bool((user_data or {}).get("Played", False))

    @staticmethod
    def _headers(instance: JellyfinInstance) -> dict[str, str]:
        return {"X-Emby-Token": instance.api_key}

    @staticmethod
    def _tmdb_id(item: dict[str, Any]) -> str | None:
        provider_ids = item.get("ProviderIds") or {}
        if not isinstance(provider_ids, dict):
            return None
        for key, value in provider_ids.items():
            if str(key).lower() == "tmdb" and value:
                return str(value)
        return None
