"""Client for the Streaming Availability catalog API."""

from __future__ import annotations

import logging
import time
from datetime import timedelta
from typing import Any, Callable

import httpx
from pydantic import ValidationError

from ..cache import CacheStore
from ..config import Settings
from ..errors import (
    InvalidCredential,
    NotFound,
    QuotaExceeded,
    SyncError,
    TransportError,
    UpstreamServerError,
)
from ..models import CanonicalMetadata, CountryCatalog, StreamingService, TitleIdentity
from ..utils import normalize_search_text
from .catalog_cache import CatalogCacheRepository
from .rate_limit import QuotaMonitor, RateLimiter

logger = logging.getLogger(__name__)

NoticeCallback = Callable[[str], None]

API_KEY_LENGTH = 50
COUNTRIES_CACHE_KEY = "countries"


class StreamingAvailabilityClient:
    """Caching, rate-limited wrapper around the catalog endpoints.

    Session caches for lookups and searches live as long as the client; the
    country catalog is kept for ``catalog_cache_days`` and persisted through
    the optional repository.
    """

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        *,
        rate_limiter: RateLimiter | None = None,
        quota_monitor: QuotaMonitor | None = None,
        catalog_repository: CatalogCacheRepository | None = None,
        on_notice: NoticeCallback | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._settings = settings
        self._client = http_client
        self._rate_limiter = rate_limiter or RateLimiter(settings.max_requests_per_second)
        self._quota_monitor = quota_monitor or QuotaMonitor(
            settings.rate_limit_warning_threshold
        )
        self._catalog_repository = catalog_repository
        self._on_notice = on_notice
        self._catalog_max_age = timedelta(days=settings.catalog_cache_days)
        self._show_cache: CacheStore[CanonicalMetadata] = CacheStore()
        self._search_cache: CacheStore[list[CanonicalMetadata]] = CacheStore()
        self._catalog_cache: CacheStore[dict[str, CountryCatalog]] = CacheStore(
            self._catalog_max_age.total_seconds(), clock=clock
        )

    def _headers(self) -> dict[str, str]:
        return {
            "X-RapidAPI-Key": self._settings.streaming_api_key,
            "X-RapidAPI-Host": self._settings.streaming_api_host_header,
            "User-Agent": f"{self._settings.app_name} (showsync)",
        }

    def validate_api_key(self) -> bool:
        """Check the credential shape; publish a notice when it is unusable."""

        if len(self._settings.streaming_api_key or "") != API_KEY_LENGTH:
            self._publish(InvalidCredential())
            return False
        return True

    def clear_cache(self) -> None:
        """Drop the session caches (lookups, searches and the in-memory catalog)."""

        self._show_cache.clear()
        self._search_cache.clear()
        self._catalog_cache.clear()

    async def lookup_by_id(self, identity: TitleIdentity) -> CanonicalMetadata | None:
        """Return metadata for ``identity``.

        Returns ``None`` without a request when the credential is invalid and
        raises the classified :class:`SyncError` for upstream failures.
        """

        if not self.validate_api_key():
            return None

        cache_key = f"show:{identity.api_path}"
        cached = self._show_cache.get(cache_key)
        if cached is not None:
            return cached

        payload = await self._request(
            f"/shows/{identity.api_path}", params={"series_granularity": "show"}
        )
        data = self._unwrap(payload)
        if not isinstance(data, dict):
            raise TransportError("Unexpected catalog response structure")
        try:
            metadata = CanonicalMetadata.from_api(data)
        except (ValidationError, TypeError, ValueError) as exc:
            raise TransportError(f"Could not parse show {identity.api_path}") from exc

        self._show_cache.set(cache_key, metadata)
        return metadata

    async def search_by_title(
        self, text: str, *, raise_errors: bool = False
    ) -> list[CanonicalMetadata]:
        """Search the configured country's catalog by title.

        Classified failures are published and yield ``[]`` unless
        ``raise_errors`` is set.
        """

        if not self.validate_api_key():
            if raise_errors:
                raise InvalidCredential()
            return []

        normalized = normalize_search_text(text)
        if not normalized:
            return []
        cache_key = f"search:{self._settings.country}:{normalized}"
        cached = self._search_cache.get(cache_key)
        if cached is not None:
            return list(cached)

        try:
            payload = await self._request(
                "/shows/search/title",
                params={
                    "country": self._settings.country,
                    "title": text.strip(),
                    "series_granularity": "show",
                },
            )
        except SyncError as exc:
            if raise_errors:
                raise
            self._publish(exc)
            return []

        data = self._unwrap(payload)
        if not isinstance(data, list):
            error = TransportError("Unexpected search response structure")
            if raise_errors:
                raise error
            self._publish(error)
            return []

        results: list[CanonicalMetadata] = []
        for entry in data:
            if not isinstance(entry, dict):
                continue
            try:
                results.append(CanonicalMetadata.from_api(entry))
            except (ValidationError, TypeError, ValueError):
                logger.debug("Skipping unparseable search result for %s", text)

        self._search_cache.set(cache_key, results)
        return list(results)

    async def get_countries(self, *, raise_errors: bool = False) -> dict[str, CountryCatalog]:
        """Return every country's provider catalog, refreshing when stale.

        Classified failures are published and yield ``{}`` unless
        ``raise_errors`` is set.
        """

        cached = self._catalog_cache.get(COUNTRIES_CACHE_KEY)
        if cached is not None:
            return cached

        if self._catalog_repository is not None:
            stored = await self._catalog_repository.load(
                COUNTRIES_CACHE_KEY, max_age=self._catalog_max_age
            )
            if stored is not None:
                countries = self._parse_countries(stored.payload)
                self._catalog_cache.set(
                    COUNTRIES_CACHE_KEY, countries, age=stored.age.total_seconds()
                )
                return countries

        if not self.validate_api_key():
            if raise_errors:
                raise InvalidCredential()
            return {}

        try:
            payload = await self._request("/countries")
            data = self._unwrap(payload)
            if not isinstance(data, dict):
                raise TransportError("Unexpected countries response structure")
        except SyncError as exc:
            if raise_errors:
                raise
            self._publish(exc)
            return {}

        countries = self._parse_countries(data)
        if self._catalog_repository is not None:
            await self._catalog_repository.save(COUNTRIES_CACHE_KEY, data)
        self._catalog_cache.set(COUNTRIES_CACHE_KEY, countries)
        logger.info("Refreshed provider catalog for %d countries", len(countries))
        return countries

    async def get_provider_catalog(
        self, country: str | None = None, *, raise_errors: bool = False
    ) -> list[StreamingService]:
        """Return the streaming services offered in ``country``."""

        code = (country or self._settings.country).lower()
        countries = await self.get_countries(raise_errors=raise_errors)
        catalog = countries.get(code)
        if catalog is None:
            return []
        return list(catalog.services)

    async def _request(self, path: str, *, params: dict[str, Any] | None = None) -> Any:
        await self._rate_limiter.admission()
        try:
            response = await self._client.get(path, params=params, headers=self._headers())
        except httpx.HTTPError as exc:
            logger.warning("Catalog request %s failed: %s", path, exc)
            raise TransportError() from exc

        status = self._quota_monitor.observe(response.headers)
        if status is not None:
            self._notify(status.message)

        if not response.is_success:
            raise self._classify(response)

        try:
            return response.json()
        except ValueError as exc:
            raise TransportError(f"Unexpected non-JSON response for {path}") from exc

    @staticmethod
    def _classify(response: httpx.Response) -> SyncError:
        code = response.status_code
        message: str | None = None
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and isinstance(body.get("message"), str):
            message = body["message"]

        if code == 429:
            return QuotaExceeded(message, status_code=code)
        if code == 404:
            return NotFound(message, status_code=code)
        if code in (401, 403):
            return InvalidCredential(message, status_code=code)
        logger.warning("Catalog API returned %s: %s", code, response.text)
        return UpstreamServerError(status_code=code)

    @staticmethod
    def _unwrap(payload: Any) -> Any:
        if isinstance(payload, dict) and "result" in payload:
            return payload["result"]
        return payload

    @staticmethod
    def _parse_countries(data: dict[str, Any]) -> dict[str, CountryCatalog]:
        countries: dict[str, CountryCatalog] = {}
        for code, entry in data.items():
            if not isinstance(entry, dict):
                continue
            try:
                catalog = CountryCatalog.from_api(str(code), entry)
            except ValidationError:
                logger.debug("Skipping malformed catalog entry for %s", code)
                continue
            countries[catalog.country_code] = catalog
        return countries

    def _publish(self, error: SyncError) -> None:
        logger.warning("%s: %s", error.__class__.__name__, error.message)
        self._notify(error.message)

    def _notify(self, message: str) -> None:
        if self._on_notice is not None:
            self._on_notice(message)
