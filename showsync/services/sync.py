"""Per-document synchronization pipeline."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Sequence

import httpx

from ..config import Settings
from ..errors import (
    AmbiguousMatch,
    InvalidCredential,
    NoIdentityFound,
    NotFound,
)
from ..models import CanonicalMetadata, StreamingService, SyncPreview, TitleIdentity
from ..utils import format_sync_timestamp
from .availability import AvailabilityAggregator
from .batch import BatchSynchronizer, ProgressReporter, SyncJob
from .documents import AssetStore, DocumentStore, RenameResult
from .reconciler import (
    FILE_NAME_FIELD,
    POSTER_FIELD,
    FieldPolicy,
    FieldReconciler,
    build_field_updates,
    is_field_approved,
)
from .streaming_availability import NoticeCallback, StreamingAvailabilityClient

logger = logging.getLogger(__name__)

LAST_SYNCED_FIELD = "Last Synced"


@dataclass(slots=True)
class SyncOutcome:
    """What a single document sync wrote."""

    document: str
    metadata: CanonicalMetadata
    applied: dict[str, Any] = field(default_factory=dict)
    renamed_to: str | None = None
    poster_path: str | None = None


class SyncService:
    """Coordinate lookup, availability, reconciliation and apply for documents."""

    def __init__(
        self,
        settings: Settings,
        metadata_client: StreamingAvailabilityClient,
        aggregator: AvailabilityAggregator,
        documents: DocumentStore,
        *,
        reconciler: FieldReconciler | None = None,
        assets: AssetStore | None = None,
        asset_client: httpx.AsyncClient | None = None,
        on_notice: NoticeCallback | None = None,
    ):
        self._settings = settings
        self._metadata = metadata_client
        self._aggregator = aggregator
        self._documents = documents
        self._reconciler = reconciler or FieldReconciler(settings)
        self._assets = assets
        self._asset_client = asset_client
        self._on_notice = on_notice
        self._batch = BatchSynchronizer()

    @property
    def documents(self) -> DocumentStore:
        return self._documents

    @property
    def metadata_client(self) -> StreamingAvailabilityClient:
        return self._metadata

    @property
    def aggregator(self) -> AvailabilityAggregator:
        return self._aggregator

    async def resolve_metadata(
        self,
        document: str,
        fields: Mapping[str, Any],
        *,
        allow_title_search: bool = True,
    ) -> CanonicalMetadata:
        """Find the canonical record for a document.

        A stored identity is looked up directly; when it is unknown upstream,
        or absent and ``allow_title_search`` is set, the document name is
        searched and accepted only if exactly one title matches.
        """

        if not self._metadata.validate_api_key():
            raise InvalidCredential()

        identity = TitleIdentity.from_fields(fields)
        if identity is not None:
            try:
                metadata = await self._metadata.lookup_by_id(identity)
            except NotFound:
                logger.info(
                    "%s is unknown upstream, searching for %s by title",
                    identity.api_path,
                    document,
                )
            else:
                if metadata is not None:
                    return metadata
        elif not allow_title_search:
            raise NoIdentityFound()

        results = await self._metadata.search_by_title(document, raise_errors=True)
        if not results:
            raise NotFound(f"No matching show found for {document}")
        if len(results) > 1:
            raise AmbiguousMatch(results)
        return results[0]

    async def preview(
        self,
        document: str,
        *,
        metadata: CanonicalMetadata | None = None,
        allow_title_search: bool = True,
    ) -> SyncPreview:
        """Compute the field changes a sync of ``document`` would make."""

        fields = await self._documents.read_fields(document)
        if metadata is None:
            metadata = await self.resolve_metadata(
                document, fields, allow_title_search=allow_title_search
            )
        availability = await self._aggregator.check_availability(
            metadata.identity, self._settings.jellyfin_instances
        )
        services = await self.services_to_sync()
        changes = self._reconciler.compute_changes(
            fields,
            metadata,
            availability,
            FieldPolicy.from_settings(self._settings, services),
            services=services,
            current_name=document,
        )
        return SyncPreview(
            document=document,
            metadata=metadata,
            availability=availability,
            changes=changes,
        )

    async def sync_document(
        self,
        document: str,
        *,
        selected_fields: Iterable[str] | None = None,
        metadata: CanonicalMetadata | None = None,
        allow_title_search: bool = True,
    ) -> SyncOutcome:
        """Apply the enabled (or human-selected) changes to ``document``."""

        preview = await self.preview(
            document, metadata=metadata, allow_title_search=allow_title_search
        )
        selected = list(selected_fields) if selected_fields is not None else None
        updates = build_field_updates(preview.changes, selected)
        outcome = SyncOutcome(document=document, metadata=preview.metadata)

        if POSTER_FIELD in updates and self._settings.poster_mode == "local":
            outcome.poster_path = await self._store_poster(preview.metadata)

        updates[LAST_SYNCED_FIELD] = format_sync_timestamp()
        await self._documents.apply_fields(document, updates)
        outcome.applied = updates

        if is_field_approved(preview.changes, FILE_NAME_FIELD, selected):
            new_name = self._reconciler.note_name(preview.metadata)
            result = await self._documents.rename(document, new_name)
            if result is RenameResult.ALREADY_EXISTS:
                self._notify(f"File already exists: {new_name}")
            else:
                outcome.renamed_to = new_name

        logger.info(
            "Synced %s with %s (%d fields)",
            document,
            preview.metadata.identity.api_path,
            len(updates),
        )
        return outcome

    async def sync_many(
        self,
        documents: Sequence[str] | None = None,
        *,
        progress: ProgressReporter | None = None,
        job: SyncJob[str] | None = None,
    ) -> SyncJob[str]:
        """Sync documents one after another, recording failures per document."""

        if not self._metadata.validate_api_key():
            raise InvalidCredential()
        if documents is None:
            documents = await self._documents.list_documents()

        async def _sync_one(document: str) -> None:
            await self.sync_document(document, allow_title_search=False)

        return await self._batch.run(list(documents), _sync_one, progress=progress, job=job)

    async def services_to_sync(self) -> list[StreamingService]:
        """Return the catalog entries of the configured streaming services."""

        wanted = self._settings.streaming_services
        if not wanted:
            return []
        catalog = await self._metadata.get_provider_catalog(
            self._settings.country, raise_errors=True
        )
        by_id = {service.id: service for service in catalog}
        services: list[StreamingService] = []
        for service_id in wanted:
            service = by_id.get(service_id)
            if service is None:
                logger.warning(
                    "Streaming service %s is not offered in %s",
                    service_id,
                    self._settings.country,
                )
                continue
            services.append(service)
        return services

    async def _store_poster(self, metadata: CanonicalMetadata) -> str | None:
        """Download the poster unless it is already stored.

        Failures are logged and ignored so a missing poster never blocks a sync.
        """

        if self._assets is None or self._asset_client is None:
            return None
        url = metadata.posters.get("w480")
        if not url:
            return None
        path = self._reconciler.poster_path(metadata)
        try:
            if await self._assets.exists(path):
                return path
            response = await self._asset_client.get(url)
            response.raise_for_status()
            await self._assets.write_binary(path, response.content)
        except (httpx.HTTPError, OSError, ValueError) as exc:
            logger.warning("Poster download for %s failed: %s", metadata.title, exc)
            return None
        return path

    def _notify(self, message: str) -> None:
        logger.warning(message)
        if self._on_notice is not None:
            self._on_notice(message)
