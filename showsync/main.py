"""Entry point for the FastAPI-powered sync service."""

from __future__ import annotations

import json
import logging
from collections import deque
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .config import settings
from .database import Database
from .errors import (
    AmbiguousMatch,
    DocumentNotFound,
    InvalidCredential,
    NoIdentityFound,
    NotFound,
    QuotaExceeded,
    SyncError,
    TransportError,
)
from .models import CanonicalMetadata, TitleIdentity
from .services.availability import AvailabilityAggregator
from .services.catalog_cache import CatalogCacheRepository
from .services.documents import FileAssetStore, SqlDocumentStore
from .services.jellyfin import JellyfinProvider
from .services.jobs import JobProgress, JobRegistry
from .services.rate_limit import QuotaMonitor, RateLimiter
from .services.streaming_availability import StreamingAvailabilityClient
from .services.sync import SyncService

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    catalog_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.streaming_api_url),
            timeout=httpx.Timeout(20.0, connect=10.0),
        )
    )
    media_server_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(timeout=httpx.Timeout(15.0, connect=5.0))
    )
    asset_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(timeout=httpx.Timeout(30.0, connect=10.0), follow_redirects=True)
    )
    database = Database(settings.database_url)
    await database.create_all()

    notices: deque[str] = fastapi_app.state.notices
    metadata_client = StreamingAvailabilityClient(
        settings,
        catalog_http,
        rate_limiter=RateLimiter(settings.max_requests_per_second),
        quota_monitor=QuotaMonitor(settings.rate_limit_warning_threshold),
        catalog_repository=CatalogCacheRepository(database.session_factory),
        on_notice=notices.append,
    )
    aggregator = AvailabilityAggregator(
        JellyfinProvider(media_server_http, cache_seconds=settings.jellyfin_cache_seconds)
    )
    sync_service = SyncService(
        settings,
        metadata_client,
        aggregator,
        SqlDocumentStore(database.session_factory),
        assets=FileAssetStore(settings.asset_root),
        asset_client=asset_http,
        on_notice=notices.append,
    )

    fastapi_app.state.sync_service = sync_service
    fastapi_app.state.database = database

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await fastapi_app.state.jobs.shutdown()
        metadata_client.clear_cache()
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Keeps media notes in sync with streaming availability",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_sync_service(app: FastAPI) -> SyncService:
    service = getattr(app.state, "sync_service", None)
    if not isinstance(service, SyncService):
        raise RuntimeError("Sync service not initialised")
    return service


def _error_status(exc: SyncError) -> int:
    if isinstance(exc, InvalidCredential):
        return 401
    if isinstance(exc, QuotaExceeded):
        return 429
    if isinstance(exc, (NotFound, DocumentNotFound, NoIdentityFound)):
        return 404
    if isinstance(exc, AmbiguousMatch):
        return 409
    if isinstance(exc, TransportError):
        return 503
    return 502


def _http_error(exc: SyncError) -> HTTPException:
    return HTTPException(status_code=_error_status(exc), detail=exc.message)


def _metadata_payload(metadata: CanonicalMetadata) -> dict[str, Any]:
    return metadata.model_dump(mode="json", exclude={"streaming_options"}) | {
        "streamingOptions": {
            country: [offer.model_dump(mode="json", exclude={"raw"}) for offer in offers]
            for country, offers in metadata.streaming_options.items()
        }
    }


def register_routes(fastapi_app: FastAPI) -> None:
    if not hasattr(fastapi_app.state, "jobs"):
        fastapi_app.state.jobs = JobRegistry()
    if not hasattr(fastapi_app.state, "notices"):
        fastapi_app.state.notices = deque(maxlen=50)

    def _jobs() -> JobRegistry:
        return fastapi_app.state.jobs

    def _identity(media_type: str, external_id: str) -> TitleIdentity:
        try:
            return TitleIdentity(external_id=external_id, media_type=media_type)
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail="Unsupported media type") from exc

    async def _json_body(request: Request) -> dict[str, Any]:
        try:
            payload = await request.json()
        except json.JSONDecodeError:
            payload = {}
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Invalid payload")
        return payload

    def _string_list(payload: dict[str, Any], key: str) -> list[str] | None:
        value = payload.get(key)
        if value is None:
            return None
        if not isinstance(value, list) or not all(isinstance(entry, str) for entry in value):
            raise HTTPException(status_code=400, detail=f"{key} must be a list of strings")
        return value

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/api/notices")
    async def notices_endpoint() -> dict[str, list[str]]:
        return {"notices": list(fastapi_app.state.notices)}

    @fastapi_app.get("/api/titles/{media_type}/{external_id}")
    async def title_endpoint(media_type: str, external_id: str) -> JSONResponse:
        service = get_sync_service(fastapi_app)
        identity = _identity(media_type, external_id)
        try:
            metadata = await service.metadata_client.lookup_by_id(identity)
        except SyncError as exc:
            raise _http_error(exc) from exc
        if metadata is None:
            raise _http_error(InvalidCredential())
        return JSONResponse(_metadata_payload(metadata))

    @fastapi_app.get("/api/search")
    async def search_endpoint(title: str) -> JSONResponse:
        service = get_sync_service(fastapi_app)
        try:
            results = await service.metadata_client.search_by_title(title, raise_errors=True)
        except SyncError as exc:
            raise _http_error(exc) from exc
        return JSONResponse({"results": [_metadata_payload(result) for result in results]})

    @fastapi_app.get("/api/countries/{country}/services")
    async def services_endpoint(country: str) -> JSONResponse:
        service = get_sync_service(fastapi_app)
        try:
            catalog = await service.metadata_client.get_provider_catalog(
                country, raise_errors=True
            )
        except SyncError as exc:
            raise _http_error(exc) from exc
        return JSONResponse(
            {"services": [entry.model_dump(mode="json") for entry in catalog]}
        )

    @fastapi_app.get("/api/availability/{media_type}/{external_id}")
    async def availability_endpoint(media_type: str, external_id: str) -> JSONResponse:
        service = get_sync_service(fastapi_app)
        identity = _identity(media_type, external_id)
        results = await service.aggregator.check_availability(
            identity, settings.jellyfin_instances
        )
        return JSONResponse(
            {"providers": [result.model_dump(mode="json") for result in results]}
        )

    @fastapi_app.get("/api/documents/{name}/preview")
    async def preview_endpoint(name: str) -> JSONResponse:
        service = get_sync_service(fastapi_app)
        try:
            preview = await service.preview(name)
        except AmbiguousMatch as exc:
            return JSONResponse(
                {
                    "detail": exc.message,
                    "candidates": [_metadata_payload(match) for match in exc.candidates],
                },
                status_code=409,
            )
        except SyncError as exc:
            raise _http_error(exc) from exc
        return JSONResponse(
            {
                "document": preview.document,
                "title": preview.metadata.title,
                "identity": preview.metadata.identity.model_dump(),
                "changes": [change.to_payload() for change in preview.changes],
            }
        )

    @fastapi_app.post("/api/documents/{name}/sync")
    async def sync_endpoint(name: str, request: Request) -> JSONResponse:
        service = get_sync_service(fastapi_app)
        payload = await _json_body(request)
        selected = _string_list(payload, "fields")
        try:
            outcome = await service.sync_document(name, selected_fields=selected)
        except SyncError as exc:
            raise _http_error(exc) from exc
        return JSONResponse(
            {
                "document": outcome.document,
                "renamedTo": outcome.renamed_to,
                "applied": outcome.applied,
                "posterPath": outcome.poster_path,
            }
        )

    @fastapi_app.post("/api/jobs")
    async def start_job_endpoint(request: Request) -> JSONResponse:
        service = get_sync_service(fastapi_app)
        payload = await _json_body(request)
        documents = _string_list(payload, "documents")
        wait_for_completion = bool(payload.get("waitForCompletion", False))

        async def _run(progress: JobProgress) -> None:
            await service.sync_many(documents, progress=progress, job=progress.job)

        progress = _jobs().start(_run)
        if wait_for_completion:
            await _jobs().wait(progress.job_id)
        return JSONResponse(progress.to_payload(), status_code=202)

    @fastapi_app.get("/api/jobs")
    async def list_jobs_endpoint() -> JSONResponse:
        return JSONResponse({"jobs": [job.to_payload() for job in _jobs().jobs()]})

    @fastapi_app.get("/api/jobs/{job_id}")
    async def job_status_endpoint(job_id: str) -> JSONResponse:
        progress = _jobs().get(job_id)
        if progress is None:
            raise HTTPException(status_code=404, detail="Job not found")
        return JSONResponse(progress.to_payload())

    @fastapi_app.post("/api/jobs/{job_id}/cancel")
    async def cancel_job_endpoint(job_id: str) -> JSONResponse:
        progress = _jobs().cancel(job_id)
        if progress is None:
            raise HTTPException(status_code=404, detail="Job not found")
        return JSONResponse(progress.to_payload())


app = create_app()
