"""HTTP surface tests using stubbed services."""

from __future__ import annotations

from typing import Any, Iterable, Sequence

from fastapi import FastAPI
from fastapi.testclient import TestClient

from showsync.errors import (
    AmbiguousMatch,
    DocumentNotFound,
    NoIdentityFound,
    QuotaExceeded,
    TransportError,
)
from showsync.main import register_routes
from showsync.models import (
    CanonicalMetadata,
    FieldChange,
    JellyfinInstance,
    ProviderAvailabilityResult,
    StreamingService,
    SyncPreview,
    TitleIdentity,
)
from showsync.services.batch import BatchSynchronizer, ProgressReporter, SyncJob
from showsync.services.sync import SyncOutcome, SyncService


def make_metadata(title: str = "The Matrix", external_id: str = "603") -> CanonicalMetadata:
    return CanonicalMetadata(
        identity=TitleIdentity(external_id=external_id, media_type="movie"),
        title=title,
        release_year=1999,
    )


class DummyMetadataClient:
    def __init__(self) -> None:
        self.lookup_error: Exception | None = None
        self.lookup_result: CanonicalMetadata | None = make_metadata()
        self.search_results: list[CanonicalMetadata] = []
        self.catalog_error: Exception | None = None

    async def lookup_by_id(self, identity: TitleIdentity) -> CanonicalMetadata | None:
        if self.lookup_error is not None:
            raise self.lookup_error
        return self.lookup_result

    async def search_by_title(
        self, text: str, *, raise_errors: bool = False
    ) -> list[CanonicalMetadata]:
        return self.search_results

    async def get_provider_catalog(
        self, country: str | None = None, *, raise_errors: bool = False
    ) -> list[StreamingService]:
        if self.catalog_error is not None and raise_errors:
            raise self.catalog_error
        if country == "us":
            return [StreamingService(id="netflix", name="Netflix")]
        return []


class DummyAggregator:
    async def check_availability(
        self, identity: TitleIdentity, providers: Sequence[JellyfinInstance]
    ) -> list[ProviderAvailabilityResult]:
        return [ProviderAvailabilityResult(provider_name="Home", available=True, item_id="abc")]


class DummySyncService(SyncService):
    """Minimal SyncService stub for route testing."""

    def __init__(self) -> None:
        # Deliberately skip super().__init__ to avoid touching external systems.
        self._metadata = DummyMetadataClient()
        self._aggregator = DummyAggregator()
        self.preview_error: Exception | None = None
        self.synced: list[tuple[str, list[str] | None]] = []
        self.batch_documents: list[str] = ["a", "b", "c"]

    async def preview(self, document: str, **kwargs: Any) -> SyncPreview:  # type: ignore[override]
        if self.preview_error is not None:
            raise self.preview_error
        return SyncPreview(
            document=document,
            metadata=make_metadata(),
            availability=[],
            changes=[
                FieldChange(field="Year", old_value="(empty)", new_value="1999", value=1999),
                FieldChange(field="Cast", old_value="(empty)", new_value="Keanu", enabled=False),
            ],
        )

    async def sync_document(  # type: ignore[override]
        self,
        document: str,
        *,
        selected_fields: Iterable[str] | None = None,
        **kwargs: Any,
    ) -> SyncOutcome:
        if document == "missing":
            raise DocumentNotFound(f"Document not found: {document}")
        selected = list(selected_fields) if selected_fields is not None else None
        self.synced.append((document, selected))
        return SyncOutcome(
            document=document,
            metadata=make_metadata(),
            applied={"Year": 1999},
            renamed_to="The Matrix (1999)",
        )

    async def sync_many(  # type: ignore[override]
        self,
        documents: Sequence[str] | None = None,
        *,
        progress: ProgressReporter | None = None,
        job: SyncJob[str] | None = None,
    ) -> SyncJob[str]:
        async def _sync_one(document: str) -> None:
            if document == "b":
                raise NoIdentityFound()

        items = list(documents) if documents is not None else self.batch_documents
        return await BatchSynchronizer().run(items, _sync_one, progress=progress, job=job)


def build_app() -> tuple[FastAPI, DummySyncService]:
    app = FastAPI()
    register_routes(app)
    service = DummySyncService()
    app.state.sync_service = service
    return app, service


def test_healthcheck() -> None:
    app, _ = build_app()

    with TestClient(app) as client:
        response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_title_lookup() -> None:
    app, _ = build_app()

    with TestClient(app) as client:
        response = client.get("/api/titles/movie/603")

    assert response.status_code == 200
    payload = response.json()
    assert payload["title"] == "The Matrix"
    assert payload["identity"] == {"external_id": "603", "media_type": "movie"}


def test_title_lookup_maps_errors_to_status_codes() -> None:
    app, service = build_app()

    with TestClient(app) as client:
        service._metadata.lookup_error = QuotaExceeded()
        quota = client.get("/api/titles/movie/603")
        service._metadata.lookup_error = TransportError()
        transport = client.get("/api/titles/tv/1399")
        service._metadata.lookup_error = None
        service._metadata.lookup_result = None
        credential = client.get("/api/titles/movie/603")
        unsupported = client.get("/api/titles/podcast/1")

    assert quota.status_code == 429
    assert quota.json()["detail"].startswith("Number of API requests exceeded.")
    assert transport.status_code == 503
    assert credential.status_code == 401
    assert unsupported.status_code == 400


def test_search_and_services() -> None:
    app, service = build_app()
    service._metadata.search_results = [make_metadata(), make_metadata("The Matrix Reloaded", "604")]

    with TestClient(app) as client:
        search = client.get("/api/search", params={"title": "matrix"})
        services = client.get("/api/countries/us/services")
        empty = client.get("/api/countries/zz/services")

    assert [result["title"] for result in search.json()["results"]] == [
        "The Matrix",
        "The Matrix Reloaded",
    ]
    assert services.json()["services"][0]["id"] == "netflix"
    assert empty.json() == {"services": []}


def test_availability_endpoint() -> None:
    app, _ = build_app()

    with TestClient(app) as client:
        response = client.get("/api/availability/movie/603")

    assert response.status_code == 200
    assert response.json()["providers"][0]["provider_name"] == "Home"


def test_preview_lists_changes() -> None:
    app, _ = build_app()

    with TestClient(app) as client:
        response = client.get("/api/documents/matrix/preview")

    assert response.status_code == 200
    changes = response.json()["changes"]
    assert changes[0] == {
        "field": "Year",
        "oldValue": "(empty)",
        "newValue": "1999",
        "enabled": True,
        "isAssetField": False,
    }
    assert changes[1]["enabled"] is False


def test_ambiguous_preview_returns_candidates() -> None:
    app, service = build_app()
    service.preview_error = AmbiguousMatch([make_metadata(), make_metadata("Matrix II", "604")])

    with TestClient(app) as client:
        response = client.get("/api/documents/matrix/preview")

    assert response.status_code == 409
    assert [entry["title"] for entry in response.json()["candidates"]] == [
        "The Matrix",
        "Matrix II",
    ]


def test_sync_document_with_selected_fields() -> None:
    app, service = build_app()

    with TestClient(app) as client:
        response = client.post("/api/documents/matrix/sync", json={"fields": ["Year"]})
        default = client.post("/api/documents/matrix/sync")
        invalid = client.post("/api/documents/matrix/sync", json={"fields": "Year"})
        missing = client.post("/api/documents/missing/sync")

    assert response.status_code == 200
    assert response.json()["renamedTo"] == "The Matrix (1999)"
    assert service.synced == [("matrix", ["Year"]), ("matrix", None)]
    assert default.status_code == 200
    assert invalid.status_code == 400
    assert missing.status_code == 404


def test_batch_job_waits_for_completion() -> None:
    app, _ = build_app()

    with TestClient(app) as client:
        response = client.post("/api/jobs", json={"waitForCompletion": True})
        job_id = response.json()["jobId"]
        status = client.get(f"/api/jobs/{job_id}")
        listing = client.get("/api/jobs")

    assert response.status_code == 202
    payload = status.json()
    assert payload["state"] == "completed"
    assert payload["completed"] is True
    assert payload["percent"] == 100
    assert payload["successCount"] == 2
    assert payload["failureCount"] == 1
    assert payload["errors"] == [{"message": "No identity found", "count": 1, "items": ["b"]}]
    assert [job["jobId"] for job in listing.json()["jobs"]] == [job_id]


def test_batch_job_for_selected_documents() -> None:
    app, _ = build_app()

    with TestClient(app) as client:
        response = client.post(
            "/api/jobs", json={"documents": ["x", "y"], "waitForCompletion": True}
        )

    payload = response.json()
    assert payload["totalItems"] == 2
    assert payload["successCount"] == 2


def test_unknown_jobs_return_404() -> None:
    app, _ = build_app()

    with TestClient(app) as client:
        status = client.get("/api/jobs/unknown")
        cancel = client.post("/api/jobs/unknown/cancel")

    assert status.status_code == 404
    assert cancel.status_code == 404


def test_cancelling_a_finished_job_keeps_its_state() -> None:
    app, _ = build_app()

    with TestClient(app) as client:
        job_id = client.post("/api/jobs", json={"waitForCompletion": True}).json()["jobId"]
        response = client.post(f"/api/jobs/{job_id}/cancel")

    assert response.status_code == 200
    assert response.json()["cancelled"] is True
    assert response.json()["state"] == "completed"


def test_services_endpoint_surfaces_quota_errors() -> None:
    app, service = build_app()
    service._metadata.catalog_error = QuotaExceeded()

    with TestClient(app) as client:
        response = client.get("/api/countries/us/services")

    assert response.status_code == 429
    assert response.json()["detail"].startswith("Number of API requests exceeded.")
