from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
from sqlalchemy import create_engine, inspect

from showsync.database import Database
from showsync.errors import DocumentNotFound
from showsync.services.documents import FileAssetStore, RenameResult, SqlDocumentStore


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


def test_create_all_creates_tables(tmp_path) -> None:
    database_path = tmp_path / "showsync.db"

    database = Database(f"sqlite+aiosqlite:///{database_path}")
    asyncio.run(database.create_all())
    asyncio.run(database.dispose())

    inspector_engine = create_engine(f"sqlite:///{database_path}")
    try:
        inspector = inspect(inspector_engine)
        assert set(inspector.get_table_names()) >= {"catalog_cache", "documents"}
        columns = {column["name"] for column in inspector.get_columns("documents")}
        assert {"name", "fields", "created_at", "updated_at"} <= columns
    finally:
        inspector_engine.dispose()


@pytest.mark.anyio("asyncio")
async def test_document_store_round_trip(tmp_path) -> None:
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'docs.db'}")
    await database.create_all()
    store = SqlDocumentStore(database.session_factory)

    try:
        await store.create("matrix", {"Type": "movie", "Notes": "keep me"})
        await store.create("alien", {})
        await store.apply_fields("matrix", {"Year": 1999, "Type": "movie"})

        assert await store.list_documents() == ["alien", "matrix"]
        assert await store.read_fields("matrix") == {
            "Type": "movie",
            "Notes": "keep me",
            "Year": 1999,
        }

        assert await store.rename("matrix", "alien") is RenameResult.ALREADY_EXISTS
        assert await store.rename("matrix", "matrix") is RenameResult.OK
        assert await store.rename("matrix", "The Matrix (1999)") is RenameResult.OK
        assert await store.list_documents() == ["The Matrix (1999)", "alien"]

        with pytest.raises(DocumentNotFound):
            await store.read_fields("matrix")
        with pytest.raises(DocumentNotFound):
            await store.apply_fields("nope", {"Year": 1})
    finally:
        await database.dispose()


@pytest.mark.anyio("asyncio")
async def test_asset_store_writes_below_root(tmp_path: Path) -> None:
    store = FileAssetStore(tmp_path / "assets")

    assert await store.exists("posters/603.jpg") is False
    await store.write_binary("posters/603.jpg", b"jpeg")

    assert await store.exists("posters/603.jpg") is True
    assert (tmp_path / "assets" / "posters" / "603.jpg").read_bytes() == b"jpeg"

    with pytest.raises(ValueError):
        await store.write_binary("../escape.jpg", b"nope")


def test_missing_database_directory_is_created(tmp_path) -> None:
    database_path = tmp_path / "nested" / "data" / "showsync.db"

    database = Database(f"sqlite+aiosqlite:///{database_path}")
    asyncio.run(database.create_all())
    asyncio.run(database.dispose())

    assert database_path.exists()
