"""Document and asset stores the engine writes into."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Protocol

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import DocumentRecord
from ..errors import DocumentNotFound

logger = logging.getLogger(__name__)


class RenameResult(str, Enum):
    OK = "ok"
    ALREADY_EXISTS = "already_exists"


class DocumentStore(Protocol):
    async def list_documents(self) -> list[str]: ...

    async def read_fields(self, document: str) -> dict[str, Any]: ...

    async def apply_fields(self, document: str, fields: Mapping[str, Any]) -> None: ...

    async def rename(self, document: str, new_name: str) -> RenameResult: ...


class AssetStore(Protocol):
    async def exists(self, path: str) -> bool: ...

    async def write_binary(self, path: str, data: bytes) -> None: ...


class SqlDocumentStore:
    """Documents persisted as a name plus a JSON field map."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create(self, name: str, fields: Mapping[str, Any] | None = None) -> None:
        async with self._session_factory() as session:
            session.add(DocumentRecord(name=name, fields=dict(fields or {})))
            await session.commit()

    async def list_documents(self) -> list[str]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(DocumentRecord.name).order_by(DocumentRecord.name)
            )
            return [row[0] for row in result.all()]

    async def read_fields(self, document: str) -> dict[str, Any]:
        async with self._session_factory() as session:
            record = await self._get(session, document)
            return dict(record.fields or {})

    async def apply_fields(self, document: str, fields: Mapping[str, Any]) -> None:
        """Merge ``fields`` into the document in one transaction."""

        async with self._session_factory() as session:
            record = await self._get(session, document)
            merged = dict(record.fields or {})
            merged.update(fields)
            record.fields = merged
            await session.commit()

    async def rename(self, document: str, new_name: str) -> RenameResult:
        if document == new_name:
            return RenameResult.OK
        async with self._session_factory() as session:
            existing = await session.execute(
                select(DocumentRecord.id).where(DocumentRecord.name == new_name)
            )
            if existing.scalar_one_or_none() is not None:
                return RenameResult.ALREADY_EXISTS
            record = await self._get(session, document)
            record.name = new_name
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                return RenameResult.ALREADY_EXISTS
        return RenameResult.OK

    @staticmethod
    async def _get(session: AsyncSession, document: str) -> DocumentRecord:
        result = await session.execute(
            select(DocumentRecord).where(DocumentRecord.name == document)
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise DocumentNotFound(f"Document not found: {document}")
        return record


class FileAssetStore:
    """Binary assets stored below a root directory."""

    def __init__(self, root: str | Path):
        self._root = Path(root)

    def _resolve(self, path: str) -> Path:
        target = (self._root / path).resolve()
        if not target.is_relative_to(self._root.resolve()):
            raise ValueError(f"Asset path escapes the asset root: {path}")
        return target

    async def exists(self, path: str) -> bool:
        return await asyncio.to_thread(self._resolve(path).exists)

    async def write_binary(self, path: str, data: bytes) -> None:
        target = self._resolve(path)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)

        await asyncio.to_thread(_write)
        logger.debug("Wrote %d bytes to %s", len(data), target)
