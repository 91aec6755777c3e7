"""Persistence for long-lived catalog payloads."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, NamedTuple

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import CatalogCacheRecord
from ..utils import utcnow

logger = logging.getLogger(__name__)


class StoredCatalog(NamedTuple):
    payload: dict[str, Any]
    fetched_at: datetime

    @property
    def age(self) -> timedelta:
        return utcnow() - self.fetched_at


class CatalogCacheRepository:
    """Store raw catalog payloads together with the time they were fetched."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def load(self, key: str, *, max_age: timedelta) -> StoredCatalog | None:
        """Return the stored payload unless it is older than ``max_age``."""

        async with self._session_factory() as session:
            record = await session.get(CatalogCacheRecord, key)
            if record is None:
                return None
            if utcnow() - record.fetched_at > max_age:
                logger.info("Stored %s catalog is stale (fetched %s)", key, record.fetched_at)
                return None
            return StoredCatalog(payload=record.payload, fetched_at=record.fetched_at)

    async def save(self, key: str, payload: dict[str, Any]) -> None:
        async with self._session_factory() as session:
            record = await session.get(CatalogCacheRecord, key)
            if record is None:
                session.add(
                    CatalogCacheRecord(key=key, payload=payload, fetched_at=utcnow())
                )
            else:
                record.payload = payload
                record.fetched_at = utcnow()
            await session.commit()
