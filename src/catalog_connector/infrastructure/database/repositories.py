"""Repositories over the connector tables.

Each write is a single ``INSERT ... ON CONFLICT DO UPDATE`` committed in its
own transaction, so per-key uniqueness is enforced by the database and
concurrent writers for the same key are safe.
"""

from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import func, or_, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_connector.exceptions import StorageFailed
from catalog_connector.infrastructure.database.connection import get_db_session
from catalog_connector.infrastructure.database.models import (
    CatalogEntry,
    SyncState,
    SyncStatus,
    TenantCredential,
)

logger = structlog.get_logger()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _upsert_statement(session: AsyncSession, model: type, values: dict[str, Any]):
    """Build a dialect-specific INSERT that supports ON CONFLICT."""
    dialect = session.bind.dialect.name
    insert = sqlite.insert if dialect == "sqlite" else postgresql.insert
    return insert(model).values(**values)


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so the value matches literally."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class _Repository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory


class CredentialRepository(_Repository):
    """One access credential per tenant."""

    async def get(self, shop: str) -> TenantCredential | None:
        try:
            async with get_db_session(self.session_factory) as session:
                result = await session.execute(
                    select(TenantCredential).where(TenantCredential.shop == shop)
                )
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StorageFailed(f"Could not load credential for {shop}: {e}") from e

    async def upsert(
        self, shop: str, access_token: str, scope: str | None = None
    ) -> TenantCredential:
        """Create the credential or overwrite its token in place."""
        now = utcnow()
        try:
            async with get_db_session(self.session_factory) as session:
                stmt = _upsert_statement(
                    session,
                    TenantCredential,
                    {
                        "shop": shop,
                        "access_token": access_token,
                        "scope": scope,
                        "installed_at": now,
                        "updated_at": now,
                    },
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=[TenantCredential.shop],
                    set_={
                        "access_token": stmt.excluded.access_token,
                        "scope": stmt.excluded.scope,
                        "updated_at": now,
                    },
                )
                await session.execute(stmt)
                result = await session.execute(
                    select(TenantCredential)
                    .where(TenantCredential.shop == shop)
                    .execution_options(populate_existing=True)
                )
                credential = result.scalar_one()
        except SQLAlchemyError as e:
            raise StorageFailed(f"Could not store credential for {shop}: {e}") from e

        logger.debug("Upserted tenant credential", shop=shop)
        return credential

    async def list_all(self) -> list[TenantCredential]:
        try:
            async with get_db_session(self.session_factory) as session:
                result = await session.execute(
                    select(TenantCredential).order_by(TenantCredential.shop)
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise StorageFailed(f"Could not list credentials: {e}") from e


class CatalogRepository(_Repository):
    """Catalog entries keyed by (shop, external_id)."""

    async def upsert(
        self, shop: str, external_id: int, title: str | None, body_html: str | None
    ) -> None:
        now = utcnow()
        try:
            async with get_db_session(self.session_factory) as session:
                stmt = _upsert_statement(
                    session,
                    CatalogEntry,
                    {
                        "shop": shop,
                        "external_id": external_id,
                        "title": title,
                        "body_html": body_html,
                        "synced_at": now,
                        "created_at": now,
                    },
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=[CatalogEntry.shop, CatalogEntry.external_id],
                    set_={
                        "title": stmt.excluded.title,
                        "body_html": stmt.excluded.body_html,
                        "synced_at": stmt.excluded.synced_at,
                    },
                )
                await session.execute(stmt)
        except SQLAlchemyError as e:
            raise StorageFailed(
                f"Could not upsert product {external_id} for {shop}: {e}"
            ) from e

    async def count_for_tenant(self, shop: str) -> int:
        try:
            async with get_db_session(self.session_factory) as session:
                result = await session.execute(
                    select(func.count()).select_from(CatalogEntry).where(CatalogEntry.shop == shop)
                )
                return result.scalar() or 0
        except SQLAlchemyError as e:
            raise StorageFailed(f"Could not count catalog for {shop}: {e}") from e

    @staticmethod
    def _matches(shop: str, query: str, include_description: bool):
        pattern = f"%{escape_like(query)}%"
        conditions = [CatalogEntry.title.ilike(pattern, escape="\\")]
        if include_description:
            conditions.append(CatalogEntry.body_html.ilike(pattern, escape="\\"))
        return (CatalogEntry.shop == shop, or_(*conditions))

    async def search(
        self,
        shop: str,
        query: str,
        include_description: bool = False,
        limit: int | None = None,
    ) -> list[CatalogEntry]:
        """Case-insensitive substring match scoped to one shop, ordered by external id.

        Returns every match unless a limit is given.
        """
        stmt = (
            select(CatalogEntry)
            .where(*self._matches(shop, query, include_description))
            .order_by(CatalogEntry.external_id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        try:
            async with get_db_session(self.session_factory) as session:
                result = await session.execute(stmt)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise StorageFailed(f"Could not search catalog for {shop}: {e}") from e

    async def count_matches(
        self, shop: str, query: str, include_description: bool = False
    ) -> int:
        stmt = (
            select(func.count())
            .select_from(CatalogEntry)
            .where(*self._matches(shop, query, include_description))
        )
        try:
            async with get_db_session(self.session_factory) as session:
                result = await session.execute(stmt)
                return result.scalar() or 0
        except SQLAlchemyError as e:
            raise StorageFailed(f"Could not count matches for {shop}: {e}") from e


class SyncStatusRepository(_Repository):
    """Latest ingestion outcome per tenant."""

    async def get(self, shop: str) -> SyncStatus | None:
        try:
            async with get_db_session(self.session_factory) as session:
                return await session.get(SyncStatus, shop)
        except SQLAlchemyError as e:
            raise StorageFailed(f"Could not load sync status for {shop}: {e}") from e

    async def mark_started(self, shop: str) -> None:
        now = utcnow()
        await self._upsert(
            shop,
            {"status": SyncState.RUNNING.value, "last_started_at": now},
        )

    async def mark_finished(
        self, shop: str, item_count: int | None, error: str | None = None
    ) -> None:
        """Record a finished cycle. A None item count leaves the stored one as is."""
        values: dict[str, Any] = {
            "status": (SyncState.ERROR if error else SyncState.IDLE).value,
            "last_finished_at": utcnow(),
            "error_message": error,
        }
        if item_count is not None:
            values["last_item_count"] = item_count
        await self._upsert(shop, values)

    async def _upsert(self, shop: str, values: dict[str, Any]) -> None:
        try:
            async with get_db_session(self.session_factory) as session:
                stmt = _upsert_statement(
                    session,
                    SyncStatus,
                    {"shop": shop, "last_item_count": 0, **values},
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=[SyncStatus.shop],
                    set_=values,
                )
                await session.execute(stmt)
        except SQLAlchemyError as e:
            raise StorageFailed(f"Could not update sync status for {shop}: {e}") from e
