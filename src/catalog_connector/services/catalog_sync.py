"""Catalog ingestion service.

Mirrors one tenant's upstream product catalog into the local catalog table.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog

from catalog_connector.exceptions import StorageFailed, UpstreamFetchFailed
from catalog_connector.infrastructure.database.repositories import (
    CatalogRepository,
    SyncStatusRepository,
)
from catalog_connector.infrastructure.storefront.client import StorefrontClient
from shared.constants import DEFAULT_SYNC_MAX_PAGES, UPSTREAM_MAX_PAGE_SIZE

logger = structlog.get_logger()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SyncResult:
    """Outcome of one ingestion cycle for one tenant."""

    shop: str
    fetched: int = 0
    upserted: int = 0
    failed: int = 0
    pages: int = 0
    error: str | None = None
    abandoned: bool = False
    started_at: datetime = field(default_factory=utcnow)
    finished_at: datetime | None = None

    @classmethod
    def abandon(cls, shop: str, error: str) -> "SyncResult":
        """A cycle the caller gave up on. Its item count is unknown."""
        return cls(shop=shop, error=error, abandoned=True, finished_at=utcnow())

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        data["finished_at"] = self.finished_at.isoformat() if self.finished_at else None
        return data


def normalize_product(product: Any) -> dict[str, Any] | None:
    """Map an upstream product onto catalog entry fields.

    Returns None when the product carries no usable integer id.
    """
    if not isinstance(product, dict):
        return None

    raw_id = product.get("id")
    if isinstance(raw_id, bool):
        return None
    if isinstance(raw_id, int):
        external_id = raw_id
    elif isinstance(raw_id, str) and raw_id.isdigit():
        external_id = int(raw_id)
    else:
        return None

    title = product.get("title")
    body_html = product.get("body_html")
    return {
        "external_id": external_id,
        "title": title if isinstance(title, str) else None,
        "body_html": body_html if isinstance(body_html, str) else None,
    }


class CatalogIngestor:
    """Fetches a tenant's catalog page by page and upserts every product."""

    def __init__(
        self,
        catalog: CatalogRepository,
        client: StorefrontClient,
        sync_status: SyncStatusRepository | None = None,
        page_size: int = UPSTREAM_MAX_PAGE_SIZE,
        max_pages: int = DEFAULT_SYNC_MAX_PAGES,
    ):
        self.catalog = catalog
        self.client = client
        self.sync_status = sync_status
        self.page_size = max(1, min(page_size, UPSTREAM_MAX_PAGE_SIZE))
        self.max_pages = max_pages

    async def sync_tenant(self, shop: str, access_token: str) -> SyncResult:
        """
        Run one ingestion cycle.

        Upstream failures never raise: they are logged and reported through
        ``SyncResult.error``. Items upserted before a failing page are kept.

        Args:
            shop: Tenant identifier
            access_token: Credential for the tenant's upstream API

        Returns:
            Summary of the cycle
        """
        result = SyncResult(shop=shop)
        await self._mark_started(shop)
        logger.info("Starting catalog sync", shop=shop)

        try:
            await self._ingest(shop, access_token, result)
        except UpstreamFetchFailed as e:
            result.error = str(e)
            logger.error(
                "Error fetching catalog",
                shop=shop,
                at=utcnow().isoformat(),
                page=result.pages + 1,
                upserted=result.upserted,
                error=str(e),
            )

        result.finished_at = utcnow()
        await self.record_outcome(result)
        logger.info("Catalog sync completed", **result.to_dict())
        return result

    async def _ingest(self, shop: str, access_token: str, result: SyncResult) -> None:
        page_info: str | None = None

        while result.pages < self.max_pages:
            page = await self.client.fetch_products_page(
                shop, access_token, limit=self.page_size, page_info=page_info
            )
            result.pages += 1
            result.fetched += len(page.products)
            logger.debug(
                "Fetched catalog page", shop=shop, page=result.pages, items=len(page.products)
            )
            if not page.products:
                break

            for product in page.products:
                entry = normalize_product(product)
                if entry is None:
                    result.failed += 1
                    logger.warning("Skipping product without a usable id", shop=shop)
                    continue
                try:
                    await self.catalog.upsert(shop, **entry)
                except StorageFailed as e:
                    result.failed += 1
                    logger.error(
                        "Error upserting product",
                        shop=shop,
                        external_id=entry["external_id"],
                        error=str(e),
                    )
                    continue
                result.upserted += 1

            page_info = page.next_page_info
            if not page_info:
                break
        else:
            logger.warning("Page limit reached, catalog truncated", shop=shop, max_pages=self.max_pages)

    async def _mark_started(self, shop: str) -> None:
        if self.sync_status is None:
            return
        try:
            await self.sync_status.mark_started(shop)
        except StorageFailed as e:
            logger.warning("Could not record sync start", shop=shop, error=str(e))

    async def record_outcome(self, result: SyncResult) -> None:
        """Persist the outcome of a cycle, including one abandoned by the caller.

        An abandoned cycle keeps the previously recorded item count.
        """
        if self.sync_status is None:
            return
        item_count = None if result.abandoned else result.upserted
        try:
            await self.sync_status.mark_finished(result.shop, item_count, result.error)
        except StorageFailed as e:
            logger.warning("Could not record sync outcome", shop=result.shop, error=str(e))
