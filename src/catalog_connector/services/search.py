"""Tenant-scoped catalog search."""

import structlog

from catalog_connector.exceptions import InvalidInput
from catalog_connector.infrastructure.database.models import CatalogEntry
from catalog_connector.infrastructure.database.repositories import CatalogRepository
from catalog_connector.services.oauth import normalize_shop
from shared.constants import MAX_SEARCH_LIMIT

logger = structlog.get_logger()


class CatalogSearchService:
    """Case-insensitive substring search over one tenant's mirrored catalog."""

    def __init__(self, catalog: CatalogRepository, max_limit: int = MAX_SEARCH_LIMIT):
        self.catalog = catalog
        self.max_limit = max_limit

    @staticmethod
    def _validate(shop: str, query: str) -> str:
        if not shop or not shop.strip():
            raise InvalidInput("Missing shop parameter.")
        if not query:
            raise InvalidInput("Missing query parameter (q).")
        return normalize_shop(shop)

    async def search(
        self,
        shop: str,
        query: str,
        include_description: bool = False,
        limit: int | None = None,
    ) -> list[CatalogEntry]:
        """
        Match ``query`` against entry titles of ``shop``.

        Returns the whole matching set unless ``limit`` is given; a given limit
        is clamped to ``max_limit``. Wildcard characters in the query match
        literally. No ranking: results come back ordered by upstream product id.

        Raises:
            InvalidInput: if shop or query is empty
        """
        shop = self._validate(shop, query)
        if limit is not None:
            limit = max(1, min(limit, self.max_limit))

        results = await self.catalog.search(
            shop, query, include_description=include_description, limit=limit
        )
        logger.debug("Catalog search", shop=shop, query=query, count=len(results))
        return results

    async def count_matches(
        self, shop: str, query: str, include_description: bool = False
    ) -> int:
        """Size of the full matching set, regardless of any limit."""
        shop = self._validate(shop, query)
        return await self.catalog.count_matches(
            shop, query, include_description=include_description
        )

    async def catalog_size(self, shop: str) -> int:
        """Number of mirrored entries for a tenant."""
        return await self.catalog.count_for_tenant(normalize_shop(shop))
