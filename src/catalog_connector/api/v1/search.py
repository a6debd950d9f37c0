"""Catalog search endpoint."""

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict

from catalog_connector.api.deps import get_search_service
from catalog_connector.exceptions import InvalidInput, StorageFailed
from catalog_connector.services.search import CatalogSearchService

router = APIRouter()


class CatalogProduct(BaseModel):
    """A mirrored catalog entry."""

    model_config = ConfigDict(from_attributes=True)

    external_id: int
    title: str | None = None
    body_html: str | None = None
    synced_at: datetime


class SearchResponse(BaseModel):
    """Search results for one shop."""

    shop: str
    query: str
    count: int
    total: int
    products: list[CatalogProduct]


@router.get("", response_model=SearchResponse)
async def search_catalog(
    shop: Annotated[str | None, Query(description="Storefront domain")] = None,
    q: Annotated[str | None, Query(description="Text to find in product titles")] = None,
    include_description: Annotated[
        bool, Query(description="Also match the product description")
    ] = False,
    limit: Annotated[int | None, Query(ge=1, le=1000)] = None,
    search: CatalogSearchService = Depends(get_search_service),
) -> SearchResponse:
    """
    Search a shop's mirrored catalog.

    Case-insensitive substring match on the title. Results are ordered by
    upstream product id; there is no relevance ranking. Every match is
    returned unless ``limit`` is given; ``total`` is the size of the full
    matching set either way.
    """
    try:
        results = await search.search(
            shop or "", q or "", include_description=include_description, limit=limit
        )
        total = len(results)
        if limit is not None and total >= min(limit, search.max_limit):
            total = await search.count_matches(
                shop, q, include_description=include_description
            )
    except InvalidInput as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StorageFailed:
        raise HTTPException(status_code=500, detail="Search failed.")

    return SearchResponse(
        shop=shop.strip().lower(),
        query=q,
        count=len(results),
        total=total,
        products=[CatalogProduct.model_validate(entry) for entry in results],
    )
