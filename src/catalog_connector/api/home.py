"""Home/status view."""

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from catalog_connector.api.deps import get_services
from catalog_connector.bootstrap import ConnectorServices
from catalog_connector.exceptions import InvalidInput, StorageFailed

router = APIRouter()


class LastSync(BaseModel):
    status: str
    started_at: datetime | None = None
    finished_at: datetime | None = None
    item_count: int
    error: str | None = None


class HomeResponse(BaseModel):
    """Catalog size for a shop, or install instructions."""

    message: str
    shop: str | None = None
    count: int | None = None
    last_sync: LastSync | None = None


@router.get("/", response_model=HomeResponse)
async def home(
    shop: Annotated[str | None, Query(description="Storefront domain")] = None,
    services: ConnectorServices = Depends(get_services),
) -> HomeResponse:
    if not shop:
        return HomeResponse(
            message="Install the app by visiting /api/v1/auth?shop=your-shop-name.myshopify.com",
        )

    try:
        count = await services.search.catalog_size(shop)
        status = await services.sync_status.get(shop.strip().lower())
    except InvalidInput as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StorageFailed:
        raise HTTPException(status_code=500, detail="Could not load catalog status.")

    last_sync = None
    if status is not None:
        last_sync = LastSync(
            status=status.status,
            started_at=status.last_started_at,
            finished_at=status.last_finished_at,
            item_count=status.last_item_count,
            error=status.error_message,
        )

    return HomeResponse(
        message=f"To search, try /api/v1/search?shop={shop}&q=YourQuery",
        shop=shop,
        count=count,
        last_sync=last_sync,
    )
