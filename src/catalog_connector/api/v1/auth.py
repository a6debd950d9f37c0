"""Storefront install (OAuth) endpoints."""

from typing import Annotated
from urllib.parse import quote

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import RedirectResponse

from catalog_connector.api.deps import get_authenticator
from catalog_connector.config import Settings, get_settings
from catalog_connector.exceptions import (
    InvalidInput,
    StateMismatch,
    StorageFailed,
    TokenExchangeFailed,
)
from catalog_connector.services.oauth import OAuthAuthenticator

logger = structlog.get_logger()

router = APIRouter()


@router.get("")
async def begin_install(
    shop: Annotated[str | None, Query(description="Storefront domain, e.g. my-shop.myshopify.com")] = None,
    authenticator: OAuthAuthenticator = Depends(get_authenticator),
    settings: Settings = Depends(get_settings),
) -> RedirectResponse:
    """
    Start the install flow.

    Redirects the merchant to the storefront's authorize page and binds the
    issued state token to this browser through an HttpOnly cookie.
    """
    try:
        auth_request = await authenticator.begin_authorization(shop or "")
    except InvalidInput as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except StorageFailed as e:
        logger.error("Could not start authorization", shop=shop, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Could not start authorization.",
        )

    logger.info("Redirecting to storefront OAuth URL", shop=auth_request.shop)
    response = RedirectResponse(auth_request.url, status_code=status.HTTP_302_FOUND)
    response.set_cookie(
        settings.oauth_state_cookie,
        auth_request.state,
        max_age=settings.oauth_state_ttl_seconds,
        httponly=True,
        samesite="lax",
        secure=settings.public_base_url.startswith("https://"),
    )
    return response


@router.get("/callback")
async def complete_install(
    request: Request,
    shop: Annotated[str | None, Query()] = None,
    code: Annotated[str | None, Query()] = None,
    state: Annotated[str | None, Query()] = None,
    authenticator: OAuthAuthenticator = Depends(get_authenticator),
    settings: Settings = Depends(get_settings),
) -> RedirectResponse:
    """
    Finish the install flow.

    **Status codes:**
    - `400`: missing parameters, state mismatch, or the storefront refused the code
    - `500`: the storefront was unreachable or the credential could not be stored
    - `303`: installed; redirects to the home view for the shop
    """
    session_state = request.cookies.get(settings.oauth_state_cookie)
    try:
        credential = await authenticator.complete_authorization(
            shop or "", code or "", state or "", session_state
        )
    except (InvalidInput, StateMismatch) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except TokenExchangeFailed as e:
        if e.upstream_status is None:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Authentication failed.",
            )
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except StorageFailed:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Authentication failed.",
        )

    response = RedirectResponse(
        f"/?shop={quote(credential.shop)}", status_code=status.HTTP_303_SEE_OTHER
    )
    response.delete_cookie(settings.oauth_state_cookie)
    return response
