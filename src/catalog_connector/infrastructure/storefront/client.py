"""HTTP client for the storefront platform's OAuth and Admin REST endpoints."""

from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qs, quote, urlencode, urlsplit

import httpx
import structlog

from catalog_connector.config import Settings
from catalog_connector.exceptions import TokenExchangeFailed, UpstreamFetchFailed
from shared.constants import ACCESS_TOKEN_HEADER, UPSTREAM_MAX_PAGE_SIZE

logger = structlog.get_logger()


@dataclass
class ProductPage:
    """One page of the upstream products listing."""

    products: list[dict[str, Any]] = field(default_factory=list)
    next_page_info: str | None = None


def parse_next_page_info(link_header: str | None) -> str | None:
    """Extract the ``page_info`` cursor of the ``rel="next"`` link.

    The storefront paginates with a Link header of the form
    ``<url>; rel="previous", <url>; rel="next"``.
    """
    if not link_header:
        return None

    for part in link_header.split(","):
        url_part, _, params = part.partition(";")
        if 'rel="next"' not in params:
            continue
        url = url_part.strip().lstrip("<").rstrip(">")
        values = parse_qs(urlsplit(url).query).get("page_info")
        if values:
            return values[0]
    return None


class StorefrontClient:
    """Thin adapter over one shared ``httpx.AsyncClient``."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        api_key: str,
        api_secret: str,
        api_version: str,
    ):
        self.http = http
        self.api_key = api_key
        self.api_secret = api_secret
        self.api_version = api_version

    @classmethod
    def from_settings(cls, settings: Settings, http: httpx.AsyncClient) -> "StorefrontClient":
        return cls(
            http,
            api_key=settings.shopify_api_key,
            api_secret=settings.shopify_api_secret,
            api_version=settings.shopify_api_version,
        )

    @staticmethod
    def _base_url(shop: str) -> str:
        return f"https://{shop}"

    def authorize_url(self, shop: str, scopes: str, redirect_uri: str, state: str) -> str:
        """Build the URL the merchant is redirected to for granting access."""
        params = {
            "client_id": self.api_key,
            "scope": scopes,
            "redirect_uri": redirect_uri,
            "state": state,
        }
        return f"{self._base_url(shop)}/admin/oauth/authorize?{urlencode(params, quote_via=quote)}"

    async def exchange_code(self, shop: str, code: str) -> dict[str, Any]:
        """Trade an authorization code for an access token payload.

        Raises:
            TokenExchangeFailed: on network errors, non-2xx answers, bodies that
                are not JSON objects, or a missing ``access_token`` field.
        """
        url = f"{self._base_url(shop)}/admin/oauth/access_token"
        try:
            response = await self.http.post(
                url,
                json={
                    "client_id": self.api_key,
                    "client_secret": self.api_secret,
                    "code": code,
                },
            )
        except httpx.HTTPError as e:
            raise TokenExchangeFailed(f"Token request to {shop} failed: {e}") from e

        if response.is_error:
            raise TokenExchangeFailed(
                f"Token endpoint for {shop} returned {response.status_code}",
                upstream_status=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise TokenExchangeFailed(
                f"Token endpoint for {shop} returned a non-JSON body",
                upstream_status=response.status_code,
            ) from e

        if not isinstance(payload, dict) or not payload.get("access_token"):
            raise TokenExchangeFailed(
                "Failed to retrieve access token.",
                upstream_status=response.status_code,
            )
        return payload

    async def fetch_products_page(
        self,
        shop: str,
        access_token: str,
        limit: int = UPSTREAM_MAX_PAGE_SIZE,
        page_info: str | None = None,
    ) -> ProductPage:
        """Fetch one page of products.

        Raises:
            UpstreamFetchFailed: on network errors, non-2xx answers or a body
                that does not decode into a products list.
        """
        url = f"{self._base_url(shop)}/admin/api/{self.api_version}/products.json"
        params: dict[str, Any] = {"limit": min(limit, UPSTREAM_MAX_PAGE_SIZE)}
        if page_info:
            # The cursor encodes every other filter
            params["page_info"] = page_info

        try:
            response = await self.http.get(
                url,
                params=params,
                headers={
                    ACCESS_TOKEN_HEADER: access_token,
                    "Content-Type": "application/json",
                },
            )
        except httpx.HTTPError as e:
            raise UpstreamFetchFailed(f"Product request failed: {e}", shop=shop) from e

        if response.is_error:
            raise UpstreamFetchFailed(
                f"Product endpoint returned {response.status_code}",
                shop=shop,
                status=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise UpstreamFetchFailed("Product response is not JSON", shop=shop) from e

        if not isinstance(payload, dict):
            raise UpstreamFetchFailed("Product response is not an object", shop=shop)
        products = payload.get("products") or []
        if not isinstance(products, list):
            raise UpstreamFetchFailed("Product response has no product list", shop=shop)

        return ProductPage(
            products=products,
            next_page_info=parse_next_page_info(response.headers.get("link")),
        )
