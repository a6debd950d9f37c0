"""Pytest configuration and fixtures."""

import asyncio
import json
from collections.abc import AsyncGenerator
from typing import Any

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from catalog_connector.api.deps import get_services
from catalog_connector.bootstrap import ConnectorServices, build_services
from catalog_connector.config import Settings, get_settings
from catalog_connector.infrastructure.database.connection import get_async_session_factory
from catalog_connector.infrastructure.database.models import Base
from catalog_connector.infrastructure.database.repositories import (
    CatalogRepository,
    CredentialRepository,
    SyncStatusRepository,
)
from catalog_connector.infrastructure.redis import InMemoryStateStore
from catalog_connector.infrastructure.storefront.client import StorefrontClient
from catalog_connector.main import create_app
from shared.constants import ACCESS_TOKEN_HEADER

CLIENT_ID = "test-client-id"
CLIENT_SECRET = "test-client-secret"


class FakeStorefront:
    """In-process stand-in for the storefront's OAuth and products endpoints.

    Paginates with ``page_info`` cursors in a Link header, like the real API.
    """

    def __init__(self) -> None:
        self.catalogs: dict[str, list[dict[str, Any]]] = {}
        self.tokens: dict[str, str] = {}
        self.codes: dict[tuple[str, str], str] = {}
        self.failing_shops: set[str] = set()
        self.failing_pages: dict[str, int] = {}
        self.slow_shops: dict[str, float] = {}
        self.token_endpoint_status: int | None = None
        self.requests: list[httpx.Request] = []

    def register_install(self, shop: str, code: str, token: str) -> None:
        self.codes[(shop, code)] = token

    def set_catalog(self, shop: str, products: list[dict[str, Any]]) -> None:
        self.catalogs[shop] = products

    def product_requests(self, shop: str) -> list[httpx.Request]:
        return [
            r for r in self.requests
            if r.url.host == shop and r.url.path.endswith("/products.json")
        ]

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        shop = request.url.host
        if request.url.path == "/admin/oauth/access_token":
            return self._exchange(shop, request)
        if request.url.path.endswith("/products.json"):
            return await self._products(shop, request)
        return httpx.Response(404, json={"errors": "Not Found"})

    def _exchange(self, shop: str, request: httpx.Request) -> httpx.Response:
        if self.token_endpoint_status is not None:
            return httpx.Response(self.token_endpoint_status, json={"errors": "unavailable"})
        body = json.loads(request.content)
        token = self.codes.pop((shop, body.get("code")), None)
        if body.get("client_id") != CLIENT_ID or body.get("client_secret") != CLIENT_SECRET:
            return httpx.Response(400, json={"error": "invalid_client"})
        if token is None:
            return httpx.Response(400, json={"error": "invalid_request"})
        self.tokens[shop] = token
        return httpx.Response(200, json={"access_token": token, "scope": "read_products"})

    async def _products(self, shop: str, request: httpx.Request) -> httpx.Response:
        if shop in self.slow_shops:
            await asyncio.sleep(self.slow_shops[shop])
        if request.headers.get(ACCESS_TOKEN_HEADER) != self.tokens.get(shop):
            return httpx.Response(401, json={"errors": "Invalid API key or access token"})
        if shop in self.failing_shops:
            return httpx.Response(500, json={"errors": "Internal Server Error"})

        limit = int(request.url.params.get("limit", "50"))
        page_info = request.url.params.get("page_info")
        offset = int(page_info.removeprefix("cursor-")) if page_info else 0
        if self.failing_pages.get(shop) == offset // limit + 1:
            return httpx.Response(502, text="Bad Gateway")

        products = self.catalogs.get(shop, [])
        headers = {}
        if offset + limit < len(products):
            next_url = (
                f"https://{shop}/admin/api/2023-07/products.json"
                f"?limit={limit}&page_info=cursor-{offset + limit}"
            )
            headers["Link"] = f'<{next_url}>; rel="next"'
        return httpx.Response(
            200, json={"products": products[offset:offset + limit]}, headers=headers
        )


@pytest.fixture
def test_settings() -> Settings:
    """Get test settings with overrides."""
    return Settings(
        app_env="test",
        debug=True,
        shopify_api_key=CLIENT_ID,
        shopify_api_secret=CLIENT_SECRET,
        shopify_scopes="read_products",
        public_base_url="http://localhost:3000",
        state_store_backend="memory",
        scheduler_enabled=False,
        sync_timeout_seconds=5,
        sync_max_concurrency=2,
    )


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """SQLite database with the connector tables created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'connector.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield get_async_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def credentials_repo(session_factory: async_sessionmaker[AsyncSession]) -> CredentialRepository:
    return CredentialRepository(session_factory)


@pytest.fixture
def catalog_repo(session_factory: async_sessionmaker[AsyncSession]) -> CatalogRepository:
    return CatalogRepository(session_factory)


@pytest.fixture
def sync_status_repo(session_factory: async_sessionmaker[AsyncSession]) -> SyncStatusRepository:
    return SyncStatusRepository(session_factory)


@pytest.fixture
def storefront() -> FakeStorefront:
    return FakeStorefront()


@pytest_asyncio.fixture
async def http_client(storefront: FakeStorefront) -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(storefront)) as client:
        yield client


@pytest.fixture
def storefront_client(http_client: httpx.AsyncClient, test_settings: Settings) -> StorefrontClient:
    return StorefrontClient.from_settings(test_settings, http_client)


@pytest.fixture
def state_store() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture
def services(
    test_settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    http_client: httpx.AsyncClient,
    state_store: InMemoryStateStore,
) -> ConnectorServices:
    """Fully wired engine over SQLite and the fake storefront."""
    return build_services(test_settings, session_factory, http_client, state_store)


@pytest.fixture
def app(test_settings: Settings, services: ConnectorServices) -> FastAPI:
    """Create test application bound to the test services."""
    app = create_app()
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_services] = lambda: services
    return app


@pytest.fixture
def client(test_settings: Settings) -> TestClient:
    """Synchronous test client for endpoints that need no services."""
    app = create_app()
    app.dependency_overrides[get_settings] = lambda: test_settings
    return TestClient(app)


@pytest_asyncio.fixture
async def async_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create asynchronous test client."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def sample_shop() -> str:
    """Sample tenant for tests."""
    return "acme.example"
