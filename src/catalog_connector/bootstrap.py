"""Wiring of the sync engine.

The composing process (API, Celery worker, CLI script) owns the lifecycle of
the database engine, the HTTP client and the state store; components only
receive them.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncGenerator

import httpx
import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_connector.config import Settings
from catalog_connector.infrastructure.database.connection import open_database
from catalog_connector.infrastructure.database.repositories import (
    CatalogRepository,
    CredentialRepository,
    SyncStatusRepository,
)
from catalog_connector.infrastructure.redis import StateStore, close_redis, create_state_store
from catalog_connector.infrastructure.storefront.client import StorefrontClient
from catalog_connector.services.catalog_sync import CatalogIngestor
from catalog_connector.services.oauth import OAuthAuthenticator
from catalog_connector.services.scheduler import SyncScheduler
from catalog_connector.services.search import CatalogSearchService

logger = structlog.get_logger()


@dataclass
class ConnectorServices:
    """Everything the transport layers call into."""

    credentials: CredentialRepository
    catalog: CatalogRepository
    sync_status: SyncStatusRepository
    client: StorefrontClient
    ingestor: CatalogIngestor
    authenticator: OAuthAuthenticator
    search: CatalogSearchService
    scheduler: SyncScheduler
    session_factory: async_sessionmaker[AsyncSession]


async def dispatch_sync_via_celery(shop: str) -> None:
    """Queue the post-install sync on the sync worker.

    Publishing to the broker blocks, so it runs on a worker thread.
    """
    from sync_worker.tasks.sync_catalog import sync_single_tenant

    await asyncio.to_thread(sync_single_tenant.delay, shop)


def build_services(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    http_client: httpx.AsyncClient,
    state_store: StateStore,
) -> ConnectorServices:
    """Assemble repositories and engine components from their collaborators."""
    credentials = CredentialRepository(session_factory)
    catalog = CatalogRepository(session_factory)
    sync_status = SyncStatusRepository(session_factory)
    client = StorefrontClient.from_settings(settings, http_client)

    ingestor = CatalogIngestor(
        catalog,
        client,
        sync_status=sync_status,
        page_size=settings.sync_page_size,
        max_pages=settings.sync_max_pages,
    )
    authenticator = OAuthAuthenticator(
        client,
        state_store,
        credentials,
        ingestor,
        scopes=settings.shopify_scopes,
        redirect_uri=settings.oauth_redirect_uri,
        state_ttl_seconds=settings.oauth_state_ttl_seconds,
        initial_sync_timeout=settings.sync_timeout_seconds,
        dispatch_initial_sync=(
            dispatch_sync_via_celery if settings.install_sync_mode == "celery" else None
        ),
    )
    scheduler = SyncScheduler(
        credentials,
        ingestor,
        interval_seconds=settings.sync_interval_minutes * 60,
        tenant_timeout=settings.sync_timeout_seconds,
        max_concurrency=settings.sync_max_concurrency,
    )
    search = CatalogSearchService(
        catalog,
        max_limit=settings.search_max_limit,
    )

    return ConnectorServices(
        credentials=credentials,
        catalog=catalog,
        sync_status=sync_status,
        client=client,
        ingestor=ingestor,
        authenticator=authenticator,
        search=search,
        scheduler=scheduler,
        session_factory=session_factory,
    )


@asynccontextmanager
async def connector_runtime(settings: Settings) -> AsyncGenerator[ConnectorServices, None]:
    """Open every external resource, yield the wired services, then close them."""
    async with open_database(settings) as session_factory:
        async with httpx.AsyncClient(timeout=settings.shopify_request_timeout) as http_client:
            state_store = await create_state_store(settings)
            try:
                yield build_services(settings, session_factory, http_client, state_store)
            finally:
                await close_redis()
