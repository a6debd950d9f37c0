"""Business logic services."""

from catalog_connector.services.catalog_sync import CatalogIngestor, SyncResult
from catalog_connector.services.oauth import AuthorizationRequest, OAuthAuthenticator
from catalog_connector.services.scheduler import SyncScheduler, TickSummary
from catalog_connector.services.search import CatalogSearchService

__all__ = [
    "AuthorizationRequest",
    "CatalogIngestor",
    "CatalogSearchService",
    "OAuthAuthenticator",
    "SyncResult",
    "SyncScheduler",
    "TickSummary",
]
