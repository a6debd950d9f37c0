"""FastAPI dependencies resolving the wired services from application state."""

from fastapi import Depends, Request

from catalog_connector.bootstrap import ConnectorServices
from catalog_connector.services.oauth import OAuthAuthenticator
from catalog_connector.services.search import CatalogSearchService


def get_services(request: Request) -> ConnectorServices:
    return request.app.state.services


def get_authenticator(services: ConnectorServices = Depends(get_services)) -> OAuthAuthenticator:
    return services.authenticator


def get_search_service(services: ConnectorServices = Depends(get_services)) -> CatalogSearchService:
    return services.search
