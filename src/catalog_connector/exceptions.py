"""Connector error taxonomy.

Every failure inside the sync engine degrades to one of these. None of them is
fatal to the process; the HTTP layer maps them to status codes and the
scheduler logs them per tenant.
"""


class ConnectorError(Exception):
    """Base class for all connector failures."""


class InvalidInput(ConnectorError):
    """A required parameter is missing or malformed."""


class StateMismatch(ConnectorError):
    """The OAuth state token failed validation."""


class TokenExchangeFailed(ConnectorError):
    """The storefront rejected the authorization code or answered without a token."""

    def __init__(self, message: str, upstream_status: int | None = None):
        super().__init__(message)
        # None means the storefront was never reached
        self.upstream_status = upstream_status


class UpstreamFetchFailed(ConnectorError):
    """A catalog page could not be fetched or decoded."""

    def __init__(self, message: str, shop: str | None = None, status: int | None = None):
        super().__init__(message)
        self.shop = shop
        self.status = status


class StorageFailed(ConnectorError):
    """A repository operation failed."""
