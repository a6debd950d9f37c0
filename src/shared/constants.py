"""Shared constants across the application."""

# Upstream storefront API
UPSTREAM_MAX_PAGE_SIZE = 250  # Hard cap enforced by the products endpoint
ACCESS_TOKEN_HEADER = "X-Shopify-Access-Token"
DEFAULT_API_VERSION = "2023-07"

# OAuth
OAUTH_STATE_BYTES = 16
OAUTH_STATE_TTL_SECONDS = 600
OAUTH_CALLBACK_PATH = "/api/v1/auth/callback"

# Sync cadence
DEFAULT_SYNC_INTERVAL_MINUTES = 5
DEFAULT_SYNC_TIMEOUT_SECONDS = 120
DEFAULT_SYNC_MAX_PAGES = 100

# Search limits
MAX_SEARCH_LIMIT = 1000
