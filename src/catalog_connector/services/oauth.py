"""OAuth authorization-code install flow.

``begin_authorization`` issues a single-use state token and the upstream
authorize URL. ``complete_authorization`` validates the token, exchanges the
code for an access token, stores it and triggers the first catalog sync.

Stages: STARTED -> VALIDATED -> EXCHANGED, or FAILED from any of them.
A credential is only persisted after EXCHANGED.
"""

import asyncio
import re
import secrets
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable

import structlog

from catalog_connector.exceptions import ConnectorError, InvalidInput, StateMismatch
from catalog_connector.infrastructure.database.models import TenantCredential
from catalog_connector.infrastructure.database.repositories import CredentialRepository
from catalog_connector.infrastructure.redis import StateStore
from catalog_connector.infrastructure.storefront.client import StorefrontClient
from catalog_connector.services.catalog_sync import CatalogIngestor, SyncResult
from shared.constants import DEFAULT_SYNC_TIMEOUT_SECONDS, OAUTH_STATE_BYTES, OAUTH_STATE_TTL_SECONDS

logger = structlog.get_logger()

_LABEL = r"[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?"
SHOP_PATTERN = re.compile(rf"^(?=.{{1,253}}$){_LABEL}(?:\.{_LABEL})+$")

InitialSyncDispatcher = Callable[[str], Awaitable[None]]


def normalize_shop(shop: str | None) -> str:
    """Validate a tenant identifier and return its canonical (lowercase) form."""
    if shop is None or not shop.strip():
        raise InvalidInput("Missing shop parameter.")
    candidate = shop.strip().lower()
    if not SHOP_PATTERN.match(candidate):
        raise InvalidInput(f"Invalid shop domain: {shop!r}")
    return candidate


class AuthorizationStage(str, Enum):
    """Install flow stages."""

    STARTED = "started"
    VALIDATED = "validated"
    EXCHANGED = "exchanged"
    FAILED = "failed"


@dataclass(frozen=True)
class AuthorizationRequest:
    """Where to send the merchant, and the state token bound to their session."""

    shop: str
    url: str
    state: str


class OAuthAuthenticator:
    """Drives the authorization-code exchange for one tenant at a time."""

    def __init__(
        self,
        client: StorefrontClient,
        state_store: StateStore,
        credentials: CredentialRepository,
        ingestor: CatalogIngestor,
        *,
        scopes: str,
        redirect_uri: str,
        state_ttl_seconds: int = OAUTH_STATE_TTL_SECONDS,
        initial_sync_timeout: float = DEFAULT_SYNC_TIMEOUT_SECONDS,
        dispatch_initial_sync: InitialSyncDispatcher | None = None,
    ):
        self.client = client
        self.state_store = state_store
        self.credentials = credentials
        self.ingestor = ingestor
        self.scopes = scopes
        self.redirect_uri = redirect_uri
        self.state_ttl_seconds = state_ttl_seconds
        self.initial_sync_timeout = initial_sync_timeout
        self.dispatch_initial_sync = dispatch_initial_sync

    async def begin_authorization(self, shop: str) -> AuthorizationRequest:
        """Issue a state token and build the upstream authorize URL.

        Does not contact the storefront.

        Raises:
            InvalidInput: if the shop is empty or not a domain name.
            StorageFailed: if the state token cannot be stored.
        """
        shop = normalize_shop(shop)
        state = secrets.token_hex(OAUTH_STATE_BYTES)
        await self.state_store.put(state, shop, self.state_ttl_seconds)

        url = self.client.authorize_url(
            shop, scopes=self.scopes, redirect_uri=self.redirect_uri, state=state
        )
        self._log_stage(shop, AuthorizationStage.STARTED)
        return AuthorizationRequest(shop=shop, url=url, state=state)

    async def complete_authorization(
        self,
        shop: str,
        code: str,
        returned_state: str,
        session_state: str | None,
    ) -> TenantCredential:
        """Validate the callback, exchange the code and store the credential.

        Args:
            shop: Tenant identifier from the callback
            code: Authorization code from the callback
            returned_state: State token echoed back by the storefront
            session_state: State token held by the initiating session

        Raises:
            InvalidInput: missing or malformed parameters
            StateMismatch: state token invalid, expired, reused or foreign
            TokenExchangeFailed: the storefront did not hand out a token
            StorageFailed: the credential could not be stored
        """
        shop = normalize_shop(shop)
        if not code:
            raise InvalidInput("Missing code parameter.")
        if not returned_state:
            raise InvalidInput("Missing state parameter.")

        try:
            await self._validate_state(shop, returned_state, session_state)
            self._log_stage(shop, AuthorizationStage.VALIDATED)

            token_payload = await self.client.exchange_code(shop, code)
            self._log_stage(shop, AuthorizationStage.EXCHANGED)

            credential = await self.credentials.upsert(
                shop, token_payload["access_token"], token_payload.get("scope")
            )
        except ConnectorError as e:
            self._log_stage(shop, AuthorizationStage.FAILED, reason=type(e).__name__, error=str(e))
            raise

        logger.info("Tenant installed or updated", shop=shop)
        await self._trigger_initial_sync(credential)
        return credential

    async def _validate_state(
        self, shop: str, returned_state: str, session_state: str | None
    ) -> None:
        if not session_state:
            raise StateMismatch("No authorization in progress for this session.")

        # Consumed before comparing so a token can never be tried twice
        issued_for = await self.state_store.pop(session_state)

        if not secrets.compare_digest(returned_state.encode(), session_state.encode()):
            raise StateMismatch("Invalid state parameter.")
        if issued_for is None:
            raise StateMismatch("State token expired or already used.")
        if issued_for != shop:
            raise StateMismatch("State token was issued for a different shop.")

    async def _trigger_initial_sync(self, credential: TenantCredential) -> None:
        shop = credential.shop
        if self.dispatch_initial_sync is not None:
            try:
                await self.dispatch_initial_sync(shop)
            except Exception as e:
                logger.error("Could not dispatch initial sync, running inline", shop=shop, error=str(e))
            else:
                logger.info("Initial catalog sync dispatched", shop=shop)
                return

        try:
            await asyncio.wait_for(
                self.ingestor.sync_tenant(shop, credential.access_token),
                timeout=self.initial_sync_timeout,
            )
        except asyncio.TimeoutError:
            logger.error(
                "Initial catalog sync timed out",
                shop=shop,
                timeout_seconds=self.initial_sync_timeout,
            )
            await self.ingestor.record_outcome(
                SyncResult.abandon(shop, f"timed out after {self.initial_sync_timeout}s")
            )
        except Exception as e:
            logger.error("Initial catalog sync failed", shop=shop, error=str(e))
            await self.ingestor.record_outcome(SyncResult.abandon(shop, str(e)))

    @staticmethod
    def _log_stage(shop: str, stage: AuthorizationStage, **extra) -> None:
        log = logger.warning if stage is AuthorizationStage.FAILED else logger.info
        log("OAuth stage transition", shop=shop, stage=stage.value, **extra)
