"""Short-lived OAuth state-token storage.

Redis backs the store in deployed environments. When Redis is unreachable the
service degrades to a process-local store, which is only correct for a single
API worker.
"""

import time
from typing import Callable, Protocol

import orjson
import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from catalog_connector.config import Settings, get_settings
from catalog_connector.exceptions import StorageFailed

logger = structlog.get_logger()

_redis_client: aioredis.Redis | None = None


async def get_redis_client() -> aioredis.Redis | None:
    """Get or create the global async Redis client."""
    global _redis_client
    if _redis_client is None:
        settings = get_settings()
        try:
            _redis_client = aioredis.from_url(
                settings.redis_url,
                decode_responses=False,
                socket_connect_timeout=2,
                socket_timeout=2,
                retry_on_timeout=True,
            )
            await _redis_client.ping()
            logger.info("Redis connection established")
        except Exception as e:
            logger.warning("Redis unavailable, using in-process state store", error=str(e))
            _redis_client = None
    return _redis_client


async def close_redis() -> None:
    """Close the Redis connection on shutdown."""
    global _redis_client
    if _redis_client:
        await _redis_client.close()
        _redis_client = None


class StateStore(Protocol):
    """Maps a state token to the shop it was issued for, until it expires."""

    async def put(self, state: str, shop: str, ttl_seconds: int) -> None: ...

    async def pop(self, state: str) -> str | None:
        """Consume the token; return its shop, or None if unknown or expired."""
        ...


class RedisStateStore:
    """State tokens as Redis keys with a TTL. Reads are get-and-delete."""

    KEY_PREFIX = "oauth:state:"

    def __init__(self, client: aioredis.Redis):
        self.client = client

    def _key(self, state: str) -> str:
        return f"{self.KEY_PREFIX}{state}"

    async def put(self, state: str, shop: str, ttl_seconds: int) -> None:
        payload = orjson.dumps({"shop": shop, "issued_at": time.time()})
        try:
            await self.client.set(self._key(state), payload, ex=ttl_seconds)
        except RedisError as e:
            raise StorageFailed(f"Could not store OAuth state: {e}") from e

    async def pop(self, state: str) -> str | None:
        try:
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.get(self._key(state))
                pipe.delete(self._key(state))
                data, _ = await pipe.execute()
        except RedisError as e:
            raise StorageFailed(f"Could not read OAuth state: {e}") from e
        if not data:
            return None
        return orjson.loads(data).get("shop")


class InMemoryStateStore:
    """Process-local state tokens with expiry."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}

    async def put(self, state: str, shop: str, ttl_seconds: int) -> None:
        self._purge_expired()
        self._entries[state] = (shop, self._clock() + ttl_seconds)

    async def pop(self, state: str) -> str | None:
        entry = self._entries.pop(state, None)
        if entry is None:
            return None
        shop, expires_at = entry
        if self._clock() >= expires_at:
            return None
        return shop

    def __len__(self) -> int:
        return len(self._entries)

    def _purge_expired(self) -> None:
        now = self._clock()
        for state in [s for s, (_, exp) in self._entries.items() if now >= exp]:
            del self._entries[state]


async def create_state_store(settings: Settings) -> StateStore:
    """Pick the state store backend, falling back to memory when Redis is down."""
    if settings.state_store_backend == "memory":
        return InMemoryStateStore()
    client = await get_redis_client()
    if client is None:
        return InMemoryStateStore()
    return RedisStateStore(client)
