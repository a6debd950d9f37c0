"""Catalog synchronization tasks."""

import asyncio

import redis
import structlog
from celery import shared_task
from redis.exceptions import LockError

from catalog_connector.bootstrap import connector_runtime
from catalog_connector.config import Settings, get_settings
from catalog_connector.services.catalog_sync import SyncResult

logger = structlog.get_logger()

PASS_LOCK_KEY = "catalog-sync:pass-lock"


async def _run_pass(settings: Settings) -> dict:
    async with connector_runtime(settings) as services:
        summary = await services.scheduler.run_once()
    return summary.to_dict()


async def _run_single(settings: Settings, shop: str) -> dict:
    async with connector_runtime(settings) as services:
        credential = await services.credentials.get(shop)
        if credential is None:
            logger.warning("Shop is not installed, nothing to sync", shop=shop)
            return SyncResult(shop=shop, error="not installed").to_dict()
        try:
            result = await asyncio.wait_for(
                services.ingestor.sync_tenant(shop, credential.access_token),
                timeout=settings.sync_timeout_seconds,
            )
        except asyncio.TimeoutError:
            result = SyncResult.abandon(shop, f"timed out after {settings.sync_timeout_seconds}s")
            await services.ingestor.record_outcome(result)
    return result.to_dict()


@shared_task(bind=True)
def sync_all_tenants(self) -> dict:
    """
    Run one catalog sync pass over every installed shop.

    A Redis lock keeps passes from overlapping when a pass outlives the beat
    interval; the overlapping run is skipped, not queued.

    Returns:
        dict: Tick summary
    """
    settings = get_settings()
    client = redis.Redis.from_url(settings.redis_url)
    try:
        lock = client.lock(PASS_LOCK_KEY, timeout=settings.sync_interval_minutes * 60 * 2)
        if not lock.acquire(blocking=False):
            logger.warning("Previous sync pass still running, skipping")
            return {"skipped": True}

        try:
            logger.info("Starting scheduled catalog sync pass")
            return asyncio.run(_run_pass(settings))
        finally:
            try:
                lock.release()
            except LockError as e:
                logger.warning("Sync pass lock expired before release", error=str(e))
    finally:
        client.close()


@shared_task(bind=True)
def sync_single_tenant(self, shop: str) -> dict:
    """
    Sync one shop's catalog, e.g. right after install.

    Args:
        shop: Tenant identifier

    Returns:
        dict: Sync result
    """
    logger.info("Syncing single shop", shop=shop)
    return asyncio.run(_run_single(get_settings(), shop))
