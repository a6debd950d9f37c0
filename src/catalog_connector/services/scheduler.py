"""Periodic catalog sync across all installed tenants."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import structlog

from catalog_connector.exceptions import StorageFailed
from catalog_connector.infrastructure.database.repositories import CredentialRepository
from catalog_connector.services.catalog_sync import CatalogIngestor, SyncResult, utcnow

logger = structlog.get_logger()


@dataclass
class TickSummary:
    """Outcome of one scheduler tick."""

    started_at: datetime
    finished_at: datetime | None = None
    results: list[SyncResult] = field(default_factory=list)
    skipped: bool = False

    @property
    def succeeded(self) -> list[str]:
        return [r.shop for r in self.results if r.ok]

    @property
    def failed(self) -> list[str]:
        return [r.shop for r in self.results if not r.ok]

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "skipped": self.skipped,
            "tenants": len(self.results),
            "succeeded": len(self.succeeded),
            "failed": self.failed,
            "items_fetched": sum(r.fetched for r in self.results),
        }


class SyncScheduler:
    """Runs ``CatalogIngestor.sync_tenant`` for every tenant on a fixed period.

    One tenant's failure or timeout never stops the others in the same tick,
    and a tick never overlaps the previous one. Stopping the scheduler lets an
    in-flight tick finish.
    """

    def __init__(
        self,
        credentials: CredentialRepository,
        ingestor: CatalogIngestor,
        interval_seconds: float = 300.0,
        tenant_timeout: float = 120.0,
        max_concurrency: int = 4,
    ):
        self.credentials = credentials
        self.ingestor = ingestor
        self.interval_seconds = interval_seconds
        self.tenant_timeout = tenant_timeout
        self.max_concurrency = max(1, max_concurrency)

        self.last_tick: TickSummary | None = None
        self._task: asyncio.Task | None = None
        self._stop = asyncio.Event()
        self._tick_running = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def tick_in_progress(self) -> bool:
        return self._tick_running

    def start(self) -> None:
        """Start ticking in the background of the running event loop."""
        if self.running:
            return
        self._stop = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name="catalog-sync-scheduler")
        logger.info("Sync scheduler started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        """Stop future ticks and wait for an in-flight tick to finish."""
        if self._task is None:
            return
        self._stop.set()
        await self._task
        self._task = None
        logger.info("Sync scheduler stopped")

    async def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                await self.run_once()

    async def run_once(self) -> TickSummary:
        """Run one sync pass over all tenants. Never raises."""
        if self._tick_running:
            logger.warning("Previous sync pass still running, skipping tick")
            now = utcnow()
            return TickSummary(started_at=now, finished_at=now, skipped=True)

        self._tick_running = True
        summary = TickSummary(started_at=utcnow())
        try:
            try:
                tenants = await self.credentials.list_all()
            except StorageFailed as e:
                logger.error("Could not list tenants for scheduled ingestion", error=str(e))
                return summary

            if not tenants:
                logger.info("No installed tenants found for scheduled ingestion")
                return summary

            logger.info("Running scheduled catalog ingestion", tenants=len(tenants))
            semaphore = asyncio.Semaphore(self.max_concurrency)
            summary.results = list(
                await asyncio.gather(
                    *(
                        self._sync_one(tenant.shop, tenant.access_token, semaphore)
                        for tenant in tenants
                    )
                )
            )
        finally:
            summary.finished_at = utcnow()
            self.last_tick = summary
            self._tick_running = False

        logger.info("Scheduled catalog ingestion finished", **summary.to_dict())
        return summary

    async def _sync_one(
        self, shop: str, access_token: str, semaphore: asyncio.Semaphore
    ) -> SyncResult:
        async with semaphore:
            try:
                return await asyncio.wait_for(
                    self.ingestor.sync_tenant(shop, access_token),
                    timeout=self.tenant_timeout,
                )
            except asyncio.TimeoutError:
                logger.error(
                    "Catalog sync timed out", shop=shop, timeout_seconds=self.tenant_timeout
                )
                result = SyncResult.abandon(shop, f"timed out after {self.tenant_timeout}s")
            except Exception as e:
                logger.error("Catalog sync crashed", shop=shop, error=str(e))
                result = SyncResult.abandon(shop, str(e))
            await self.ingestor.record_outcome(result)
            return result
