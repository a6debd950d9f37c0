"""Unit tests for the periodic sync scheduler."""

import asyncio

import pytest

from catalog_connector.infrastructure.database.models import TenantCredential
from catalog_connector.infrastructure.database.repositories import (
    CatalogRepository,
    CredentialRepository,
    SyncStatusRepository,
)
from catalog_connector.infrastructure.storefront.client import StorefrontClient
from catalog_connector.services.catalog_sync import CatalogIngestor
from catalog_connector.services.scheduler import SyncScheduler


def _products(*titles: str) -> list[dict]:
    return [{"id": i + 1, "title": t, "body_html": None} for i, t in enumerate(titles)]


async def _install(credentials: CredentialRepository, storefront, shop: str, *titles: str) -> None:
    token = f"token-{shop}"
    storefront.tokens[shop] = token
    storefront.set_catalog(shop, _products(*titles))
    await credentials.upsert(shop, token, "read_products")


@pytest.fixture
def ingestor(
    catalog_repo: CatalogRepository,
    storefront_client: StorefrontClient,
    sync_status_repo: SyncStatusRepository,
) -> CatalogIngestor:
    return CatalogIngestor(catalog_repo, storefront_client, sync_status=sync_status_repo)


@pytest.fixture
def scheduler(credentials_repo: CredentialRepository, ingestor: CatalogIngestor) -> SyncScheduler:
    return SyncScheduler(
        credentials_repo, ingestor, interval_seconds=60, tenant_timeout=1.0, max_concurrency=2
    )


class TestRunOnce:
    """Tests for a single tick."""

    async def test_no_tenants_is_a_no_op(self, scheduler: SyncScheduler, storefront) -> None:
        summary = await scheduler.run_once()

        assert summary.results == []
        assert not summary.skipped
        assert summary.finished_at is not None
        assert storefront.requests == []

    async def test_syncs_every_tenant(
        self,
        scheduler: SyncScheduler,
        credentials_repo: CredentialRepository,
        catalog_repo: CatalogRepository,
        storefront,
    ) -> None:
        await _install(credentials_repo, storefront, "a.example", "Apple")
        await _install(credentials_repo, storefront, "b.example", "Banana", "Berry")

        summary = await scheduler.run_once()

        assert sorted(summary.succeeded) == ["a.example", "b.example"]
        assert summary.failed == []
        assert await catalog_repo.count_for_tenant("a.example") == 1
        assert await catalog_repo.count_for_tenant("b.example") == 2
        assert scheduler.last_tick is summary

    async def test_failing_tenant_does_not_affect_others(
        self,
        scheduler: SyncScheduler,
        credentials_repo: CredentialRepository,
        catalog_repo: CatalogRepository,
        sync_status_repo: SyncStatusRepository,
        storefront,
    ) -> None:
        for shop in ("a.example", "b.example", "c.example"):
            await _install(credentials_repo, storefront, shop, "One", "Two")
        storefront.failing_shops.add("a.example")

        summary = await scheduler.run_once()

        assert summary.failed == ["a.example"]
        assert sorted(summary.succeeded) == ["b.example", "c.example"]
        assert await catalog_repo.count_for_tenant("a.example") == 0
        assert await catalog_repo.count_for_tenant("b.example") == 2
        assert await catalog_repo.count_for_tenant("c.example") == 2
        assert (await sync_status_repo.get("a.example")).status == "error"

    async def test_slow_tenant_times_out_alone(
        self,
        credentials_repo: CredentialRepository,
        catalog_repo: CatalogRepository,
        sync_status_repo: SyncStatusRepository,
        ingestor: CatalogIngestor,
        storefront,
    ) -> None:
        scheduler = SyncScheduler(credentials_repo, ingestor, tenant_timeout=0.2)
        await _install(credentials_repo, storefront, "fast.example", "Quick")
        await _install(credentials_repo, storefront, "slow.example", "Sluggish")
        storefront.slow_shops["slow.example"] = 5

        summary = await scheduler.run_once()

        assert summary.failed == ["slow.example"]
        assert summary.succeeded == ["fast.example"]
        timed_out = next(r for r in summary.results if r.shop == "slow.example")
        assert "timed out" in timed_out.error
        assert await catalog_repo.count_for_tenant("fast.example") == 1
        status = await sync_status_repo.get("slow.example")
        assert status.status == "error"
        assert "timed out" in status.error_message

    async def test_timed_out_tick_keeps_last_item_count(
        self,
        credentials_repo: CredentialRepository,
        sync_status_repo: SyncStatusRepository,
        ingestor: CatalogIngestor,
        storefront,
    ) -> None:
        scheduler = SyncScheduler(credentials_repo, ingestor, tenant_timeout=0.2)
        await _install(credentials_repo, storefront, "a.example", "Apple", "Apricot", "Avocado")
        await scheduler.run_once()
        assert (await sync_status_repo.get("a.example")).last_item_count == 3

        storefront.slow_shops["a.example"] = 5
        await scheduler.run_once()

        status = await sync_status_repo.get("a.example")
        assert status.status == "error"
        assert "timed out" in status.error_message
        assert status.last_item_count == 3

    async def test_crashing_ingestor_is_contained(
        self,
        credentials_repo: CredentialRepository,
        ingestor: CatalogIngestor,
        storefront,
        monkeypatch,
    ) -> None:
        await _install(credentials_repo, storefront, "a.example", "Apple")
        await _install(credentials_repo, storefront, "b.example", "Banana")
        original = ingestor.sync_tenant

        async def sync_tenant(shop, token):
            if shop == "a.example":
                raise RuntimeError("boom")
            return await original(shop, token)

        monkeypatch.setattr(ingestor, "sync_tenant", sync_tenant)
        scheduler = SyncScheduler(credentials_repo, ingestor)

        summary = await scheduler.run_once()

        assert summary.failed == ["a.example"]
        assert summary.succeeded == ["b.example"]

    async def test_overlapping_tick_is_skipped(
        self, credentials_repo: CredentialRepository, ingestor: CatalogIngestor, storefront
    ) -> None:
        scheduler = SyncScheduler(credentials_repo, ingestor, tenant_timeout=5)
        await _install(credentials_repo, storefront, "slow.example", "Sluggish")
        storefront.slow_shops["slow.example"] = 0.3

        first = asyncio.create_task(scheduler.run_once())
        await asyncio.sleep(0.05)
        assert scheduler.tick_in_progress
        second = await scheduler.run_once()
        first_summary = await first

        assert second.skipped
        assert second.results == []
        assert not first_summary.skipped
        assert first_summary.succeeded == ["slow.example"]
        assert len(storefront.product_requests("slow.example")) == 1
        assert not scheduler.tick_in_progress

    async def test_concurrency_is_bounded(
        self, credentials_repo: CredentialRepository, ingestor: CatalogIngestor, storefront, monkeypatch
    ) -> None:
        for i in range(5):
            await _install(credentials_repo, storefront, f"shop{i}.example", "Item")
        in_flight = 0
        peak = 0
        original = ingestor.sync_tenant

        async def sync_tenant(shop, token):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            try:
                await asyncio.sleep(0.02)
                return await original(shop, token)
            finally:
                in_flight -= 1

        monkeypatch.setattr(ingestor, "sync_tenant", sync_tenant)
        scheduler = SyncScheduler(credentials_repo, ingestor, max_concurrency=2)

        summary = await scheduler.run_once()

        assert len(summary.succeeded) == 5
        assert peak <= 2

    async def test_credential_listing_failure_is_logged_not_raised(
        self, scheduler: SyncScheduler, session_factory
    ) -> None:
        async with session_factory() as session:
            await session.run_sync(lambda s: TenantCredential.__table__.drop(s.connection()))
            await session.commit()

        summary = await scheduler.run_once()

        assert summary.results == []
        assert not scheduler.tick_in_progress


class TestLifecycle:
    """Tests for the background loop."""

    async def test_ticks_on_interval(
        self,
        credentials_repo: CredentialRepository,
        catalog_repo: CatalogRepository,
        ingestor: CatalogIngestor,
        storefront,
    ) -> None:
        await _install(credentials_repo, storefront, "a.example", "Apple")
        scheduler = SyncScheduler(credentials_repo, ingestor, interval_seconds=0.05)

        scheduler.start()
        assert scheduler.running
        await asyncio.sleep(0.3)
        await scheduler.stop()

        assert not scheduler.running
        assert scheduler.last_tick is not None
        assert len(storefront.product_requests("a.example")) >= 2
        assert await catalog_repo.count_for_tenant("a.example") == 1

    async def test_first_tick_waits_one_interval(
        self, credentials_repo: CredentialRepository, ingestor: CatalogIngestor, storefront
    ) -> None:
        await _install(credentials_repo, storefront, "a.example", "Apple")
        scheduler = SyncScheduler(credentials_repo, ingestor, interval_seconds=60)

        scheduler.start()
        await asyncio.sleep(0.05)
        await scheduler.stop()

        assert scheduler.last_tick is None
        assert storefront.product_requests("a.example") == []

    async def test_stop_lets_in_flight_tick_finish(
        self,
        credentials_repo: CredentialRepository,
        catalog_repo: CatalogRepository,
        ingestor: CatalogIngestor,
        storefront,
    ) -> None:
        await _install(credentials_repo, storefront, "slow.example", "Sluggish")
        storefront.slow_shops["slow.example"] = 0.3
        scheduler = SyncScheduler(credentials_repo, ingestor, interval_seconds=0.05, tenant_timeout=5)

        scheduler.start()
        await asyncio.sleep(0.15)
        assert scheduler.tick_in_progress
        await scheduler.stop()

        assert not scheduler.tick_in_progress
        assert scheduler.last_tick.succeeded == ["slow.example"]
        assert await catalog_repo.count_for_tenant("slow.example") == 1

    async def test_start_is_idempotent_and_stop_without_start_is_safe(
        self, scheduler: SyncScheduler
    ) -> None:
        await scheduler.stop()

        scheduler.start()
        task = scheduler._task
        scheduler.start()
        assert scheduler._task is task
        await scheduler.stop()


class TestTickSummary:
    async def test_to_dict(
        self, scheduler: SyncScheduler, credentials_repo: CredentialRepository, storefront
    ) -> None:
        await _install(credentials_repo, storefront, "a.example", "Apple", "Apricot")

        data = (await scheduler.run_once()).to_dict()

        assert data["tenants"] == 1
        assert data["succeeded"] == 1
        assert data["failed"] == []
        assert data["items_fetched"] == 2
        assert data["skipped"] is False
