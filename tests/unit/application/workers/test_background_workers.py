"""Tests for the cleanup and affinity sync workers."""

import asyncio
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from soundledger.application.services import (
    AffinitySyncResult,
    CleanupReport,
    RecommendationService,
    SubscriptionCleanupService,
)
from soundledger.application.workers import (
    AffinitySyncWorker,
    SubscriptionCleanupWorker,
    create_affinity_sync_worker,
    create_subscription_cleanup_worker,
)

# Hey future me - these tests verify the workers:
# 1. Run their service once per cycle and keep stats
# 2. Survive a crashing cycle
# 3. Stop when asked


class TestSubscriptionCleanupWorker:
    @pytest.fixture
    def mock_service(self) -> MagicMock:
        service = MagicMock(spec=SubscriptionCleanupService)
        service.run_cleanup_sweep = AsyncMock(
            return_value=CleanupReport(
                cutoff=datetime(2026, 10, 15, tzinfo=UTC),
                removed_count=3,
                revoked_grants=5,
                users_processed=2,
            )
        )
        return service

    @pytest.fixture
    def worker(self, mock_service: MagicMock) -> SubscriptionCleanupWorker:
        return create_subscription_cleanup_worker(mock_service, interval_seconds=60)

    def test_initial_stats(self, worker: SubscriptionCleanupWorker) -> None:
        stats = worker.get_stats()
        assert stats["running"] is False
        assert stats["interval_seconds"] == 60
        assert stats["cycles_completed"] == 0

    async def test_run_once_accumulates_stats(
        self, worker: SubscriptionCleanupWorker, mock_service: MagicMock
    ) -> None:
        await worker.run_once()
        report = await worker.run_once()

        assert report.removed_count == 3
        assert mock_service.run_cleanup_sweep.await_count == 2
        stats = worker.get_stats()
        assert stats["cycles_completed"] == 2
        assert stats["memberships_removed_total"] == 6
        assert stats["grants_revoked_total"] == 10
        assert stats["last_removed_count"] == 3
        assert stats["last_run_at"] is not None

    async def test_failed_cycle_is_counted_and_loop_keeps_running(
        self, mock_service: MagicMock
    ) -> None:
        mock_service.run_cleanup_sweep.side_effect = RuntimeError("db down")
        worker = SubscriptionCleanupWorker(mock_service, interval_seconds=0)

        task = asyncio.create_task(worker.start())
        await asyncio.sleep(0.05)
        worker.stop()
        await asyncio.wait_for(task, timeout=1)

        stats = worker.get_stats()
        assert stats["errors_total"] >= 1
        assert stats["cycles_completed"] == 0
        assert stats["running"] is False


class TestAffinitySyncWorker:
    @pytest.fixture
    def mock_service(self) -> MagicMock:
        service = MagicMock(spec=RecommendationService)
        service.sync_affinity_data = AsyncMock(
            return_value=AffinitySyncResult(total=4, synced=3, failed=1)
        )
        return service

    async def test_run_once_records_rows(self, mock_service: MagicMock) -> None:
        worker = create_affinity_sync_worker(mock_service, interval_seconds=60)

        result = await worker.run_once()

        assert result.synced == 3
        stats = worker.get_stats()
        assert stats["rows_synced_total"] == 3
        assert stats["rows_failed_total"] == 1
        assert stats["last_skipped"] is False

    async def test_skipped_sync_is_not_an_error(self, mock_service: MagicMock) -> None:
        mock_service.sync_affinity_data.return_value = AffinitySyncResult(skipped=True)
        worker = AffinitySyncWorker(mock_service)

        await worker.run_once()

        stats = worker.get_stats()
        assert stats["errors_total"] == 0
        assert stats["last_skipped"] is True

    async def test_stop_ends_loop(self, mock_service: MagicMock) -> None:
        worker = AffinitySyncWorker(mock_service, interval_seconds=0)

        task = asyncio.create_task(worker.start())
        await asyncio.sleep(0.05)
        assert worker.get_stats()["running"] is True
        worker.stop()
        await asyncio.wait_for(task, timeout=1)

        assert worker.get_stats()["cycles_completed"] >= 1
