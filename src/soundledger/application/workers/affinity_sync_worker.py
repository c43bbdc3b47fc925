"""Affinity Sync Worker - periodically exports the like ledger.

Hey future me - the similarity service only knows what we push to it. This worker calls
RecommendationService.sync_affinity_data() every interval (nightly by default). When the
service isn't configured the sync returns skipped=True and the cycle is a cheap no-op.
"""

import asyncio
import logging
import time
from datetime import UTC, datetime
from typing import Any

from soundledger.application.services.recommendation_service import (
    AffinitySyncResult,
    RecommendationService,
)
from soundledger.infrastructure.observability import (
    log_operation,
    log_worker_health,
    set_correlation_id,
)

logger = logging.getLogger(__name__)


class AffinitySyncWorker:
    """Worker that pushes likes (and embeddings) to the similarity service."""

    def __init__(
        self,
        service: RecommendationService,
        interval_seconds: int = 86400,
    ) -> None:
        """Initialize the affinity sync worker.

        Args:
            service: Recommendation service owning the export
            interval_seconds: Seconds between exports (default: 1 day)
        """
        self._service = service
        self._interval = interval_seconds
        self._running = False
        self._started_at: float | None = None
        self._stats: dict[str, Any] = {
            "cycles_completed": 0,
            "errors_total": 0,
            "rows_synced_total": 0,
            "rows_failed_total": 0,
            "last_run_at": None,
            "last_skipped": False,
        }

    async def start(self) -> None:
        """Start the worker. Runs until stop() is called."""
        self._running = True
        self._started_at = time.monotonic()
        logger.info(f"AffinitySyncWorker started (interval={self._interval}s)")

        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                self._stats["errors_total"] += 1
                logger.exception(f"AffinitySyncWorker error: {e}")

            await asyncio.sleep(self._interval)

    def stop(self) -> None:
        """Signal the worker to stop."""
        self._running = False
        logger.info("AffinitySyncWorker stopping...")

    async def run_once(self) -> AffinitySyncResult:
        """Run a single export cycle."""
        set_correlation_id()
        async with log_operation(logger, "affinity_sync") as summary:
            result = await self._service.sync_affinity_data()
            summary.update(
                synced=result.synced, failed=result.failed, skipped=result.skipped
            )

        self._stats["cycles_completed"] += 1
        self._stats["rows_synced_total"] += result.synced
        self._stats["rows_failed_total"] += result.failed
        self._stats["last_run_at"] = datetime.now(UTC)
        self._stats["last_skipped"] = result.skipped

        log_worker_health(
            logger,
            "affinity_sync",
            cycles_completed=self._stats["cycles_completed"],
            errors_total=self._stats["errors_total"],
            uptime_seconds=(
                time.monotonic() - self._started_at if self._started_at else 0.0
            ),
            extra_stats={"rows_synced_total": self._stats["rows_synced_total"]},
        )
        return result

    def get_stats(self) -> dict[str, Any]:
        """Get worker statistics."""
        return {
            **self._stats,
            "running": self._running,
            "interval_seconds": self._interval,
        }


def create_affinity_sync_worker(
    service: RecommendationService,
    interval_seconds: int = 86400,
) -> AffinitySyncWorker:
    """Create an AffinitySyncWorker with the given configuration."""
    return AffinitySyncWorker(service=service, interval_seconds=interval_seconds)
