"""Subscription Cleanup Worker - runs the lapse sweep on an interval.

Hey future me - this worker is the "surrounding scheduler" for
SubscriptionCleanupService. It does nothing clever itself:

    every interval_seconds (default: daily)
      → new correlation id
      → run_cleanup_sweep()
      → update stats, log health

A crashed cycle is logged and the next cycle runs as usual. The sweep is idempotent,
so running it more often than needed only costs a few queries.
"""

import asyncio
import logging
import time
from datetime import UTC, datetime
from typing import Any

from soundledger.application.services.subscription_cleanup_service import (
    CleanupReport,
    SubscriptionCleanupService,
)
from soundledger.infrastructure.observability import (
    log_operation,
    log_worker_health,
    set_correlation_id,
)

logger = logging.getLogger(__name__)


class SubscriptionCleanupWorker:
    """Worker that periodically revokes lapsed subscription grants.

    Lifecycle:
    - Created in lifecycle.py during app startup
    - Runs as asyncio task via start()
    - Stopped gracefully via stop() during shutdown
    """

    def __init__(
        self,
        service: SubscriptionCleanupService,
        interval_seconds: int = 86400,
    ) -> None:
        """Initialize the cleanup worker.

        Args:
            service: The sweep to run
            interval_seconds: Seconds between sweeps (default: 1 day)
        """
        self._service = service
        self._interval = interval_seconds
        self._running = False
        self._started_at: float | None = None
        self._stats: dict[str, Any] = {
            "cycles_completed": 0,
            "errors_total": 0,
            "memberships_removed_total": 0,
            "grants_revoked_total": 0,
            "last_run_at": None,
            "last_removed_count": 0,
        }

    async def start(self) -> None:
        """Start the worker. Runs until stop() is called."""
        self._running = True
        self._started_at = time.monotonic()
        logger.info(f"SubscriptionCleanupWorker started (interval={self._interval}s)")

        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                # Log but don't crash - we'll try again next cycle
                self._stats["errors_total"] += 1
                logger.exception(f"SubscriptionCleanupWorker error: {e}")

            await asyncio.sleep(self._interval)

    def stop(self) -> None:
        """Signal the worker to stop."""
        self._running = False
        logger.info("SubscriptionCleanupWorker stopping...")

    async def run_once(self) -> CleanupReport:
        """Run a single sweep cycle."""
        set_correlation_id()
        async with log_operation(logger, "cleanup_sweep") as summary:
            report = await self._service.run_cleanup_sweep()
            summary.update(
                removed_count=report.removed_count,
                revoked_grants=report.revoked_grants,
                users_failed=report.users_failed,
            )

        self._stats["cycles_completed"] += 1
        self._stats["memberships_removed_total"] += report.removed_count
        self._stats["grants_revoked_total"] += report.revoked_grants
        self._stats["last_run_at"] = datetime.now(UTC)
        self._stats["last_removed_count"] = report.removed_count

        log_worker_health(
            logger,
            "subscription_cleanup",
            cycles_completed=self._stats["cycles_completed"],
            errors_total=self._stats["errors_total"],
            uptime_seconds=(
                time.monotonic() - self._started_at if self._started_at else 0.0
            ),
        )
        return report

    def get_stats(self) -> dict[str, Any]:
        """Get worker statistics."""
        return {
            **self._stats,
            "running": self._running,
            "interval_seconds": self._interval,
        }


# Hey future me - factory function for easy worker creation from app context
def create_subscription_cleanup_worker(
    service: SubscriptionCleanupService,
    interval_seconds: int = 86400,
) -> SubscriptionCleanupWorker:
    """Create a SubscriptionCleanupWorker with the given configuration."""
    return SubscriptionCleanupWorker(service=service, interval_seconds=interval_seconds)
