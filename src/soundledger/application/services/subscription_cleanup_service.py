"""Subscription-lapse cleanup sweep.

Hey future me - this service handles DESTRUCTIVE bulk operations! It revokes
subscription-granted access of users whose subscription ended more than the grace
period ago:

    1. cutoff = now - grace period (48h by default)
    2. users whose LATEST subscription is cancelled/expired and ended before cutoff
    3. re-check that latest record per user; skip anyone entitled again or still
       inside the grace period
    4. per user, in its OWN transaction:
         delete memberships backed by SUBSCRIPTION ownership records
         delete the SUBSCRIPTION ownership records themselves
       PURCHASED records and their memberships are never touched.

One user's failure is logged and the sweep moves on. Running it twice in a row removes
nothing the second time.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from soundledger.config.settings import CleanupSettings
from soundledger.domain.entities import Subscription, ensure_utc_aware, utc_now
from soundledger.infrastructure.persistence.repositories import (
    OwnershipRepository,
    PlaylistRepository,
    SubscriptionRepository,
)

logger = logging.getLogger(__name__)


@dataclass
class CleanupReport:
    """Result of one sweep."""

    cutoff: datetime
    removed_count: int = 0
    revoked_grants: int = 0
    users_processed: int = 0
    users_skipped: int = 0
    failed_user_ids: list[int] = field(default_factory=list)

    @property
    def users_failed(self) -> int:
        return len(self.failed_user_ids)


class SubscriptionCleanupService:
    """Revokes subscription grants after a lapse plus grace period."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: CleanupSettings,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize cleanup service.

        Args:
            session_factory: Factory for creating DB sessions
            settings: Grace period and sweep interval
            clock: Returns "now" (tests inject a fixed clock)
        """
        self._session_factory = session_factory
        self.settings = settings
        self._clock = clock

    async def run_cleanup_sweep(self) -> CleanupReport:
        """Run one sweep. Never fails because there's nothing to clean."""
        now = self._clock()
        report = CleanupReport(
            cutoff=now - timedelta(hours=self.settings.grace_period_hours)
        )

        async with self._session_factory() as session:
            lapsed_user_ids = await SubscriptionRepository(session).list_lapsed_user_ids(
                report.cutoff
            )

        if not lapsed_user_ids:
            logger.debug("Cleanup sweep: no lapsed subscriptions before %s", report.cutoff)
            return report

        for user_id in lapsed_user_ids:
            try:
                await self._clean_user(user_id, now, report)
            except Exception:
                # Per-user isolation: the rest of the sweep must still run
                report.failed_user_ids.append(user_id)
                logger.warning(
                    "Cleanup failed for user %s, continuing sweep", user_id, exc_info=True
                )

        logger.info(
            "Cleanup sweep finished: %d memberships and %d grants removed for %d users "
            "(%d skipped as entitled or in grace, %d failed)",
            report.removed_count,
            report.revoked_grants,
            report.users_processed,
            report.users_skipped,
            report.users_failed,
        )
        return report

    @staticmethod
    def _is_lapsed(latest: Subscription, now: datetime, cutoff: datetime) -> bool:
        if latest.is_entitled(now) or latest.end_date is None:
            return False
        return ensure_utc_aware(latest.end_date) < cutoff

    async def _clean_user(self, user_id: int, now: datetime, report: CleanupReport) -> None:
        async with self._session_factory() as session:
            # Re-read inside the user's own transaction: a resubscription or a fresh
            # cancellation may have landed after the lapsed list was built
            latest = await SubscriptionRepository(session).get_latest(user_id)
            if latest is None or not self._is_lapsed(latest, now, report.cutoff):
                report.users_skipped += 1
                logger.debug("User %s is entitled or inside grace, keeping grants", user_id)
                return

            memberships = await PlaylistRepository(session).delete_revocable_memberships(
                user_id
            )
            grants = await OwnershipRepository(session).delete_revocable_for_user(user_id)
            await session.commit()

        report.removed_count += memberships
        report.revoked_grants += grants
        report.users_processed += 1
        if memberships or grants:
            logger.info(
                "Revoked %d grants (%d memberships) of user %s", grants, memberships, user_id
            )
