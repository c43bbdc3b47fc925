"""Background workers."""

from soundledger.application.workers.affinity_sync_worker import (
    AffinitySyncWorker,
    create_affinity_sync_worker,
)
from soundledger.application.workers.subscription_cleanup_worker import (
    SubscriptionCleanupWorker,
    create_subscription_cleanup_worker,
)

__all__ = [
    "AffinitySyncWorker",
    "SubscriptionCleanupWorker",
    "create_affinity_sync_worker",
    "create_subscription_cleanup_worker",
]
