"""Application lifecycle: wiring, worker startup and shutdown.

Hey future me - everything that needs settings is built HERE and nowhere else. Services
only ever see a session_factory, their settings section and optional clients. The
external clients are only created when their section is configured, so "not configured"
means "client is None" all the way down.
"""

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from sqlalchemy.engine import make_url

from soundledger.application.services import (
    AccessService,
    LikedSongsService,
    LikeService,
    PlaylistService,
    RecommendationService,
    SubscriptionCleanupService,
)
from soundledger.application.workers import (
    create_affinity_sync_worker,
    create_subscription_cleanup_worker,
)
from soundledger.config import Settings
from soundledger.infrastructure.integrations import EmbeddingClient, SimilarityClient
from soundledger.infrastructure.observability import configure_logging
from soundledger.infrastructure.persistence import Database

logger = logging.getLogger(__name__)

# Seconds a worker gets to finish its current cycle on shutdown
WORKER_SHUTDOWN_TIMEOUT = 10.0


def _ensure_sqlite_directory(url: str) -> None:
    """Create the parent directory of a file-backed SQLite database."""
    parsed = make_url(url)
    if not parsed.drivername.startswith("sqlite") or not parsed.database:
        return
    if parsed.database == ":memory:":
        return
    parent = Path(parsed.database).parent
    if str(parent) not in ("", "."):
        parent.mkdir(parents=True, exist_ok=True)
        logger.debug("Ensured SQLite parent directory exists: %s", parent)


@dataclass
class AppContainer:
    """Everything a running process needs, built from one Settings object."""

    settings: Settings
    db: Database
    access: AccessService
    liked_songs: LikedSongsService
    likes: LikeService
    playlists: PlaylistService
    recommendations: RecommendationService
    cleanup: SubscriptionCleanupService
    similarity_client: SimilarityClient | None = None
    embedding_client: EmbeddingClient | None = None
    workers: dict[str, Any] = field(default_factory=dict)

    async def close(self) -> None:
        """Close HTTP clients and the database engine."""
        for client in (self.similarity_client, self.embedding_client):
            if client is not None:
                await client.close()
        await self.db.close()
        logger.info("Database connection closed")


def build_container(settings: Settings) -> AppContainer:
    """Wire database, clients and services together."""
    _ensure_sqlite_directory(settings.database.url)
    db = Database(settings.database)
    session_factory = db.session_factory

    similarity_client = None
    if settings.similarity.is_configured:
        similarity_client = SimilarityClient(settings.similarity)
    else:
        logger.info("Similarity service not configured, using local recommendations only")

    embedding_client = None
    if settings.embeddings.is_configured:
        embedding_client = EmbeddingClient(settings.embeddings)

    liked_songs = LikedSongsService(session_factory)
    recommendations = RecommendationService(
        session_factory,
        settings.recommendations,
        similarity_client=similarity_client,
        embedding_client=embedding_client,
    )

    container = AppContainer(
        settings=settings,
        db=db,
        access=AccessService(session_factory),
        liked_songs=liked_songs,
        likes=LikeService(session_factory, liked_songs=liked_songs),
        playlists=PlaylistService(session_factory),
        recommendations=recommendations,
        cleanup=SubscriptionCleanupService(session_factory, settings.cleanup),
        similarity_client=similarity_client,
        embedding_client=embedding_client,
    )
    container.workers = {
        "subscription_cleanup": create_subscription_cleanup_worker(
            container.cleanup, interval_seconds=settings.cleanup.interval_seconds
        ),
        "affinity_sync": create_affinity_sync_worker(
            recommendations, interval_seconds=settings.affinity_sync.interval_seconds
        ),
    }
    return container


async def _stop_worker(name: str, worker: Any, task: asyncio.Task[None]) -> None:
    worker.stop()
    try:
        await asyncio.wait_for(task, timeout=WORKER_SHUTDOWN_TIMEOUT)
    except TimeoutError:
        # Workers sleep a full interval between cycles, so cancelling is the normal path
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
    except Exception as e:
        logger.exception("Error stopping %s: %s", name, e)
    logger.info("%s stopped", name)


@asynccontextmanager
async def lifespan(
    settings: Settings, start_workers: bool = True
) -> AsyncGenerator[AppContainer, None]:
    """Configure logging, build the container, run workers, clean up on exit."""
    configure_logging(
        log_level=settings.observability.log_level,
        json_format=settings.observability.log_json_format,
        app_name=settings.app_name,
    )
    logger.info("Starting %s (%s)", settings.app_name, settings.app_env)

    container = build_container(settings)
    tasks: dict[str, asyncio.Task[None]] = {}
    try:
        if start_workers:
            for name, worker in container.workers.items():
                tasks[name] = asyncio.create_task(worker.start(), name=name)
                logger.info("%s worker started", name)
        yield container
    finally:
        logger.info("Shutting down %s", settings.app_name)
        for name, task in tasks.items():
            await _stop_worker(name, container.workers[name], task)
        await container.close()
