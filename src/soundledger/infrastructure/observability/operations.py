"""Operation timing and worker health log helpers.

Hey future me - services and workers log their big operations through these so the
event names stay greppable: "<operation>.started", "<operation>.completed",
"<operation>.failed", and "worker.health".
"""

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any


@asynccontextmanager
async def log_operation(
    logger: logging.Logger,
    operation: str,
    **context: Any,
) -> AsyncIterator[dict[str, Any]]:
    """Log start/end of an operation with its duration.

    The yielded dict is merged into the completion log, so callers can attach
    result counts:

        async with log_operation(logger, "cleanup_sweep") as summary:
            report = await sweep()
            summary["removed"] = report.removed_count

    On exception the failure is logged with traceback and re-raised.
    """
    start = time.monotonic()
    summary: dict[str, Any] = {}
    logger.info(f"{operation}.started", extra=context)

    try:
        yield summary
    except Exception as e:
        duration_ms = int((time.monotonic() - start) * 1000)
        logger.error(
            f"{operation}.failed",
            extra={
                **context,
                "duration_ms": duration_ms,
                "error": str(e),
                "error_type": type(e).__name__,
            },
            exc_info=True,
        )
        raise

    duration_ms = int((time.monotonic() - start) * 1000)
    logger.info(
        f"{operation}.completed",
        extra={**context, **summary, "duration_ms": duration_ms},
    )


def log_worker_health(
    logger: logging.Logger,
    worker_name: str,
    cycles_completed: int,
    errors_total: int,
    uptime_seconds: float,
    extra_stats: dict[str, Any] | None = None,
) -> None:
    """Log worker health status in one consistent format."""
    log_data: dict[str, Any] = {
        "worker": worker_name,
        "cycles_completed": cycles_completed,
        "errors_total": errors_total,
        "uptime_seconds": int(uptime_seconds),
    }
    if extra_stats:
        log_data.update(extra_stats)

    logger.info("worker.health", extra=log_data)
