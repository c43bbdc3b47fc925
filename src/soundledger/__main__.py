"""Command line entry point: ``python -m soundledger <command>``."""

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict
from typing import Any

from soundledger.config import get_settings
from soundledger.infrastructure.lifecycle import lifespan

logger = logging.getLogger("soundledger")


def _print(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


async def _dispatch(args: argparse.Namespace) -> int:
    settings = get_settings()
    async with lifespan(settings, start_workers=args.command == "run") as container:
        if args.command == "init-db":
            await container.db.create_tables()
            logger.info("Tables created")
        elif args.command == "run":
            # Workers run as tasks started by lifespan(); wait until interrupted
            await asyncio.Event().wait()
        elif args.command == "sweep":
            report = await container.cleanup.run_cleanup_sweep()
            _print({**asdict(report), "users_failed": report.users_failed})
        elif args.command == "sync-affinity":
            _print(asdict(await container.recommendations.sync_affinity_data()))
        elif args.command == "recommend":
            if args.regenerate:
                entries = await container.recommendations.generate_recommendations(
                    args.user_id
                )
            else:
                entries = await container.recommendations.get_recommendations(
                    args.user_id
                )
            _print(
                [
                    {
                        "display_order": entry.display_order,
                        "song_id": entry.song_id,
                        "title": entry.song.display_name if entry.song else None,
                        "score": entry.score,
                        "generated_at": entry.generated_at,
                    }
                    for entry in entries
                ]
            )
        elif args.command == "sync-liked":
            _print(asdict(await container.liked_songs.sync_liked_playlist(args.user_id)))
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="soundledger",
        description="Catalog access, liked songs and recommendations",
    )
    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("init-db", help="Create all tables (development only)")
    commands.add_parser("run", help="Run the background workers until interrupted")
    commands.add_parser("sweep", help="Run one subscription-lapse cleanup sweep")
    commands.add_parser("sync-affinity", help="Export likes to the similarity service")

    recommend = commands.add_parser("recommend", help="Show a user's recommendations")
    recommend.add_argument("user_id", type=int)
    recommend.add_argument(
        "--regenerate", action="store_true", help="Ignore the cache and regenerate"
    )

    sync_liked = commands.add_parser("sync-liked", help="Reconcile a Liked Songs playlist")
    sync_liked.add_argument("user_id", type=int)
    return parser


def main(argv: list[str] | None = None) -> int:
    """Run the CLI."""
    args = build_parser().parse_args(argv)
    try:
        return asyncio.run(_dispatch(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
