#!/usr/bin/env python3
"""Follow a running backend and print live statistics as detections arrive."""

import argparse
import asyncio
import logging
import os

from shelterwatch.feeds import RemoteFeed
from shelterwatch.settings import get_settings, setup_logging
from shelterwatch.synchronizer import ClientStateSynchronizer

logger = logging.getLogger("watch")


def render(sync: ClientStateSynchronizer) -> None:
    stats = sync.stats
    types = ", ".join(f"{name}: {count}" for name, count in stats.type_counts.items()) or "none"
    contexts = ", ".join(f"{name} ({count})" for name, count in stats.top_contexts) or "none"
    logger.info(
        "[%s] total=%d | %s | top contexts: %s | avg confidence %.0f%% | new: %d",
        sync.connection_status.value,
        stats.total,
        types,
        contexts,
        stats.average_confidence * 100,
        len(sync.recent),
    )


async def watch(backend_url: str, catch_up_limit: int) -> None:
    feed = RemoteFeed(backend_url)
    sync = ClientStateSynchronizer(feed, catch_up_limit=catch_up_limit, on_change=render)
    try:
        await sync.run()
    finally:
        await sync.deactivate()
        await feed.close()


def main():
    parser = argparse.ArgumentParser(description="Live detection watcher")
    parser.add_argument("--limit", type=int, default=None, help="Catch-up window (default: settings)")
    args = parser.parse_args()

    settings = get_settings()
    setup_logging(settings)
    backend_url = os.environ.get("BACKEND_URL", "http://localhost:8000").rstrip("/")

    try:
        asyncio.run(watch(backend_url, args.limit or settings.catch_up_limit))
    except KeyboardInterrupt:
        print("\nWatcher stopped.")


if __name__ == "__main__":
    main()
