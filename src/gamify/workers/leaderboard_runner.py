"""Standalone runner for the periodic leaderboard rebuild.

Rebuilds the leaderboard snapshot every ``GAMIFY_LEADERBOARD_REFRESH_SECONDS``
until SIGINT or SIGTERM.

Usage: python -m gamify.workers.leaderboard_runner
"""

from __future__ import annotations

import asyncio
import signal
import time

import structlog

from gamify.config import get_settings
from gamify.database import close_db
from gamify.engine import GamificationEngine, build_engine

logger = structlog.get_logger()


async def refresh_rankings(engine: GamificationEngine) -> int | None:
    """Rebuild the leaderboard once. Returns rows written, or None on failure.

    Failures are logged and swallowed so the next tick can try again.
    """
    started = time.monotonic()
    try:
        rows = await engine.calculate_ranks()
    except Exception:
        logger.exception("leaderboard_refresh_failed")
        return None
    logger.info(
        "leaderboard_refreshed",
        rows=rows,
        duration_ms=round((time.monotonic() - started) * 1000, 1),
    )
    return rows


async def run(engine: GamificationEngine, interval: float, stop: asyncio.Event) -> None:
    """Refresh immediately, then once per ``interval`` seconds until ``stop`` is set."""
    while not stop.is_set():
        await refresh_rankings(engine)
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval)
        except asyncio.TimeoutError:
            continue


async def main() -> None:
    """Run the leaderboard refresher."""
    settings = get_settings()
    engine = await build_engine(settings)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    logger.info("leaderboard_runner_started", interval=settings.leaderboard_refresh_seconds)
    try:
        await run(engine, settings.leaderboard_refresh_seconds, stop)
    finally:
        await engine.aclose()
        await close_db()
        logger.info("leaderboard_runner_stopped")


if __name__ == "__main__":
    asyncio.run(main())
