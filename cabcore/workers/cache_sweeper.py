"""
Background Geo Cache Sweeper
============================

Runs every ``geo_cache_sweep_interval_seconds`` (default 300 s) and purges
expired entries from the shared geo cache.  ``GeoCache.get`` already refuses
to serve expired entries, so the sweep only bounds memory; a skipped cycle
never causes a stale read.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from cabcore.config import settings
from cabcore.infrastructure.geocache import GeoCache
from cabcore.services import shared

logger = logging.getLogger(__name__)

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


# ── Public API ────────────────────────────────────────────────────────


async def start_sweep_loop() -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop())
    logger.info(
        "Geo cache sweeper started (interval=%ds)",
        settings.geo_cache_sweep_interval_seconds,
    )


async def stop_sweep_loop() -> None:
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    logger.info("Geo cache sweeper stopped")


# ── Internals ─────────────────────────────────────────────────────────


async def _loop() -> None:
    """Periodic loop: sweep then sleep."""
    assert _stop_event is not None
    while not _stop_event.is_set():
        try:
            run_sweep_cycle()
        except Exception:
            logger.exception("Unhandled error in geo cache sweep")
        # Wait for the interval or until stop is signalled
        try:
            await asyncio.wait_for(
                _stop_event.wait(), timeout=settings.geo_cache_sweep_interval_seconds
            )
            break
        except asyncio.TimeoutError:
            pass  # next cycle


def run_sweep_cycle(cache: Optional[GeoCache] = None) -> int:
    """Execute one sweep.  Returns the number of entries removed."""
    if cache is None:
        cache = shared.geo_cache
    removed = cache.sweep()
    if removed:
        logger.info("Geo cache sweep removed %d expired entries", removed)
    return removed
