"""
Tracker service entrypoint.
Keeps the tracking cache warm for every active event until signalled.
"""
from __future__ import annotations

import asyncio
import signal
import sys
from pathlib import Path

# Ensure backend root is on path when run as python -m tracker.main
_backend = Path(__file__).resolve().parent.parent
if str(_backend) not in sys.path:
    sys.path.insert(0, str(_backend))

from shared.utils.logging import get_logger
from shared.utils.metrics import start_metrics_server

from tracker.engine import LiveTrackingEngine
from tracker.service import TrackingService

logger = get_logger(__name__)


async def refresh_active_events(engine: LiveTrackingEngine) -> int:
    """Rebuild tracking for every live event. Returns how many were refreshed."""
    await engine.clear_cache()
    result = await engine.discover_active_events(include_upcoming=False)
    refreshed = 0
    for event in result.events:
        # events without a feed id resolve by tournament id
        event_id = event.external_event_id or event.tournament_id
        try:
            await engine.get_event_tracking(event_id, event.tour)
            refreshed += 1
        except Exception as e:
            logger.exception("event_refresh_failed", event_id=event_id, tour=event.tour, error=str(e))
    return refreshed


async def run_refresh_loop(engine: LiveTrackingEngine, interval_s: float) -> None:
    while True:
        try:
            refreshed = await refresh_active_events(engine)
            logger.info("tracking_refreshed", events=refreshed)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("tracking_refresh_failed", error=str(e))
        await asyncio.sleep(interval_s)


async def main() -> None:
    service = TrackingService()
    await service.start()
    start_metrics_server()

    loop_task = asyncio.create_task(
        run_refresh_loop(service.engine, service.tracker_settings.cache_ttl_s)
    )

    shutdown = asyncio.Event()

    def on_signal() -> None:
        shutdown.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            asyncio.get_running_loop().add_signal_handler(sig, on_signal)
        except NotImplementedError:
            pass

    await shutdown.wait()

    loop_task.cancel()
    try:
        await loop_task
    except asyncio.CancelledError:
        pass

    await service.stop()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
