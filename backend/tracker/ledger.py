"""Daily run ledger: one run record per UTC calendar day, used to attribute issues."""
from __future__ import annotations

from datetime import datetime, time, timedelta, timezone
from typing import Protocol

from shared.utils.logging import get_logger

logger = get_logger(__name__)


class RunStore(Protocol):
    async def ensure_run(self, run_key: str, window_start: datetime, window_end: datetime) -> str: ...


def day_window(now: datetime) -> tuple[datetime, datetime]:
    """[00:00:00, 23:59:59.999999] of `now`'s UTC day."""
    day = now.astimezone(timezone.utc).date()
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1) - timedelta(microseconds=1)


class RunLedger:
    def __init__(self, store: RunStore, prefix: str = "live-tracking") -> None:
        self._store = store
        self._prefix = prefix

    def run_key(self, now: datetime) -> str:
        return f"{self._prefix}-{now.astimezone(timezone.utc).date().isoformat()}"

    async def ensure_run(self, now: datetime) -> str:
        start, end = day_window(now)
        key = self.run_key(now)
        run_id = await self._store.ensure_run(key, start, end)
        logger.debug("tracking_run_ready", run_key=key, run_id=run_id)
        return run_id
