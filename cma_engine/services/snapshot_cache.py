import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from ..core.cache import SnapshotStore, snapshot_store
from ..core.config import Settings, settings
from ..core.metrics import SNAPSHOT_REFRESHES
from ..data.base import MarketPulseSnapshot
from .market_pulse import MarketPulseAggregator, utcnow

logger = logging.getLogger(__name__)

class SnapshotCache:
    """
    Serves the latest market pulse snapshot.

    `get()` never looks at age: it returns whatever is stored and only fetches
    when nothing is. Staleness is enforced solely by `ensure_fresh()`, which an
    external scheduler is expected to call. Refreshes are single-flight: callers
    arriving while an aggregation is running await that same aggregation.
    """
    def __init__(
        self,
        aggregator: Optional[MarketPulseAggregator] = None,
        store: Optional[SnapshotStore] = None,
        cfg: Settings = settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.cfg = cfg
        self.aggregator = aggregator or MarketPulseAggregator(cfg=cfg)
        self.store = store if store is not None else snapshot_store(cfg)
        self.clock = clock
        self.key = cfg.SNAPSHOT_KEY
        self._inflight: Dict[str, asyncio.Task] = {}

    async def get(self, force_refresh: bool = False) -> MarketPulseSnapshot:
        if force_refresh:
            return await self.refresh(reason="force")
        cached = await self.store.get()
        if cached is not None:
            return cached
        logger.info("No cached market pulse snapshot, fetching")
        return await self.refresh(reason="miss")

    async def ensure_fresh(self, max_age_hours: Optional[float] = None) -> bool:
        """Refresh if absent or older than `max_age_hours`. Returns True when a refresh ran."""
        max_age = timedelta(hours=self.cfg.SNAPSHOT_MAX_AGE_HOURS if max_age_hours is None else max_age_hours)
        age = await self.store.age(self.clock())
        if age is None:
            await self.refresh(reason="miss")
            return True
        hours = age.total_seconds() / 3600
        if age > max_age:
            logger.info("Market pulse snapshot is %.2fh old (max %.2fh), refreshing", hours, max_age.total_seconds() / 3600)
            await self.refresh(reason="stale")
            return True
        logger.info("Market pulse snapshot is %.2fh old, still fresh", hours)
        return False

    async def history(self, limit: int = 10) -> List[MarketPulseSnapshot]:
        return await self.store.history(limit)

    async def refresh(self, reason: str = "force") -> MarketPulseSnapshot:
        task = self._inflight.get(self.key)
        if task is None:
            task = asyncio.ensure_future(self._refresh(reason))
            self._inflight[self.key] = task
            task.add_done_callback(self._forget)
        else:
            logger.info("Joining in-flight market pulse refresh")
        # shield: one impatient caller must not cancel the refresh the others await
        return await asyncio.shield(task)

    def _forget(self, task: asyncio.Task) -> None:
        if self._inflight.get(self.key) is task:
            del self._inflight[self.key]
        if not task.cancelled():
            # Mark a failure as retrieved even when every waiting caller was cancelled
            task.exception()

    async def _refresh(self, reason: str) -> MarketPulseSnapshot:
        snapshot = await self.aggregator.collect()
        previous = await self.store.get()
        if previous is not None and snapshot.captured_at <= previous.captured_at:
            # Keep captured_at strictly increasing across stored snapshots
            snapshot = replace(snapshot, captured_at=previous.captured_at + timedelta(microseconds=1))
        await self.store.set(snapshot)
        SNAPSHOT_REFRESHES.labels(reason=reason).inc()
        logger.info("Market pulse snapshot cached at %s (%s)", snapshot.captured_at.isoformat(), reason)
        return snapshot
