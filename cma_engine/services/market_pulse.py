import asyncio
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from ..core.config import Settings, settings
from ..core.errors import UpstreamError
from ..core.metrics import PULSE_BUCKET_DEGRADED
from ..data.base import ListingsClient, ListingStatus, MarketPulseSnapshot
from ..data.listings_client import listings_client, parse_count

logger = logging.getLogger(__name__)

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

class MarketPulseAggregator:
    """
    Builds one MarketPulseSnapshot for the configured office from four
    count-only queries issued concurrently. A bucket whose query fails is
    logged and counted as 0; the snapshot is still produced.
    """
    BUCKETS = ("active", "active_under_contract", "pending", "closed")

    def __init__(
        self,
        client: Optional[ListingsClient] = None,
        cfg: Settings = settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.cfg = cfg
        self.client = client or listings_client(cfg)
        self.clock = clock

    def bucket_params(self, today: date) -> Dict[str, Dict[str, Any]]:
        base = {"listings": "false", "type": "Sale", "officeId": self.cfg.OFFICE_ID}
        min_sold = (today - timedelta(days=self.cfg.CLOSED_LOOKBACK_DAYS)).isoformat()
        return {
            "active": {**base, "standardStatus": ListingStatus.ACTIVE.value},
            "active_under_contract": {**base, "standardStatus": ListingStatus.ACTIVE_UNDER_CONTRACT.value},
            "pending": {**base, "standardStatus": ListingStatus.PENDING.value},
            # Closed = sold in the lookback window
            "closed": {**base, "status": "U", "lastStatus": "Sld", "minSoldDate": min_sold},
        }

    async def _count(self, bucket: str, params: Dict[str, Any]) -> int:
        try:
            return parse_count(await self.client.fetch(params))
        except UpstreamError as exc:
            PULSE_BUCKET_DEGRADED.labels(bucket=bucket).inc()
            logger.warning("Market pulse bucket %r degraded to 0: %s", bucket, exc)
            return 0

    async def collect(self) -> MarketPulseSnapshot:
        self.client.ensure_configured(require_office=True)
        requests = self.bucket_params(self.clock().date())
        logger.info("Fetching market pulse for %s (%s)", self.cfg.OFFICE_NAME, self.cfg.OFFICE_ID)

        counts = await asyncio.gather(*(self._count(b, requests[b]) for b in self.BUCKETS))
        by_bucket = dict(zip(self.BUCKETS, counts))

        snapshot = MarketPulseSnapshot.from_counts(
            **by_bucket, captured_at=self.clock(), office_name=self.cfg.OFFICE_NAME
        )
        logger.info(
            "%s - Active: %d, Under Contract: %d, Pending: %d, Closed (%dd): %d",
            self.cfg.OFFICE_NAME, snapshot.active, snapshot.active_under_contract,
            snapshot.pending, self.cfg.CLOSED_LOOKBACK_DAYS, snapshot.closed,
        )
        return snapshot
