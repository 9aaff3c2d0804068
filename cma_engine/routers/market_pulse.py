import json

from fastapi import APIRouter, Depends, Header, Query, Request, Response
from ..schemas import EnsureFreshResponse, MarketPulseResponse
from ..services.snapshot_cache import SnapshotCache
from ..core.security import require_api_key, rate_limit
from ..core.utils import weak_etag

router = APIRouter()

def snapshot_cache_dep(request: Request) -> SnapshotCache:
    # One cache per app so single-flight covers every request
    return request.app.state.snapshot_cache

@router.get("/market-pulse", response_model=MarketPulseResponse)
async def get_market_pulse(
    response: Response,
    refresh: bool = Query(default=False),
    if_none_match: str | None = Header(default=None),
    _auth = Depends(require_api_key),
    _lim  = Depends(rate_limit),
    snapshots: SnapshotCache = Depends(snapshot_cache_dep),
):
    snapshot = await snapshots.get(force_refresh=refresh)
    payload = snapshot.to_dict()
    etag = weak_etag(json.dumps(payload, separators=(',',':'), sort_keys=True).encode("utf-8"))
    if if_none_match and if_none_match == etag:
        return Response(status_code=304, headers={"ETag": etag})
    response.headers["ETag"] = etag
    payload["etag"] = etag
    return payload

@router.post("/market-pulse/ensure-fresh", response_model=EnsureFreshResponse)
async def ensure_fresh_market_pulse(
    max_age_hours: float | None = Query(default=None, gt=0),
    _auth = Depends(require_api_key),
    snapshots: SnapshotCache = Depends(snapshot_cache_dep),
):
    """Entry point for the external scheduler; the only path that checks staleness."""
    refreshed = await snapshots.ensure_fresh(max_age_hours)
    current = await snapshots.get()
    return {"refreshed": refreshed, "captured_at": current.captured_at}

@router.get("/market-pulse/history", response_model=list[MarketPulseResponse])
async def market_pulse_history(
    limit: int = Query(default=10, ge=1, le=100),
    _auth = Depends(require_api_key),
    snapshots: SnapshotCache = Depends(snapshot_cache_dep),
):
    return [s.to_dict() for s in await snapshots.history(limit)]
