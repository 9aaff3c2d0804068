from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Query
from ..schemas import ComparableSearchRequest, ComparableSearchResponse
from ..services.comparable_search import ComparableSearch, ComparableSearchResult, SearchCriteria
from ..core.security import require_api_key, rate_limit

router = APIRouter()

def search_dep() -> ComparableSearch:
    # Cheap factory; the HTTP client is opened per upstream call.
    return ComparableSearch()

def _to_response(result: ComparableSearchResult) -> dict:
    parsed = result.parsed_address
    return {
        "listings": [asdict(c) for c in result.candidates],
        "total": len(result.candidates),
        "total_found": result.total_found,
        "result_cap": result.query.result_cap,
        "statuses": result.statuses,
        "search_strategy": result.strategy,
        "ranked": result.ranked,
        "dropped_malformed": result.dropped,
        "parsed_address": {**asdict(parsed), "confidence": parsed.confidence.value} if parsed else None,
    }

async def _run(svc: ComparableSearch, body: ComparableSearchRequest) -> dict:
    criteria = SearchCriteria(
        city=body.city, zip=body.zip, min_beds=body.min_beds, min_baths=body.min_baths,
        min_price=body.min_price, max_price=body.max_price, property_type=body.property_type,
    )
    try:
        result = await svc.search(
            search=body.search, statuses=body.statuses, limit=body.limit,
            criteria=criteria, sold_within_days=body.sold_within_days,
        )
    except ValueError as exc:
        # unknown status names
        raise HTTPException(status_code=422, detail=str(exc))
    return _to_response(result)

@router.post("/comparables/search", response_model=ComparableSearchResponse)
async def post_comparables(
    body: ComparableSearchRequest,
    _auth = Depends(require_api_key),
    _lim  = Depends(rate_limit),
    svc: ComparableSearch = Depends(search_dep),
):
    return await _run(svc, body)

@router.get("/comparables/search", response_model=ComparableSearchResponse)
async def get_comparables(
    search: str | None = Query(default=None, max_length=300),
    statuses: list[str] | None = Query(default=None),
    statuses_brackets: list[str] | None = Query(default=None, alias="statuses[]"),
    limit: int | None = Query(default=None, ge=1),
    sold_within_days: int | None = Query(default=None, ge=1, le=3650),
    city: str | None = None,
    zip: str | None = None,
    _auth = Depends(require_api_key),
    _lim  = Depends(rate_limit),
    svc: ComparableSearch = Depends(search_dep),
):
    body = ComparableSearchRequest(
        search=search, statuses=(statuses or []) + (statuses_brackets or []) or None,
        limit=limit, sold_within_days=sold_within_days, city=city, zip=zip,
    )
    return await _run(svc, body)
