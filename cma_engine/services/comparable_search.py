import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from ..core.config import Settings, settings
from ..data.base import ListingCandidate, ListingsClient, ListingStatus, SearchQuery
from ..data.listings_client import listings_client, parse_listings
from .address_parser import AddressConfidence, ParsedAddress, parse_address
from .relevance import rank_comparables

logger = logging.getLogger(__name__)

STRATEGY_STRUCTURED = "structured"
STRATEGY_FREE_TEXT = "free_text"
STRATEGY_CRITERIA = "criteria"

@dataclass(frozen=True)
class SearchCriteria:
    """Optional filters for searches that are not driven by an address."""
    city: Optional[str] = None
    zip: Optional[str] = None
    min_beds: Optional[int] = None
    min_baths: Optional[float] = None
    min_price: Optional[int] = None
    max_price: Optional[int] = None
    property_type: Optional[str] = None

    def terms(self) -> Dict[str, Any]:
        mapping = {
            "city": self.city, "zip": self.zip, "minBeds": self.min_beds, "minBaths": self.min_baths,
            "minPrice": self.min_price, "maxPrice": self.max_price, "style": self.property_type,
        }
        return {k: v for k, v in mapping.items() if v is not None and v != ""}

@dataclass
class ComparableSearchResult:
    candidates: List[ListingCandidate]
    query: SearchQuery
    strategy: str
    ranked: bool = False
    total_found: int = 0
    dropped: int = 0
    parsed_address: Optional[ParsedAddress] = None
    statuses: List[str] = field(default_factory=list)

def normalize_statuses(statuses: Optional[Iterable["str | ListingStatus"]]) -> frozenset:
    """Raises ValueError on an unknown status name."""
    if not statuses:
        return frozenset()
    return frozenset(s if isinstance(s, ListingStatus) else ListingStatus.parse(s) for s in statuses)

def within_sold_window(candidates: List[ListingCandidate], cutoff: date) -> List[ListingCandidate]:
    """Drop closed listings sold before `cutoff`; open listings and undated sales are kept."""
    kept = [
        c for c in candidates
        if c.status != ListingStatus.CLOSED.value or c.sold_date is None or c.sold_date >= cutoff
    ]
    if len(kept) < len(candidates):
        logger.info("Dropped %d closed listings sold before %s", len(candidates) - len(kept), cutoff.isoformat())
    return kept

class ComparableSearch:
    """
    Orchestrates:
      free text → ParsedAddress → structured or free-text query → fetch → rank
    A failed upstream call fails the search; there is no empty-result fallback.
    """
    def __init__(
        self,
        client: Optional[ListingsClient] = None,
        cfg: Settings = settings,
        today: Callable[[], date] = date.today,
    ):
        self.cfg = cfg
        self.client = client or listings_client(cfg)
        self._today = today

    def resolve_cap(self, limit: Optional[int], address_driven: bool) -> int:
        if limit is not None:
            return min(max(1, int(limit)), self.cfg.MAX_RESULT_CAP)
        return self.cfg.ADDRESS_RESULT_CAP if address_driven else self.cfg.DEFAULT_RESULT_CAP

    @staticmethod
    def resolve_statuses(explicit: frozenset, address_driven: bool) -> frozenset:
        if explicit:
            return explicit
        # Sold comps are needed for valuation even though they are off-market
        if address_driven:
            return frozenset({ListingStatus.ACTIVE, ListingStatus.CLOSED})
        return frozenset({ListingStatus.ACTIVE})

    def build_query(
        self,
        search: Optional[str] = None,
        statuses: Optional[Iterable["str | ListingStatus"]] = None,
        limit: Optional[int] = None,
        criteria: Optional[SearchCriteria] = None,
    ) -> Tuple[SearchQuery, Optional[ParsedAddress], str]:
        address_driven = bool(search and search.strip())
        parsed = parse_address(search) if address_driven else None

        if parsed is not None and parsed.confidence is AddressConfidence.PARSED:
            terms, strategy = parsed.structured_terms(), STRATEGY_STRUCTURED
        elif address_driven:
            terms, strategy = {"search": search.strip()}, STRATEGY_FREE_TEXT
        else:
            terms, strategy = (criteria or SearchCriteria()).terms(), STRATEGY_CRITERIA

        cap = self.resolve_cap(limit, address_driven)
        query = SearchQuery(
            status_filters=self.resolve_statuses(normalize_statuses(statuses), address_driven),
            result_cap=cap,
            terms=terms,
            address_driven=address_driven,
            # Over-fetch address searches so ranking can choose the closest `cap`
            upstream_page_size=max(cap, self.cfg.ADDRESS_FETCH_SIZE) if address_driven else cap,
        )
        return query, parsed, strategy

    def sold_cutoff(self, sold_within_days: Optional[int] = None) -> date:
        return self._today() - timedelta(days=sold_within_days or self.cfg.SOLD_LOOKBACK_DAYS)

    def upstream_params(self, query: SearchQuery, sold_within_days: Optional[int] = None) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "listings": "true",
            "type": "Sale",
            "resultsPerPage": query.upstream_page_size,
            "pageNum": 1,
            "sortBy": "createdOnDesc",
            "standardStatus": [s.value for s in ListingStatus if s in query.status_filters],
        }
        if query.status_filters == {ListingStatus.CLOSED}:
            # A sold-date bound would also drop open listings, so only closed-only queries send it
            params["minSoldDate"] = self.sold_cutoff(sold_within_days).isoformat()
        params.update(query.terms)
        return params

    async def search(
        self,
        search: Optional[str] = None,
        statuses: Optional[Iterable["str | ListingStatus"]] = None,
        limit: Optional[int] = None,
        criteria: Optional[SearchCriteria] = None,
        sold_within_days: Optional[int] = None,
    ) -> ComparableSearchResult:
        query, parsed, strategy = self.build_query(search, statuses, limit, criteria)
        logger.info(
            "Comparable search strategy=%s statuses=%s cap=%d%s", strategy,
            sorted(s.value for s in query.status_filters), query.result_cap,
            f" confidence={parsed.confidence.value}" if parsed else "",
        )

        self.client.ensure_configured()
        # Upstream errors propagate: permanent as-is, transient as service unavailable
        payload = await self.client.fetch(self.upstream_params(query, sold_within_days))
        candidates, dropped = parse_listings(payload)
        if ListingStatus.CLOSED in query.status_filters:
            candidates = within_sold_window(candidates, self.sold_cutoff(sold_within_days))

        ranked = False
        if query.address_driven:
            results, ranked = rank_comparables(parsed, candidates, query.result_cap)
        else:
            results = candidates[:query.result_cap]

        count = payload.get("count")
        total = count if isinstance(count, int) and not isinstance(count, bool) else len(candidates)
        logger.info("Comparable search returned %d of %d candidates (ranked=%s)", len(results), total, ranked)
        return ComparableSearchResult(
            candidates=results,
            query=query,
            strategy=strategy,
            ranked=ranked,
            total_found=total,
            dropped=dropped,
            parsed_address=parsed,
            statuses=[s.value for s in ListingStatus if s in query.status_filters],
        )
