import asyncio
import logging
import math
import time
from datetime import date
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .base import ListingsClient, ListingCandidate, ListingStatus
from ..core.config import Settings, settings
from ..core.errors import ConfigurationError, UpstreamPermanentError, UpstreamTransientError
from ..core.metrics import MALFORMED_LISTINGS, UPSTREAM_ATTEMPTS, UPSTREAM_CALLS, UPSTREAM_LATENCY
from ..core.utils import fnv1a_32, seeded_rand

logger = logging.getLogger(__name__)

API_KEY_HEADER = "REPLIERS-API-KEY"

# ----- Parse boundary: upstream JSON -> ListingCandidate -----

class UpstreamListing(BaseModel):
    """
    One entry of the upstream `listings` array.
    Fields may arrive flat or nested under `address` / `map` / `details`; both are accepted.
    """
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str = Field(min_length=1)
    street_number: Optional[str] = Field(default=None, alias="streetNumber")
    street_name: Optional[str] = Field(default=None, alias="streetName")
    street_suffix: Optional[str] = Field(default=None, alias="streetSuffix")
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    subdivision: Optional[str] = None
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    status: str = "Unknown"
    list_price: float = Field(default=0, alias="listPrice")
    sold_price: Optional[float] = Field(default=None, alias="soldPrice")
    list_date: Optional[date] = Field(default=None, alias="listDate")
    sold_date: Optional[date] = Field(default=None, alias="soldDate")
    days_on_market: Optional[int] = Field(default=None, alias="daysOnMarket")
    beds: Optional[float] = None
    baths: Optional[float] = None
    sqft: Optional[int] = None
    year_built: Optional[int] = Field(default=None, alias="yearBuilt")
    property_type: Optional[str] = Field(default=None, alias="propertyType")

    @model_validator(mode="before")
    @classmethod
    def _flatten(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            raise ValueError("listing entry must be an object")
        flat = dict(data)
        details = flat.pop("details", None)
        details = details if isinstance(details, dict) else {}
        for nested in ("address", "map"):
            section = flat.pop(nested, None)
            if isinstance(section, dict):
                for key, value in section.items():
                    flat.setdefault(key, value)
        flat.setdefault("id", flat.get("mlsNumber") or flat.get("listingId"))
        if "zip" not in flat and flat.get("postalCode"):
            flat["zip"] = flat["postalCode"]
        if flat.get("soldPrice") is None and flat.get("closePrice") is not None:
            flat["soldPrice"] = flat["closePrice"]
        flat["status"] = _status_of(flat)
        # First non-empty source wins, nested `details` before flat RESO names
        sources = {
            "beds": (details.get("numBedrooms"), flat.get("bedroomsTotal"), flat.get("beds")),
            "baths": (details.get("numBathrooms"), flat.get("bathroomsTotal"), flat.get("baths")),
            "sqft": (details.get("sqft"), flat.get("livingArea"), flat.get("sqft")),
            "yearBuilt": (details.get("yearBuilt"), flat.get("yearBuilt")),
            "propertyType": (details.get("style"), details.get("propertyType"), flat.get("propertyType")),
            "soldDate": (flat.get("soldDate"), flat.get("closeDate")),
            "daysOnMarket": (flat.get("daysOnMarket"), flat.get("dom")),
            "subdivision": (flat.get("neighborhood"), flat.get("area"), flat.get("subdivision")),
        }
        for key, candidates in sources.items():
            flat[key] = next((v for v in candidates if v not in (None, "")), None)
        return flat

    @field_validator("id", "street_number", "zip", mode="before")
    @classmethod
    def _stringify(cls, v):
        # MLS numbers and street numbers are sometimes sent as JSON numbers
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(int(v))
        return v

    @field_validator("list_price", mode="before")
    @classmethod
    def _missing_price_is_zero(cls, v):
        return 0 if v is None else v

    @field_validator("beds", "baths", mode="before")
    @classmethod
    def _lenient_float(cls, v):
        return _number(v)

    @field_validator("sqft", "year_built", "days_on_market", mode="before")
    @classmethod
    def _lenient_int(cls, v):
        n = _number(v)
        return None if n is None else int(n)

    @field_validator("list_date", "sold_date", mode="before")
    @classmethod
    def _date_part(cls, v):
        # "2026-05-01T00:00:00.000Z" -> 2026-05-01; unreadable dates are unknown
        if isinstance(v, str) and v.strip():
            try:
                return date.fromisoformat(v.strip()[:10])
            except ValueError:
                return None
        return v if isinstance(v, date) else None

    def to_candidate(self) -> ListingCandidate:
        street = " ".join(p for p in (self.street_number, self.street_name, self.street_suffix) if p)
        locality = " ".join(p for p in (self.state, self.zip) if p)
        address = ", ".join(p for p in (street, self.city, locality) if p)
        has_coords = self.latitude is not None and self.longitude is not None
        return ListingCandidate(
            id=self.id,
            address=address,
            status=self.status,
            list_price=self.list_price,
            street_number=self.street_number,
            street_name=self.street_name,
            street_suffix=self.street_suffix,
            city=self.city,
            zip=self.zip,
            latitude=self.latitude if has_coords else None,
            longitude=self.longitude if has_coords else None,
            sold_price=self.sold_price,
            sold_date=self.sold_date,
            list_date=self.list_date,
            days_on_market=self.days_on_market,
            beds=self.beds,
            baths=self.baths,
            sqft=self.sqft,
            year_built=self.year_built,
            property_type=self.property_type,
            subdivision=self.subdivision,
        )

def _number(v: Any) -> Optional[float]:
    # Free-form upstream values ("1500-2000", "N/A") read as unknown, not malformed
    if isinstance(v, bool) or not isinstance(v, (int, float, str)):
        return None
    try:
        n = float(v.strip().replace(",", "")) if isinstance(v, str) else float(v)
    except ValueError:
        return None
    return n if math.isfinite(n) else None

def _status_of(raw: Dict[str, Any]) -> str:
    for key in ("standardStatus", "status"):
        value = raw.get(key)
        if isinstance(value, str) and value.strip():
            try:
                return ListingStatus.parse(value).value
            except ValueError:
                if key == "status" and raw.get("lastStatus") == "Sld":
                    return ListingStatus.CLOSED.value
                return value.strip()
    return "Unknown"

def parse_listings(payload: Mapping[str, Any]) -> Tuple[List[ListingCandidate], int]:
    """
    Validate the `listings` array. Returns (candidates, dropped_count);
    malformed entries are logged and dropped instead of flowing inward.
    """
    raw = payload.get("listings") or []
    if not isinstance(raw, list):
        raise UpstreamPermanentError("upstream 'listings' is not an array")
    out: List[ListingCandidate] = []
    dropped = 0
    for idx, item in enumerate(raw):
        try:
            out.append(UpstreamListing.model_validate(item).to_candidate())
        except ValidationError as exc:
            dropped += 1
            logger.warning("Dropping malformed listing #%d: %s", idx, exc.errors()[0].get("msg"))
    if dropped:
        MALFORMED_LISTINGS.inc(dropped)
    return out, dropped

def parse_count(payload: Mapping[str, Any]) -> int:
    count = payload.get("count")
    if isinstance(count, bool) or not isinstance(count, int) or count < 0:
        raise UpstreamPermanentError(f"upstream 'count' is missing or invalid: {count!r}")
    return count

# ----- Clients -----

class HttpListings(ListingsClient):
    """
    Retrying fetcher for the listing search API.

    One call to `fetch` is one logical GET: up to `max_attempts` sequential
    attempts, 5xx/network failures back off `attempt * base_delay` before the
    next try, 4xx fails at once. The whole sequence (sleeps included) is bounded
    by `deadline` seconds.
    """
    def __init__(
        self,
        base_url: str,
        api_key: Optional[str],
        office_id: Optional[str] = None,
        *,
        max_attempts: int = 3,
        base_delay_ms: int = 1000,
        timeout: float = 10,
        deadline: Optional[float] = 30,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.office_id = office_id
        self.max_attempts = max(1, max_attempts)
        self.base_delay_ms = base_delay_ms
        self.timeout = timeout
        self.deadline = deadline
        self._transport = transport
        self._sleep = sleep

    @classmethod
    def from_settings(cls, cfg: Settings, **kwargs) -> "HttpListings":
        options = {
            "max_attempts": cfg.RETRY_MAX_ATTEMPTS,
            "base_delay_ms": cfg.RETRY_BASE_DELAY_MS,
            "timeout": cfg.UPSTREAM_TIMEOUT_SECONDS,
            "deadline": cfg.UPSTREAM_DEADLINE_SECONDS,
        }
        options.update(kwargs)
        return cls(cfg.LISTINGS_BASE_URL, cfg.LISTINGS_API_KEY, cfg.OFFICE_ID, **options)

    def ensure_configured(self, *, require_office: bool = False) -> None:
        if not self.api_key:
            raise ConfigurationError("Listings API not configured: LISTINGS_API_KEY is not set")
        if require_office and not self.office_id:
            raise ConfigurationError("Market pulse not configured: OFFICE_ID is not set")

    async def fetch(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        self.ensure_configured()
        start = time.perf_counter()
        try:
            payload = await asyncio.wait_for(self._fetch_with_retry(params), timeout=self.deadline or None)
        except asyncio.TimeoutError:
            UPSTREAM_CALLS.labels(result="transient").inc()
            logger.warning("Upstream call exceeded deadline of %ss", self.deadline)
            raise UpstreamTransientError(f"upstream deadline of {self.deadline}s exceeded") from None
        except UpstreamPermanentError:
            UPSTREAM_CALLS.labels(result="permanent").inc()
            raise
        except UpstreamTransientError:
            UPSTREAM_CALLS.labels(result="transient").inc()
            raise
        finally:
            UPSTREAM_LATENCY.observe(time.perf_counter() - start)
        UPSTREAM_CALLS.labels(result="success").inc()
        return payload

    async def _fetch_with_retry(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        headers = {"Accept": "application/json", API_KEY_HEADER: self.api_key or ""}
        async with httpx.AsyncClient(timeout=self.timeout, headers=headers, transport=self._transport) as client:
            for attempt in range(1, self.max_attempts + 1):
                try:
                    r = await client.get(self.base_url, params=params)
                except httpx.TransportError as exc:
                    UPSTREAM_ATTEMPTS.labels(outcome="network_error").inc()
                    failure = UpstreamTransientError(f"network error: {exc!r}", attempts=attempt)
                else:
                    if r.is_success:
                        UPSTREAM_ATTEMPTS.labels(outcome="ok").inc()
                        return self._decode(r, attempt)
                    if r.status_code >= 500:
                        UPSTREAM_ATTEMPTS.labels(outcome="server_error").inc()
                        failure = UpstreamTransientError(
                            f"upstream returned {r.status_code}", status_code=r.status_code, attempts=attempt
                        )
                    else:
                        UPSTREAM_ATTEMPTS.labels(outcome="client_error").inc()
                        raise UpstreamPermanentError(
                            f"upstream returned {r.status_code}: {r.text[:200]}",
                            status_code=r.status_code, attempts=attempt,
                        )

                if attempt == self.max_attempts:
                    logger.error("Upstream call failed after %d attempts: %s", attempt, failure)
                    raise failure
                logger.info("Retry %d/%d for %s (%s)", attempt, self.max_attempts, self.base_url, failure)
                await self._sleep(attempt * self.base_delay_ms / 1000.0)
        raise AssertionError("unreachable")  # pragma: no cover

    @staticmethod
    def _decode(r: httpx.Response, attempt: int) -> Dict[str, Any]:
        try:
            payload = r.json()
        except ValueError as exc:
            raise UpstreamPermanentError("upstream returned a non-JSON body", status_code=r.status_code,
                                         attempts=attempt) from exc
        if not isinstance(payload, dict):
            raise UpstreamPermanentError("upstream returned a non-object JSON body", status_code=r.status_code,
                                         attempts=attempt)
        return payload

class MockListings(ListingsClient):
    """
    Deterministic stand-in for local dev. Payloads follow the upstream shape
    so they still go through the parse boundary.
    """
    CENTER = (30.2672, -97.7431)  # downtown Austin
    STREETS = [("Main", "St"), ("Congress", "Ave"), ("Lamar", "Blvd"), ("Rockingham", "Cir"),
               ("Barton Springs", "Rd"), ("Oak", "Ln")]

    def __init__(self, office_id: Optional[str] = "MOCK-OFFICE"):
        self.office_id = office_id

    def ensure_configured(self, *, require_office: bool = False) -> None:
        return None

    async def fetch(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        seed = fnv1a_32(repr(sorted((k, str(v)) for k, v in params.items())))
        if str(params.get("listings")) == "false":
            return {"count": int(seeded_rand(seed, 1)[0] * 400)}

        size = int(params.get("resultsPerPage", 25))
        statuses = params.get("standardStatus") or [ListingStatus.ACTIVE.value]
        if isinstance(statuses, str):
            statuses = [statuses]
        listings: List[Dict[str, Any]] = []
        for i in range(size):
            r = seeded_rand(seed + i * 7, 8)
            street_name, suffix = self.STREETS[int(r[0] * len(self.STREETS)) % len(self.STREETS)]
            status = statuses[i % len(statuses)]
            list_price = 300_000 + int(r[1] * 900_000)
            listings.append({
                "mlsNumber": f"MOCK{seed % 10000:04d}{i:03d}",
                "standardStatus": status,
                "listPrice": list_price,
                "soldPrice": int(list_price * 0.97) if status == ListingStatus.CLOSED.value else None,
                "soldDate": f"2026-0{1 + int(r[5] * 9)}-15T00:00:00.000Z" if status == ListingStatus.CLOSED.value else None,
                "daysOnMarket": int(r[6] * 120),
                "details": {"numBedrooms": 2 + int(r[7] * 4), "numBathrooms": 1 + int(r[7] * 3),
                            "sqft": 1100 + int(r[1] * 2400), "style": "Single Family Residence"},
                "address": {"streetNumber": str(100 + int(r[2] * 9800)), "streetName": street_name,
                            "streetSuffix": suffix, "city": "Austin", "state": "TX", "zip": "78701"},
                "map": {"latitude": round(self.CENTER[0] + (r[3] - 0.5) * 0.08, 6),
                        "longitude": round(self.CENTER[1] + (r[4] - 0.5) * 0.08, 6)},
            })
        # Echo a structured address back as the first hit so ranking has a subject
        if params.get("streetNumber") and params.get("streetName") and listings:
            listings[0]["address"].update(streetNumber=params["streetNumber"], streetName=params["streetName"])
        return {"count": len(listings), "listings": listings}

def listings_client(cfg: Settings = settings) -> ListingsClient:
    """
    Factory picks mock or http based on env flags.
    """
    if cfg.LISTINGS_PROVIDER == "mock":
        return MockListings(cfg.OFFICE_ID or "MOCK-OFFICE")
    return HttpListings.from_settings(cfg)
