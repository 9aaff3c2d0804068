from datetime import date, datetime
from pydantic import BaseModel, Field

class ComparableSearchRequest(BaseModel):
    search: str | None = Field(default=None, max_length=300)
    statuses: list[str] | None = None
    limit: int | None = Field(default=None, ge=1)
    sold_within_days: int | None = Field(default=None, ge=1, le=3650)
    # Criteria filters (used when `search` is empty)
    city: str | None = None
    zip: str | None = None
    min_beds: int | None = Field(default=None, ge=0)
    min_baths: float | None = Field(default=None, ge=0)
    min_price: int | None = Field(default=None, ge=0)
    max_price: int | None = Field(default=None, ge=0)
    property_type: str | None = None

class ParsedAddressOut(BaseModel):
    confidence: str
    street_number: str | None = None
    street_name: str | None = None
    street_suffix: str | None = None
    unit: str | None = None
    city: str | None = None
    state: str | None = None
    zip: str | None = None

class ComparableOut(BaseModel):
    id: str
    address: str
    status: str
    list_price: float
    sold_price: float | None = None
    sold_date: date | None = None
    list_date: date | None = None
    days_on_market: int | None = None
    beds: float | None = None
    baths: float | None = None
    sqft: int | None = None
    year_built: int | None = None
    property_type: str | None = None
    subdivision: str | None = None
    street_number: str | None = None
    street_name: str | None = None
    street_suffix: str | None = None
    city: str | None = None
    zip: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    distance_from_subject: float | None = None
    relevance_score: int | None = None

class ComparableSearchResponse(BaseModel):
    listings: list[ComparableOut]
    total: int
    total_found: int
    result_cap: int
    statuses: list[str]
    search_strategy: str
    ranked: bool
    dropped_malformed: int = 0
    parsed_address: ParsedAddressOut | None = None

class MarketPulseResponse(BaseModel):
    total_properties: int
    active: int
    active_under_contract: int
    pending: int
    closed: int
    captured_at: datetime
    office_name: str | None = None
    etag: str | None = None

class EnsureFreshResponse(BaseModel):
    refreshed: bool
    captured_at: datetime
