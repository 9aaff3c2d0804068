from typing import Protocol, Any, Dict, Mapping, Optional
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum

# ----- Data shapes (thin & explicit) -----

class ListingStatus(str, Enum):
    ACTIVE = "Active"
    ACTIVE_UNDER_CONTRACT = "Active Under Contract"
    PENDING = "Pending"
    CLOSED = "Closed"

    @classmethod
    def parse(cls, raw: str) -> "ListingStatus":
        """Accepts the enum value or name in any case ("closed", "ACTIVE_UNDER_CONTRACT")."""
        text = raw.strip()
        for status in cls:
            if text.lower() in (status.value.lower(), status.name.lower()):
                return status
        if text.lower() in ("sold", "sld"):
            return cls.CLOSED
        raise ValueError(f"Unknown listing status: {raw!r}")

@dataclass(frozen=True)
class ListingCandidate:
    id: str
    address: str
    status: str
    list_price: float
    street_number: Optional[str] = None
    street_name: Optional[str] = None
    street_suffix: Optional[str] = None
    city: Optional[str] = None
    zip: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    sold_price: Optional[float] = None
    sold_date: Optional[date] = None
    list_date: Optional[date] = None
    days_on_market: Optional[int] = None
    beds: Optional[float] = None
    baths: Optional[float] = None
    sqft: Optional[int] = None
    year_built: Optional[int] = None
    property_type: Optional[str] = None
    subdivision: Optional[str] = None
    # Derived by the ranker; set together or not at all
    distance_from_subject: Optional[float] = None
    relevance_score: Optional[int] = None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @property
    def is_sold(self) -> bool:
        return self.status == ListingStatus.CLOSED.value or self.sold_price is not None

@dataclass(frozen=True)
class SearchQuery:
    status_filters: frozenset
    result_cap: int
    terms: Dict[str, Any] = field(default_factory=dict)  # structured fields or {"search": ...}
    address_driven: bool = False
    upstream_page_size: int = 50

@dataclass(frozen=True)
class MarketPulseSnapshot:
    active: int
    active_under_contract: int
    pending: int
    closed: int
    total_properties: int
    captured_at: datetime
    office_name: Optional[str] = None

    def __post_init__(self):
        expected = self.active + self.active_under_contract + self.pending
        if self.total_properties != expected:
            raise ValueError(
                f"total_properties={self.total_properties} must equal active inventory {expected}"
            )

    @classmethod
    def from_counts(
        cls, *, active: int, active_under_contract: int, pending: int, closed: int,
        captured_at: datetime, office_name: Optional[str] = None,
    ) -> "MarketPulseSnapshot":
        # Closed sales are not part of the active inventory total
        return cls(
            active=active, active_under_contract=active_under_contract, pending=pending,
            closed=closed, total_properties=active + active_under_contract + pending,
            captured_at=captured_at, office_name=office_name,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "active": self.active,
            "active_under_contract": self.active_under_contract,
            "pending": self.pending,
            "closed": self.closed,
            "total_properties": self.total_properties,
            "captured_at": self.captured_at.isoformat(),
            "office_name": self.office_name,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MarketPulseSnapshot":
        return cls(
            active=int(data["active"]),
            active_under_contract=int(data["active_under_contract"]),
            pending=int(data["pending"]),
            closed=int(data["closed"]),
            total_properties=int(data["total_properties"]),
            captured_at=datetime.fromisoformat(data["captured_at"]),
            office_name=data.get("office_name"),
        )

# ----- Protocols (interfaces) -----

class ListingsClient(Protocol):
    async def fetch(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        """One logical GET against the listing search API; returns the JSON payload."""
        ...

    def ensure_configured(self, *, require_office: bool = False) -> None: ...
