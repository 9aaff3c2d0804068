"""
Shared pytest fixtures.

Nothing here touches the network: upstream HTTP goes through
httpx.MockTransport, retry back-off goes through a recording sleep, and
clocks are plain objects tests can move forward.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from cma_engine.core.config import Settings
from cma_engine.data.base import MarketPulseSnapshot
from cma_engine.data.listings_client import HttpListings


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

MILES_PER_DEGREE_LAT = 3959.0 * 3.141592653589793 / 180.0

SUBJECT_LAT = 30.2672
SUBJECT_LON = -97.7431


def make_settings(**overrides) -> Settings:
    values = {
        "LISTINGS_PROVIDER": "http",
        "LISTINGS_BASE_URL": "https://listings.test/listings",
        "LISTINGS_API_KEY": "test-key",
        "OFFICE_ID": "ACT1518371",
        "OFFICE_NAME": "Test Realty",
        "USE_REDIS": False,
    }
    values.update(overrides)
    return Settings(**values)


def lat_miles_north(miles: float, lat: float = SUBJECT_LAT) -> float:
    """Latitude `miles` due north of `lat` (same longitude)."""
    return lat + miles / MILES_PER_DEGREE_LAT


def listing(mls, number, name, status="Active", miles=None, sold_price=None, suffix="St", nested=True,
            sold_date=None):
    """Upstream-shaped listing; `miles` places it due north of the subject."""
    entry = {"mlsNumber": mls, "standardStatus": status, "listPrice": 450_000, "soldPrice": sold_price}
    if sold_date is not None:
        entry["soldDate"] = sold_date
    addr = {"streetNumber": number, "streetName": name, "streetSuffix": suffix,
            "city": "Austin", "state": "TX", "zip": "78701"}
    coords = {} if miles is None else {"latitude": lat_miles_north(miles), "longitude": SUBJECT_LON}
    if nested:
        entry["address"] = addr
        if coords:
            entry["map"] = coords
    else:
        entry.update(addr)
        entry.update(coords)
    return entry


class FakeClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class ScriptedTransport:
    """
    Replays `script` (responses, exceptions, or callables taking the request)
    one per request, recording each request it sees.
    """

    def __init__(self, *script):
        self.script = list(script)
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request):
        self.requests.append(request)
        step = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if callable(step):
            step = step(request)
        if isinstance(step, Exception):
            raise step
        if isinstance(step, httpx.Response):
            # fresh copy so a repeated step is never a half-consumed response
            return httpx.Response(step.status_code, headers=step.headers, content=step.content)
        return step

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @property
    def calls(self) -> int:
        return len(self.requests)


class RecordingSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class StubListings:
    """ListingsClient double answering from a function of the query params."""

    def __init__(self, responder):
        self.responder = responder
        self.calls: list[dict] = []

    def ensure_configured(self, *, require_office: bool = False) -> None:
        return None

    async def fetch(self, params):
        self.calls.append(dict(params))
        result = self.responder(params)
        if isinstance(result, Exception):
            raise result
        return result


class CountingAggregator:
    """Aggregator double: each collect() returns a new snapshot stamped with the clock."""

    def __init__(self, clock):
        self.clock = clock
        self.calls = 0
        self.gate: asyncio.Event | None = None

    async def collect(self) -> MarketPulseSnapshot:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        return MarketPulseSnapshot.from_counts(
            active=100 + self.calls, active_under_contract=10, pending=5, closed=20,
            captured_at=self.clock(), office_name="Test Realty",
        )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def settings_factory():
    return make_settings


@pytest.fixture
def fake_sleep():
    return RecordingSleep()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def http_listings(fake_sleep):
    """Build an HttpListings over a ScriptedTransport: http_listings(*script) -> (client, transport)."""

    def _build(*script, cfg: Settings | None = None, **kwargs):
        scripted = ScriptedTransport(*script)
        client = HttpListings.from_settings(
            cfg or make_settings(), transport=scripted.transport, sleep=fake_sleep, **kwargs
        )
        return client, scripted

    return _build
