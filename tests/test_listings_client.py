"""
Unit tests for the retrying listing fetcher and its parse boundary.

Tests cover:
  1. Retry policy — 5xx/network retried with linear back-off, 4xx not retried
  2. Deadline — a hung upstream surfaces as a transient failure
  3. Configuration — a missing API key fails before any request
  4. Parse boundary — nested and flat listings, malformed entries dropped
  5. Mock provider — deterministic payloads, picked by the factory
"""

import asyncio
from datetime import date

import httpx
import pytest

from cma_engine.core.errors import ConfigurationError, UpstreamPermanentError, UpstreamTransientError
from cma_engine.data.base import ListingStatus
from cma_engine.data.listings_client import HttpListings, MockListings, listings_client, parse_count, parse_listings
from cma_engine.services.comparable_search import ComparableSearch

from conftest import listing, make_settings


def ok(payload=None):
    return httpx.Response(200, json=payload if payload is not None else {"count": 3})


# ---------------------------------------------------------------------------
# Test 1 — retry policy
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_500_then_200_succeeds_after_two_calls(http_listings, fake_sleep):
    client, upstream = http_listings(httpx.Response(500), ok({"count": 7}))

    payload = await client.fetch({"listings": "false"})

    assert payload == {"count": 7}
    assert upstream.calls == 2
    assert fake_sleep.delays == [1.0]


@pytest.mark.asyncio
async def test_three_500s_exhaust_retries(http_listings, fake_sleep):
    client, upstream = http_listings(httpx.Response(500), httpx.Response(502), httpx.Response(503))

    with pytest.raises(UpstreamTransientError) as err:
        await client.fetch({})

    assert upstream.calls == 3
    assert err.value.status_code == 503
    assert err.value.attempts == 3
    # attempt * 1000ms between attempts, no sleep after the last one
    assert fake_sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_404_is_permanent_after_one_call(http_listings, fake_sleep):
    client, upstream = http_listings(httpx.Response(404, text="no such route"), ok())

    with pytest.raises(UpstreamPermanentError) as err:
        await client.fetch({})

    assert upstream.calls == 1
    assert err.value.status_code == 404
    assert fake_sleep.delays == []


@pytest.mark.asyncio
async def test_network_error_is_retried(http_listings):
    def boom(request):
        return httpx.ConnectError("connection refused", request=request)

    client, upstream = http_listings(boom, ok({"count": 1}))

    assert await client.fetch({}) == {"count": 1}
    assert upstream.calls == 2


@pytest.mark.asyncio
async def test_non_json_success_is_permanent(http_listings):
    client, upstream = http_listings(httpx.Response(200, text="<html>maintenance</html>"))

    with pytest.raises(UpstreamPermanentError):
        await client.fetch({})
    assert upstream.calls == 1


@pytest.mark.asyncio
async def test_sends_api_key_and_params(http_listings):
    client, upstream = http_listings(ok())

    await client.fetch({"standardStatus": ["Active", "Closed"], "officeId": "ACT1"})

    request = upstream.requests[0]
    assert request.headers["REPLIERS-API-KEY"] == "test-key"
    assert request.url.params.get_list("standardStatus") == ["Active", "Closed"]
    assert request.url.params["officeId"] == "ACT1"


# ---------------------------------------------------------------------------
# Test 2 — deadline
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_deadline_bounds_a_hung_upstream(http_listings):
    async def hang(request):
        await asyncio.sleep(5)
        return ok()

    client, _ = http_listings(hang, deadline=0.05)

    with pytest.raises(UpstreamTransientError, match="deadline"):
        await client.fetch({})


# ---------------------------------------------------------------------------
# Test 3 — configuration
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_missing_api_key_fails_before_network(http_listings):
    client, upstream = http_listings(ok(), cfg=make_settings(LISTINGS_API_KEY=None))

    with pytest.raises(ConfigurationError):
        await client.fetch({})
    assert upstream.calls == 0


def test_missing_office_is_a_configuration_error(http_listings):
    client, _ = http_listings(ok(), cfg=make_settings(OFFICE_ID=None))

    client.ensure_configured()
    with pytest.raises(ConfigurationError):
        client.ensure_configured(require_office=True)


# ---------------------------------------------------------------------------
# Test 4 — parse boundary
# ---------------------------------------------------------------------------

def test_parse_nested_and_flat_listings():
    payload = {"listings": [
        listing("A1", "123", "Main", miles=0.2, nested=True),
        listing("A2", "9", "Oak", status="Closed", miles=1.0, sold_price=300_000, nested=False),
    ]}

    candidates, dropped = parse_listings(payload)

    assert dropped == 0
    first, second = candidates
    assert first.id == "A1"
    assert first.street_number == "123" and first.street_name == "Main"
    assert first.has_coordinates
    assert first.address == "123 Main St, Austin, TX 78701"
    assert second.status == ListingStatus.CLOSED.value
    assert second.sold_price == 300_000


def test_comp_attributes_from_details_and_flat_fields():
    nested = listing("N1", "123", "Main", status="Closed", sold_price=410_000)
    nested.update(soldDate="2026-08-14T00:00:00.000Z", daysOnMarket=21, listDate="2026-07-01")
    nested["details"] = {"numBedrooms": 3, "numBathrooms": 2.5, "sqft": "1,850", "yearBuilt": 1998,
                         "style": "Single Family Residence"}
    nested["address"]["neighborhood"] = "Travis Heights"
    flat = listing("F1", "9", "Oak", status="Closed", sold_price=300_000, nested=False)
    flat.update(closeDate="2026-06-30", dom="45", bedroomsTotal=4, bathroomsTotal=3,
                livingArea=2200, propertyType="Condominium", subdivision="Zilker")

    (n, f), dropped = parse_listings({"listings": [nested, flat]})

    assert dropped == 0
    assert (n.beds, n.baths, n.sqft, n.year_built) == (3, 2.5, 1850, 1998)
    assert n.sold_date == date(2026, 8, 14)
    assert n.list_date == date(2026, 7, 1)
    assert n.days_on_market == 21
    assert n.property_type == "Single Family Residence"
    assert n.subdivision == "Travis Heights"
    assert (f.beds, f.baths, f.sqft) == (4, 3, 2200)
    assert f.sold_date == date(2026, 6, 30)
    assert f.days_on_market == 45
    assert f.property_type == "Condominium"
    assert f.subdivision == "Zilker"


def test_free_form_attributes_read_as_unknown():
    entry = {"mlsNumber": "X", "details": {"sqft": "1500-2000", "numBedrooms": "N/A"}, "soldDate": "soon"}

    candidates, dropped = parse_listings({"listings": [entry]})

    assert dropped == 0
    assert candidates[0].sqft is None
    assert candidates[0].beds is None
    assert candidates[0].sold_date is None


def test_malformed_listings_are_dropped():
    payload = {"listings": [
        listing("OK1", "1", "Elm"),
        "not-an-object",
        {"standardStatus": "Active"},                       # no id
        {"mlsNumber": "BAD", "listPrice": "lots"},          # price not numeric
        {"mlsNumber": "BADLAT", "map": {"latitude": 123.0, "longitude": -97.0}},
    ]}

    candidates, dropped = parse_listings(payload)

    assert [c.id for c in candidates] == ["OK1"]
    assert dropped == 4


def test_half_coordinates_are_discarded():
    candidates, _ = parse_listings({"listings": [{"mlsNumber": "X", "latitude": 30.1}]})

    assert candidates[0].latitude is None
    assert candidates[0].longitude is None


def test_sold_last_status_maps_to_closed():
    candidates, _ = parse_listings({"listings": [{"mlsNumber": "X", "status": "U", "lastStatus": "Sld"}]})

    assert candidates[0].status == "Closed"


def test_missing_listings_array_is_empty():
    assert parse_listings({"count": 0}) == ([], 0)


@pytest.mark.parametrize("payload", [{}, {"count": "12"}, {"count": -1}, {"count": True}])
def test_parse_count_rejects_malformed(payload):
    with pytest.raises(UpstreamPermanentError):
        parse_count(payload)


def test_parse_count():
    assert parse_count({"count": 42}) == 42


# ---------------------------------------------------------------------------
# Test 5 — mock provider
# ---------------------------------------------------------------------------

def test_factory_picks_provider():
    assert isinstance(listings_client(make_settings(LISTINGS_PROVIDER="mock")), MockListings)
    assert isinstance(listings_client(make_settings()), HttpListings)


@pytest.mark.asyncio
async def test_mock_listings_are_deterministic():
    mock = MockListings()
    params = {"listings": "true", "resultsPerPage": 5, "standardStatus": ["Active", "Closed"]}

    first = await mock.fetch(params)
    second = await mock.fetch(params)

    assert first == second
    assert len(first["listings"]) == 5
    candidates, dropped = parse_listings(first)
    assert dropped == 0
    assert {c.status for c in candidates} == {"Active", "Closed"}


@pytest.mark.asyncio
async def test_mock_counts_for_pulse_queries():
    payload = await MockListings().fetch({"listings": "false", "standardStatus": "Pending"})

    assert parse_count(payload) >= 0


@pytest.mark.asyncio
async def test_mock_provider_supports_a_ranked_address_search():
    cfg = make_settings(LISTINGS_PROVIDER="mock")

    result = await ComparableSearch(cfg=cfg).search(search="123 Main St, Austin TX 78701")

    assert result.ranked is True
    assert len(result.candidates) == 25


@pytest.mark.asyncio
@pytest.mark.parametrize("seed", range(12))
async def test_mock_listings_parse_for_any_seed(seed):
    payload = await MockListings().fetch({"listings": "true", "resultsPerPage": 25, "seed": seed})

    candidates, dropped = parse_listings(payload)

    assert dropped == 0
    assert len(candidates) == 25
    assert all(c.street_name and c.street_suffix for c in candidates)


@pytest.mark.asyncio
async def test_mock_listings_use_multi_word_street_names():
    names = set()
    for seed in range(12):
        candidates, _ = parse_listings(await MockListings().fetch({"listings": "true", "resultsPerPage": 25, "seed": seed}))
        names.update(c.street_name for c in candidates)

    assert "Barton Springs" in names
