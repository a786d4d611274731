from unittest.mock import Mock

import pytest

from conftest import ORIGIN_LAT, ORIGIN_LNG
from errors import ErrorKind, USER_MESSAGES
from googlemaps_client import ServiceAreaError
from journey_planner import JourneyCriteria, JourneyPlanner, estimate_minutes
from proximity_ranker import GeoLocation
from vendor_cache import VendorDealCache
from vendor_schema import DealType
from vendor_source import StaticVendorSource


@pytest.mark.asyncio
async def test_plan_orders_stops_nearest_first(planner, origin):
    result = await planner.create_journey(JourneyCriteria(deal_type="daily", origin=origin))

    assert result.success
    assert [v.id for v in result.vendors] == ["103", "101", "104", "102"]
    distances = [v.distance for v in result.vendors]
    assert distances == pytest.approx([0.5, 1.0, 2.5, 3.0], abs=1e-6)


@pytest.mark.asyncio
async def test_route_summary(planner, origin):
    result = await planner.create_journey(JourneyCriteria(deal_type=DealType.DAILY, origin=origin))
    route = result.route

    # origin → 0.5 S → 1.0 N → 2.5 S → 3.0 N
    assert route.total_distance == pytest.approx(0.5 + 1.5 + 3.5 + 5.5, abs=1e-6)
    assert route.estimated_time_minutes == estimate_minutes(route.total_distance, 4) == 73
    assert len(route.coordinates) == 5
    assert route.coordinates[0] == origin.to_dict()


def test_estimate_minutes():
    assert estimate_minutes(0, 0) == 0
    assert estimate_minutes(10, 2) == 50


@pytest.mark.asyncio
async def test_truncates_to_max_stops(planner, origin):
    result = await planner.create_journey(JourneyCriteria(deal_type="daily", origin=origin, max_stops=2))

    assert [v.id for v in result.vendors] == ["103", "101"]


@pytest.mark.parametrize("requested, expected", [(0, 1), (-3, 1), (5, 5), (10, 10), (50, 10)])
def test_max_stops_clamped(requested, expected):
    assert JourneyCriteria(deal_type="daily", max_stops=requested).max_stops == expected


@pytest.mark.asyncio
async def test_distance_bound(planner, origin):
    result = await planner.create_journey(
        JourneyCriteria(deal_type="daily", origin=origin, max_distance_miles=2)
    )
    assert [v.id for v in result.vendors] == ["103", "101"]


@pytest.mark.asyncio
async def test_all_redeemed_is_distinct_from_no_match(planner, tracker, origin):
    for vendor_id in ("101", "102", "103", "104"):
        await tracker.record_redemption(vendor_id, DealType.DAILY)

    result = await planner.create_journey(JourneyCriteria(deal_type="daily", origin=origin))

    assert not result.success
    assert result.error is ErrorKind.ALL_VENDORS_REDEEMED
    assert result.to_dict() == {
        "success": False,
        "error": "AllVendorsRedeemed",
        "message": USER_MESSAGES[ErrorKind.ALL_VENDORS_REDEEMED],
    }


@pytest.mark.asyncio
async def test_redeemed_vendors_are_never_planned(planner, tracker, origin):
    await tracker.record_redemption(103, DealType.DAILY)

    result = await planner.create_journey(JourneyCriteria(deal_type="daily", origin=origin))

    assert "103" not in [v.id for v in result.vendors]
    assert len(result.vendors) == 3


@pytest.mark.asyncio
async def test_no_matching_vendors(planner, origin):
    result = await planner.create_journey(JourneyCriteria(deal_type="multiDay", origin=origin))

    assert result.error is ErrorKind.NO_MATCHING_VENDORS


@pytest.mark.asyncio
async def test_exclusions_applied_before_eligibility(planner, tracker, origin):
    criteria = JourneyCriteria(deal_type="everyday", origin=origin, exclude_vendor_ids=[104])
    result = await planner.create_journey(criteria)
    assert result.error is ErrorKind.NO_MATCHING_VENDORS

    result = await planner.create_journey(
        JourneyCriteria(deal_type="birthday", origin=origin, exclude_vendor_ids=["101", 102.0])
    )
    assert [v.id for v in result.vendors] == ["103"]


@pytest.mark.asyncio
async def test_everyday_category_filter(planner, origin):
    result = await planner.create_journey(
        JourneyCriteria(deal_type="everyday", origin=origin, categories=["edibles"])
    )
    assert result.error is ErrorKind.NO_MATCHING_VENDORS


@pytest.mark.asyncio
async def test_distance_exceeded(planner, origin):
    result = await planner.create_journey(
        JourneyCriteria(deal_type="daily", origin=origin, max_distance_miles=0.1)
    )
    assert result.error is ErrorKind.DISTANCE_EXCEEDED


@pytest.mark.asyncio
async def test_zero_distance_bound_is_honoured(planner, origin):
    result = await planner.create_journey(
        JourneyCriteria(deal_type="daily", origin=origin, max_distance_miles=0)
    )
    assert not result.success
    assert result.error is ErrorKind.DISTANCE_EXCEEDED
    assert result.max_distance_miles == 0


def test_negative_distance_bound_rejected():
    with pytest.raises(ValueError):
        JourneyCriteria(deal_type="daily", max_distance_miles=-1)


@pytest.mark.asyncio
async def test_cache_unavailable(vendor_payloads, tracker, clock, origin):
    cache = VendorDealCache(StaticVendorSource(vendor_payloads), clock=clock)
    planner = JourneyPlanner(cache, tracker)

    result = await planner.create_journey(JourneyCriteria(deal_type="daily", origin=origin))

    assert result.error is ErrorKind.CACHE_UNAVAILABLE


@pytest.mark.asyncio
async def test_default_origin_used_when_none_given(planner):
    result = await planner.create_journey(JourneyCriteria(deal_type="daily"))

    assert result.origin.latitude == ORIGIN_LAT
    assert result.vendors[0].id == "103"


@pytest.mark.asyncio
async def test_origin_address_geocoded(cache, tracker):
    geocoder = Mock()
    geocoder.geocode_address.return_value = GeoLocation(ORIGIN_LAT, ORIGIN_LNG, "Town Square")
    planner = JourneyPlanner(cache, tracker, geocoder=geocoder)

    result = await planner.create_journey(JourneyCriteria(deal_type="daily", origin_address="Town Square"))

    assert result.success
    geocoder.geocode_address.assert_called_once_with("Town Square")


@pytest.mark.asyncio
async def test_unresolvable_origin_address(cache, tracker):
    geocoder = Mock()
    geocoder.geocode_address.side_effect = ServiceAreaError("outside")
    planner = JourneyPlanner(cache, tracker, geocoder=geocoder)

    result = await planner.create_journey(JourneyCriteria(deal_type="daily", origin_address="Seattle"))
    assert result.error is ErrorKind.LOCATION_UNAVAILABLE

    no_geocoder = JourneyPlanner(cache, tracker)
    result = await no_geocoder.create_journey(JourneyCriteria(deal_type="daily", origin_address="Seattle"))
    assert result.error is ErrorKind.LOCATION_UNAVAILABLE


@pytest.mark.asyncio
async def test_success_to_dict(planner, origin):
    result = await planner.create_journey(JourneyCriteria(deal_type="daily", origin=origin, max_stops=2))
    data = result.to_dict()

    assert data["success"] is True
    assert data["dealType"] == "daily"
    assert [v["id"] for v in data["vendors"]] == ["103", "101"]
    assert data["route"]["totalDistance"] == pytest.approx(2.0, abs=1e-3)
    assert data["route"]["estimatedTimeMinutes"] == 26
