import math
from datetime import datetime, timedelta

import pytest
import pytest_asyncio
import pytz

from database import DatabaseManager, KeyValueStore
from journey_planner import JourneyPlanner
from journey_state import JourneyStateMachine
from proximity_ranker import GeoLocation
from redemption_service import RedemptionEligibilityTracker
from reward_calculator import PointsLedger
from vendor_cache import VendorDealCache
from vendor_schema import DAYS
from vendor_source import StaticVendorSource

ANCHORAGE = pytz.timezone("America/Anchorage")
ORIGIN_LAT = 61.2176
ORIGIN_LNG = -149.8997
MILES_PER_DEGREE_LAT = 3958.8 * math.pi / 180


class FrozenClock:
    """Callable clock that only moves when a test moves it."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)

    def set(self, now: datetime) -> None:
        self.now = now


def vendor_payload(vendor_id, name, miles_north, has_qr=True, deals=None):
    """Vendor on the origin's meridian, miles_north of it (negative = south)."""
    return {
        "id": vendor_id,
        "name": name,
        "location": {
            "address": f"{name}, Anchorage, AK",
            "coordinates": {
                "latitude": ORIGIN_LAT + miles_north / MILES_PER_DEGREE_LAT,
                "longitude": ORIGIN_LNG,
            },
        },
        "rating": 4.5,
        "hasQrCode": has_qr,
        "deals": deals or {},
    }


def every_day(title):
    return {day: [{"title": f"{title} {day}", "discount": "10% off"}] for day in DAYS}


@pytest.fixture
def clock():
    # Friday 16 Oct 2026, noon in Anchorage
    return FrozenClock(ANCHORAGE.localize(datetime(2026, 10, 16, 12, 0)))


@pytest.fixture
def origin():
    return GeoLocation(ORIGIN_LAT, ORIGIN_LNG)


@pytest.fixture
def vendor_payloads():
    # Distances from origin: 103 0.5 mi, 101 1.0 mi, 104 2.5 mi, 102 3.0 mi
    return [
        vendor_payload(101, "Aurora Goods", 1.0, deals={
            "daily": every_day("Aurora"),
            "birthday": {"title": "Birthday Gift", "discount": "Free item"},
            "special": [{
                "title": "October Sale",
                "discount": "30% off",
                "startDate": "2026-10-01T00:00:00",
                "endDate": "2026-10-31T23:59:59",
            }],
        }),
        vendor_payload("102", "Birch Street Market", 3.0, deals={
            "daily": every_day("Birch"),
            "birthday": {"title": "Birthday Month", "discount": "20% off"},
            "special": [{
                "title": "Last Year",
                "discount": "50% off",
                "startDate": "2025-01-01T00:00:00",
                "endDate": "2025-01-31T23:59:59",
            }],
        }),
        vendor_payload(103.0, "Cook Inlet Supply", -0.5, has_qr=False, deals={
            "daily": every_day("Cook"),
            "birthday": {"title": "Birthday Treat", "discount": "15% off"},
        }),
        vendor_payload(" 104 ", "Denali Depot", -2.5, deals={
            "daily": {"Friday": [{"title": "Friday Flash", "discount": "25% off"}]},
            "everyday": {"title": "Veteran Discount", "discount": "10% off", "category": "discount"},
            "multiDay": [{"title": "Weekend Bundle", "discount": "BOGO", "activeDays": ["Saturday", "Sunday"]}],
        }),
    ]


@pytest.fixture
def db():
    manager = DatabaseManager("sqlite:///:memory:")
    manager.init_db()
    yield manager
    manager.close()


@pytest.fixture
def store(db):
    return KeyValueStore(db)


@pytest.fixture
def tracker(store, clock):
    return RedemptionEligibilityTracker(store, clock=clock)


@pytest_asyncio.fixture
async def cache(vendor_payloads, store, clock):
    vendor_cache = VendorDealCache(StaticVendorSource(vendor_payloads), store=store, clock=clock)
    assert await vendor_cache.initialize()
    return vendor_cache


@pytest_asyncio.fixture
async def planner(cache, tracker):
    return JourneyPlanner(cache, tracker)


@pytest.fixture
def ledger(store):
    return PointsLedger(store)


@pytest.fixture
def machine(store, tracker, ledger, clock):
    return JourneyStateMachine(store, tracker, ledger=ledger, clock=clock, strict=True)
