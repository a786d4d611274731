"""
Service wiring for the deal journey engine

Every service is constructed once here and handed its collaborators
explicitly; nothing is held in module-level globals.

    services = build_services()
    await services.startup()
    plan = await services.planner.create_journey(JourneyCriteria(deal_type="daily"))
    await services.journeys.start(plan)
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from config import Settings, get_settings
from database import DatabaseManager, KeyValueStore
from googlemaps_client import GoogleMapsClient
from journey_planner import JourneyCriteria, JourneyPlanner
from journey_state import JourneyStateMachine, RecoveryResult
from redemption_service import RedemptionEligibilityTracker
from reward_calculator import PointsLedger, RewardCalculator, print_reward_summary
from vendor_cache import VendorDealCache
from vendor_schema import CheckInType, DealType, local_now
from vendor_source import StaticVendorSource, VendorFeedClient, VendorSource

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level, logging.INFO))


@dataclass
class JourneyServices:
    """Everything the UI layer needs, built once at startup"""
    settings: Settings
    db: DatabaseManager
    store: KeyValueStore
    cache: VendorDealCache
    tracker: RedemptionEligibilityTracker
    planner: JourneyPlanner
    journeys: JourneyStateMachine
    ledger: PointsLedger

    async def startup(self) -> RecoveryResult:
        """Create tables, load vendors and recover any in-progress journey."""
        await asyncio.to_thread(self.db.init_db)
        if not await self.cache.initialize():
            logger.error("✗ Vendor cache failed to load; planning will report CacheUnavailable")
        return await self.journeys.recover()

    def shutdown(self) -> None:
        self.db.close()


def build_services(
    settings: Optional[Settings] = None,
    source: Optional[VendorSource] = None,
    geocoder: Optional[GoogleMapsClient] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> JourneyServices:
    """
    Construct and wire every service.

    Args:
        settings: Resolved settings (read from the environment if omitted)
        source: Vendor source; the HTTP feed when VENDOR_FEED_URL is set,
            otherwise the bundled sample vendors
        geocoder: Google Maps client; built from GOOGLEMAPS_API_KEY if set
        clock: Shared time source (local timezone now by default)

    Returns:
        JourneyServices
    """
    settings = settings or get_settings()
    tz = settings.timezone
    clock = clock or (lambda: local_now(tz))

    if source is None:
        if settings.vendor_feed_url:
            source = VendorFeedClient(settings.vendor_feed_url)
        else:
            logger.info("VENDOR_FEED_URL not set, using sample vendors")
            source = StaticVendorSource.sample()

    if geocoder is None and settings.google_maps_api_key:
        geocoder = GoogleMapsClient(settings.google_maps_api_key)

    db = DatabaseManager(settings.database_url)
    store = KeyValueStore(db)
    cache = VendorDealCache(source, store=store, clock=clock)
    tracker = RedemptionEligibilityTracker(store, clock=clock)
    planner = JourneyPlanner(
        cache,
        tracker,
        geocoder=geocoder,
        default_origin=settings.default_origin,
        default_max_distance=settings.max_distance_miles,
    )
    ledger = PointsLedger(store)
    journeys = JourneyStateMachine(
        store,
        tracker,
        calculator=RewardCalculator(),
        ledger=ledger,
        clock=clock,
        strict=settings.strict_transitions,
    )

    return JourneyServices(
        settings=settings,
        db=db,
        store=store,
        cache=cache,
        tracker=tracker,
        planner=planner,
        journeys=journeys,
        ledger=ledger,
    )


async def run_demo(services: JourneyServices) -> None:
    recovery = await services.startup()
    print(f"Recovery: {recovery.status}")
    if recovery.message:
        print(f"  {recovery.message}")
    if recovery.status == "restored":
        await services.journeys.terminate()

    stats = services.cache.get_cache_stats()
    print(f"✓ {stats['vendorCount']} vendors cached, {stats['totalDeals']} deals")

    plan = await services.planner.create_journey(
        JourneyCriteria(deal_type=DealType.BIRTHDAY, max_stops=services.settings.max_stops)
    )
    if not plan.success:
        print(f"✗ {plan.error.value}: {plan.message}")
        return

    print(f"\n📍 Route: {' → '.join(v.vendor.name for v in plan.vendors)}")
    print(f"   {plan.route.total_distance:.2f} mi, ~{plan.route.estimated_time_minutes} min")

    journey = await services.journeys.start(plan)
    for index, stop in enumerate(journey.stops):
        await services.journeys.mark_checked_in(index, CheckInType.QR)
        if index < len(journey.stops) - 1:
            await services.journeys.advance()

    outcome = await services.journeys.complete()
    print_reward_summary(outcome.reward, await services.ledger.get_balance())
    print(f"\nRedemptions: {await services.tracker.get_stats()}")


if __name__ == "__main__":
    settings = get_settings()
    configure_logging(settings.log_level)
    services = build_services(settings)
    try:
        asyncio.run(run_demo(services))
    finally:
        services.shutdown()
