"""
Journey Planner - builds an ordered, eligibility-filtered multi-stop journey

Orchestrates the complete decision logic:
1. Fetch vendors matching the deal-type predicate from the vendor cache
2. Drop vendors the caller excluded
3. Drop vendors whose deal was already redeemed today
4. Rank the rest nearest-first within the distance bound
5. Keep the closest max_stops (greedy nearest-first, no reordering)
6. Summarize the route: origin → stop1 → ... → stopN

Every failure is returned as a PlanResult with a specific ErrorKind so the
caller can tell the user what to change (deal type, day, or distance).
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from googlemaps.exceptions import ApiError, Timeout, TransportError

from config import MAX_STOPS_CEILING
from errors import USER_MESSAGES, ErrorKind
from googlemaps_client import GoogleMapsClient, ServiceAreaError
from proximity_ranker import GeoLocation, ProximityRanker, RankedVendor
from redemption_service import RedemptionEligibilityTracker
from vendor_cache import VendorDealCache
from vendor_schema import DealType, normalize_vendor_id

logger = logging.getLogger(__name__)

TRAVEL_MINUTES_PER_MILE = 3
DWELL_MINUTES_PER_STOP = 10


@dataclass
class JourneyCriteria:
    """What the user asked for"""
    deal_type: DealType
    max_stops: int = 5
    max_distance_miles: Optional[float] = None  # None → planner default
    origin: Optional[GeoLocation] = None
    origin_address: Optional[str] = None
    exclude_vendor_ids: List[str] = field(default_factory=list)
    categories: Optional[List[str]] = None  # everyday allow-list

    def __post_init__(self):
        self.deal_type = DealType(self.deal_type)
        self.max_stops = max(1, min(int(self.max_stops), MAX_STOPS_CEILING))
        if self.max_distance_miles is not None:
            self.max_distance_miles = float(self.max_distance_miles)
            if self.max_distance_miles < 0:
                raise ValueError(f"max_distance_miles must be >= 0, got {self.max_distance_miles}")
        self.exclude_vendor_ids = [normalize_vendor_id(v) for v in self.exclude_vendor_ids]


@dataclass
class RouteSummary:
    """Derived route figures; not authoritative, recomputed on every plan"""
    coordinates: List[Dict]
    total_distance: float  # miles
    estimated_time_minutes: int

    def to_dict(self) -> Dict:
        return {
            "coordinates": self.coordinates,
            "totalDistance": round(self.total_distance, 3),
            "estimatedTimeMinutes": self.estimated_time_minutes,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "RouteSummary":
        return cls(
            coordinates=list(data.get("coordinates", [])),
            total_distance=float(data.get("totalDistance", 0.0)),
            estimated_time_minutes=int(data.get("estimatedTimeMinutes", 0)),
        )


@dataclass
class PlanResult:
    """Outcome of create_journey: either ranked stops and a route, or an error kind"""
    success: bool
    deal_type: DealType
    vendors: List[RankedVendor] = field(default_factory=list)
    route: Optional[RouteSummary] = None
    origin: Optional[GeoLocation] = None
    max_distance_miles: float = 0.0
    error: Optional[ErrorKind] = None
    message: Optional[str] = None

    @classmethod
    def failure(cls, kind: ErrorKind, deal_type: DealType, max_distance_miles: float = 0.0) -> "PlanResult":
        return cls(
            success=False,
            deal_type=deal_type,
            max_distance_miles=max_distance_miles,
            error=kind,
            message=USER_MESSAGES[kind],
        )

    def to_dict(self) -> Dict:
        if not self.success:
            return {"success": False, "error": self.error.value, "message": self.message}
        return {
            "success": True,
            "dealType": self.deal_type.value,
            "vendors": [v.to_dict() for v in self.vendors],
            "route": self.route.to_dict() if self.route else None,
        }


def estimate_minutes(total_distance: float, stop_count: int) -> int:
    """3 minutes per mile of travel plus 10 minutes at each stop."""
    return round(total_distance * TRAVEL_MINUTES_PER_MILE + stop_count * DWELL_MINUTES_PER_STOP)


class JourneyPlanner:
    """Composes cache, ranker and eligibility tracker into a journey plan"""

    def __init__(
        self,
        cache: VendorDealCache,
        tracker: RedemptionEligibilityTracker,
        ranker: Optional[ProximityRanker] = None,
        geocoder: Optional[GoogleMapsClient] = None,
        default_origin: Tuple[float, float] = (61.2176, -149.8997),
        default_max_distance: float = 25.0,
    ):
        """
        Initialize journey planner.

        Args:
            cache: Vendor/deal cache (must be initialized before planning)
            tracker: Redemption eligibility tracker
            ranker: Proximity ranker (a default one is created if omitted)
            geocoder: Google Maps client for origin addresses (optional)
            default_origin: (lat, lng) used when the caller gives no origin
            default_max_distance: Distance bound when the caller gives none
        """
        self.cache = cache
        self.tracker = tracker
        self.ranker = ranker or ProximityRanker()
        self.geocoder = geocoder
        self.default_origin = GeoLocation(*default_origin)
        self.default_max_distance = default_max_distance

    async def create_journey(self, criteria: JourneyCriteria) -> PlanResult:
        """
        Build a journey for the given criteria.

        Failure precedence:
            CacheUnavailable → LocationUnavailable → NoMatchingVendors
            → AllVendorsRedeemed → DistanceExceeded

        Args:
            criteria: Deal type, stop cap, distance bound, origin, exclusions

        Returns:
            PlanResult (never raises for user-level failures)
        """
        deal_type = criteria.deal_type
        max_distance = (
            self.default_max_distance if criteria.max_distance_miles is None else criteria.max_distance_miles
        )
        logger.info(
            f"Planning {deal_type.value} journey: max {criteria.max_stops} stops within {max_distance} mi"
        )

        if not self.cache.is_ready():
            logger.warning(f"Vendor cache not ready ({self.cache.state.value})")
            return PlanResult.failure(ErrorKind.CACHE_UNAVAILABLE, deal_type, max_distance)

        origin = await self._resolve_origin(criteria)
        if origin is None:
            return PlanResult.failure(ErrorKind.LOCATION_UNAVAILABLE, deal_type, max_distance)

        # Step 1-2: deal-type predicate, then caller exclusions
        candidates = self.cache.get_vendors_for_deal_type(deal_type, criteria.categories)
        if criteria.exclude_vendor_ids:
            excluded = set(criteria.exclude_vendor_ids)
            candidates = [v for v in candidates if v.id not in excluded]
        logger.info(f"Step 1: {len(candidates)} vendors offer {deal_type.value} deals")

        if not candidates:
            return PlanResult.failure(ErrorKind.NO_MATCHING_VENDORS, deal_type, max_distance)

        # Step 3: redemption eligibility
        eligible = await self.tracker.filter_redeemable(candidates, deal_type)
        logger.info(f"Step 2: {len(eligible)}/{len(candidates)} vendors not yet redeemed today")

        if not eligible:
            return PlanResult.failure(ErrorKind.ALL_VENDORS_REDEEMED, deal_type, max_distance)

        # Step 4-5: nearest-first within distance, capped
        ranked = self.ranker.rank(eligible, origin, max_distance)
        if not ranked:
            logger.info(f"Step 3: no vendors within {max_distance} mi")
            return PlanResult.failure(ErrorKind.DISTANCE_EXCEEDED, deal_type, max_distance)

        stops = ranked[:criteria.max_stops]
        route = self.summarize_route(origin, stops)
        logger.info(
            f"✓ Journey planned: {len(stops)} stops, {route.total_distance:.2f} mi, "
            f"~{route.estimated_time_minutes} min"
        )

        return PlanResult(
            success=True,
            deal_type=deal_type,
            vendors=stops,
            route=route,
            origin=origin,
            max_distance_miles=max_distance,
        )

    def summarize_route(self, origin: GeoLocation, stops: List[RankedVendor]) -> RouteSummary:
        locations = [stop.location for stop in stops]
        total = self.ranker.route_distance(origin, locations)
        return RouteSummary(
            coordinates=[origin.to_dict()] + [loc.to_dict() for loc in locations],
            total_distance=total,
            estimated_time_minutes=estimate_minutes(total, len(stops)),
        )

    async def _resolve_origin(self, criteria: JourneyCriteria) -> Optional[GeoLocation]:
        if criteria.origin is not None:
            return criteria.origin

        if not criteria.origin_address:
            logger.debug("No origin given, using default origin")
            return self.default_origin

        if self.geocoder is None:
            logger.warning(f"Cannot resolve '{criteria.origin_address}': no geocoder configured")
            return None

        try:
            return await asyncio.to_thread(self.geocoder.geocode_address, criteria.origin_address)
        except (ServiceAreaError, ValueError, ApiError, TransportError, Timeout) as e:
            logger.warning(f"✗ Origin lookup failed: {e}")
            return None
