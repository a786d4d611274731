"""
Proximity ranking - great-circle distances and nearest-first ordering

This module defines:
1. GeoLocation and ServiceArea value objects
2. Haversine distance (miles) and initial bearing between coordinates
3. ProximityRanker: distance-annotated, distance-sorted candidate lists,
   route distance along an ordered stop list, straight-line directions

Distances are straight-line; no traffic or road network is consulted.
Ranking is a pure function of its inputs: no randomness, ties keep input order.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence

from vendor_schema import VendorRecord

logger = logging.getLogger(__name__)

EARTH_RADIUS_MILES = 3958.8
AVERAGE_SPEED_MPH = 25  # straight-line directions estimate


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass
class ServiceArea:
    """Bounding box that geocoded origins must fall inside"""
    north: float
    south: float
    west: float
    east: float

    def contains(self, latitude: float, longitude: float) -> bool:
        return self.south <= latitude <= self.north and self.west <= longitude <= self.east


# Municipality of Anchorage, generously bounded
ANCHORAGE_SERVICE_AREA = ServiceArea(north=61.60, south=60.85, west=-150.45, east=-148.90)


@dataclass
class GeoLocation:
    """Geographic coordinates, optionally with the address they came from."""
    latitude: float
    longitude: float
    address: Optional[str] = None

    def distance_to(self, other: "GeoLocation") -> float:
        """Haversine distance to another location in miles."""
        return haversine_miles(self.latitude, self.longitude, other.latitude, other.longitude)

    def bearing_to(self, other: "GeoLocation") -> float:
        return initial_bearing(self.latitude, self.longitude, other.latitude, other.longitude)

    def is_in_service_area(self, area: ServiceArea = ANCHORAGE_SERVICE_AREA) -> bool:
        return area.contains(self.latitude, self.longitude)

    def to_dict(self) -> dict:
        return {"latitude": self.latitude, "longitude": self.longitude}

    @classmethod
    def of_vendor(cls, vendor: VendorRecord) -> Optional["GeoLocation"]:
        if vendor.coordinates is None:
            return None
        return cls(
            latitude=vendor.coordinates.latitude,
            longitude=vendor.coordinates.longitude,
            address=vendor.address or None,
        )


@dataclass
class RankedVendor:
    """A candidate vendor annotated with its distance (miles) from the origin."""
    vendor: VendorRecord
    distance: float

    @property
    def id(self) -> str:
        return self.vendor.id

    @property
    def location(self) -> GeoLocation:
        return GeoLocation.of_vendor(self.vendor)

    def to_dict(self) -> dict:
        data = self.vendor.model_dump(mode="json", by_alias=True)
        data["distance"] = round(self.distance, 3)
        return data


@dataclass
class Directions:
    """Straight-line directions between two points"""
    distance: float  # miles
    bearing: float  # degrees, 0-360
    estimated_minutes: int
    coordinates: List[dict] = field(default_factory=list)


# ============================================================================
# GEOMETRY
# ============================================================================

def haversine_miles(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance between two points in miles.

    Uses the haversine formula with Earth radius 3,958.8 miles.
    """
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)

    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_MILES * c


def initial_bearing(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Initial heading from point 1 to point 2, normalized to [0, 360)."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dlambda = math.radians(lon2 - lon1)

    y = math.sin(dlambda) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(dlambda)

    return (math.degrees(math.atan2(y, x)) + 360) % 360


# ============================================================================
# RANKER
# ============================================================================

class ProximityRanker:
    """Nearest-first ordering of vendors around an origin"""

    def distance(self, lat1: float, lon1: float, lat2: float, lon2: float) -> float:
        return haversine_miles(lat1, lon1, lat2, lon2)

    def bearing(self, lat1: float, lon1: float, lat2: float, lon2: float) -> float:
        return initial_bearing(lat1, lon1, lat2, lon2)

    def rank(
        self,
        vendors: Iterable[VendorRecord],
        origin: GeoLocation,
        max_distance_miles: float,
    ) -> List[RankedVendor]:
        """
        Annotate vendors with their distance from origin and sort ascending.

        Vendors strictly farther than max_distance_miles are dropped, as are
        vendors without coordinates. The sort is stable, so equal distances
        keep their input order.

        Args:
            vendors: Candidate vendor records
            origin: Starting point
            max_distance_miles: Inclusive distance bound

        Returns:
            List of RankedVendor sorted by distance
        """
        ranked = []
        for vendor in vendors:
            location = GeoLocation.of_vendor(vendor)
            if location is None:
                logger.debug(f"Skipping vendor {vendor.id} without coordinates")
                continue

            distance = origin.distance_to(location)
            if distance > max_distance_miles:
                continue
            ranked.append(RankedVendor(vendor=vendor, distance=distance))

        ranked.sort(key=lambda r: r.distance)
        logger.debug(f"Ranked {len(ranked)} vendors within {max_distance_miles} mi")
        return ranked

    def leg_distances(self, origin: GeoLocation, stops: Sequence[GeoLocation]) -> List[float]:
        """Distance of each leg: origin -> stop1, stop1 -> stop2, ..."""
        legs = []
        previous = origin
        for stop in stops:
            legs.append(previous.distance_to(stop))
            previous = stop
        return legs

    def route_distance(self, origin: GeoLocation, stops: Sequence[GeoLocation]) -> float:
        """Total miles travelling origin -> stop1 -> ... -> stopN."""
        return sum(self.leg_distances(origin, stops))

    def directions(self, origin: GeoLocation, destination: GeoLocation) -> Directions:
        """
        Straight-line directions at a 25 mph average speed.

        Args:
            origin: Starting point
            destination: Vendor location

        Returns:
            Directions with distance, bearing, minutes and the two endpoints
        """
        distance = origin.distance_to(destination)
        return Directions(
            distance=distance,
            bearing=origin.bearing_to(destination),
            estimated_minutes=math.ceil(distance / AVERAGE_SPEED_MPH * 60),
            coordinates=[origin.to_dict(), destination.to_dict()],
        )
