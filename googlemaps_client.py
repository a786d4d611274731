"""
Google Maps API Client for the deal journey engine

Provides:
- Address geocoding for journey origins, restricted to a service area
- Vendor location validation against the same area

Region: Municipality of Anchorage by default
Bounding Box:
  North: 61.60 (Eagle River)
  South: 60.85 (Girdwood)
  West: -150.45 (Point MacKenzie)
  East: -148.90 (Chugach front)

Travel times are not requested from Google; journeys use straight-line
estimates from proximity_ranker.
"""

import logging
from typing import Optional

import googlemaps
from googlemaps.exceptions import ApiError, TransportError

from proximity_ranker import ANCHORAGE_SERVICE_AREA, GeoLocation, ServiceArea

logger = logging.getLogger(__name__)


class ServiceAreaError(Exception):
    """Raised when location is outside service area"""
    pass


class GoogleMapsClient:
    """Google Maps geocoding with service-area filtering"""

    def __init__(
        self,
        api_key: str,
        service_area: ServiceArea = ANCHORAGE_SERVICE_AREA,
        region_component: Optional[str] = "AK",
        client: Optional[googlemaps.Client] = None,
    ):
        """
        Initialize Google Maps client.

        Args:
            api_key: Google Maps API key
            service_area: Bounding box geocoded addresses must fall inside
            region_component: administrative_area used to bias geocoding
            client: Pre-built googlemaps.Client (tests)

        Raises:
            ValueError: If API key is missing
        """
        if not api_key and client is None:
            raise ValueError("Google Maps API key is required")

        self.client = client or googlemaps.Client(key=api_key)
        self.service_area = service_area
        self.region_component = region_component
        logger.info("Google Maps client initialized")

    def geocode_address(self, address: str) -> GeoLocation:
        """
        Geocode address and validate service area.

        Args:
            address: Street address to geocode

        Returns:
            GeoLocation with validated coordinates

        Raises:
            ServiceAreaError: If address is outside the service area
            ValueError: If the address has no geocoding result
            ApiError: If geocoding fails
        """
        components = {"administrative_area": self.region_component} if self.region_component else None
        try:
            geocode_result = self.client.geocode(address, region="us", components=components)
        except (ApiError, TransportError) as e:
            logger.error(f"Google Maps API error: {e}")
            raise

        if not geocode_result:
            raise ValueError(f"Could not geocode address: {address}")

        result = geocode_result[0]
        location = result["geometry"]["location"]
        geo_loc = GeoLocation(
            latitude=location["lat"],
            longitude=location["lng"],
            address=result.get("formatted_address", address),
        )

        if not geo_loc.is_in_service_area(self.service_area):
            raise ServiceAreaError(
                f"Address '{address}' is outside our service area. "
                f"Location: ({geo_loc.latitude:.4f}, {geo_loc.longitude:.4f})"
            )

        logger.info(f"Geocoded: {address} -> ({geo_loc.latitude:.4f}, {geo_loc.longitude:.4f})")
        return geo_loc

    def validate_vendor_location(self, latitude: float, longitude: float, vendor_name: str) -> bool:
        """
        Validate that a vendor location is within the service area.

        Returns:
            True if in service area, False otherwise
        """
        in_area = self.service_area.contains(latitude, longitude)
        if not in_area:
            logger.warning(
                f"Vendor '{vendor_name}' at ({latitude:.4f}, {longitude:.4f}) "
                f"is outside the service area"
            )
        return in_area


if __name__ == "__main__":
    # Example usage
    import os
    from dotenv import load_dotenv

    logging.basicConfig(level=logging.INFO)
    load_dotenv()

    api_key = os.getenv("GOOGLEMAPS_API_KEY")
    if not api_key:
        print("Error: GOOGLEMAPS_API_KEY not set")
        exit(1)

    client = GoogleMapsClient(api_key)

    try:
        loc = client.geocode_address("632 W 6th Ave, Anchorage, AK")
        print(f"✓ Geocoded: {loc.address}")
        print(f"  Coordinates: ({loc.latitude}, {loc.longitude})")
    except (ServiceAreaError, ValueError) as e:
        print(f"✗ {e}")
