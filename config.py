"""Configuration management for the deal journey engine."""
import os
from dataclasses import dataclass

import pytz
from dotenv import load_dotenv

load_dotenv()

# Hard ceiling on stops per journey regardless of caller input
MAX_STOPS_CEILING = 10


def get_database_url() -> str:
    """Get the SQLAlchemy URL of the durable key-value store."""
    return os.getenv("DATABASE_URL", "sqlite:///deal_journey.db")


def get_local_timezone():
    """Get the device-local timezone used for calendar-day scoping."""
    name = os.getenv("LOCAL_TIMEZONE", "America/Anchorage")
    try:
        return pytz.timezone(name)
    except pytz.UnknownTimeZoneError:
        raise ValueError(f"Unknown LOCAL_TIMEZONE: {name}")


def get_default_origin() -> tuple:
    """Get the fallback origin (Anchorage downtown) as (lat, lng)."""
    return (
        float(os.getenv("DEFAULT_ORIGIN_LAT", "61.2176")),
        float(os.getenv("DEFAULT_ORIGIN_LNG", "-149.8997")),
    )


def get_journey_config() -> dict:
    """Get journey planning defaults."""
    return {
        "max_distance_miles": float(os.getenv("JOURNEY_MAX_DISTANCE_MILES", "25")),
        "max_stops": int(os.getenv("JOURNEY_DEFAULT_MAX_STOPS", "5")),
        "strict_transitions": os.getenv("JOURNEY_STRICT_TRANSITIONS", "false").lower()
        in ("1", "true", "yes"),
    }


def get_vendor_feed_url() -> str:
    return os.getenv("VENDOR_FEED_URL", "")


def get_google_maps_api_key() -> str:
    return os.getenv("GOOGLEMAPS_API_KEY", "")


def get_log_level() -> str:
    return os.getenv("LOG_LEVEL", "INFO").upper()


@dataclass
class Settings:
    """Resolved settings handed to service constructors at startup."""
    database_url: str
    timezone: object
    default_origin: tuple
    max_distance_miles: float
    max_stops: int
    strict_transitions: bool
    vendor_feed_url: str
    google_maps_api_key: str
    log_level: str


def get_settings() -> Settings:
    """Collect every setting from the environment."""
    journey = get_journey_config()
    return Settings(
        database_url=get_database_url(),
        timezone=get_local_timezone(),
        default_origin=get_default_origin(),
        max_distance_miles=journey["max_distance_miles"],
        max_stops=min(journey["max_stops"], MAX_STOPS_CEILING),
        strict_transitions=journey["strict_transitions"],
        vendor_feed_url=get_vendor_feed_url(),
        google_maps_api_key=get_google_maps_api_key(),
        log_level=get_log_level(),
    )
