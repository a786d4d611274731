"""
Error kinds and exception types for the deal journey engine.

Planner failures are returned as an ErrorKind inside a PlanResult; the
exceptions below are raised only at the storage boundary, on vendor lookups
that require a hit, and for illegal state transitions in strict mode.
"""

from enum import Enum


class ErrorKind(str, Enum):
    CACHE_UNAVAILABLE = "CacheUnavailable"
    NO_MATCHING_VENDORS = "NoMatchingVendors"
    ALL_VENDORS_REDEEMED = "AllVendorsRedeemed"
    DISTANCE_EXCEEDED = "DistanceExceeded"
    VENDOR_NOT_FOUND = "VendorNotFound"
    STORAGE_UNAVAILABLE = "StorageUnavailable"
    EXPIRED_JOURNEY = "ExpiredJourney"
    LOCATION_UNAVAILABLE = "LocationUnavailable"


# One distinct message per kind so the UI can tell the user what to do next
USER_MESSAGES = {
    ErrorKind.CACHE_UNAVAILABLE: "Vendor data is still loading. Please try again in a moment.",
    ErrorKind.NO_MATCHING_VENDORS: "No vendors are offering this type of deal right now. Try a different deal type.",
    ErrorKind.ALL_VENDORS_REDEEMED: "You've already redeemed every deal of this type today. Come back tomorrow!",
    ErrorKind.DISTANCE_EXCEEDED: "No matching vendors are within your travel distance. Try widening the distance.",
    ErrorKind.VENDOR_NOT_FOUND: "That vendor could not be found.",
    ErrorKind.STORAGE_UNAVAILABLE: "Local storage is unavailable. Your progress may not be saved.",
    ErrorKind.EXPIRED_JOURNEY: "Your previous journey expired after 24 hours and was cleared.",
    ErrorKind.LOCATION_UNAVAILABLE: "We couldn't find that starting location. Check the address and try again.",
}


class JourneyEngineError(Exception):
    """Base error carrying an ErrorKind"""

    def __init__(self, kind: ErrorKind, message: str = None):
        self.kind = kind
        super().__init__(message or USER_MESSAGES[kind])


class StorageUnavailable(JourneyEngineError):
    """Raised when the durable key-value store cannot be read or written"""

    def __init__(self, message: str = None):
        super().__init__(ErrorKind.STORAGE_UNAVAILABLE, message)


class VendorNotFound(JourneyEngineError):
    """Raised when a vendor id has no cached record"""

    def __init__(self, vendor_id):
        self.vendor_id = vendor_id
        super().__init__(ErrorKind.VENDOR_NOT_FOUND, f"Vendor not found: {vendor_id}")


class InvalidTransition(Exception):
    """Raised for a journey transition whose state precondition does not hold"""
    pass
