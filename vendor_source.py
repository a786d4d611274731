"""
Vendor feed sources for the vendor/deal cache

The cache does not care where records come from; it only awaits
VendorSource.fetch_all(). Two implementations:
- VendorFeedClient: HTTP JSON feed (requests), with timeout and
  rate-limit handling
- StaticVendorSource: in-process payloads (seeding, demos, tests)

Malformed records are skipped and logged; the rest of the feed is kept.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional

import requests
from pydantic import ValidationError

from vendor_schema import VendorRecord

logger = logging.getLogger(__name__)


class VendorFeedError(Exception):
    """Raised when the vendor feed cannot be fetched at all"""

    def __init__(self, message: str, retry_after: int = 0):
        super().__init__(message)
        self.retry_after = retry_after


def parse_vendor_payloads(payloads: Iterable[Dict]) -> List[VendorRecord]:
    """
    Validate raw feed payloads into VendorRecords.

    Args:
        payloads: Iterable of vendor dicts in the feed wire format

    Returns:
        Valid records in feed order
    """
    vendors = []
    for index, payload in enumerate(payloads):
        try:
            vendors.append(VendorRecord.model_validate(payload))
        except ValidationError as e:
            logger.warning(f"Skipping malformed vendor record #{index}: {e.error_count()} errors")
            logger.debug(f"Validation detail: {e}")
    return vendors


class VendorSource(ABC):
    """Interface for anything that can deliver the full vendor set"""

    @abstractmethod
    async def fetch_all(self) -> List[VendorRecord]:
        pass


class StaticVendorSource(VendorSource):
    """Serves a fixed list of payloads"""

    def __init__(self, payloads: Iterable[Dict]):
        self.payloads = list(payloads)

    async def fetch_all(self) -> List[VendorRecord]:
        return parse_vendor_payloads(self.payloads)

    @classmethod
    def sample(cls) -> "StaticVendorSource":
        return cls(SAMPLE_VENDORS)


class VendorFeedClient(VendorSource):
    """Client for the HTTP vendor feed"""

    TIMEOUT = 10  # seconds

    def __init__(self, feed_url: str, api_key: Optional[str] = None):
        """
        Initialize feed client.

        Args:
            feed_url: URL returning a JSON list of vendors (or {"vendors": [...]})
            api_key: Optional bearer token
        """
        if not feed_url:
            raise ValueError("Vendor feed URL is required")
        self.feed_url = feed_url
        self.api_key = api_key
        logger.info("VendorFeedClient initialized")

    async def fetch_all(self) -> List[VendorRecord]:
        payloads = await asyncio.to_thread(self._fetch_payloads)
        vendors = parse_vendor_payloads(payloads)
        logger.info(f"✓ Fetched {len(vendors)}/{len(payloads)} vendors from feed")
        return vendors

    def _fetch_payloads(self) -> List[Dict]:
        """
        Fetch the raw vendor list.

        Raises:
            VendorFeedError: On timeout, HTTP error, or unreadable body
        """
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            response = requests.get(self.feed_url, headers=headers, timeout=self.TIMEOUT)
            response.raise_for_status()
            data = response.json()

        except requests.exceptions.Timeout:
            logger.warning(f"Timeout fetching vendor feed after {self.TIMEOUT}s")
            raise VendorFeedError("Vendor feed timed out")

        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else 0
            if status == 429:
                retry_after = int(e.response.headers.get('Retry-After', 60))
                logger.error(f"Vendor feed rate limited (429). Retry after {retry_after}s")
                raise VendorFeedError("Vendor feed rate limited", retry_after=retry_after)
            logger.error(f"Vendor feed HTTP {status}")
            raise VendorFeedError(f"Vendor feed returned HTTP {status}")

        except ValueError as e:  # JSON parse error
            logger.error(f"Invalid JSON from vendor feed: {e}")
            raise VendorFeedError("Vendor feed returned invalid JSON")

        except requests.exceptions.RequestException as e:
            logger.error(f"Vendor feed request failed: {e}")
            raise VendorFeedError(f"Vendor feed request failed: {e}")

        if isinstance(data, dict):
            data = data.get("vendors", [])
        if not isinstance(data, list):
            raise VendorFeedError("Vendor feed payload is not a list")
        return data


# Anchorage demo data
SAMPLE_VENDORS = [
    {
        "id": 1,
        "name": "Midnight Sun Provisions",
        "location": {
            "address": "420 W 4th Ave, Anchorage, AK",
            "coordinates": {"latitude": 61.2190, "longitude": -149.8920},
        },
        "isPartner": True,
        "rating": 4.6,
        "hasQrCode": True,
        "deals": {
            "birthday": {"title": "Birthday Gift", "discount": "Free pre-roll", "restrictions": ["ID required"]},
            "daily": {day: [{"title": f"{day.title()} Deal", "discount": "15% off"}] for day in
                      ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]},
            "everyday": {"title": "Veteran Discount", "discount": "10% off", "category": "discount"},
        },
    },
    {
        "id": "2",
        "name": "Spenard Green",
        "location": {
            "address": "2600 Spenard Rd, Anchorage, AK",
            "coordinates": {"latitude": 61.1995, "longitude": -149.9123},
        },
        "rating": 4.2,
        "hasQrCode": False,
        "deals": {
            "daily": {"friday": [{"title": "Flower Friday", "discount": "20% off flower"}]},
            "multiDay": [{"title": "Weekend Bundle", "discount": "BOGO", "activeDays": ["Saturday", "Sunday"]}],
        },
    },
    {
        "id": 3.0,
        "name": "Northern Lights Collective",
        "location": {
            "address": "1200 E Dimond Blvd, Anchorage, AK",
            "coordinates": {"latitude": 61.1432, "longitude": -149.8630},
        },
        "rating": 4.8,
        "deals": {
            "birthday": {"title": "Birthday Month", "discount": "25% off one item"},
            "special": [{
                "title": "Aurora Week",
                "discount": "30% off",
                "startDate": "2024-01-01T00:00:00",
                "endDate": "2030-12-31T23:59:59",
            }],
        },
    },
]
