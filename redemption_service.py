"""
Redemption eligibility - one redemption per vendor, deal type and calendar day

A redemption is stored under its own key:

    redemption:{vendorId}:{dealType}:{YYYY-MM-DD}  →  ISO timestamp

The date is the device-local calendar day, so a deal redeemed at 23:59
is eligible again at 00:00.

Decision Logic for can_redeem():
- Record exists for (vendor, deal type, today) → not eligible
- No record, or only records from earlier days → eligible
- Store unreadable → eligible (fail-open, logged)
"""

import logging
from collections import namedtuple
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

from database import KeyValueStore
from errors import StorageUnavailable
from vendor_schema import DealType, local_now, normalize_vendor_id

logger = logging.getLogger(__name__)

KEY_PREFIX = "redemption:"

Redemption = namedtuple("Redemption", ["vendor_id", "deal_type", "date", "redeemed_at"])


def redemption_key(vendor_id, deal_type, day: str) -> str:
    return f"{KEY_PREFIX}{normalize_vendor_id(vendor_id)}:{DealType(deal_type).value}:{day}"


def parse_redemption_key(key: str) -> Optional[tuple]:
    """Split a redemption key into (vendor_id, deal_type, date); None if malformed."""
    if not key.startswith(KEY_PREFIX):
        return None
    parts = key[len(KEY_PREFIX):].rsplit(":", 2)
    if len(parts) != 3:
        return None
    return tuple(parts)


class RedemptionEligibilityTracker:
    """Day-scoped redemption records backed by the key-value store"""

    def __init__(
        self,
        store: KeyValueStore,
        clock: Optional[Callable[[], datetime]] = None,
        tz=None,
    ):
        """
        Initialize the tracker.

        Args:
            store: Durable key-value store
            clock: Returns the current timezone-aware local time
            tz: Local timezone used when no clock is supplied
        """
        self.store = store
        self._clock = clock or (lambda: local_now(tz))

    def today(self) -> str:
        return self._clock().strftime("%Y-%m-%d")

    async def can_redeem(self, vendor_id, deal_type: DealType) -> bool:
        key = redemption_key(vendor_id, deal_type, self.today())
        try:
            return await self.store.get(key) is None
        except StorageUnavailable as e:
            logger.warning(f"Redemption check failed for {key}, allowing redemption: {e}")
            return True

    async def record_redemption(self, vendor_id, deal_type: DealType) -> bool:
        """
        Write (or overwrite) today's redemption record.

        Returns:
            True if stored, False if the store is unavailable
        """
        now = self._clock()
        key = redemption_key(vendor_id, deal_type, now.strftime("%Y-%m-%d"))
        try:
            await self.store.set(key, now.isoformat())
        except StorageUnavailable as e:
            logger.error(f"✗ Could not record redemption {key}: {e}")
            return False

        logger.info(f"✓ Recorded redemption {key}")
        return True

    async def filter_redeemable(self, vendors: Iterable, deal_type: DealType) -> List:
        """Keep vendors still eligible today for deal_type, in input order."""
        eligible = []
        for vendor in vendors:
            if await self.can_redeem(vendor.id, deal_type):
                eligible.append(vendor)
            else:
                logger.debug(f"Vendor {vendor.id} already redeemed {DealType(deal_type).value} today")
        return eligible

    async def get_redemptions(self) -> List[Redemption]:
        """All stored redemption records; empty if the store is unavailable."""
        try:
            keys = await self.store.list_keys(KEY_PREFIX)
        except StorageUnavailable as e:
            logger.warning(f"Could not list redemptions: {e}")
            return []

        redemptions = []
        for key in keys:
            parsed = parse_redemption_key(key)
            if parsed is None:
                logger.warning(f"Ignoring malformed redemption key {key}")
                continue
            try:
                redeemed_at = await self.store.get(key)
            except StorageUnavailable:
                redeemed_at = None
            redemptions.append(Redemption(*parsed, redeemed_at))
        return redemptions

    async def get_stats(self) -> Dict:
        """
        Aggregate redemption counts for dashboard display.

        Returns:
            {"today": {"count", "uniqueVendors"}, "total": {"count", "uniqueVendors"}}
        """
        redemptions = await self.get_redemptions()
        today = self.today()
        todays = [r for r in redemptions if r.date == today]

        return {
            "today": {
                "count": len(todays),
                "uniqueVendors": len({r.vendor_id for r in todays}),
            },
            "total": {
                "count": len(redemptions),
                "uniqueVendors": len({r.vendor_id for r in redemptions}),
            },
        }

    async def clear_history(self) -> int:
        """Remove every redemption record. Returns how many were removed."""
        try:
            keys = await self.store.list_keys(KEY_PREFIX)
            await self.store.multi_remove(keys)
        except StorageUnavailable as e:
            logger.error(f"✗ Could not clear redemption history: {e}")
            return 0

        logger.info(f"Cleared {len(keys)} redemption records")
        return len(keys)
