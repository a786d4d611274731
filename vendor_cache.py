"""
Vendor/Deal Cache - in-memory materialized view of vendor records

Decision Logic for initialize():
- Persisted snapshot exists and is younger than 24 hours → serve it
- Otherwise fetch the full vendor set from the VendorSource
- Fetch fails but a stale snapshot exists → keep serving the stale snapshot
- Fetch fails with nothing to serve → state ERROR

State: uninitialized → initializing → ready | error. Concurrent initialize()
calls share the in-flight load. Queries never touch the network; before the
cache is ready they return empty results and log a warning.

Update notifications are at-least-once; apply_update() merges by vendor id
with last-write-wins full-record replacement, so replays are harmless.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from database import KeyValueStore
from errors import StorageUnavailable, VendorNotFound
from vendor_schema import (
    DealRecord,
    DealType,
    VendorRecord,
    as_aware,
    flatten_deals,
    local_now,
    normalize_vendor_id,
    weekday_name,
)
from vendor_source import VendorSource, parse_vendor_payloads

logger = logging.getLogger(__name__)

# Configuration
CACHE_KEY = "vendors_cache"
CACHE_TIMESTAMP_KEY = "vendors_cache_timestamp"
CACHE_TTL = timedelta(hours=24)


class CacheState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    ERROR = "error"


@dataclass
class CacheEvent:
    """Notification delivered to cache subscribers"""
    type: str  # "init" or "update"
    count: int


# ============================================================================
# DEAL-TYPE PREDICATES
# ============================================================================

def _matches_category(category: Optional[str], categories: Optional[List[str]]) -> bool:
    if not categories:
        return True
    return category is not None and category.lower() in {c.lower() for c in categories}


def _has_birthday_deal(vendor: VendorRecord, now: datetime, categories=None) -> bool:
    birthday = vendor.deals.birthday
    return birthday is not None and not birthday.is_empty()


def _has_daily_deal_today(vendor: VendorRecord, now: datetime, categories=None) -> bool:
    return len(vendor.deals.daily.get(weekday_name(now), [])) > 0


def _has_multi_day_deal_today(vendor: VendorRecord, now: datetime, categories=None) -> bool:
    today = weekday_name(now)
    return any(today in deal.active_days for deal in vendor.deals.multi_day)


def _has_active_special(vendor: VendorRecord, now: datetime, categories=None) -> bool:
    return any(deal.is_active(now) for deal in vendor.deals.special)


def _has_everyday_deal(vendor: VendorRecord, now: datetime, categories=None) -> bool:
    return any(_matches_category(deal.category, categories) for deal in vendor.deals.everyday)


DEAL_TYPE_PREDICATES: Dict[DealType, Callable] = {
    DealType.BIRTHDAY: _has_birthday_deal,
    DealType.DAILY: _has_daily_deal_today,
    DealType.MULTI_DAY: _has_multi_day_deal_today,
    DealType.SPECIAL: _has_active_special,
    DealType.EVERYDAY: _has_everyday_deal,
}

_missing_predicates = set(DealType) - set(DEAL_TYPE_PREDICATES)
if _missing_predicates:
    raise RuntimeError(f"No deal-type predicate for: {sorted(t.value for t in _missing_predicates)}")


def vendor_offers(vendor: VendorRecord, deal_type: DealType, now: datetime,
                  categories: Optional[List[str]] = None) -> bool:
    """Whether a vendor currently offers a deal of the given type."""
    return DEAL_TYPE_PREDICATES[DealType(deal_type)](vendor, now, categories)


# ============================================================================
# CACHE
# ============================================================================

class VendorDealCache:
    """In-memory vendor/deal view with a persisted snapshot and subscribers"""

    def __init__(
        self,
        source: VendorSource,
        store: Optional[KeyValueStore] = None,
        clock: Optional[Callable[[], datetime]] = None,
        tz=None,
    ):
        """
        Initialize the cache.

        Args:
            source: Where the full vendor set comes from
            store: Durable store for the snapshot (optional)
            clock: Returns the current timezone-aware local time
            tz: Local timezone used when no clock is supplied
        """
        self.source = source
        self.store = store
        self._clock = clock or (lambda: local_now(tz))
        self._vendors: Dict[str, VendorRecord] = {}
        self._state = CacheState.UNINITIALIZED
        self._last_update: Optional[datetime] = None
        self._init_task: Optional[asyncio.Future] = None
        self._listeners: List[Callable[[CacheEvent], None]] = []

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def state(self) -> CacheState:
        return self._state

    def is_ready(self) -> bool:
        return self._state is CacheState.READY

    async def initialize(self, force: bool = False) -> bool:
        """
        Load the vendor set.

        Returns:
            True once the cache is ready, False if it ended in ERROR
        """
        if self._init_task is not None and not self._init_task.done():
            logger.debug("Cache load already in flight, awaiting it")
            return await self._init_task

        if self._state is CacheState.READY and not force:
            return True

        self._init_task = asyncio.ensure_future(self._load(force))
        return await self._init_task

    async def refresh(self) -> bool:
        """Re-fetch from the source, bypassing the snapshot."""
        return await self.initialize(force=True)

    async def needs_refresh(self) -> bool:
        if not self.is_ready():
            return True
        saved_at = await self._snapshot_time()
        return saved_at is None or (self._clock() - saved_at) > CACHE_TTL

    async def _load(self, force: bool) -> bool:
        if self._state is not CacheState.READY:
            self._state = CacheState.INITIALIZING
        logger.info(f"Loading vendors into cache (force={force})")

        snapshot = None if force else await self._load_snapshot()
        if snapshot is not None:
            vendors, saved_at = snapshot
            if self._clock() - saved_at <= CACHE_TTL:
                self._set_vendors(vendors)
                logger.info(f"✓ Loaded {len(vendors)} vendors from snapshot")
                return True
            logger.info("Vendor snapshot expired, refreshing from source")

        try:
            vendors = await self.source.fetch_all()
        except Exception as e:
            logger.error(f"✗ Vendor source failed: {e}")
            vendors = []

        if not vendors:
            if snapshot is not None:
                logger.warning("Vendor source unavailable, serving stale snapshot")
                self._set_vendors(snapshot[0])
                return True
            if self._state is CacheState.READY:
                logger.warning("Vendor refresh failed, keeping current cache")
                return True
            self._state = CacheState.ERROR
            logger.error("✗ Vendor cache unavailable: no vendors from source and no snapshot")
            return False

        self._set_vendors(vendors)
        await self._save_snapshot()
        logger.info(f"✓ Cached {len(self._vendors)} vendors successfully")
        return True

    def _set_vendors(self, vendors: Iterable[VendorRecord]) -> None:
        replacement: Dict[str, VendorRecord] = {}
        for vendor in vendors:
            replacement[vendor.id] = vendor

        first_load = self._state is not CacheState.READY
        self._vendors = replacement
        self._state = CacheState.READY
        self._last_update = self._clock()
        self._notify(CacheEvent(type="init" if first_load else "update", count=len(replacement)))

    async def apply_update(self, records: Iterable) -> int:
        """
        Merge pushed vendor records by id (full replacement per id).

        Args:
            records: VendorRecords or raw feed dicts

        Returns:
            Number of records merged
        """
        if not self.is_ready():
            logger.warning("Ignoring vendor update before cache is ready")
            return 0

        merged = dict(self._vendors)
        count = 0
        for record in records:
            vendor = record if isinstance(record, VendorRecord) else VendorRecord.model_validate(record)
            merged[vendor.id] = vendor
            count += 1

        self._vendors = merged
        self._last_update = self._clock()
        self._notify(CacheEvent(type="update", count=len(merged)))
        await self._save_snapshot()
        logger.info(f"✓ Merged {count} vendor updates")
        return count

    # ------------------------------------------------------------------
    # Snapshot persistence
    # ------------------------------------------------------------------

    async def _snapshot_time(self) -> Optional[datetime]:
        if self.store is None:
            return None
        try:
            raw = await self.store.get(CACHE_TIMESTAMP_KEY)
        except StorageUnavailable:
            return None
        if not raw:
            return None
        try:
            return datetime.fromisoformat(raw)
        except ValueError:
            logger.warning(f"Ignoring unreadable vendor snapshot timestamp {raw!r}")
            return None

    async def _load_snapshot(self):
        if self.store is None:
            return None
        try:
            payload = await self.store.get_json(CACHE_KEY)
            saved_at = await self._snapshot_time()
        except (StorageUnavailable, ValueError) as e:
            logger.warning(f"Could not read vendor snapshot: {e}")
            return None

        if not isinstance(payload, list) or not payload or saved_at is None:
            return None
        vendors = parse_vendor_payloads(payload)
        return vendors, saved_at

    async def _save_snapshot(self) -> None:
        if self.store is None:
            return
        try:
            await self.store.set_json(
                CACHE_KEY,
                [v.model_dump(mode="json", by_alias=True) for v in self._vendors.values()],
            )
            await self.store.set(CACHE_TIMESTAMP_KEY, self._clock().isoformat())
        except StorageUnavailable as e:
            logger.warning(f"Vendor snapshot not saved: {e}")

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------

    def subscribe(self, listener: Callable[[CacheEvent], None]) -> Callable[[], None]:
        """
        Register a listener for init/update events.

        Returns:
            A callable that unsubscribes the listener
        """
        if not callable(listener):
            logger.warning("Invalid subscriber callback")
            return lambda: None

        self._listeners.append(listener)
        return lambda: self.unsubscribe(listener)

    def unsubscribe(self, listener: Callable[[CacheEvent], None]) -> None:
        self._listeners = [cb for cb in self._listeners if cb is not listener]

    def _notify(self, event: CacheEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Error in vendor cache subscriber: {e}")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _snapshot(self) -> List[VendorRecord]:
        if not self.is_ready():
            logger.warning(f"Vendor cache not ready ({self._state.value}), returning empty list")
            return []
        return list(self._vendors.values())

    def get_all_vendors(
        self,
        is_partner: Optional[bool] = None,
        min_rating: Optional[float] = None,
    ) -> List[VendorRecord]:
        vendors = self._snapshot()
        if is_partner is not None:
            vendors = [v for v in vendors if v.is_partner == is_partner]
        if min_rating is not None:
            vendors = [v for v in vendors if v.rating >= min_rating]
        return vendors

    def get_vendor_by_id(self, vendor_id) -> Optional[VendorRecord]:
        if not self.is_ready():
            logger.warning("Vendor cache not ready, lookup skipped")
            return None
        try:
            key = normalize_vendor_id(vendor_id)
        except ValueError:
            logger.warning(f"Invalid vendor id {vendor_id!r}")
            return None

        vendor = self._vendors.get(key)
        if vendor is None:
            logger.info(f"Vendor not found in cache: {key}")
        return vendor

    def require_vendor(self, vendor_id) -> VendorRecord:
        vendor = self.get_vendor_by_id(vendor_id)
        if vendor is None:
            raise VendorNotFound(vendor_id)
        return vendor

    def get_vendors_for_deal_type(
        self,
        deal_type: DealType,
        categories: Optional[List[str]] = None,
    ) -> List[VendorRecord]:
        """Vendors whose deals satisfy the deal-type predicate right now."""
        now = self._clock()
        return [v for v in self._snapshot() if vendor_offers(v, deal_type, now, categories)]

    def get_deals_by_type(
        self,
        deal_type: DealType,
        day: Optional[str] = None,
        vendor_id=None,
        categories: Optional[List[str]] = None,
        active_only: bool = True,
    ) -> List[DealRecord]:
        """
        Flattened deals of one type across the cache.

        Args:
            deal_type: Which deal collection to read
            day: Weekday filter for daily and multi-day deals
            vendor_id: Restrict to one vendor
            categories: Category allow-list
            active_only: Drop special deals outside their date window

        Returns:
            List of DealRecord
        """
        deal_type = DealType(deal_type)
        if vendor_id is not None:
            vendor = self.get_vendor_by_id(vendor_id)
            vendors = [vendor] if vendor is not None else []
        else:
            vendors = self._snapshot()

        day = day.lower() if day else None
        now = self._clock()
        deals: List[DealRecord] = []
        for vendor in vendors:
            for deal in flatten_deals(vendor, deal_type):
                if day and deal_type is DealType.DAILY and deal.day != day:
                    continue
                if day and deal_type is DealType.MULTI_DAY and day not in deal.active_days:
                    continue
                if active_only and deal_type is DealType.SPECIAL and not _window_contains(deal, now):
                    continue
                if not _matches_category(deal.category, categories):
                    continue
                deals.append(deal)
        return deals

    def get_todays_deals_for_vendor(self, vendor_id) -> List[DealRecord]:
        """Daily deals for today, multi-day deals active today, and everyday deals."""
        today = weekday_name(self._clock())
        return (
            self.get_deals_by_type(DealType.DAILY, day=today, vendor_id=vendor_id)
            + self.get_deals_by_type(DealType.MULTI_DAY, day=today, vendor_id=vendor_id)
            + self.get_deals_by_type(DealType.EVERYDAY, vendor_id=vendor_id)
        )

    def get_cache_stats(self) -> Dict:
        vendors = list(self._vendors.values())
        deal_counts = {}
        vendors_with_deals = set()
        for deal_type in DealType:
            count = 0
            for vendor in vendors:
                n = len(flatten_deals(vendor, deal_type))
                if n:
                    vendors_with_deals.add(vendor.id)
                count += n
            deal_counts[deal_type.value] = count

        return {
            "state": self._state.value,
            "vendorCount": len(vendors),
            "dealsByType": deal_counts,
            "totalDeals": sum(deal_counts.values()),
            "uniqueVendors": len(vendors_with_deals),
            "lastUpdate": self._last_update.isoformat() if self._last_update else None,
        }


def _window_contains(deal: DealRecord, now: datetime) -> bool:
    tz = now.tzinfo
    start = as_aware(deal.valid_from, tz) if deal.valid_from else None
    end = as_aware(deal.valid_until, tz) if deal.valid_until else None
    return (start is None or start <= now) and (end is None or now <= end)
