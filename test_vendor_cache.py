import asyncio
from datetime import datetime

import pytest

from conftest import ANCHORAGE, vendor_payload
from errors import VendorNotFound
from vendor_cache import (
    CACHE_KEY,
    CACHE_TIMESTAMP_KEY,
    DEAL_TYPE_PREDICATES,
    CacheState,
    VendorDealCache,
)
from vendor_schema import DealType
from vendor_source import StaticVendorSource, VendorFeedError, VendorSource


class CountingSource(VendorSource):
    def __init__(self, payloads):
        self.inner = StaticVendorSource(payloads)
        self.calls = 0

    async def fetch_all(self):
        self.calls += 1
        await asyncio.sleep(0.01)
        return await self.inner.fetch_all()


class FailingSource(VendorSource):
    async def fetch_all(self):
        raise VendorFeedError("feed down")


def test_predicate_table_covers_every_deal_type():
    assert set(DEAL_TYPE_PREDICATES) == set(DealType)


@pytest.mark.asyncio
async def test_initialize_marks_ready_and_notifies(vendor_payloads, store, clock):
    cache = VendorDealCache(StaticVendorSource(vendor_payloads), store=store, clock=clock)
    events = []
    cache.subscribe(events.append)

    assert cache.state is CacheState.UNINITIALIZED
    assert await cache.initialize()
    assert cache.state is CacheState.READY
    assert await cache.initialize()

    assert [(e.type, e.count) for e in events] == [("init", 4)]


@pytest.mark.asyncio
async def test_concurrent_initialize_shares_one_load(vendor_payloads, clock):
    source = CountingSource(vendor_payloads)
    cache = VendorDealCache(source, clock=clock)

    results = await asyncio.gather(cache.initialize(), cache.initialize(), cache.initialize())

    assert results == [True, True, True]
    assert source.calls == 1


@pytest.mark.asyncio
async def test_queries_before_ready_return_empty(vendor_payloads, clock):
    cache = VendorDealCache(StaticVendorSource(vendor_payloads), clock=clock)

    assert cache.get_all_vendors() == []
    assert cache.get_vendor_by_id(101) is None
    assert cache.get_vendors_for_deal_type(DealType.DAILY) == []


@pytest.mark.asyncio
async def test_vendor_lookup_accepts_numeric_and_string_ids(cache):
    by_int = cache.get_vendor_by_id(101)
    assert by_int is not None
    assert cache.get_vendor_by_id("101") is by_int
    assert cache.get_vendor_by_id(101.0) is by_int
    assert cache.get_vendor_by_id(104).name == "Denali Depot"


@pytest.mark.asyncio
async def test_missing_vendor(cache):
    assert cache.get_vendor_by_id("999") is None
    with pytest.raises(VendorNotFound) as exc_info:
        cache.require_vendor("999")
    assert exc_info.value.vendor_id == "999"


@pytest.mark.asyncio
async def test_get_all_vendors_filters(cache):
    assert len(cache.get_all_vendors()) == 4
    assert cache.get_all_vendors(is_partner=True) == []
    assert len(cache.get_all_vendors(min_rating=4.5)) == 4
    assert cache.get_all_vendors(min_rating=4.9) == []


@pytest.mark.asyncio
async def test_daily_predicate_follows_weekday(cache, clock):
    friday = {v.id for v in cache.get_vendors_for_deal_type(DealType.DAILY)}
    assert friday == {"101", "102", "103", "104"}

    clock.set(ANCHORAGE.localize(datetime(2026, 10, 19, 12, 0)))  # Monday
    monday = {v.id for v in cache.get_vendors_for_deal_type(DealType.DAILY)}
    assert monday == {"101", "102", "103"}


@pytest.mark.asyncio
async def test_multi_day_predicate(cache, clock):
    assert cache.get_vendors_for_deal_type(DealType.MULTI_DAY) == []

    clock.advance(days=1)  # Saturday
    assert [v.id for v in cache.get_vendors_for_deal_type(DealType.MULTI_DAY)] == ["104"]


@pytest.mark.asyncio
async def test_special_predicate_uses_date_window(cache):
    assert [v.id for v in cache.get_vendors_for_deal_type(DealType.SPECIAL)] == ["101"]


@pytest.mark.asyncio
async def test_birthday_and_everyday_predicates(cache):
    assert {v.id for v in cache.get_vendors_for_deal_type(DealType.BIRTHDAY)} == {"101", "102", "103"}
    assert [v.id for v in cache.get_vendors_for_deal_type(DealType.EVERYDAY)] == ["104"]
    assert [v.id for v in cache.get_vendors_for_deal_type(DealType.EVERYDAY, ["Discount"])] == ["104"]
    assert cache.get_vendors_for_deal_type(DealType.EVERYDAY, ["edibles"]) == []


@pytest.mark.asyncio
async def test_get_deals_by_type(cache):
    fridays = cache.get_deals_by_type(DealType.DAILY, day="Friday")
    assert len(fridays) == 4
    assert all(d.day == "friday" for d in fridays)

    one_vendor = cache.get_deals_by_type(DealType.DAILY, vendor_id=101)
    assert len(one_vendor) == 7

    specials = cache.get_deals_by_type(DealType.SPECIAL)
    assert [d.vendor_id for d in specials] == ["101"]
    assert len(cache.get_deals_by_type(DealType.SPECIAL, active_only=False)) == 2


@pytest.mark.asyncio
async def test_todays_deals_for_vendor(cache):
    deals = cache.get_todays_deals_for_vendor(104)
    assert sorted(d.deal_type.value for d in deals) == ["daily", "everyday"]


@pytest.mark.asyncio
async def test_cache_stats(cache):
    stats = cache.get_cache_stats()

    assert stats["state"] == "ready"
    assert stats["vendorCount"] == 4
    assert stats["dealsByType"]["birthday"] == 3
    assert stats["dealsByType"]["daily"] == 22
    assert stats["lastUpdate"] is not None


@pytest.mark.asyncio
async def test_apply_update_replaces_by_id(cache):
    events = []
    unsubscribe = cache.subscribe(events.append)
    renamed = vendor_payload(101, "Aurora Goods & Co", 1.0)

    assert await cache.apply_update([renamed]) == 1
    assert await cache.apply_update([renamed]) == 1

    vendor = cache.get_vendor_by_id("101")
    assert vendor.name == "Aurora Goods & Co"
    assert vendor.deals.birthday is None
    assert len(cache.get_all_vendors()) == 4
    assert [e.type for e in events] == ["update", "update"]

    unsubscribe()
    unsubscribe()
    await cache.apply_update([vendor_payload(105, "New Shop", 4.0)])
    assert len(events) == 2
    assert len(cache.get_all_vendors()) == 5


@pytest.mark.asyncio
async def test_subscriber_errors_do_not_break_notification(vendor_payloads, clock):
    cache = VendorDealCache(StaticVendorSource(vendor_payloads), clock=clock)
    seen = []

    def broken(event):
        raise RuntimeError("boom")

    cache.subscribe(broken)
    cache.subscribe(seen.append)
    await cache.initialize()

    assert len(seen) == 1


@pytest.mark.asyncio
async def test_snapshot_persisted_and_reused(vendor_payloads, store, clock):
    first = VendorDealCache(StaticVendorSource(vendor_payloads), store=store, clock=clock)
    await first.initialize()
    assert await store.get(CACHE_KEY) is not None
    assert await store.get(CACHE_TIMESTAMP_KEY) == clock().isoformat()

    second = VendorDealCache(FailingSource(), store=store, clock=clock)
    assert await second.initialize()
    assert second.get_vendor_by_id(103).name == "Cook Inlet Supply"
    assert not await second.needs_refresh()


@pytest.mark.asyncio
async def test_stale_snapshot_served_when_source_fails(vendor_payloads, store, clock):
    await VendorDealCache(StaticVendorSource(vendor_payloads), store=store, clock=clock).initialize()
    clock.advance(hours=25)

    cache = VendorDealCache(FailingSource(), store=store, clock=clock)
    assert await cache.initialize()
    assert len(cache.get_all_vendors()) == 4
    assert await cache.needs_refresh()


@pytest.mark.asyncio
async def test_unreadable_snapshot_timestamp_triggers_fetch(vendor_payloads, store, clock):
    await VendorDealCache(StaticVendorSource(vendor_payloads), store=store, clock=clock).initialize()
    await store.set(CACHE_TIMESTAMP_KEY, "not-a-timestamp")

    cache = VendorDealCache(StaticVendorSource(vendor_payloads[:1]), store=store, clock=clock)
    assert await cache.needs_refresh()
    assert await cache.initialize()
    assert len(cache.get_all_vendors()) == 1
    assert await store.get(CACHE_TIMESTAMP_KEY) == clock().isoformat()


@pytest.mark.asyncio
async def test_stale_snapshot_refreshed_from_source(vendor_payloads, store, clock):
    await VendorDealCache(StaticVendorSource(vendor_payloads), store=store, clock=clock).initialize()
    clock.advance(hours=25)

    source = CountingSource(vendor_payloads[:2])
    cache = VendorDealCache(source, store=store, clock=clock)
    assert await cache.initialize()

    assert source.calls == 1
    assert len(cache.get_all_vendors()) == 2


@pytest.mark.asyncio
async def test_failure_without_snapshot_is_error(store, clock):
    cache = VendorDealCache(FailingSource(), store=store, clock=clock)

    assert not await cache.initialize()
    assert cache.state is CacheState.ERROR


@pytest.mark.asyncio
async def test_empty_feed_without_snapshot_is_error(clock):
    cache = VendorDealCache(StaticVendorSource([]), clock=clock)

    assert not await cache.initialize()
    assert cache.state is CacheState.ERROR


@pytest.mark.asyncio
async def test_failed_refresh_keeps_current_vendors(vendor_payloads, clock):
    cache = VendorDealCache(StaticVendorSource(vendor_payloads), clock=clock)
    await cache.initialize()
    cache.source = FailingSource()

    assert await cache.refresh()
    assert cache.state is CacheState.READY
    assert len(cache.get_all_vendors()) == 4
