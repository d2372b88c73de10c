import asyncio

import pytest

from dxbridge.cErrors import EnrichmentError
from dxbridge.cSpot import cEnrichment, cSpot
from dxbridge.cSpotCache import cSpotCache

NEEDED = cEnrichment(dxcc_needed=True, lotw_member=False, worked_before=False)

class cFakeLookup:
    def __init__(self, result: cEnrichment | BaseException = NEEDED, gate: asyncio.Event | None = None) -> None:
        self.Result = result
        self.Gate   = gate
        self.Calls: list[tuple[str, str, str, tuple[str, ...]]] = []

    async def __call__(self, callsign: str, band: str, mode: str, station_ids: tuple[str, ...]) -> cEnrichment:
        self.Calls.append((callsign, band, mode, station_ids))

        if self.Gate is not None:
            await self.Gate.wait()

        if isinstance(self.Result, BaseException):
            raise self.Result

        return self.Result

def spot(callsign: str = 'JA1ABC', frequency: float = 14025.0) -> cSpot:
    return cSpot(frequency, callsign, 'W1AW', comment='CW')

@pytest.mark.asyncio
async def test_miss_then_hit():
    lookup = cFakeLookup()
    cache = cSpotCache(10, lookup)

    first, second = spot(), spot()
    await cache.process_spot_async(first)
    await cache.process_spot_async(second)

    assert len(lookup.Calls) == 1
    assert first.dxcc_needed and second.dxcc_needed
    health = cache.get_health_status()
    assert (health.hit_count, health.miss_count, health.size) == (1, 1, 1)
    assert health.last_lookup_latency is not None

@pytest.mark.asyncio
async def test_lookup_key_is_normalized():
    lookup = cFakeLookup()
    cache = cSpotCache(10, lookup, station_ids=['2', '1'])

    await cache.process_spot_async(spot('ja1abc'))

    assert lookup.Calls == [('JA1ABC', '20m', 'CW', ('1', '2'))]

@pytest.mark.asyncio
async def test_least_recently_used_entry_is_evicted():
    cache = cSpotCache(2, cFakeLookup())
    a, b, c = spot('AA1A'), spot('BB1B'), spot('CC1C')

    await cache.process_spot_async(a)
    await cache.process_spot_async(b)
    await cache.process_spot_async(spot('AA1A'))  # a is now most recent
    await cache.process_spot_async(c)

    assert len(cache) == 2
    assert cache.make_key(a) in cache
    assert cache.make_key(b) not in cache
    assert cache.make_key(c) in cache
    assert cache.get_health_status().eviction_count == 1

@pytest.mark.asyncio
async def test_size_never_exceeds_capacity():
    cache = cSpotCache(3, cFakeLookup())

    for n in range(10):
        await cache.process_spot_async(spot(f'K{n}ABC'))
        assert len(cache) <= 3

@pytest.mark.asyncio
async def test_concurrent_misses_share_one_lookup():
    gate = asyncio.Event()
    lookup = cFakeLookup(gate=gate)
    cache = cSpotCache(10, lookup)
    spots = [spot() for _ in range(3)]

    tasks = [asyncio.create_task(cache.process_spot_async(s)) for s in spots]
    await asyncio.sleep(0.01)
    assert cache.get_health_status().pending_lookups == 1

    gate.set()
    await asyncio.gather(*tasks)

    assert len(lookup.Calls) == 1
    assert all(s.dxcc_needed for s in spots)
    assert cache.get_health_status().pending_lookups == 0

@pytest.mark.asyncio
async def test_failed_lookup_applies_defaults_and_counts_once():
    gate = asyncio.Event()
    lookup = cFakeLookup(EnrichmentError('HTTP 500'), gate)
    cache = cSpotCache(10, lookup)
    spots = [spot(), spot()]

    tasks = [asyncio.create_task(cache.process_spot_async(s)) for s in spots]
    await asyncio.sleep(0.01)
    gate.set()
    await asyncio.gather(*tasks)

    assert all(s.enrichment == cEnrichment.DEFAULT for s in spots)
    assert cache.get_health_status().lookup_error_count == 1
    assert len(cache) == 0

@pytest.mark.asyncio
async def test_lookup_timeout_is_counted_and_not_cached():
    lookup = cFakeLookup(TimeoutError())
    cache = cSpotCache(10, lookup)
    s = spot()

    await cache.process_spot_async(s)

    assert s.enrichment == cEnrichment.DEFAULT
    assert cache.get_health_status().lookup_error_count == 1

    await cache.process_spot_async(spot())
    assert len(lookup.Calls) == 2

@pytest.mark.asyncio
async def test_expired_entries_are_looked_up_again():
    lookup = cFakeLookup()
    cache = cSpotCache(10, lookup, ttl_seconds=0.05)

    await cache.process_spot_async(spot())
    await asyncio.sleep(0.1)
    await cache.process_spot_async(spot())

    assert len(lookup.Calls) == 2
    assert cache.get_health_status().miss_count == 2

@pytest.mark.asyncio
async def test_clear_drops_entries():
    cache = cSpotCache(10, cFakeLookup())
    await cache.process_spot_async(spot())

    cache.clear()

    assert len(cache) == 0

def test_capacity_must_be_positive():
    with pytest.raises(ValueError):
        cSpotCache(0, cFakeLookup())
