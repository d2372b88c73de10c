"""

     The MIT License (MIT)

     Copyright (c) 2024-2025 DX Flex Bridge contributors

     Permission is hereby granted, free of charge, to any person obtaining a copy
     of this software and associated documentation files (the "Software"), to deal
     in the Software without restriction, including without limitation the rights
     to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
     copies of the Software, and to permit persons to whom the Software is
     furnished to do so, subject to the following conditions:

     The above copyright notice and this permission notice shall be included in all
     copies or substantial portions of the Software.

     THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
     IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
     FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
     AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
     LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
     OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
     SOFTWARE.

"""
from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeAlias

from .cErrors import EnrichmentError
from .cSpot import cEnrichment, cSpot

logger = logging.getLogger(__name__)

tCacheKey: TypeAlias = tuple[str, str, str, tuple[str, ...]]
tLookup:   TypeAlias = Callable[[str, str, str, tuple[str, ...]], Awaitable[cEnrichment]]

@dataclass
class cCacheEntry:
    enrichment:  cEnrichment
    last_access: float
    expires:     float | None = None

    def is_fresh(self, now: float) -> bool:
        return self.expires is None or now < self.expires

@dataclass(frozen=True)
class cCacheHealth:
    size:                int
    capacity:            int
    hit_count:           int
    miss_count:          int
    lookup_error_count:  int
    last_lookup_latency: float | None
    pending_lookups:     int
    eviction_count:      int

    def __str__(self) -> str:
        Latency = 'n/a' if self.last_lookup_latency is None else f'{self.last_lookup_latency * 1000:.0f}ms'
        return (
            f'{self.size}/{self.capacity} entries, {self.hit_count} hits, {self.miss_count} misses, '
            f'{self.lookup_error_count} lookup errors, last lookup {Latency}'
        )

class cSpotCache:
    """
    Bounded LRU cache of enrichment results.

    At most one lookup per key is in flight: the first miss starts a task and
    every concurrent miss for the same key awaits that same task.  A failed
    lookup leaves the spot with default flags; it never fails process_spot_async.
    """

    def __init__(self, max_size: int, lookup: tLookup, station_ids: list[str] | tuple[str, ...] = (), ttl_seconds: float | None = None) -> None:
        if max_size < 1:
            raise ValueError('max_size must be at least 1')

        self.MaxSize    = max_size
        self.Lookup     = lookup
        self.Scope      = tuple(sorted(str(station_id) for station_id in station_ids))
        self.TtlSeconds = ttl_seconds

        self._entries: OrderedDict[tCacheKey, cCacheEntry] = OrderedDict()
        self._pending: dict[tCacheKey, asyncio.Task[cEnrichment]] = {}

        self.hit_count           = 0
        self.miss_count          = 0
        self.lookup_error_count  = 0
        self.eviction_count      = 0
        self.last_lookup_latency: float | None = None

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def make_key(self, spot: cSpot) -> tCacheKey:
        return spot.dx_callsign.strip().upper(), spot.band.lower(), spot.mode.upper(), self.Scope

    async def process_spot_async(self, spot: cSpot) -> None:
        key = self.make_key(spot)
        now = time.monotonic()

        if (entry := self._entries.get(key)) is not None:
            if entry.is_fresh(now):
                self.hit_count += 1
                entry.last_access = now
                self._entries.move_to_end(key)
                spot.apply(entry.enrichment)
                return

            del self._entries[key]

        self.miss_count += 1

        task = self._pending.get(key)
        if task is None:
            task = asyncio.create_task(self._lookup_async(key), name=f'lookup-{key[0]}-{key[1]}-{key[2]}')
            self._pending[key] = task
        else:
            logger.debug('Joining pending lookup for %s', key)

        try:
            enrichment = await asyncio.shield(task)
        except EnrichmentError:
            enrichment = cEnrichment.DEFAULT

        spot.apply(enrichment)

    async def _lookup_async(self, key: tCacheKey) -> cEnrichment:
        CallSign, Band, Mode, Scope = key
        start = time.monotonic()

        try:
            enrichment = await self.Lookup(CallSign, Band, Mode, Scope)
        except EnrichmentError as e:
            self.lookup_error_count += 1
            logger.warning('Enrichment lookup failed for %s: %s', CallSign, e)
            raise
        except Exception as e:
            self.lookup_error_count += 1
            logger.warning('Enrichment lookup failed for %s: %s', CallSign, e)
            raise EnrichmentError(str(e) or type(e).__name__) from e
        else:
            self._insert(key, enrichment)
            return enrichment
        finally:
            self.last_lookup_latency = time.monotonic() - start
            self._pending.pop(key, None)

    def _insert(self, key: tCacheKey, enrichment: cEnrichment) -> None:
        now = time.monotonic()
        expires = None if self.TtlSeconds is None else now + self.TtlSeconds

        if key in self._entries:
            self._entries.move_to_end(key)
        else:
            while len(self._entries) >= self.MaxSize:
                evicted, _ = self._entries.popitem(last=False)
                self.eviction_count += 1
                logger.debug('Evicted %s', evicted)

        self._entries[key] = cCacheEntry(enrichment, now, expires)

    def clear(self) -> None:
        self._entries.clear()

    def get_health_status(self) -> cCacheHealth:
        return cCacheHealth(
            size                = len(self._entries),
            capacity            = self.MaxSize,
            hit_count           = self.hit_count,
            miss_count          = self.miss_count,
            lookup_error_count  = self.lookup_error_count,
            last_lookup_latency = self.last_lookup_latency,
            pending_lookups     = len(self._pending),
            eviction_count      = self.eviction_count,
        )
