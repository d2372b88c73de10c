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
import json
import logging
from typing import Any

import aiohttp
from aiohttp import ClientTimeout

from .cConfig import cConfig
from .cErrors import EnrichmentError
from .cSpot import cEnrichment

logger = logging.getLogger(__name__)

def _first_present(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]

    return None

def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'y')

    return bool(value)

class cWavelogLookup:
    """
    Enrichment source backed by the Wavelog 'api/lookup' endpoint.

    One aiohttp session is shared by all lookups and closed by close_async().
    """

    def __init__(self, config: cConfig.cWavelog) -> None:
        self.Config = config
        self._session: aiohttp.ClientSession | None = None

    @property
    def url(self) -> str:
        return f'{self.Config.URL}/api/lookup'

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=ClientTimeout(total=self.Config.TIMEOUT))

        return self._session

    @staticmethod
    def to_enrichment(data: dict[str, Any]) -> cEnrichment:
        Confirmed = _first_present(data, 'dxcc_confirmed_on_band_mode', 'dxcc_confirmed_on_band', 'dxcc_confirmed')
        Worked    = _first_present(data, 'call_worked_band_mode', 'call_worked_band', 'call_worked')

        return cEnrichment(
            dxcc_needed   = not _truthy(Confirmed),
            lotw_member   = _truthy(data.get('lotw_member')),
            worked_before = _truthy(Worked),
        )

    async def lookup_async(self, callsign: str, band: str, mode: str, station_ids: tuple[str, ...] = ()) -> cEnrichment:
        payload: dict[str, Any] = {
            'key':      self.Config.API_KEY,
            'callsign': callsign,
            'band':     band,
            'mode':     mode,
        }

        if station_ids:
            payload['station_ids'] = list(station_ids)

        try:
            async with self._get_session().post(self.url, json=payload) as response:
                if response.status != 200:
                    raise EnrichmentError(f'Lookup of {callsign} failed: HTTP {response.status}')

                Content = await response.text()
        except aiohttp.ClientError as e:
            raise EnrichmentError(f'Lookup of {callsign} failed: {e}') from e
        except asyncio.TimeoutError as e:
            raise EnrichmentError(f'Lookup of {callsign} timed out after {self.Config.TIMEOUT} seconds') from e

        try:
            data = json.loads(Content)
        except json.JSONDecodeError as e:
            raise EnrichmentError(f"Problem parsing lookup response for {callsign}: '{Content[:80]}'") from e

        if not isinstance(data, dict):
            raise EnrichmentError(f'Unexpected lookup response for {callsign}: {type(data).__name__}')

        enrichment = self.to_enrichment(data)
        logger.debug('Lookup %s %s %s -> %s', callsign, band, mode, enrichment)
        return enrichment

    async def close_async(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()

        self._session = None
