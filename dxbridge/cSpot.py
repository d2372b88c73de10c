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

import re
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import ClassVar, Final

from .cCommon import cUtil
from .cErrors import ProtocolError

#
# Lenient approximation of "<spotter>: <freq> <dx-callsign> <comment> <time>".
# Accepts the usual "DX de " prefix and RBN style "-#" spotter suffixes.
#
DEFAULT_SPOT_PATTERN: Final[str] = (
    r'^(?:DX\s+de\s+)?(?P<spotter>[A-Za-z0-9/#-]+):\s*'
    r'(?P<frequency>\d+(?:\.\d+)?)\s+'
    r'(?P<dx>[A-Za-z0-9/]+)\s*'
    r'(?P<comment>.*?)\s*'
    r'(?P<time>\d{4})Z'
)

REQUIRED_GROUPS: Final[frozenset[str]] = frozenset({'spotter', 'frequency', 'dx', 'comment', 'time'})

@dataclass(frozen=True)
class cEnrichment:
    DEFAULT: ClassVar[cEnrichment]

    dxcc_needed:   bool = False
    lotw_member:   bool = False
    worked_before: bool = False

    def key(self) -> tuple[bool, bool, bool]:
        """Color table key order: (dxcc_needed, worked_before, lotw_member)."""
        return self.dxcc_needed, self.worked_before, self.lotw_member

cEnrichment.DEFAULT = cEnrichment()

@dataclass
class cSpot:
    frequency:        float       # kHz
    dx_callsign:      str
    spotter_callsign: str
    comment:          str = ''
    time_utc:         datetime = field(default_factory=lambda: datetime.now(UTC))
    band:             str = ''
    mode:             str = ''

    dxcc_needed:      bool = False
    lotw_member:      bool = False
    worked_before:    bool = False
    display_color:    str | None = None

    def __post_init__(self) -> None:
        if not self.band:
            self.band = cUtil.which_band(self.frequency)

        if not self.mode:
            self.mode = cUtil.guess_mode(self.frequency, self.comment)

    @property
    def enrichment(self) -> cEnrichment:
        return cEnrichment(self.dxcc_needed, self.lotw_member, self.worked_before)

    def apply(self, enrichment: cEnrichment) -> None:
        self.dxcc_needed   = enrichment.dxcc_needed
        self.lotw_member   = enrichment.lotw_member
        self.worked_before = enrichment.worked_before

    def __str__(self) -> str:
        return f'{self.dx_callsign:<10} {self.frequency:>9.1f} {self.band:>4} {self.mode:<5} de {self.spotter_callsign}'

class cSpotParser:
    def __init__(self, pattern: str = DEFAULT_SPOT_PATTERN) -> None:
        self.RegEx = re.compile(pattern, re.IGNORECASE)

    @staticmethod
    def zulu_to_datetime(zulu: str, now: datetime | None = None) -> datetime:
        now = now or datetime.now(UTC)
        hour, minute = int(zulu[:2]), int(zulu[2:4])

        if hour > 23 or minute > 59:
            raise ProtocolError(f"Invalid spot time '{zulu}Z'")

        when = now.replace(hour=hour, minute=minute, second=0, microsecond=0)

        # A time "in the future" was spotted before midnight UTC.
        if when - now > timedelta(hours=12):
            when -= timedelta(days=1)

        return when

    def parse(self, line: str) -> cSpot | None:
        """
        Returns None for lines that are not spots at all.  Raises ProtocolError
        for lines shaped like a spot whose fields do not make sense.
        """
        if not (Match := self.RegEx.search(line)):
            return None

        try:
            FrequencyKHz = float(Match.group('frequency'))
        except ValueError as e:
            raise ProtocolError(f"Bad frequency in spot line '{line}'") from e

        if FrequencyKHz <= 0:
            raise ProtocolError(f"Bad frequency in spot line '{line}'")

        Spotter = Match.group('spotter').upper()

        # RBN skimmers append "-#" to their call.
        if Spotter.endswith('-#'):
            Spotter = Spotter[:-2]

        return cSpot(
            frequency        = FrequencyKHz,
            dx_callsign      = Match.group('dx').upper(),
            spotter_callsign = Spotter,
            comment          = cUtil.stripped(Match.group('comment') or '').strip(),
            time_utc         = self.zulu_to_datetime(Match.group('time')),
        )
