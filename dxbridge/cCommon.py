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
from typing import Final

# Band edges in kHz.
BANDS: Final[dict[str, tuple[float, float]]] = {
    '160m': (1800.0,   2000.0),
    '80m':  (3500.0,   4000.0),
    '60m':  (5330.5 - 1.5, 5403.5 + 1.5),  # Small buffer for band edges
    '40m':  (7000.0,   7300.0),
    '30m':  (10100.0,  10150.0),
    '20m':  (14000.0,  14350.0),
    '17m':  (18068.0,  18168.0),
    '15m':  (21000.0,  21450.0),
    '12m':  (24890.0,  24990.0),
    '10m':  (28000.0,  29700.0),
    '6m':   (50000.0,  54000.0),
    '4m':   (70000.0,  71000.0),
    '2m':   (144000.0, 148000.0),
    '70cm': (420000.0, 450000.0),
}

# Upper edge (kHz) of the CW/narrowband portion of each HF band.
_CW_SEGMENT_TOP: Final[dict[str, float]] = {
    '160m': 1840.0,
    '80m':  3600.0,
    '40m':  7060.0,
    '30m':  10150.0,
    '20m':  14070.0,
    '17m':  18095.0,
    '15m':  21070.0,
    '12m':  24915.0,
    '10m':  28070.0,
    '6m':   50100.0,
}

# Well-known FT8/FT4 dial frequencies, kHz.
_DIGITAL_FREQUENCIES: Final[dict[str, list[float]]] = {
    'FT8': [1840.0, 3573.0, 5357.0, 7074.0, 10136.0, 14074.0, 18100.0, 21074.0, 24915.0, 28074.0, 50313.0],
    'FT4': [3575.0, 7047.5, 10140.0, 14080.0, 18104.0, 21140.0, 24919.0, 28180.0, 50318.0],
}

KNOWN_MODES: Final[tuple[str, ...]] = (
    'FT8', 'FT4', 'CW', 'SSB', 'USB', 'LSB', 'AM', 'FM', 'RTTY',
    'PSK31', 'PSK63', 'PSK', 'JT65', 'JT9', 'JS8', 'MSK144', 'Q65', 'FST4', 'OLIVIA', 'SSTV',
)

_Mode_RegEx: Final[re.Pattern[str]] = re.compile(r'\b(' + '|'.join(KNOWN_MODES) + r')\b', re.IGNORECASE)

class cUtil:
    @staticmethod
    def stripped(text: str) -> str:
        return ''.join(c for c in text if 31 < ord(c) < 127)

    @staticmethod
    def which_band(frequency_khz: float) -> str:
        for band, (low_khz, high_khz) in BANDS.items():
            if low_khz <= frequency_khz <= high_khz:
                return band

        return ''

    @staticmethod
    def guess_mode(frequency_khz: float, comment: str = '') -> str:
        """Mode named in the comment wins, then known digital dial frequencies, then the band plan."""
        if Match := _Mode_RegEx.search(comment or ''):
            Mode = Match.group(1).upper()
            return 'SSB' if Mode in ('USB', 'LSB') else Mode

        for Mode, Frequencies in _DIGITAL_FREQUENCIES.items():
            if any(abs(frequency_khz - f) <= 3.0 for f in Frequencies):
                return Mode

        Band = cUtil.which_band(frequency_khz)

        if Band in _CW_SEGMENT_TOP:
            return 'CW' if frequency_khz < _CW_SEGMENT_TOP[Band] else 'SSB'

        if Band in ('2m', '70cm', '4m'):
            return 'FM'

        return ''
