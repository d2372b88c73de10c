from datetime import UTC, datetime

import pytest

from dxbridge.cCommon import cUtil
from dxbridge.cErrors import ProtocolError
from dxbridge.cSpot import cEnrichment, cSpot, cSpotParser

@pytest.fixture
def parser() -> cSpotParser:
    return cSpotParser()

def test_parses_minimal_spot_line(parser):
    spot = parser.parse('W1AW: 14025.0 JA1ABC FT8 1234Z')

    assert spot is not None
    assert spot.frequency == 14025.0
    assert spot.dx_callsign == 'JA1ABC'
    assert spot.spotter_callsign == 'W1AW'
    assert spot.mode == 'FT8'
    assert spot.band == '20m'
    assert (spot.time_utc.hour, spot.time_utc.minute) == (12, 34)

def test_parses_dx_de_line_and_strips_skimmer_suffix(parser):
    spot = parser.parse('DX de W3LPL-#:    7012.5  dl1abc       CW 18 dB 22 WPM CQ      0512Z')

    assert spot is not None
    assert spot.spotter_callsign == 'W3LPL'
    assert spot.dx_callsign == 'DL1ABC'
    assert spot.band == '40m'
    assert spot.mode == 'CW'
    assert spot.comment == 'CW 18 dB 22 WPM CQ'

def test_non_spot_lines_are_not_spots(parser):
    assert parser.parse('Hello N0CALL, this is DXSpider') is None
    assert parser.parse('') is None

def test_bad_time_raises_protocol_error(parser):
    with pytest.raises(ProtocolError):
        parser.parse('W1AW: 14025.0 JA1ABC CW 2599Z')

def test_zero_frequency_raises_protocol_error(parser):
    with pytest.raises(ProtocolError):
        parser.parse('W1AW: 0 JA1ABC 1234Z')

def test_spot_time_before_midnight_belongs_to_previous_day():
    now = datetime(2024, 3, 2, 0, 10, tzinfo=UTC)

    when = cSpotParser.zulu_to_datetime('2350', now)

    assert when == datetime(2024, 3, 1, 23, 50, tzinfo=UTC)

def test_mode_guess_from_band_plan():
    assert cUtil.guess_mode(7074.0) == 'FT8'
    assert cUtil.guess_mode(14010.0) == 'CW'
    assert cUtil.guess_mode(14250.0) == 'SSB'
    assert cUtil.guess_mode(14250.0, 'usb up 5') == 'SSB'
    assert cUtil.guess_mode(145500.0) == 'FM'

def test_out_of_band_frequency_has_no_band():
    assert cUtil.which_band(12345.0) == ''
    assert cSpot(12345.0, 'JA1ABC', 'W1AW').band == ''

def test_apply_enrichment():
    spot = cSpot(14025.0, 'JA1ABC', 'W1AW')

    spot.apply(cEnrichment(dxcc_needed=True, lotw_member=True, worked_before=False))

    assert spot.enrichment.key() == (True, False, True)
