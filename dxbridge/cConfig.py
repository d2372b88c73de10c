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

import argparse
import copy
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Final

import aiofiles

from .cErrors import ConfigurationError
from .cSpot import DEFAULT_SPOT_PATTERN, REQUIRED_GROUPS

PLACEHOLDER_CALLSIGN: Final[str] = 'YOUR-CALLSIGN-HERE'
CONFIG_FILE_NAME:     Final[str] = 'dx_flex_bridge.cfg'

def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    """A section that is missing or not a dict falls back to all defaults."""
    value = raw.get(name, {})
    return value if isinstance(value, dict) else {}

@dataclass
class cConfig:
    @dataclass
    class cReconnect:
        INITIAL_DELAY:  float = 5.0
        MAX_DELAY:      float = 300.0
        BACKOFF_FACTOR: float = 2.0
    @staticmethod
    def init_reconnect(section: dict[str, Any]) -> cConfig.cReconnect:
        reconnect = _section(section, 'RECONNECT')
        return cConfig.cReconnect(
            INITIAL_DELAY  = float(reconnect.get('INITIAL_DELAY',  cConfig.cReconnect.INITIAL_DELAY)),
            MAX_DELAY      = float(reconnect.get('MAX_DELAY',      cConfig.cReconnect.MAX_DELAY)),
            BACKOFF_FACTOR = float(reconnect.get('BACKOFF_FACTOR', cConfig.cReconnect.BACKOFF_FACTOR)),
        )

    @dataclass
    class cCluster:
        HOST:                 str = ''
        PORT:                 int = 7300
        CALLSIGN:             str = PLACEHOLDER_CALLSIGN
        LOGIN_PROMPT:         str = 'login:'
        COMMANDS_AFTER_LOGIN: list[str] = field(default_factory=list)
        SPOT_PATTERN:         str = DEFAULT_SPOT_PATTERN
        CONNECT_TIMEOUT:      float = 30.0
        LOGIN_TIMEOUT:        float = 30.0
        IDLE_TIMEOUT:         float = 600.0
        COMMAND_ACK_TIMEOUT:  float | None = 10.0
        COMMAND_SPACING:      float = 0.5
        RECONNECT:            cConfig.cReconnect = field(default_factory=lambda: cConfig.cReconnect())
    @classmethod
    def init_cluster(cls, raw: dict[str, Any]) -> cConfig.cCluster:
        cluster = _section(raw, 'CLUSTER')
        commands = cluster.get('COMMANDS_AFTER_LOGIN', [])
        ack_timeout = cluster.get('COMMAND_ACK_TIMEOUT', cConfig.cCluster.COMMAND_ACK_TIMEOUT)

        if isinstance(commands, str):
            commands = [commands]

        return cConfig.cCluster(
            HOST                 = str(cluster.get('HOST', cConfig.cCluster.HOST)).strip(),
            PORT                 = int(cluster.get('PORT', cConfig.cCluster.PORT)),
            CALLSIGN             = str(cluster.get('CALLSIGN', cConfig.cCluster.CALLSIGN)).strip().upper(),
            LOGIN_PROMPT         = str(cluster.get('LOGIN_PROMPT', cConfig.cCluster.LOGIN_PROMPT)),
            COMMANDS_AFTER_LOGIN = [str(command) for command in commands],
            SPOT_PATTERN         = str(cluster.get('SPOT_PATTERN', cConfig.cCluster.SPOT_PATTERN)),
            CONNECT_TIMEOUT      = float(cluster.get('CONNECT_TIMEOUT', cConfig.cCluster.CONNECT_TIMEOUT)),
            LOGIN_TIMEOUT        = float(cluster.get('LOGIN_TIMEOUT', cConfig.cCluster.LOGIN_TIMEOUT)),
            IDLE_TIMEOUT         = float(cluster.get('IDLE_TIMEOUT', cConfig.cCluster.IDLE_TIMEOUT)),
            COMMAND_ACK_TIMEOUT  = None if ack_timeout is None else float(ack_timeout),
            COMMAND_SPACING      = float(cluster.get('COMMAND_SPACING', cConfig.cCluster.COMMAND_SPACING)),
            RECONNECT            = cls.init_reconnect(cluster),
        )

    @dataclass
    class cRadio:
        ENABLED:            bool = True
        HOST:               str = ''
        PORT:               int = 4992
        SPOT_LIFETIME:      int = 300
        COMMAND_TIMEOUT:    float = 5.0
        CONNECT_TIMEOUT:    float = 10.0
        DISCONNECT_TIMEOUT: float = 5.0
        DEFAULT_COLOR:      str = '#FFFFFFFF'
        BACKGROUND_COLOR:   str = '#00000000'
        SOURCE:             str = 'DXCluster'
        COLOR_MAP:          dict[tuple[bool, bool, bool], str] = field(default_factory=dict)
        RECONNECT:          cConfig.cReconnect = field(default_factory=lambda: cConfig.cReconnect())
    @classmethod
    def init_radio(cls, raw: dict[str, Any]) -> cConfig.cRadio:
        radio = _section(raw, 'RADIO')
        color_map = radio.get('COLOR_MAP', DEFAULT_COLOR_MAP)

        if not isinstance(color_map, dict):
            color_map = DEFAULT_COLOR_MAP

        return cConfig.cRadio(
            ENABLED            = bool(radio.get('ENABLED', cConfig.cRadio.ENABLED)),
            HOST               = str(radio.get('HOST', cConfig.cRadio.HOST)).strip(),
            PORT               = int(radio.get('PORT', cConfig.cRadio.PORT)),
            SPOT_LIFETIME      = int(radio.get('SPOT_LIFETIME', cConfig.cRadio.SPOT_LIFETIME)),
            COMMAND_TIMEOUT    = float(radio.get('COMMAND_TIMEOUT', cConfig.cRadio.COMMAND_TIMEOUT)),
            CONNECT_TIMEOUT    = float(radio.get('CONNECT_TIMEOUT', cConfig.cRadio.CONNECT_TIMEOUT)),
            DISCONNECT_TIMEOUT = float(radio.get('DISCONNECT_TIMEOUT', cConfig.cRadio.DISCONNECT_TIMEOUT)),
            DEFAULT_COLOR      = str(radio.get('DEFAULT_COLOR', cConfig.cRadio.DEFAULT_COLOR)),
            BACKGROUND_COLOR   = str(radio.get('BACKGROUND_COLOR', cConfig.cRadio.BACKGROUND_COLOR)),
            SOURCE             = str(radio.get('SOURCE', cConfig.cRadio.SOURCE)),
            COLOR_MAP          = {tuple(bool(flag) for flag in key): str(color) for key, color in color_map.items()},
            RECONNECT          = cls.init_reconnect(radio),
        )

    @dataclass
    class cWavelog:
        URL:         str = ''
        API_KEY:     str = ''
        STATION_IDS: list[str] = field(default_factory=list)
        TIMEOUT:     float = 10.0
    @staticmethod
    def init_wavelog(raw: dict[str, Any]) -> cConfig.cWavelog:
        wavelog = _section(raw, 'WAVELOG')
        station_ids = wavelog.get('STATION_IDS', [])

        if isinstance(station_ids, (str, int)):
            station_ids = [station_ids]

        return cConfig.cWavelog(
            URL         = str(wavelog.get('URL', cConfig.cWavelog.URL)).strip().rstrip('/'),
            API_KEY     = str(wavelog.get('API_KEY', cConfig.cWavelog.API_KEY)).strip(),
            STATION_IDS = [str(station_id) for station_id in station_ids],
            TIMEOUT     = float(wavelog.get('TIMEOUT', cConfig.cWavelog.TIMEOUT)),
        )

    @dataclass
    class cCache:
        MAX_SIZE:    int = 1000
        TTL_SECONDS: float | None = None
    @staticmethod
    def init_cache(raw: dict[str, Any]) -> cConfig.cCache:
        cache = _section(raw, 'CACHE')
        ttl = cache.get('TTL_SECONDS', cConfig.cCache.TTL_SECONDS)
        return cConfig.cCache(
            MAX_SIZE    = int(cache.get('MAX_SIZE', cConfig.cCache.MAX_SIZE)),
            TTL_SECONDS = None if ttl is None else float(ttl),
        )

    @dataclass
    class cLogging:
        LEVEL:          str = 'INFO'
        BAD_LINES_FILE: str | None = None
    @staticmethod
    def init_logging(raw: dict[str, Any]) -> cConfig.cLogging:
        logging_config = _section(raw, 'LOGGING')
        return cConfig.cLogging(
            LEVEL          = str(logging_config.get('LEVEL', cConfig.cLogging.LEVEL)).upper(),
            BAD_LINES_FILE = logging_config.get('BAD_LINES_FILE', cConfig.cLogging.BAD_LINES_FILE),
        )

    CLUSTER: cConfig.cCluster  = field(default_factory=lambda: cConfig.cCluster())
    RADIO:   cConfig.cRadio    = field(default_factory=lambda: cConfig.cRadio(COLOR_MAP=dict(DEFAULT_COLOR_MAP)))
    WAVELOG: cConfig.cWavelog  = field(default_factory=lambda: cConfig.cWavelog())
    CACHE:   cConfig.cCache    = field(default_factory=lambda: cConfig.cCache())
    LOGGING: cConfig.cLogging  = field(default_factory=lambda: cConfig.cLogging())

    @classmethod
    def with_defaults(cls, raw: dict[str, Any]) -> cConfig:
        """Build a complete configuration from a possibly partial dict.  Never mutates raw."""
        raw = copy.deepcopy(raw)

        try:
            return cls(
                CLUSTER = cls.init_cluster(raw),
                RADIO   = cls.init_radio(raw),
                WAVELOG = cls.init_wavelog(raw),
                CACHE   = cls.init_cache(raw),
                LOGGING = cls.init_logging(raw),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f'Invalid value in configuration: {e}') from e

    def validate(self) -> None:
        problems: list[str] = []

        if not self.CLUSTER.HOST:
            problems.append("CLUSTER['HOST'] must be set.")

        if not self.CLUSTER.CALLSIGN or self.CLUSTER.CALLSIGN == PLACEHOLDER_CALLSIGN:
            problems.append(f"CLUSTER['CALLSIGN'] must be set to your callsign (not '{PLACEHOLDER_CALLSIGN}').")

        if not self.CLUSTER.LOGIN_PROMPT.strip():
            problems.append("CLUSTER['LOGIN_PROMPT'] must not be blank.")

        try:
            GroupNames = set(re.compile(self.CLUSTER.SPOT_PATTERN).groupindex)
        except re.error as e:
            problems.append(f"CLUSTER['SPOT_PATTERN'] is not a valid regular expression: {e}")
        else:
            if Missing := REQUIRED_GROUPS - GroupNames:
                problems.append(f"CLUSTER['SPOT_PATTERN'] is missing named groups: {', '.join(sorted(Missing))}")

        if self.CLUSTER.LOGIN_PROMPT.startswith('re:'):
            try:
                re.compile(self.CLUSTER.LOGIN_PROMPT[3:])
            except re.error as e:
                problems.append(f"CLUSTER['LOGIN_PROMPT'] is not a valid regular expression: {e}")

        if self.RADIO.ENABLED:
            if not self.RADIO.HOST:
                problems.append("RADIO['HOST'] must be set when the radio is enabled.")

            if not 0 < self.RADIO.PORT < 65536:
                problems.append("RADIO['PORT'] must be a valid TCP port.")

        if not 0 < self.CLUSTER.PORT < 65536:
            problems.append("CLUSTER['PORT'] must be a valid TCP port.")

        if not self.WAVELOG.URL or not self.WAVELOG.API_KEY:
            problems.append("WAVELOG['URL'] and WAVELOG['API_KEY'] must be set.")

        if self.CACHE.MAX_SIZE < 1:
            problems.append("CACHE['MAX_SIZE'] must be at least 1.")

        if self.RADIO.SPOT_LIFETIME < 1:
            problems.append("RADIO['SPOT_LIFETIME'] must be at least 1 second.")

        for Name, Reconnect in (('CLUSTER', self.CLUSTER.RECONNECT), ('RADIO', self.RADIO.RECONNECT)):
            if Reconnect.INITIAL_DELAY <= 0 or Reconnect.MAX_DELAY < Reconnect.INITIAL_DELAY:
                problems.append(f"{Name}['RECONNECT'] delays must satisfy 0 < INITIAL_DELAY <= MAX_DELAY.")

            if Reconnect.BACKOFF_FACTOR < 1:
                problems.append(f"{Name}['RECONNECT']['BACKOFF_FACTOR'] must be at least 1.")

        if problems:
            raise ConfigurationError('\n'.join(problems))

    @staticmethod
    async def read_config_file_async(path: str | Path) -> dict[str, Any]:
        config_vars: dict[str, Any] = {}
        ConfigFileAbsolute = Path(path).resolve()

        try:
            async with aiofiles.open(ConfigFileAbsolute, 'r', encoding='utf-8') as config_file:
                ConfigFileString = await config_file.read()
        except OSError as e:
            raise ConfigurationError(f"Unable to open configuration file '{ConfigFileAbsolute}': {e}") from e

        try:
            exec(ConfigFileString, {}, config_vars)  # noqa: S102
        except Exception as e:
            raise ConfigurationError(f"Problem in configuration file '{ConfigFileAbsolute}': {e}") from e

        return config_vars

    @staticmethod
    def parse_args(argv: list[str]) -> argparse.Namespace:
        parser = argparse.ArgumentParser(description='Relay DX Cluster spots, enriched by Wavelog, to a FlexRadio panadapter')

        parser.add_argument('-f', '--config', type=str, default=CONFIG_FILE_NAME, help='Configuration file')
        parser.add_argument('-c', '--callsign', type=str, help='Your callsign')
        parser.add_argument('-s', '--host', type=str, help='DX Cluster host')
        parser.add_argument('-p', '--port', type=int, help='DX Cluster port')
        parser.add_argument('-n', '--no-radio', action='store_true', help='Do not connect to the radio')
        parser.add_argument('-v', '--verbose', action='store_true', help='Enable verbose (debug) output')

        return parser.parse_args(argv)

    @classmethod
    async def init_async(cls, argv: list[str]) -> cConfig:
        args = cls.parse_args(argv)
        raw = await cls.read_config_file_async(args.config)
        config = cls.with_defaults(raw)

        if args.callsign:
            config.CLUSTER.CALLSIGN = args.callsign.upper()
        if args.host:
            config.CLUSTER.HOST = args.host
        if args.port:
            config.CLUSTER.PORT = args.port
        if args.no_radio:
            config.RADIO.ENABLED = False
        if args.verbose:
            config.LOGGING.LEVEL = 'DEBUG'

        config.validate()
        return config

#
# (dxcc_needed, worked_before, lotw_member) -> FlexRadio #AARRGGBB color.
# Combinations not listed, including unenriched spots, get DEFAULT_COLOR.
#
DEFAULT_COLOR_MAP: Final[dict[tuple[bool, bool, bool], str]] = {
    (True,  False, True):  '#FFFF0000',  # new DXCC, LoTW user
    (True,  False, False): '#FFFF8000',  # new DXCC
    (True,  True,  True):  '#FFFFFF00',  # needed, worked but unconfirmed, LoTW user
    (True,  True,  False): '#FFC0C000',  # needed, worked but unconfirmed
    (False, False, True):  '#FF00FF00',  # new call, LoTW user
}
