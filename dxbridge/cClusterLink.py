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
import codecs
import logging
import re
import socket
from contextlib import suppress
from typing import Any, Callable, Final

import aiofiles

from .cConfig import cConfig
from .cErrors import LinkConnectionError, ProtocolError
from .cEventBus import cLinkEvent
from .cSpot import cSpotParser
from .cStateMachine import cStateMachine, eLinkState

logger = logging.getLogger(__name__)

# Telnet option negotiation (IAC WILL/WONT/DO/DONT <option>).
_Telnet_RegEx: Final[re.Pattern[bytes]] = re.compile(rb'\xff[\xfb-\xfe].', re.DOTALL)

def split_telnet_tail(data: bytes) -> tuple[bytes, bytes]:
    """Holds back an IAC sequence cut off by the end of a read."""
    if data.endswith(b'\xff'):
        return data[:-1], data[-1:]

    if len(data) >= 2 and data[-2] == 0xFF and 0xFB <= data[-1] <= 0xFE:
        return data[:-2], data[-2:]

    return data, b''

def build_login_matcher(prompt: str) -> Callable[[str], bool]:
    """'re:<pattern>' is a regular expression, anything else a case-insensitive substring."""
    if prompt.startswith('re:'):
        RegEx = re.compile(prompt[3:], re.IGNORECASE)
        return lambda text: RegEx.search(text) is not None

    Needle = prompt.lower()
    return lambda text: Needle in text.lower()

class cClusterLink:
    LINK: Final[str] = 'cluster'

    def __init__(self, config: cConfig.cCluster, events: asyncio.Queue[cLinkEvent], bad_lines_file: str | None = None) -> None:
        self.Config       = config
        self.Events       = events
        self.BadLinesFile = bad_lines_file
        self.Parser       = cSpotParser(config.SPOT_PATTERN)
        self.State        = cStateMachine(self.LINK)
        self.Generation   = 0

        self._is_login_prompt = build_login_matcher(config.LOGIN_PROMPT)
        self._reader:      asyncio.StreamReader | None = None
        self._writer:      asyncio.StreamWriter | None = None
        self._reader_task: asyncio.Task[None] | None = None

    @property
    def server(self) -> str:
        return f'{self.Config.HOST or "unknown"}:{self.Config.PORT or "unknown"}'

    @property
    def logged_in(self) -> bool:
        return self.State.State is eLinkState.LOGGED_IN

    async def connect_async(self) -> None:
        """Opens the transport.  Returns before authentication; 'loggedin' follows as an event."""
        self.close()
        self.State.transition(eLinkState.CONNECTING)

        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(self.Config.HOST, self.Config.PORT),
                timeout=self.Config.CONNECT_TIMEOUT,
            )
        except (OSError, TimeoutError) as e:
            self.State.transition(eLinkState.DISCONNECTED)
            raise LinkConnectionError(f'Unable to connect to {self.server}: {e or type(e).__name__}') from e

        # Enable TCP keepalive
        sock = writer.get_extra_info('socket')
        if sock is not None:
            with suppress(OSError):
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
                if hasattr(socket, 'TCP_KEEPIDLE'):
                    sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_KEEPIDLE, 300)  # 5 minutes
                    sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_KEEPINTVL, 60)  # 1 minute
                    sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_KEEPCNT, 3)    # 3 probes

        self.Generation += 1
        self._reader, self._writer = reader, writer
        self.State.transition(eLinkState.AWAITING_LOGIN)

        logger.info('Connected to DX Cluster %s, waiting for login prompt', self.server)
        self._reader_task = asyncio.create_task(self._read_loop_async(self.Generation, reader), name=f'cluster-reader-{self.Generation}')

    def write(self, line: str) -> None:
        if self._writer is None or self._writer.is_closing():
            raise LinkConnectionError(f'Not connected to {self.server}')

        self._writer.write((line.rstrip('\r\n') + '\r\n').encode('utf-8', errors='replace'))

    def close(self) -> None:
        """Tears down the transport.  Idempotent, and silent: no 'close' event is emitted."""
        if self._reader_task is not None and self._reader_task is not asyncio.current_task():
            self._reader_task.cancel()

        self._reader_task = None

        if self._writer is not None:
            self.State.transition(eLinkState.CLOSING)
            self.Generation += 1
            self._teardown()

        self.State.transition(eLinkState.DISCONNECTED)

    def _teardown(self) -> None:
        writer, self._writer, self._reader = self._writer, None, None

        if writer is not None:
            with suppress(Exception):
                writer.close()

    def _emit(self, kind: str, generation: int, payload: Any = None) -> None:
        self.Events.put_nowait(cLinkEvent(self.LINK, kind, generation, payload))

    def _login(self, generation: int) -> None:
        if self.State.State is not eLinkState.AWAITING_LOGIN:
            return

        logger.info('Login prompt detected, sending %s', self.Config.CALLSIGN)
        self.write(self.Config.CALLSIGN)
        self.State.transition(eLinkState.LOGGED_IN)
        self._emit('loggedin', generation)

    async def _read_loop_async(self, generation: int, reader: asyncio.StreamReader) -> None:
        loop = asyncio.get_running_loop()
        login_deadline = loop.time() + self.Config.LOGIN_TIMEOUT
        decoder = codecs.getincrementaldecoder('utf-8')(errors='replace')
        pending = b''
        buffer = ''

        try:
            while True:
                awaiting_login = self.State.State is eLinkState.AWAITING_LOGIN
                timeout = self.Config.IDLE_TIMEOUT

                if awaiting_login:
                    timeout = max(min(timeout, login_deadline - loop.time()), 0.0)

                try:
                    data = await asyncio.wait_for(reader.read(4096), timeout=timeout)
                except TimeoutError:
                    if awaiting_login:
                        logger.warning('No login prompt from %s within %s seconds', self.server, self.Config.LOGIN_TIMEOUT)
                    else:
                        logger.warning('No data received from %s for %s seconds', self.server, self.Config.IDLE_TIMEOUT)

                    self._emit('timeout', generation)
                    break

                if not data:  # EOF received
                    logger.info('DX Cluster connection closed by server.')
                    self._emit('close', generation)
                    break

                data, pending = split_telnet_tail(pending + data)
                buffer += decoder.decode(_Telnet_RegEx.sub(b'', data))
                *lines, buffer = buffer.split('\n')

                for line in lines:
                    await self.handle_line_async(line.rstrip('\r'), generation)

                # Prompts like "login: " arrive without a line ending.
                if buffer and self.State.State is eLinkState.AWAITING_LOGIN and self._is_login_prompt(buffer):
                    buffer = ''
                    self._login(generation)

        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error('DX Cluster read error on %s: %s', self.server, e)
            self._emit('error', generation, e)
        finally:
            if generation == self.Generation:
                self._teardown()
                self.State.transition(eLinkState.DISCONNECTED)

    async def handle_line_async(self, line: str, generation: int) -> None:
        if not line.strip():
            return

        if self.State.State is eLinkState.AWAITING_LOGIN:
            if self._is_login_prompt(line):
                self._login(generation)
            else:
                logger.debug('cluster: %s', line)
            return

        try:
            spot = self.Parser.parse(line)
        except ProtocolError as e:
            logger.warning('Skipping bad spot line: %s', e)
            await self.log_bad_line_async(line)
            return

        if spot is None:
            logger.debug('cluster: %s', line)
            self._emit('message', generation, line)
        else:
            self._emit('spot', generation, spot)

    async def log_bad_line_async(self, line: str) -> None:
        if self.BadLinesFile:
            try:
                async with aiofiles.open(self.BadLinesFile, 'a', encoding='utf-8') as file:
                    await file.write(line + '\n')
            except OSError as e:
                logger.warning("Unable to append to '%s': %s", self.BadLinesFile, e)
