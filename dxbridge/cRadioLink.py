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
from contextlib import suppress
from dataclasses import dataclass
from typing import Any, Final

from .cConfig import cConfig
from .cErrors import LinkConnectionError, ProtocolError
from .cEventBus import cLinkEvent
from .cSpot import cSpot
from .cStateMachine import cStateMachine, eLinkState

logger = logging.getLogger(__name__)

class cColorMap:
    """(dxcc_needed, worked_before, lotw_member) -> marker color, else the default color."""

    def __init__(self, table: dict[tuple[bool, bool, bool], str], default_color: str) -> None:
        self.Table        = dict(table)
        self.DefaultColor = default_color

    def resolve(self, spot: cSpot) -> str:
        return self.Table.get(spot.enrichment.key(), self.DefaultColor)

@dataclass
class cDisplayedSpot:
    index:        int
    removal_task: asyncio.Task[None] | None = None

class cRadioLink:
    """
    Client for the FlexRadio SmartSDR TCP API.

    Commands go out as 'C<seq>|<command>' and are answered by 'R<seq>|<hex status>|<message>'.
    The radio also sends its version ('V'), our client handle ('H'), status ('S')
    and messages ('M'), which are only logged.
    """

    LINK:             Final[str] = 'radio'
    SPACE_REPLACEMENT: Final[str] = '\x7f'  # SmartSDR encodes spaces in values as 0x7F

    def __init__(self, config: cConfig.cRadio, events: asyncio.Queue[cLinkEvent]) -> None:
        self.Config     = config
        self.Events     = events
        self.ColorMap   = cColorMap(config.COLOR_MAP, config.DEFAULT_COLOR)
        self.State      = cStateMachine(self.LINK)
        self.Generation = 0

        self.Version: str | None = None
        self.Handle:  str | None = None

        self._sequence = 0
        self._responses: dict[int, asyncio.Future[tuple[int, str]]] = {}
        self._displayed: dict[tuple[str, str], cDisplayedSpot] = {}
        self._reader:      asyncio.StreamReader | None = None
        self._writer:      asyncio.StreamWriter | None = None
        self._reader_task: asyncio.Task[None] | None = None

    @property
    def server(self) -> str:
        return f'{self.Config.HOST or "unknown"}:{self.Config.PORT or "unknown"}'

    @property
    def connected(self) -> bool:
        return self._writer is not None and self.State.State is eLinkState.CONNECTED

    def _emit(self, kind: str, generation: int, payload: Any = None) -> None:
        self.Events.put_nowait(cLinkEvent(self.LINK, kind, generation, payload))

    async def connect_async(self) -> None:
        if self._writer is not None:
            self.Generation += 1

        self._cancel_removals()
        self._teardown()
        self.State.transition(eLinkState.CONNECTING)

        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(self.Config.HOST, self.Config.PORT),
                timeout=self.Config.CONNECT_TIMEOUT,
            )
        except (OSError, TimeoutError) as e:
            self.State.transition(eLinkState.DISCONNECTED)
            raise LinkConnectionError(f'Unable to connect to FlexRadio at {self.server}: {e or type(e).__name__}') from e

        self.Generation += 1
        self._reader, self._writer = reader, writer
        self._sequence = 0
        self.State.transition(eLinkState.CONNECTED)
        self._reader_task = asyncio.create_task(self._read_loop_async(self.Generation, reader), name=f'radio-reader-{self.Generation}')

        logger.info('Connected to FlexRadio at %s', self.server)
        self._emit('connected', self.Generation)

    async def disconnect_async(self) -> None:
        """Removes our markers (best effort), closes the session and waits for it to close."""
        if self._writer is None:
            self._cancel_removals()
            self.State.transition(eLinkState.DISCONNECTED)
            return

        self.State.transition(eLinkState.CLOSING)

        with suppress(TimeoutError):
            async with asyncio.timeout(self.Config.DISCONNECT_TIMEOUT):
                for displayed in list(self._displayed.values()):
                    with suppress(ProtocolError, LinkConnectionError):
                        await self.send_command_async(f'spot remove {displayed.index}')

        self._cancel_removals()
        writer = self._writer
        self.Generation += 1
        generation = self.Generation
        self._teardown()

        if writer is not None:
            with suppress(TimeoutError, OSError):
                await asyncio.wait_for(writer.wait_closed(), timeout=self.Config.DISCONNECT_TIMEOUT)

        self.State.transition(eLinkState.DISCONNECTED)
        logger.info('Disconnected from FlexRadio at %s', self.server)
        self._emit('disconnected', generation)

    def _teardown(self) -> None:
        if self._reader_task is not None and self._reader_task is not asyncio.current_task():
            self._reader_task.cancel()

        self._reader_task = None
        writer, self._writer, self._reader = self._writer, None, None

        if writer is not None:
            with suppress(Exception):
                writer.close()

        for future in self._responses.values():
            if not future.done():
                future.set_exception(LinkConnectionError('FlexRadio connection closed'))

        self._responses.clear()

    def _cancel_removals(self) -> None:
        for displayed in self._displayed.values():
            if displayed.removal_task is not None:
                displayed.removal_task.cancel()

        self._displayed.clear()

    async def _read_loop_async(self, generation: int, reader: asyncio.StreamReader) -> None:
        try:
            while True:
                data = await reader.readline()

                if not data:  # EOF received
                    logger.warning('FlexRadio at %s closed the connection', self.server)
                    break

                self.handle_line(data.decode('utf-8', errors='replace').rstrip('\r\n'))

        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error('FlexRadio read error on %s: %s', self.server, e)
            self._emit('error', generation, e)
        finally:
            if generation == self.Generation:
                self._cancel_removals()
                self._teardown()
                self.State.transition(eLinkState.DISCONNECTED)
                self._emit('disconnected', generation)

    def handle_line(self, line: str) -> None:
        if not line:
            return

        match line[0]:
            case 'R':
                try:
                    Header, Status, *Rest = line[1:].split('|', 2)
                    Sequence, Code = int(Header), int(Status, 16)
                except ValueError:
                    logger.warning("Skipping malformed FlexRadio response '%s'", line)
                    return

                future = self._responses.pop(Sequence, None)
                if future is not None and not future.done():
                    future.set_result((Code, Rest[0] if Rest else ''))
            case 'V':
                self.Version = line[1:]
                logger.info('FlexRadio protocol version %s', self.Version)
            case 'H':
                self.Handle = line[1:]
                logger.debug('FlexRadio client handle %s', self.Handle)
            case 'S' | 'M':
                logger.debug('radio: %s', line)
            case _:
                logger.debug("Unrecognized FlexRadio line '%s'", line)

    async def send_command_async(self, command: str) -> str:
        """Sends one command and returns the response message.  Non-zero status raises ProtocolError."""
        if self._writer is None or self._writer.is_closing():
            raise LinkConnectionError(f'Not connected to FlexRadio at {self.server}')

        self._sequence += 1
        Sequence = self._sequence
        future: asyncio.Future[tuple[int, str]] = asyncio.get_running_loop().create_future()
        self._responses[Sequence] = future

        logger.debug('radio <- C%d|%s', Sequence, command)
        self._writer.write(f'C{Sequence}|{command}\n'.encode('utf-8', errors='replace'))

        try:
            Code, Message = await asyncio.wait_for(future, timeout=self.Config.COMMAND_TIMEOUT)
        except TimeoutError as e:
            raise ProtocolError(f"No response from FlexRadio to '{command}'") from e
        finally:
            self._responses.pop(Sequence, None)

        if Code != 0:
            raise ProtocolError(f"FlexRadio rejected '{command}': status 0x{Code:08X} {Message}")

        return Message

    @classmethod
    def encode_value(cls, text: str) -> str:
        return text.strip().replace(' ', cls.SPACE_REPLACEMENT) or cls.SPACE_REPLACEMENT

    def build_spot_fields(self, spot: cSpot) -> str:
        Color = spot.display_color or self.ColorMap.resolve(spot)
        Fields = [
            f'rx_freq={spot.frequency / 1000.0:.6f}',
            f'callsign={self.encode_value(spot.dx_callsign)}',
            f'color={Color}',
            f'background_color={self.Config.BACKGROUND_COLOR}',
            f'source={self.encode_value(self.Config.SOURCE)}',
            f'spotter_callsign={self.encode_value(spot.spotter_callsign)}',
            f'timestamp={int(spot.time_utc.timestamp())}',
            f'lifetime_seconds={self.Config.SPOT_LIFETIME}',
        ]

        if spot.mode:
            Fields.append(f'mode={self.encode_value(spot.mode)}')

        if spot.comment:
            Fields.append(f'comment={self.encode_value(spot.comment)}')

        return ' '.join(Fields)

    async def send_spot_async(self, spot: cSpot) -> None:
        """Creates, or refreshes, the marker for this callsign on this band and schedules its removal."""
        if not self.connected:
            logger.debug('FlexRadio not connected; not sending %s', spot.dx_callsign)
            return

        if spot.display_color is None:
            spot.display_color = self.ColorMap.resolve(spot)

        Key = (spot.dx_callsign, spot.band)
        Fields = self.build_spot_fields(spot)
        displayed = self._displayed.get(Key)

        if displayed is not None:
            try:
                await self.send_command_async(f'spot set {displayed.index} {Fields}')
            except ProtocolError as e:
                # The radio may already have expired it; add a fresh one.
                logger.debug('Refresh of spot %d failed (%s); adding a new one', displayed.index, e)
                self._forget(Key)
                displayed = None

        if displayed is None:
            Response = await self.send_command_async(f'spot add {Fields}')

            try:
                Index = int(Response.strip())
            except ValueError as e:
                raise ProtocolError(f"FlexRadio returned an unusable spot index '{Response}'") from e

            displayed = cDisplayedSpot(Index)
            self._displayed[Key] = displayed

        if displayed.removal_task is not None:
            displayed.removal_task.cancel()

        displayed.removal_task = asyncio.create_task(self._remove_later_async(Key, displayed.index), name=f'remove-spot-{displayed.index}')
        logger.debug('Sent %s to FlexRadio as spot %d (%s)', spot.dx_callsign, displayed.index, spot.display_color)

    def _forget(self, key: tuple[str, str]) -> None:
        displayed = self._displayed.pop(key, None)

        if displayed is not None and displayed.removal_task is not None and displayed.removal_task is not asyncio.current_task():
            displayed.removal_task.cancel()

    async def _remove_later_async(self, key: tuple[str, str], index: int) -> None:
        await asyncio.sleep(self.Config.SPOT_LIFETIME)

        displayed = self._displayed.get(key)
        if displayed is None or displayed.index != index:
            return

        self._displayed.pop(key, None)

        try:
            await self.send_command_async(f'spot remove {index}')
        except (ProtocolError, LinkConnectionError) as e:
            logger.debug('Removal of spot %d: %s', index, e)

    @property
    def displayed_count(self) -> int:
        return len(self._displayed)
