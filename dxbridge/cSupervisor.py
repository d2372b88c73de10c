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
from typing import Any, Final, Protocol

from .cClusterLink import cClusterLink
from .cConfig import cConfig
from .cErrors import LinkConnectionError, ProtocolError
from .cEventBus import TOPIC_CACHE_HEALTH, TOPIC_SPOT, TOPIC_STATUS, cEventBus, cLinkEvent, cStatusEvent
from .cLookup import cWavelogLookup
from .cRadioLink import cRadioLink
from .cSpot import cEnrichment, cSpot
from .cSpotCache import cSpotCache
from .cStateMachine import cReconnectState, eLinkState

logger = logging.getLogger(__name__)

HEALTH_FIRST_DELAY: Final[float] = 5.0
HEALTH_INTERVAL:    Final[float] = 300.0

_DOWN_KINDS: Final[dict[str, frozenset[str]]] = {
    cClusterLink.LINK: frozenset({'close', 'timeout', 'error'}),
    cRadioLink.LINK:   frozenset({'disconnected', 'error'}),
}

class tLookupClient(Protocol):
    async def lookup_async(self, callsign: str, band: str, mode: str, station_ids: tuple[str, ...] = ()) -> cEnrichment: ...
    async def close_async(self) -> None: ...

class cSupervisor:
    """
    Owns both links and everything that happens between them.

    Links only post cLinkEvents onto Events; the dispatcher turns those into
    reconnects, the post-login handshake and work for the spot worker.
    """

    def __init__(self, config: cConfig, bus: cEventBus | None = None, lookup: tLookupClient | None = None) -> None:
        self.Config = config
        self.Bus    = bus or cEventBus()
        self.Events: asyncio.Queue[cLinkEvent] = asyncio.Queue()

        self.Lookup  = lookup or cWavelogLookup(config.WAVELOG)
        self.Cache   = cSpotCache(config.CACHE.MAX_SIZE, self.Lookup.lookup_async, config.WAVELOG.STATION_IDS, config.CACHE.TTL_SECONDS)
        self.Cluster = cClusterLink(config.CLUSTER, self.Events, config.LOGGING.BAD_LINES_FILE)
        self.Radio   = cRadioLink(config.RADIO, self.Events)

        self.Reconnect: dict[str, cReconnectState] = {
            self.Cluster.LINK: self._reconnect_state(config.CLUSTER.RECONNECT),
            self.Radio.LINK:   self._reconnect_state(config.RADIO.RECONNECT),
        }

        self.stopped = asyncio.Event()

        self._spots: asyncio.Queue[cSpot] = asyncio.Queue()
        self._acks:  asyncio.Queue[str] = asyncio.Queue()
        self._session_up:      dict[str, bool] = {self.Cluster.LINK: False, self.Radio.LINK: False}
        self._down_generation: dict[str, int]  = {self.Cluster.LINK: -1, self.Radio.LINK: -1}
        self._reconnect_tasks: dict[str, asyncio.Task[None]] = {}
        self._handshake_task:  asyncio.Task[None] | None = None
        self._tasks:           list[asyncio.Task[Any]] = []
        self._shutdown_task:   asyncio.Task[None] | None = None
        self._shutting_down = False

    @staticmethod
    def _reconnect_state(config: cConfig.cReconnect) -> cReconnectState:
        return cReconnectState(config.INITIAL_DELAY, config.MAX_DELAY, config.BACKOFF_FACTOR)

    def _link(self, name: str) -> cClusterLink | cRadioLink:
        return self.Cluster if name == self.Cluster.LINK else self.Radio

    def publish_status(self, link: str, state: str, error: BaseException | str | None = None) -> None:
        server = self._link(link).server

        if error is not None:
            logger.error('Error while connecting to %s: %s', server, error)
        else:
            logger.info('Connection state: %s to %s', state, server)

        Error = None if error is None else (str(error) or type(error).__name__)
        self.Bus.publish(TOPIC_STATUS, cStatusEvent('connectionState', state, server, Error))

    async def start_async(self) -> None:
        self._tasks = [
            asyncio.create_task(self._dispatch_async(),    name='supervisor-dispatch'),
            asyncio.create_task(self._spot_worker_async(), name='supervisor-spots'),
            asyncio.create_task(self._health_async(),      name='supervisor-health'),
        ]

        if self.Config.RADIO.ENABLED:
            await self._connect_first_async(self.Radio.LINK)
        else:
            logger.info('Radio disabled; spots will not be forwarded')

        await self._connect_first_async(self.Cluster.LINK)

    async def _connect_first_async(self, link: str) -> None:
        if self._shutting_down:
            return

        try:
            await self._link(link).connect_async()
        except LinkConnectionError as e:
            if not self._shutting_down:
                self.publish_status(link, 'failed', e)
                self._schedule_reconnect(link)
            return

        # Shutdown started while the connect was in flight.
        if self._shutting_down:
            await self._close_link_async(link)

    async def _close_link_async(self, link: str) -> None:
        if link == self.Cluster.LINK:
            self.Cluster.close()
        else:
            try:
                await self.Radio.disconnect_async()
            except Exception as e:
                logger.warning('Error while disconnecting from FlexRadio: %s', e)

        self._link(link).State.transition(eLinkState.STOPPED)

    async def run(self) -> None:
        await self.start_async()
        await self.stopped.wait()

    #
    # Event dispatch
    #

    async def _dispatch_async(self) -> None:
        while True:
            event = await self.Events.get()

            try:
                await self.handle_event_async(event)
            except Exception:
                logger.exception('Unhandled error while processing %s event from %s', event.kind, event.link)

    async def handle_event_async(self, event: cLinkEvent) -> None:
        if self._shutting_down:
            return

        connection = self._link(event.link)

        if event.generation != connection.Generation:
            logger.debug('Dropping %s event from superseded %s session %d', event.kind, event.link, event.generation)
            return

        match event.link, event.kind:
            case 'cluster', 'loggedin':
                self._session_up[event.link] = True
                self.Reconnect[event.link].reset()
                self.publish_status(event.link, 'loggedin')
                self._start_handshake(event.generation)
            case 'cluster', 'spot':
                self._spots.put_nowait(event.payload)
            case 'cluster', 'message':
                if self._handshake_task is not None and not self._handshake_task.done():
                    self._acks.put_nowait(event.payload)
            case 'radio', 'connected':
                self._session_up[event.link] = True
                self.Reconnect[event.link].reset()
                self.publish_status(event.link, 'connected')
            case link, kind if kind in _DOWN_KINDS.get(link, ()):
                self._link_down(link, kind, event.generation, event.payload)
            case _:
                logger.debug('Ignoring %s event from %s', event.kind, event.link)

    def _link_down(self, link: str, kind: str, generation: int, error: Any) -> None:
        # 'error' and 'disconnected' can both arrive for one radio session.
        if self._down_generation[link] == generation:
            return

        self._down_generation[link] = generation

        if link == self.Cluster.LINK:
            self._cancel_handshake()
            self.Cluster.close()

        if not self._session_up[link]:
            self.Reconnect[link].failed()

        self._session_up[link] = False
        self.publish_status(link, kind, error if isinstance(error, BaseException) else None)
        self._schedule_reconnect(link)

    #
    # Reconnect
    #

    def _schedule_reconnect(self, link: str) -> None:
        if self._shutting_down:
            return

        task = self._reconnect_tasks.get(link)
        if task is not None and not task.done():
            return

        self._reconnect_tasks[link] = asyncio.create_task(self._reconnect_async(link), name=f'reconnect-{link}')

    async def _reconnect_async(self, link: str) -> None:
        connection = self._link(link)
        state = self.Reconnect[link]

        while not self._shutting_down:
            connection.State.transition(eLinkState.BACKOFF)
            logger.info('Reconnecting to %s in %.1f seconds (attempt %d)', connection.server, state.current_delay, state.attempt_count + 1)
            await asyncio.sleep(state.current_delay)

            if self._shutting_down:
                return

            try:
                await connection.connect_async()
            except LinkConnectionError as e:
                Delay = state.failed()
                self.publish_status(link, 'failed', e)
                logger.warning('Reconnect to %s failed; next attempt in %.1f seconds', connection.server, Delay)
                continue

            return

    def _cancel_reconnects(self) -> None:
        for task in self._reconnect_tasks.values():
            if task is not asyncio.current_task():
                task.cancel()

        self._reconnect_tasks.clear()

    #
    # Post-login handshake
    #

    def _start_handshake(self, generation: int) -> None:
        self._cancel_handshake()

        if self.Config.CLUSTER.COMMANDS_AFTER_LOGIN:
            self._handshake_task = asyncio.create_task(self._handshake_async(generation), name=f'handshake-{generation}')

    def _cancel_handshake(self) -> None:
        if self._handshake_task is not None and not self._handshake_task.done():
            self._handshake_task.cancel()

        self._handshake_task = None
        self._drain_acks()

    def _drain_acks(self) -> None:
        while not self._acks.empty():
            self._acks.get_nowait()

    async def _handshake_async(self, generation: int) -> None:
        """Writes each post-login command, waiting for one line of response after each."""
        AckTimeout = self.Config.CLUSTER.COMMAND_ACK_TIMEOUT

        for command in self.Config.CLUSTER.COMMANDS_AFTER_LOGIN:
            if generation != self.Cluster.Generation:
                return

            self._drain_acks()
            logger.info('Sending post-login command: %s', command)

            try:
                self.Cluster.write(command)
            except LinkConnectionError as e:
                logger.warning("Unable to send '%s': %s", command, e)
                return

            try:
                Response = await asyncio.wait_for(self._acks.get(), timeout=AckTimeout)
                logger.debug("Response to '%s': %s", command, Response)
            except TimeoutError:
                logger.warning("No response to '%s' within %s seconds; continuing", command, AckTimeout)

            await asyncio.sleep(self.Config.CLUSTER.COMMAND_SPACING)

    #
    # Spot pipeline
    #

    async def _spot_worker_async(self) -> None:
        while True:
            spot = await self._spots.get()

            try:
                await self.process_spot_async(spot)
            except Exception:
                logger.exception('Unable to process spot of %s', spot.dx_callsign)
            finally:
                self._spots.task_done()

    async def process_spot_async(self, spot: cSpot) -> None:
        await self.Cache.process_spot_async(spot)
        spot.display_color = self.Radio.ColorMap.resolve(spot)

        if self.Config.RADIO.ENABLED and self.Radio.connected:
            try:
                await self.Radio.send_spot_async(spot)
            except (ProtocolError, LinkConnectionError) as e:
                logger.warning('Unable to send %s to FlexRadio: %s', spot.dx_callsign, e)

        self.Bus.publish(TOPIC_SPOT, spot)

    async def _health_async(self) -> None:
        await asyncio.sleep(HEALTH_FIRST_DELAY)

        while True:
            self.Bus.publish(TOPIC_CACHE_HEALTH, self.Cache.get_health_status())
            await asyncio.sleep(HEALTH_INTERVAL)

    #
    # Shutdown
    #

    def request_shutdown(self) -> asyncio.Task[None]:
        """Starts shutdown from synchronous code, e.g. a signal handler."""
        if self._shutdown_task is None:
            self._shutting_down = True
            self._shutdown_task = asyncio.create_task(self._shutdown_body_async(), name='supervisor-shutdown')

        return self._shutdown_task

    async def shutdown_async(self) -> None:
        """Safe to call any number of times, concurrently; the work happens once."""
        await asyncio.shield(self.request_shutdown())

    async def _shutdown_body_async(self) -> None:
        logger.info('Shutting down')

        self._cancel_reconnects()
        self._cancel_handshake()

        await self._close_link_async(self.Cluster.LINK)
        await self._close_link_async(self.Radio.LINK)

        try:
            await self.Lookup.close_async()
        except Exception as e:
            logger.warning('Error while closing the lookup client: %s', e)

        for task in self._tasks:
            if task is not asyncio.current_task():
                task.cancel()

        for task in self._tasks:
            with suppress(asyncio.CancelledError):
                await task

        self._tasks = []
        self.stopped.set()
        logger.info('Shutdown complete')
