#!/usr/bin/python3
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
#
#
# dx_flex_bridge.py
#
# Relays DX Cluster spots, enriched with the operator's Wavelog
# log status, to the panadapter of a FlexRadio as colored markers.
#

import asyncio
import logging
import signal
import sys
from contextlib import suppress
from typing import Any, NoReturn

from dxbridge.cConfig import cConfig
from dxbridge.cErrors import ConfigurationError
from dxbridge.cEventBus import TOPIC_CACHE_HEALTH, TOPIC_SPOT, TOPIC_STATUS, cEventBus, cStatusEvent
from dxbridge.cSpot import cSpot
from dxbridge.cSpotCache import cCacheHealth
from dxbridge.cSupervisor import cSupervisor

logger = logging.getLogger('dx_flex_bridge')

class cDisplay:
    @staticmethod
    def print(text: str) -> None:
        print(text, flush=True)

    @staticmethod
    def format_event(event: Any) -> str:
        match event:
            case cStatusEvent(state=state, server=server, error=None):
                return f'{server}: {state}'
            case cStatusEvent(state=state, server=server, error=error):
                return f'{server}: {state} ({error})'
            case cSpot():
                Flags = ''.join(Flag for Flag, Set in (('D', event.dxcc_needed), ('W', event.worked_before), ('L', event.lotw_member)) if Set)
                return f'{event.time_utc:%H%M}Z {event} {Flags:<3} {event.display_color or ""}'
            case cCacheHealth():
                return f'Cache: {event}'
            case _:
                return str(event)

async def console_task(bus: cEventBus, queues: dict[str, asyncio.Queue[Any]]) -> NoReturn:
    """Prints everything published on the bus, in publish order across topics."""
    Merged: asyncio.Queue[Any] = asyncio.Queue()

    async def forward(q: asyncio.Queue[Any]) -> NoReturn:
        while True:
            Merged.put_nowait(await q.get())

    Forwarders = [asyncio.create_task(forward(q)) for q in queues.values()]

    try:
        while True:
            cDisplay.print(cDisplay.format_event(await Merged.get()))
    finally:
        for task in Forwarders:
            task.cancel()

        for topic, q in queues.items():
            bus.unsubscribe(topic, q)

def handle_loop_exception(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
    Error   = context.get('exception')
    Message = context.get('message', 'Unhandled error in event loop')

    if Error is not None:
        logger.error('%s: %s', Message, Error, exc_info=Error)
    else:
        logger.error('%s', Message)

async def main_loop(ArgV: list[str]) -> int:
    try:
        config = await cConfig.init_async(ArgV)
    except ConfigurationError as e:
        print(f'Configuration error:\n{e}', file=sys.stderr)
        return 1

    logging.basicConfig(
        level=getattr(logging, config.LOGGING.LEVEL, logging.INFO),
        format='%(asctime)s %(levelname)-7s %(name)s: %(message)s',
    )

    loop = asyncio.get_running_loop()
    loop.set_exception_handler(handle_loop_exception)

    bus = cEventBus()
    supervisor = cSupervisor(config, bus)
    queues = {topic: bus.subscribe(topic) for topic in (TOPIC_STATUS, TOPIC_SPOT, TOPIC_CACHE_HEALTH)}
    console = asyncio.create_task(console_task(bus, queues), name='console')

    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not available on Windows event loops; Ctrl+C raises KeyboardInterrupt there.
        with suppress(NotImplementedError):
            loop.add_signal_handler(sig, supervisor.request_shutdown)

    print(f'DX Flex Bridge for {config.CLUSTER.CALLSIGN}\n')

    try:
        await supervisor.run()
    finally:
        await supervisor.shutdown_async()
        console.cancel()
        with suppress(asyncio.CancelledError):
            await console

    return 0

def main() -> None:
    try:
        sys.exit(asyncio.run(main_loop(sys.argv[1:])))
    except KeyboardInterrupt:
        print('\n\nExiting...')
        sys.exit(0)

if __name__ == '__main__':
    main()
