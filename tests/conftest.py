from __future__ import annotations

import asyncio
from contextlib import suppress
from typing import Any

import pytest
import pytest_asyncio

from dxbridge.cConfig import cConfig
from dxbridge.cEventBus import cLinkEvent

def make_config(**sections: dict[str, Any]) -> cConfig:
    raw: dict[str, Any] = {
        'CLUSTER': {
            'HOST':     '127.0.0.1',
            'PORT':     7300,
            'CALLSIGN': 'n0call',
            'RECONNECT': {'INITIAL_DELAY': 0.05, 'MAX_DELAY': 0.2, 'BACKOFF_FACTOR': 2},
        },
        'RADIO': {
            'ENABLED': False,
            'HOST':    '127.0.0.1',
            'RECONNECT': {'INITIAL_DELAY': 0.05, 'MAX_DELAY': 0.2, 'BACKOFF_FACTOR': 2},
        },
        'WAVELOG': {'URL': 'http://wavelog.invalid', 'API_KEY': 'test-key'},
    }

    for name, values in sections.items():
        raw.setdefault(name, {}).update(values)

    return cConfig.with_defaults(raw)

async def next_event(events: asyncio.Queue[cLinkEvent], timeout: float = 2.0) -> cLinkEvent:
    return await asyncio.wait_for(events.get(), timeout=timeout)

async def read_line(reader: asyncio.StreamReader, timeout: float = 2.0) -> str:
    return (await asyncio.wait_for(reader.readline(), timeout=timeout)).decode('utf-8')

class cFakeServer:
    """Localhost TCP server handing every accepted connection to the test."""

    def __init__(self) -> None:
        self.Connections: asyncio.Queue[tuple[asyncio.StreamReader, asyncio.StreamWriter]] = asyncio.Queue()
        self.Writers: list[asyncio.StreamWriter] = []
        self.Server: asyncio.Server | None = None
        self.Port = 0

    async def start_async(self) -> int:
        self.Server = await asyncio.start_server(self._accept_async, '127.0.0.1', 0)
        self.Port = self.Server.sockets[0].getsockname()[1]
        return self.Port

    async def _accept_async(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.Writers.append(writer)
        await self.Connections.put((reader, writer))

    async def accept_async(self, timeout: float = 2.0) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        return await asyncio.wait_for(self.Connections.get(), timeout=timeout)

    async def close_async(self) -> None:
        for writer in self.Writers:
            with suppress(Exception):
                writer.close()

        if self.Server is not None:
            self.Server.close()
            with suppress(Exception):
                await asyncio.wait_for(self.Server.wait_closed(), timeout=2.0)

@pytest.fixture
def config() -> cConfig:
    return make_config()

@pytest_asyncio.fixture
async def fake_server():
    server = cFakeServer()
    await server.start_async()
    yield server
    await server.close_async()
