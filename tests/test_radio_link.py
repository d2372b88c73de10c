import asyncio
from typing import Callable

import pytest
from conftest import cFakeServer, make_config, next_event, read_line

from dxbridge.cConfig import DEFAULT_COLOR_MAP
from dxbridge.cErrors import ProtocolError
from dxbridge.cRadioLink import cColorMap, cRadioLink
from dxbridge.cSpot import cEnrichment, cSpot

def make_radio(port: int, **radio) -> tuple[cRadioLink, asyncio.Queue]:
    config = make_config(RADIO={'ENABLED': True, 'PORT': port, **radio})
    events: asyncio.Queue = asyncio.Queue()
    return cRadioLink(config.RADIO, events), events

async def answer_commands(reader: asyncio.StreamReader, writer: asyncio.StreamWriter, commands: list[str], reply: Callable[[str], str] = lambda command: '') -> None:
    """Acts as the radio: records each command and answers it with status 0."""
    while line := await reader.readline():
        Sequence, Command = line.decode('utf-8').strip()[1:].split('|', 1)
        commands.append(Command)
        writer.write(f'R{Sequence}|0|{reply(Command)}\n'.encode('utf-8'))
        await writer.drain()

async def connect(radio: cRadioLink, events: asyncio.Queue, server: cFakeServer) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    await radio.connect_async()
    reader, writer = await server.accept_async()
    assert (await next_event(events)).kind == 'connected'
    return reader, writer

def needed_spot() -> cSpot:
    spot = cSpot(14025.0, 'JA1ABC', 'W1AW', comment='CW up 2')
    spot.apply(cEnrichment(dxcc_needed=True, lotw_member=False, worked_before=False))
    return spot

def test_color_map_resolves_configured_and_default_colors():
    color_map = cColorMap(DEFAULT_COLOR_MAP, '#FFFFFFFF')
    needed, plain = needed_spot(), cSpot(14025.0, 'JA1ABC', 'W1AW')

    assert color_map.resolve(needed) == '#FFFF8000'
    assert color_map.resolve(needed) != color_map.DefaultColor
    assert color_map.resolve(plain) == '#FFFFFFFF'

@pytest.mark.asyncio
async def test_commands_are_framed_and_correlated(fake_server):
    radio, events = make_radio(fake_server.Port)
    reader, writer = await connect(radio, events, fake_server)

    writer.write(b'V1.4.0.0\nH2A3B4C5D\n')
    await writer.drain()

    task = asyncio.create_task(radio.send_command_async('info'))
    assert await read_line(reader) == 'C1|info\n'

    writer.write(b'S2A3B4C5D|radio model=FLEX-6600\nR1|0|model=FLEX-6600\n')
    await writer.drain()

    assert await asyncio.wait_for(task, 2) == 'model=FLEX-6600'
    assert radio.Version == '1.4.0.0'
    assert radio.Handle == '2A3B4C5D'
    await radio.disconnect_async()

@pytest.mark.asyncio
async def test_nonzero_status_fails_only_that_command(fake_server):
    radio, events = make_radio(fake_server.Port)
    reader, writer = await connect(radio, events, fake_server)

    task = asyncio.create_task(radio.send_command_async('bogus'))
    await read_line(reader)
    writer.write(b'R1|50000015|Unknown command\n')
    await writer.drain()

    with pytest.raises(ProtocolError, match='50000015'):
        await asyncio.wait_for(task, 2)

    assert radio.connected
    await radio.disconnect_async()

@pytest.mark.asyncio
async def test_unanswered_command_times_out(fake_server):
    radio, events = make_radio(fake_server.Port, COMMAND_TIMEOUT=0.1)
    await connect(radio, events, fake_server)

    with pytest.raises(ProtocolError, match='No response'):
        await radio.send_command_async('info')

    await radio.disconnect_async()

@pytest.mark.asyncio
async def test_spot_is_added_then_refreshed(fake_server):
    radio, events = make_radio(fake_server.Port)
    reader, writer = await connect(radio, events, fake_server)
    commands: list[str] = []
    responder = asyncio.create_task(answer_commands(reader, writer, commands, lambda command: '7' if command.startswith('spot add') else ''))

    await radio.send_spot_async(needed_spot())
    await radio.send_spot_async(needed_spot())

    assert commands[0].startswith('spot add ')
    assert 'rx_freq=14.025000' in commands[0]
    assert 'callsign=JA1ABC' in commands[0]
    assert 'color=#FFFF8000' in commands[0]
    assert 'spotter_callsign=W1AW' in commands[0]
    assert 'mode=CW' in commands[0]
    assert 'comment=CW\x7fup\x7f2' in commands[0]
    assert 'lifetime_seconds=300' in commands[0]
    assert commands[1].startswith('spot set 7 ')
    assert radio.displayed_count == 1

    await radio.disconnect_async()
    responder.cancel()

@pytest.mark.asyncio
async def test_spot_is_removed_after_its_lifetime(fake_server):
    radio, events = make_radio(fake_server.Port)
    radio.Config.SPOT_LIFETIME = 0.1
    reader, writer = await connect(radio, events, fake_server)
    commands: list[str] = []
    responder = asyncio.create_task(answer_commands(reader, writer, commands, lambda command: '3' if command.startswith('spot add') else ''))

    await radio.send_spot_async(needed_spot())
    await asyncio.sleep(0.3)

    assert commands[-1] == 'spot remove 3'
    assert radio.displayed_count == 0

    await radio.disconnect_async()
    responder.cancel()

@pytest.mark.asyncio
async def test_disconnect_removes_displayed_spots(fake_server):
    radio, events = make_radio(fake_server.Port)
    reader, writer = await connect(radio, events, fake_server)
    commands: list[str] = []
    responder = asyncio.create_task(answer_commands(reader, writer, commands, lambda command: '9' if command.startswith('spot add') else ''))

    await radio.send_spot_async(needed_spot())
    await radio.disconnect_async()

    assert commands[-1] == 'spot remove 9'
    assert not radio.connected
    assert (await next_event(events)).kind == 'disconnected'
    responder.cancel()

@pytest.mark.asyncio
async def test_remote_close_emits_disconnected(fake_server):
    radio, events = make_radio(fake_server.Port)
    _, writer = await connect(radio, events, fake_server)
    generation = radio.Generation

    writer.close()

    event = await next_event(events)
    assert event.kind == 'disconnected'
    assert event.generation == generation
    assert not radio.connected
