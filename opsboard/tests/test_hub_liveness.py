import asyncio
import json

import pytest

from opsboard.hub import RealtimeHub


@pytest.mark.asyncio
async def test_sweep_evicts_sessions_silent_for_a_full_interval(hub, recorder):
    chatty_rec, silent_rec = recorder(), recorder()
    chatty = await hub.open_session('ws', chatty_rec.push, chatty_rec.close)
    silent = await hub.open_session('ws', silent_rec.push, silent_rec.close)

    # first pass only marks everyone not-alive
    assert await hub.sweep() == []
    assert chatty.alive is False and silent.alive is False

    await chatty.handle_raw(json.dumps({'type': 'ping', 'timestamp': None}))
    assert chatty.alive is True

    assert await hub.sweep() == [silent.connection_id]
    assert silent_rec.closed
    assert silent.close_reason == 'heartbeat_timeout'
    assert silent.connection_id not in hub.registry
    assert chatty.connection_id in hub.registry

    await hub.stop()
    assert chatty_rec.closed
    assert len(hub.registry) == 0
    await asyncio.gather(*chatty.tasks, *silent.tasks, return_exceptions=True)


@pytest.mark.asyncio
async def test_malformed_frames_do_not_count_as_liveness(hub, recorder):
    rec = recorder()
    session = await hub.open_session('ws', rec.push, rec.close)
    await hub.sweep()
    await session.handle_raw('garbage')
    assert await hub.sweep() == [session.connection_id]
    await asyncio.gather(*session.tasks, return_exceptions=True)


@pytest.mark.asyncio
async def test_push_stream_sessions_are_not_swept(hub, recorder):
    rec = recorder()
    session = await hub.open_session('sse', rec.push, rec.close)
    assert session.connection_id.startswith('sse_')
    await hub.sweep()
    assert await hub.sweep() == []
    assert not session.closed
    await session.close()


@pytest.mark.asyncio
async def test_start_and_stop_manage_sweeper(hub):
    hub.start()
    sweeper = hub._sweeper
    assert sweeper is not None and not sweeper.done()
    hub.start()
    assert hub._sweeper is sweeper
    await hub.stop()
    assert sweeper.cancelled()


def test_connection_ids_are_unique_and_prefixed():
    ids = {RealtimeHub.new_connection_id('client') for _ in range(50)}
    assert len(ids) == 50
    assert all(i.startswith('client_') for i in ids)


@pytest.mark.asyncio
async def test_stats_include_uptime_and_clients(hub, recorder):
    rec = recorder()
    session = await hub.open_session('ws', rec.push, rec.close, ['queue'])
    stats = hub.stats()
    assert stats['totalConnections'] == 1
    assert stats['channels'] == ['queue']
    assert stats['clients'][0]['id'] == session.connection_id
    assert stats['uptime'] >= 0
    await session.close()
