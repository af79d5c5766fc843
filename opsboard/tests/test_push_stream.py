import asyncio
import json

import pytest

from opsboard.api.push_stream import push_stream_response, session_events
from opsboard.channels import Channel


def _decode(frame):
    assert frame.startswith('data: ')
    assert frame.endswith('\n\n')
    return json.loads(frame[len('data: '):])


@pytest.mark.asyncio
async def test_stream_frames_and_cleanup_on_disconnect(hub, store):
    store.log_activity('task', 'seed')
    gen = session_events(hub, 'sse_test', [Channel.ACTIVITIES, Channel.STATUS])

    hello = _decode(await gen.__anext__())
    assert hello['type'] == 'connected'
    assert hello['connectionId'] == 'sse_test'
    subscribed = _decode(await gen.__anext__())
    assert subscribed['channels'] == ['activities', 'status']
    assert 'sse_test' in hub.registry
    session = hub.registry.get('sse_test')

    # first poll tick: the seed batch, then a status snapshot
    batch = _decode(await asyncio.wait_for(gen.__anext__(), 2))
    assert batch['type'] == 'activity'
    assert batch['data']['action'] == 'batch'
    snapshot = _decode(await asyncio.wait_for(gen.__anext__(), 2))
    assert snapshot['type'] == 'status'

    await gen.aclose()
    assert 'sse_test' not in hub.registry
    await asyncio.gather(*session.tasks, return_exceptions=True)
    assert all(t.done() for t in session.tasks)


@pytest.mark.asyncio
async def test_stream_ends_when_session_is_closed_server_side(hub):
    gen = session_events(hub, 'sse_shutdown', [Channel.AGENTS])
    await gen.__anext__()
    await gen.__anext__()
    await hub.stop()
    with pytest.raises(StopAsyncIteration):
        await asyncio.wait_for(gen.__anext__(), 2)


def test_unconsumed_response_registers_nothing(hub):
    resp = push_stream_response(hub, [Channel.ACTIVITIES], prefix='client')
    assert resp.media_type == 'text/event-stream'
    assert resp.headers['x-client-id'].startswith('client_')
    assert resp.headers['cache-control'] == 'no-cache, no-transform'
    assert len(hub.registry) == 0
