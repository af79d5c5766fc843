import asyncio
import json

import httpx
import pytest

from opsboard.client.hybrid import choose_transport
from opsboard.client.transports import StreamTransport, Transport, WebSocketTransport
from opsboard.errors import TransportClosed, TransportError


class ProbeTransport(Transport):
    def __init__(self, first=None, fail_open=False, hang=False):
        self.first = first
        self.fail_open = fail_open
        self.hang = hang
        self.closed = False

    async def open(self):
        if self.fail_open:
            raise TransportError('refused')

    async def receive(self):
        if self.hang:
            await asyncio.sleep(3600)
        return self.first

    async def close(self):
        self.closed = True


def _factory(transport):
    made = []

    def make():
        made.append(transport)
        return transport
    make.made = made
    return make


@pytest.mark.asyncio
async def test_hybrid_prefers_socket_when_handshake_completes():
    probe = ProbeTransport(first={'type': 'connected', 'connectionId': 'conn_1'})
    ws, stream = _factory(probe), _factory(ProbeTransport())
    chosen = await choose_transport(ws, stream, handshake_timeout=1)
    assert chosen is ws
    assert probe.closed


@pytest.mark.asyncio
@pytest.mark.parametrize('probe', [
    ProbeTransport(fail_open=True),
    ProbeTransport(hang=True),
    ProbeTransport(first={'type': 'heartbeat'}),
])
async def test_hybrid_falls_back_to_stream(probe):
    ws, stream = _factory(probe), _factory(ProbeTransport())
    chosen = await choose_transport(ws, stream, handshake_timeout=0.05)
    assert chosen is stream
    assert probe.closed
    assert stream.made == []


def _sse_handler(requests):
    frames = (
        ': comment\n'
        'data: {"type": "connected", "connectionId": "client_9"}\n'
        '\n'
        'data: not json\n'
        '\n'
        'data: {"type": "heartbeat"}\n'
        '\n'
    )

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.method == 'GET':
            return httpx.Response(200, content=frames.encode(),
                                  headers={'content-type': 'text/event-stream'})
        body = json.loads(request.content)
        if request.url.path == '/api/realtime/action':
            if body['type'] == 'nope':
                return httpx.Response(400, json={'error': 'Unknown action type: nope',
                                                 'requestId': body['requestId']})
            return httpx.Response(200, json={'success': True, 'result': {'ok': True},
                                             'requestId': body['requestId']})
        if body['clientId'] != 'client_9':
            return httpx.Response(400, json={'error': 'Invalid client ID'})
        return httpx.Response(200, json={'success': True, 'subscriptions': body['channels']})
    return handler


@pytest.mark.asyncio
async def test_stream_transport_reads_frames_and_posts_requests():
    requests = []
    client = httpx.AsyncClient(base_url='http://ops.test', transport=httpx.MockTransport(_sse_handler(requests)))
    transport = StreamTransport('http://ops.test', channels=['activities', 'queue'], admin_key='k', client=client)
    assert transport.duplex is False

    await transport.open()
    assert requests[0].url.params['channels'] == 'activities,queue'
    assert (await transport.receive())['connectionId'] == 'client_9'
    # undecodable frames are skipped
    assert (await transport.receive())['type'] == 'heartbeat'
    with pytest.raises(TransportClosed):
        await transport.receive()

    assert await transport.subscribe('client_9', ['agents']) == ['agents']
    with pytest.raises(TransportError):
        await transport.subscribe('someone_else', ['agents'])

    ok = await transport.send_action('ping', {}, 'r1')
    assert ok.success is True and ok.result == {'ok': True}
    assert requests[-1].headers['x-admin-key'] == 'k'
    bad = await transport.send_action('nope', {}, 'r2')
    assert bad.success is False
    assert bad.error == 'Unknown action type: nope'

    await transport.close()
    await client.aclose()


@pytest.mark.asyncio
async def test_stream_transport_rejected_open():
    client = httpx.AsyncClient(base_url='http://ops.test',
                               transport=httpx.MockTransport(lambda request: httpx.Response(503)))
    transport = StreamTransport('http://ops.test', client=client)
    with pytest.raises(TransportError):
        await transport.open()
    await client.aclose()


def test_websocket_url_carries_channels():
    assert WebSocketTransport('ws://h/api/ws', ['activities', 'status'])._connect_url() == \
        'ws://h/api/ws?channels=activities%2Cstatus'
    assert WebSocketTransport('ws://h/api/ws')._connect_url() == 'ws://h/api/ws'


@pytest.mark.asyncio
async def test_websocket_open_failure_is_transport_error():
    transport = WebSocketTransport('ws://127.0.0.1:9/api/ws', open_timeout=1)
    with pytest.raises(TransportError):
        await transport.open()
    with pytest.raises(TransportClosed):
        await transport.receive()
    assert await transport.send({'type': 'ping'}) is False
