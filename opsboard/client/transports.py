"""Client transports: a full-duplex socket and a server-push stream.

Both expose the same coroutine interface so ``RealtimeClient`` can drive
either one. ``receive()`` returns the next decoded envelope and raises
``TransportClosed`` when the peer goes away.
"""
import json
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlencode

import httpx
import websockets
from websockets.exceptions import ConnectionClosed

from ..errors import TransportClosed, TransportError
from ..logs import get_logger

logger = get_logger('client.transports')


@dataclass
class ActionOutcome:
    success: bool
    result: Any = None
    error: Optional[str] = None
    code: Optional[str] = None


def _decode(raw) -> Optional[Dict[str, Any]]:
    try:
        msg = json.loads(raw)
    except ValueError:
        logger.debug('dropping undecodable frame')
        return None
    return msg if isinstance(msg, dict) else None


class Transport:
    duplex = False

    async def open(self) -> None:
        raise NotImplementedError

    async def receive(self) -> Dict[str, Any]:
        raise NotImplementedError

    async def send(self, message: Dict[str, Any]) -> bool:
        return False

    async def subscribe(self, connection_id: str, channels: List[str]) -> Optional[List[str]]:
        raise NotImplementedError

    async def unsubscribe(self, connection_id: str, channels: List[str]) -> Optional[List[str]]:
        raise NotImplementedError

    async def send_action(self, action: str, payload: Dict[str, Any], request_id: str) -> ActionOutcome:
        raise NotImplementedError

    async def close(self) -> None:
        raise NotImplementedError


class WebSocketTransport(Transport):
    duplex = True

    def __init__(self, url: str, channels: Optional[Iterable[str]] = None, open_timeout: float = 10.0):
        self.url = url
        self.channels = list(channels or [])
        self.open_timeout = open_timeout
        self._ws = None

    def _connect_url(self) -> str:
        if not self.channels:
            return self.url
        sep = '&' if '?' in self.url else '?'
        return self.url + sep + urlencode({'channels': ','.join(self.channels)})

    async def open(self) -> None:
        try:
            self._ws = await websockets.connect(self._connect_url(), open_timeout=self.open_timeout)
        except (OSError, websockets.exceptions.WebSocketException) as e:
            raise TransportError(f'websocket connect failed: {e}') from e

    async def receive(self) -> Dict[str, Any]:
        if self._ws is None:
            raise TransportClosed('not connected')
        while True:
            try:
                raw = await self._ws.recv()
            except ConnectionClosed as e:
                raise TransportClosed(f'websocket closed ({e.rcvd.code if e.rcvd else "no close frame"})') from e
            msg = _decode(raw)
            if msg is not None:
                return msg

    async def send(self, message: Dict[str, Any]) -> bool:
        if self._ws is None:
            return False
        try:
            await self._ws.send(json.dumps(message))
        except ConnectionClosed:
            return False
        return True

    async def subscribe(self, connection_id: str, channels: List[str]) -> Optional[List[str]]:
        # the server confirms with a `subscribed` envelope
        await self.send({'type': 'subscribe', 'channels': list(channels)})
        return None

    async def unsubscribe(self, connection_id: str, channels: List[str]) -> Optional[List[str]]:
        await self.send({'type': 'unsubscribe', 'channels': list(channels)})
        return None

    async def send_action(self, action: str, payload: Dict[str, Any], request_id: str) -> ActionOutcome:
        sent = await self.send({'type': 'action', 'action': action, 'payload': payload, 'id': request_id})
        # the reply arrives as an envelope on receive()
        return ActionOutcome(success=sent, error=None if sent else 'Not connected')

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()


class StreamTransport(Transport):
    """Server-push stream read with httpx; client messages go out as POSTs."""

    def __init__(self, base_url: str, path: str = '/api/realtime', channels: Optional[Iterable[str]] = None,
                 admin_key: Optional[str] = None, client: Optional[httpx.AsyncClient] = None,
                 timeout: float = 10.0):
        self.base_url = base_url
        self.path = path
        self.channels = list(channels or [])
        self.admin_key = admin_key
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None
        self._response: Optional[httpx.Response] = None
        self._lines = None

    def _headers(self) -> Dict[str, str]:
        return {'X-Admin-Key': self.admin_key} if self.admin_key else {}

    async def open(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self.base_url,
                                             timeout=httpx.Timeout(self.timeout, read=None))
        params = {'channels': ','.join(self.channels)} if self.channels else None
        request = self._client.build_request('GET', self.path, params=params,
                                             headers={'Accept': 'text/event-stream'})
        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise TransportError(f'stream connect failed: {e}') from e
        if response.status_code != 200:
            await response.aclose()
            raise TransportError(f'stream rejected with HTTP {response.status_code}')
        self._response = response
        self._lines = response.aiter_lines()

    async def receive(self) -> Dict[str, Any]:
        if self._lines is None:
            raise TransportClosed('not connected')
        data: List[str] = []
        try:
            async for line in self._lines:
                if not line:
                    if data:
                        msg = _decode('\n'.join(data))
                        data = []
                        if msg is not None:
                            return msg
                    continue
                if line.startswith(':'):
                    continue
                field, _, value = line.partition(':')
                if field == 'data':
                    data.append(value[1:] if value.startswith(' ') else value)
        except httpx.HTTPError as e:
            raise TransportClosed(f'stream read failed: {e}') from e
        raise TransportClosed('stream ended')

    async def _post(self, path: str, body: Dict[str, Any]) -> httpx.Response:
        if self._client is None:
            raise TransportError('not connected')
        try:
            return await self._client.post(path, json=body, headers=self._headers())
        except httpx.HTTPError as e:
            raise TransportError(f'POST {path} failed: {e}') from e

    async def _subscription(self, action: str, connection_id: str, channels: List[str]) -> Optional[List[str]]:
        resp = await self._post(self.path, {'clientId': connection_id, 'action': action,
                                            'channels': list(channels)})
        if resp.status_code != 200:
            raise TransportError(f'{action} rejected with HTTP {resp.status_code}')
        return resp.json().get('subscriptions')

    async def subscribe(self, connection_id: str, channels: List[str]) -> Optional[List[str]]:
        return await self._subscription('subscribe', connection_id, channels)

    async def unsubscribe(self, connection_id: str, channels: List[str]) -> Optional[List[str]]:
        return await self._subscription('unsubscribe', connection_id, channels)

    async def send_action(self, action: str, payload: Dict[str, Any], request_id: str) -> ActionOutcome:
        resp = await self._post(self.path + '/action',
                                {'type': action, 'payload': payload, 'requestId': request_id})
        try:
            data = resp.json()
        except ValueError:
            data = {}
        if resp.is_success and data.get('success'):
            return ActionOutcome(True, result=data.get('result'))
        error = data.get('error') or data.get('detail') or f'HTTP {resp.status_code}'
        return ActionOutcome(False, error=str(error))

    async def close(self) -> None:
        response, self._response = self._response, None
        self._lines = None
        if response is not None:
            await response.aclose()
        if self._owns_client and self._client is not None:
            client, self._client = self._client, None
            await client.aclose()
