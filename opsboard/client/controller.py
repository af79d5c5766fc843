"""Reconnecting realtime client.

``RealtimeClient`` owns one transport at a time, obtained from a factory on
every connection attempt, and drives ``ReconnectStateMachine`` from what the
transport reports. Sessions are re-established from scratch after a
reconnect: the connection id and channel set of the old session are dropped.
"""
import asyncio
import inspect
import time
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..envelopes import now_iso
from ..errors import TransportClosed
from ..logs import emit_event, get_logger
from .backoff import BASE_DELAY, MAX_DELAY
from .state import MAX_RECONNECT_ATTEMPTS, ConnState, ReconnectStateMachine
from .transports import ActionOutcome, Transport

logger = get_logger('client')

Callback = Callable[..., Any]


def new_request_id() -> str:
    return f'req_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}'


class RealtimeClient:
    def __init__(self, transport_factory: Callable[[], Transport], channels: Optional[List[str]] = None,
                 max_attempts: int = MAX_RECONNECT_ATTEMPTS, base_delay: float = BASE_DELAY,
                 max_delay: float = MAX_DELAY, silence_timeout: float = 45.0,
                 on_message: Optional[Callback] = None, on_connect: Optional[Callback] = None,
                 on_disconnect: Optional[Callback] = None, on_error: Optional[Callback] = None,
                 on_state: Optional[Callback] = None,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self.transport_factory = transport_factory
        self.channels = list(channels or [])
        self.silence_timeout = silence_timeout
        self.machine = ReconnectStateMachine(max_attempts, base_delay, max_delay)
        self.on_message = on_message
        self.on_connect = on_connect
        self.on_disconnect = on_disconnect
        self.on_error = on_error
        self.on_state = on_state
        self._sleep = sleep

        self.transport: Optional[Transport] = None
        self.connection_id: Optional[str] = None
        self.subscribed_channels: List[str] = []
        self.messages_received = 0
        self.messages_sent = 0
        self.latency: Optional[int] = None
        self.last_message_at: Optional[float] = None
        self._pending: Dict[str, asyncio.Future] = {}
        self._runner: Optional[asyncio.Task] = None
        self._stopped = False

    # -- lifecycle ---------------------------------------------------------

    @property
    def state(self) -> ConnState:
        return self.machine.state

    @property
    def connected(self) -> bool:
        return self.machine.state == ConnState.OPEN and self.connection_id is not None

    def start(self) -> asyncio.Task:
        if self._runner is None or self._runner.done():
            self._stopped = False
            self._runner = asyncio.create_task(self.run())
        return self._runner

    async def run(self) -> None:
        """Connect, read, and reconnect until stopped or the retry budget runs out."""
        self.machine.start()
        await self._notify_state()
        while not self._stopped:
            await self._session()
            if self._stopped:
                break
            await self._notify_state()
            if self.machine.state == ConnState.FAILED:
                emit_event('client_failed', level='warning', attempts=self.machine.attempt,
                           last_error=self.machine.last_error)
                await self._call(self.on_error, 'Max reconnection attempts reached')
                return
            logger.info('reconnecting in %.1fs (attempt %d/%d)', self.machine.delay,
                        self.machine.attempt, self.machine.max_attempts)
            await self._sleep(self.machine.delay)
            if self._stopped:
                break
            self.machine.start()
            await self._notify_state()

    async def _session(self) -> None:
        transport = self.transport_factory()
        self.transport = transport
        opened = False
        reason: Optional[str] = None
        try:
            await transport.open()
            opened = True
            self.machine.opened()
            await self._notify_state()
            while True:
                msg = await asyncio.wait_for(transport.receive(), timeout=self.silence_timeout)
                await self._handle(msg)
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            reason = f'No message for {self.silence_timeout:g}s'
        except TransportClosed as e:
            reason = e.reason
        except Exception as e:
            reason = str(e) or e.__class__.__name__
        finally:
            await self._teardown(transport, opened, reason)
        logger.info('connection lost: %s', reason)
        if opened:
            self.machine.closed(reason)
        else:
            self.machine.errored(reason)
            await self._call(self.on_error, reason)

    async def _teardown(self, transport: Transport, opened: bool, reason: Optional[str]) -> None:
        self.connection_id = None
        self.subscribed_channels = []
        if self.transport is transport:
            self.transport = None
        pending, self._pending = self._pending, {}
        for fut in pending.values():
            if not fut.done():
                fut.set_result(ActionOutcome(False, error='Connection closed'))
        try:
            await transport.close()
        except Exception:
            logger.debug('transport close failed', exc_info=True)
        if opened:
            await self._call(self.on_disconnect, reason or 'closed')

    async def reconnect(self) -> asyncio.Task:
        """Manual reconnect: resets the retry budget, also out of FAILED."""
        await self._cancel_runner()
        self.machine.manual_reconnect()
        return self.start()

    async def disconnect(self) -> None:
        self._stopped = True
        await self._cancel_runner()
        self.machine.stop()
        await self._notify_state()

    async def _cancel_runner(self) -> None:
        runner, self._runner = self._runner, None
        if runner is not None and not runner.done():
            runner.cancel()
            try:
                await runner
            except asyncio.CancelledError:
                pass

    # -- inbound -----------------------------------------------------------

    async def _handle(self, msg: Dict[str, Any]) -> None:
        self.messages_received += 1
        self.last_message_at = time.monotonic()
        mtype = msg.get('type')
        if mtype == 'connected':
            self.connection_id = msg.get('connectionId')
            await self._call(self.on_connect, self.connection_id)
            if self.channels:
                await self.subscribe(self.channels)
        elif mtype == 'subscribed':
            for ch in msg.get('channels') or []:
                if ch not in self.subscribed_channels:
                    self.subscribed_channels.append(ch)
        elif mtype == 'unsubscribed':
            removed = set(msg.get('channels') or [])
            self.subscribed_channels = [c for c in self.subscribed_channels if c not in removed]
        elif mtype == 'pong':
            self.latency = msg.get('latency')
        elif mtype in ('heartbeat', 'heartbeat:ping'):
            if self.transport is not None and self.transport.duplex:
                await self._send({'type': 'ping', 'timestamp': now_iso()})
        elif mtype == 'action_result':
            self._resolve(msg.get('requestId'), ActionOutcome(
                bool(msg.get('success')), result=msg.get('result'), error=msg.get('error')))
        elif mtype == 'error':
            details = msg.get('details')
            request_id = details.get('requestId') if isinstance(details, dict) else None
            if not self._resolve(request_id, ActionOutcome(False, error=msg.get('message'), code=msg.get('code'))):
                await self._call(self.on_error, msg.get('message'))
        await self._call(self.on_message, msg)

    def _resolve(self, request_id: Optional[str], outcome: ActionOutcome) -> bool:
        fut = self._pending.get(request_id) if request_id else None
        if fut is None or fut.done():
            return False
        fut.set_result(outcome)
        return True

    # -- outbound ----------------------------------------------------------

    async def _send(self, message: Dict[str, Any]) -> bool:
        if self.transport is None:
            return False
        sent = await self.transport.send(message)
        if sent:
            self.messages_sent += 1
        return sent

    async def ping(self) -> bool:
        return await self._send({'type': 'ping', 'timestamp': now_iso()})

    async def subscribe(self, channels: List[str]) -> None:
        if not self.connection_id or self.transport is None:
            return
        try:
            current = await self.transport.subscribe(self.connection_id, list(channels))
        except Exception as e:
            logger.warning('subscribe failed: %s', e)
            return
        if current is not None:
            self.subscribed_channels = list(current)

    async def unsubscribe(self, channels: List[str]) -> None:
        if not self.connection_id or self.transport is None:
            return
        try:
            current = await self.transport.unsubscribe(self.connection_id, list(channels))
        except Exception as e:
            logger.warning('unsubscribe failed: %s', e)
            return
        if current is not None:
            self.subscribed_channels = list(current)

    async def send_action(self, action: str, payload: Optional[Dict[str, Any]] = None,
                          timeout: float = 10.0) -> ActionOutcome:
        """Run a server action; failures come back in the outcome, never as exceptions."""
        transport = self.transport
        if transport is None or self.machine.state != ConnState.OPEN:
            return ActionOutcome(False, error='Not connected')
        request_id = new_request_id()
        try:
            if transport.duplex:
                fut = asyncio.get_running_loop().create_future()
                self._pending[request_id] = fut
                if not await self._send({'type': 'action', 'action': action,
                                         'payload': payload or {}, 'id': request_id}):
                    return ActionOutcome(False, error='Not connected')
                return await asyncio.wait_for(fut, timeout)
            outcome = await asyncio.wait_for(transport.send_action(action, payload or {}, request_id), timeout)
            self.messages_sent += 1
            return outcome
        except asyncio.TimeoutError:
            return ActionOutcome(False, error='Action timed out')
        except Exception as e:
            return ActionOutcome(False, error=str(e) or e.__class__.__name__)
        finally:
            self._pending.pop(request_id, None)

    # -- helpers -----------------------------------------------------------

    def stats(self) -> Dict[str, Any]:
        return {
            'state': self.machine.state.value,
            'status': self.machine.status,
            'connectionId': self.connection_id,
            'reconnectAttempts': self.machine.attempt,
            'messagesReceived': self.messages_received,
            'messagesSent': self.messages_sent,
            'latency': self.latency,
            'subscribedChannels': list(self.subscribed_channels),
        }

    async def _notify_state(self) -> None:
        await self._call(self.on_state, self.machine.state, self.machine.status)

    async def _call(self, callback: Optional[Callback], *args) -> None:
        if callback is None:
            return
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception('client callback %r failed', getattr(callback, '__name__', callback))
