"""Per-connection stream session.

One ``StreamSession`` drives every client connection regardless of binding.
The binding supplies two coroutines: ``push(envelope)`` to deliver a message
and ``close()`` to tear the underlying transport down. The session owns the
subscription set, the activity cursor, the poll loop and the heartbeat loop.

Lifecycle: CONNECTING -> OPEN -> SUBSCRIBED -> CLOSING -> CLOSED.
"""
import asyncio
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from . import envelopes
from .channels import Channel, filter_channels, names
from .errors import ActionFailed, ProtocolError, UnknownActionError
from .logs import emit_event, get_logger
from .metrics import envelopes_counter, sessions_gauge
from .poller import ActivityPoller, poll_interval

logger = get_logger('session')

PushFn = Callable[[Dict[str, Any]], Awaitable[None]]
CloseFn = Callable[[], Awaitable[None]]


class SessionState(str, Enum):
    CONNECTING = 'connecting'
    OPEN = 'open'
    SUBSCRIBED = 'subscribed'
    CLOSING = 'closing'
    CLOSED = 'closed'


class StreamSession:
    def __init__(self, connection_id: str, transport: str, push: PushFn, close: CloseFn,
                 registry, poller: ActivityPoller, dispatcher, settings, started_at: Optional[float] = None):
        self.connection_id = connection_id
        self.transport = transport
        self._push = push
        self._close = close
        self.registry = registry
        self.poller = poller
        self.dispatcher = dispatcher
        self.settings = settings
        self.started_at = started_at or time.monotonic()

        self.state = SessionState.CONNECTING
        self.created_at = envelopes.utcnow()
        self.last_heartbeat = self.created_at
        self.alive = True
        self.channels: List[Channel] = []
        self.cursor: Optional[str] = None
        self.poll_failures = 0
        self.messages_sent = 0
        self.messages_received = 0
        self.close_reason: Optional[str] = None

        self._poll_task: Optional[asyncio.Task] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._send_lock = asyncio.Lock()

    @property
    def closed(self) -> bool:
        return self.state in (SessionState.CLOSING, SessionState.CLOSED)

    @property
    def tasks(self) -> List[asyncio.Task]:
        return [t for t in (self._poll_task, self._heartbeat_task) if t is not None]

    async def start(self, channels: Optional[Iterable] = None):
        """Register, greet the client, apply initial channels and start the timers."""
        self.registry.add(self)
        self.state = SessionState.OPEN
        sessions_gauge.labels(transport=self.transport).inc()
        emit_event('session_opened', connection_id=self.connection_id, transport=self.transport)

        await self.push(envelopes.connected(self.connection_id))
        initial = filter_channels(channels)
        if initial and not self.closed:
            await self.subscribe(initial)
        if self.closed:
            return

        self._poll_task = asyncio.create_task(self._poll_loop(), name=f'poll:{self.connection_id}')
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(), name=f'heartbeat:{self.connection_id}')

    async def push(self, message: Dict[str, Any]) -> bool:
        """Deliver one envelope. A failed delivery closes the session."""
        if self.closed:
            return False
        try:
            async with self._send_lock:
                await self._push(message)
        except Exception as e:
            logger.info('push to %s failed (%s), closing session', self.connection_id, e)
            await self.close('transport_error')
            return False
        self.messages_sent += 1
        envelopes_counter.labels(type=message.get('type', 'unknown')).inc()
        return True

    # --- client requests ---

    def mark_alive(self):
        self.alive = True
        self.last_heartbeat = envelopes.utcnow()

    async def subscribe(self, channels: Iterable) -> List[Channel]:
        resulting = self.registry.subscribe(self.connection_id, channels)
        if resulting is None:
            return []
        if resulting:
            self.state = SessionState.SUBSCRIBED
        await self.push(envelopes.subscribed(resulting))
        return resulting

    async def unsubscribe(self, channels: Iterable) -> List[Channel]:
        removed = self.registry.unsubscribe(self.connection_id, channels)
        if removed is None:
            return []
        if not self.channels and self.state == SessionState.SUBSCRIBED:
            self.state = SessionState.OPEN
        await self.push(envelopes.unsubscribed(removed))
        return removed

    async def ping(self, client_timestamp: Any):
        await self.push(envelopes.pong(client_timestamp, envelopes.compute_latency(client_timestamp)))

    async def handle_raw(self, raw) -> None:
        """Handle one inbound client frame. Bad input gets an error envelope, never a close."""
        self.messages_received += 1
        try:
            msg = envelopes.parse_client_message(raw)
        except ProtocolError as e:
            await self.push(envelopes.error(e.code, e.message, e.details))
            return

        self.mark_alive()
        if msg.type == 'subscribe':
            await self.subscribe(msg.channels)
        elif msg.type == 'unsubscribe':
            await self.unsubscribe(msg.channels)
        elif msg.type == 'ping':
            await self.ping(msg.timestamp)
        elif msg.type == 'action':
            await self.handle_action(msg.action, msg.payload, msg.id)

    async def handle_action(self, action: str, payload: Dict[str, Any], request_id: Optional[str] = None):
        try:
            result = await self.dispatcher.dispatch(action, payload)
        except UnknownActionError as e:
            await self.push(envelopes.error(e.code, e.message, {'requestId': request_id}))
        except ActionFailed as e:
            await self.push(envelopes.action_result(request_id, False, error_message=e.message))
        else:
            await self.push(envelopes.action_result(request_id, True, result))

    # --- timers ---

    async def tick(self):
        """One poll cycle: new activities, then the status snapshot."""
        if Channel.ACTIVITIES in self.channels:
            result = self.poller.poll(self.cursor, self.connection_id)
            self.poll_failures = self.poll_failures + 1 if result.failed else 0
            self.cursor = result.cursor
            for env in result.envelopes:
                if not await self.push(env):
                    return
        if Channel.STATUS in self.channels and not self.closed:
            await self.push(envelopes.status('realtime', 'online', metrics={
                'connections': len(self.registry),
                'uptime': round(time.monotonic() - self.started_at, 3),
            }))

    async def _poll_loop(self):
        while not self.closed:
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                # a broken tick must not kill the session; the next one retries
                logger.exception('poll tick failed for %s', self.connection_id)
                self.poll_failures += 1
            if self.closed:
                return
            await asyncio.sleep(poll_interval(self.poll_failures, self.settings.poll_interval,
                                              self.settings.poll_backoff_cap))

    async def _heartbeat_loop(self):
        while not self.closed:
            await asyncio.sleep(self.settings.heartbeat_interval)
            await self.push(envelopes.heartbeat())

    # --- teardown ---

    def detach(self, reason: str = 'closed') -> bool:
        """Synchronous part of teardown: stop timers and leave the registry.

        Returns False when the session was already detached.
        """
        if self.closed:
            return False
        self.state = SessionState.CLOSING
        self.close_reason = reason
        current = asyncio.current_task() if _loop_running() else None
        for task in self.tasks:
            if task is not current and not task.done():
                task.cancel()
        self.registry.remove(self.connection_id)
        sessions_gauge.labels(transport=self.transport).dec()
        emit_event('session_closed', connection_id=self.connection_id, transport=self.transport,
                   reason=reason, sent=self.messages_sent)
        return True

    async def close(self, reason: str = 'closed'):
        if not self.detach(reason):
            return
        try:
            await self._close()
        except Exception as e:
            logger.debug('transport close for %s raised %s', self.connection_id, e)
        finally:
            self.state = SessionState.CLOSED

    def describe(self) -> Dict[str, Any]:
        return {
            'id': self.connection_id,
            'transport': self.transport,
            'state': self.state.value,
            'channels': names(self.channels),
            'connectedAt': envelopes.isoformat(self.created_at),
            'lastHeartbeat': envelopes.isoformat(self.last_heartbeat),
            'isAlive': self.alive,
        }


def _loop_running() -> bool:
    try:
        asyncio.get_running_loop()
        return True
    except RuntimeError:
        return False
