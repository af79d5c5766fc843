import asyncio
import secrets
import time
from typing import Any, Dict, Iterable, List, Optional

from .actions import ActionDispatcher, ActionResults
from .channels import Channel
from .config import Settings
from .db.activity_store import ActivityStore
from .logs import emit_event, get_logger
from .metrics import evictions_counter
from .poller import ActivityPoller
from .registry import SubscriptionRegistry
from .session import StreamSession

logger = get_logger('hub')


class RealtimeHub:
    """Shared realtime state for one app: registry, actions and the liveness sweeper.

    Attached to ``app.state.hub``; routes open sessions through it.
    """

    def __init__(self, settings: Settings, store: Optional[ActivityStore] = None, query=None):
        self.settings = settings
        self.store = store if store is not None else ActivityStore(settings.db_path)
        # query(limit=..., sort=...) -> newest-first activities
        self.query = query or self.store.newest
        self.registry = SubscriptionRegistry()
        self.dispatcher = ActionDispatcher(self.store, self.registry)
        self.results = ActionResults()
        self.started_at = time.monotonic()
        self._sweeper: Optional[asyncio.Task] = None

    @staticmethod
    def new_connection_id(prefix: str = 'conn') -> str:
        return f'{prefix}_{int(time.time() * 1000)}_{secrets.token_hex(5)}'

    def poller(self, page_size: Optional[int] = None) -> ActivityPoller:
        return ActivityPoller(self.query, page_size or self.settings.ws_page_size, self.settings.batch_size)

    async def open_session(self, transport: str, push, close, channels: Optional[Iterable] = None,
                           page_size: Optional[int] = None, connection_id: Optional[str] = None) -> StreamSession:
        session = StreamSession(
            connection_id or self.new_connection_id('conn' if transport == 'ws' else 'sse'),
            transport, push, close, self.registry, self.poller(page_size), self.dispatcher,
            self.settings, started_at=self.started_at,
        )
        await session.start(channels)
        return session

    async def sweep(self) -> List[str]:
        """One liveness pass over socket sessions.

        Sessions that have not acknowledged since the previous pass are
        terminated; the rest are marked not-alive until they answer again.
        """
        evicted = []
        for session in self.registry.sessions(transport='ws'):
            if not session.alive:
                evicted.append(session.connection_id)
                evictions_counter.inc()
                emit_event('session_evicted', level='warning', connection_id=session.connection_id)
                await session.close('heartbeat_timeout')
            else:
                session.alive = False
        return evicted

    async def _sweep_loop(self):
        while True:
            await asyncio.sleep(self.settings.liveness_interval)
            try:
                await self.sweep()
            except Exception:
                logger.exception('liveness sweep failed')

    def start(self):
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_loop(), name='liveness-sweep')

    async def stop(self):
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None
        for session in self.registry.sessions():
            await session.close('server_shutdown')

    async def broadcast(self, channel: Channel, message: Dict[str, Any]) -> int:
        return await self.registry.broadcast(channel, message)

    def stats(self) -> Dict[str, Any]:
        stats = self.registry.stats()
        stats['uptime'] = round(time.monotonic() - self.started_at, 3)
        return stats
