"""Client-initiated actions, shared by the socket and the HTTP action endpoints."""
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from . import envelopes
from .channels import Channel
from .errors import ActionFailed, DataSourceError, UnknownActionError
from .logs import get_logger

logger = get_logger('actions')

RESULT_TTL_SEC = 5 * 60


class ActionDispatcher:
    def __init__(self, store, registry):
        self.store = store
        self.registry = registry
        self._handlers: Dict[str, Callable[[Dict[str, Any]], Awaitable[Any]]] = {
            'ping': self._ping,
            'mark_notification_read': self._mark_notification_read,
            'refresh_activities': self._refresh_activities,
            'action:approve': self._approve,
            'action:reject': self._reject,
            'agent:pause': self._agent_pause,
            'agent:resume': self._agent_resume,
            'session:cancel': self._session_cancel,
            'subscribe': self._subscription_hint,
            'unsubscribe': self._subscription_hint,
        }

    def known(self, action: Optional[str]) -> bool:
        return action in self._handlers

    async def dispatch(self, action: Optional[str], payload: Optional[Dict[str, Any]] = None) -> Any:
        """Run ``action``. Raises UnknownActionError or ActionFailed."""
        handler = self._handlers.get(action)
        if handler is None:
            raise UnknownActionError(action)
        return await handler(payload if isinstance(payload, dict) else {})

    async def _ping(self, payload):
        return {'pong': True, 'timestamp': envelopes.now_iso()}

    async def _mark_notification_read(self, payload):
        return {'marked': True, 'notificationId': payload.get('notificationId')}

    async def _refresh_activities(self, payload):
        try:
            result = self.store.get_activities(limit=10, sort='newest')
        except DataSourceError as e:
            raise ActionFailed(str(e), status=503)
        await self.registry.broadcast(
            Channel.ACTIVITIES,
            envelopes.status('activities', 'online', message='Refresh requested'),
        )
        return result

    async def _set_activity_status(self, payload, new_status: str, extra: Dict[str, Any]):
        activity_id = payload.get('activityId')
        if not activity_id:
            raise ActionFailed('activityId required')
        try:
            activity = self.store.get_activity_by_id(activity_id)
        except DataSourceError as e:
            raise ActionFailed(str(e), status=503)
        if activity is None:
            raise ActionFailed('Activity not found', status=404)

        metadata = dict(activity.get('metadata') or {})
        metadata.update({k: v for k, v in extra.items() if v is not None})
        self.store.update_activity_status(activity_id, new_status, metadata)
        updated = dict(activity, status=new_status, metadata=metadata)
        await self.registry.broadcast(Channel.ACTIVITIES, envelopes.activity_updated(updated))
        logger.info('activity %s marked %s', activity_id, new_status)
        return updated

    async def _approve(self, payload):
        notes = payload.get('notes')
        await self._set_activity_status(payload, 'approved',
                                        {'approvedAt': envelopes.now_iso(), 'notes': notes})
        return {'success': True, 'activityId': payload['activityId'], 'approved': True,
                'notes': notes, 'timestamp': envelopes.now_iso()}

    async def _reject(self, payload):
        reason = payload.get('reason')
        await self._set_activity_status(payload, 'rejected',
                                        {'rejectedAt': envelopes.now_iso(),
                                         'rejectionReason': reason or 'No reason provided'})
        return {'success': True, 'activityId': payload['activityId'], 'rejected': True,
                'reason': reason, 'timestamp': envelopes.now_iso()}

    async def _agent_pause(self, payload):
        # TODO: signal the agent process once the gateway exposes a pause control
        return {'success': True, 'agentId': payload.get('agentId'), 'paused': True,
                'timestamp': envelopes.now_iso()}

    async def _agent_resume(self, payload):
        return {'success': True, 'agentId': payload.get('agentId'), 'resumed': True,
                'timestamp': envelopes.now_iso()}

    async def _session_cancel(self, payload):
        return {'success': True, 'sessionId': payload.get('sessionId'), 'cancelled': True,
                'timestamp': envelopes.now_iso()}

    async def _subscription_hint(self, payload):
        return {'success': True, 'message': 'Use the main realtime endpoint for subscriptions'}


class ActionResults:
    """Outcomes of recent actions, keyed by request id, for clients that poll."""

    def __init__(self, ttl: float = RESULT_TTL_SEC, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self.clock = clock
        self._results: Dict[str, tuple] = {}

    def record(self, request_id: Optional[str], result: Any = None, error: Optional[str] = None):
        if not request_id:
            return
        self._purge()
        entry = {'status': 'error' if error else 'success'}
        if result is not None:
            entry['result'] = result
        if error:
            entry['error'] = error
        self._results[request_id] = (self.clock() + self.ttl, entry)

    def get(self, request_id: str) -> Optional[Dict[str, Any]]:
        self._purge()
        item = self._results.get(request_id)
        return item[1] if item else None

    def _purge(self):
        now = self.clock()
        for rid in [rid for rid, (expires, _) in self._results.items() if expires <= now]:
            del self._results[rid]
