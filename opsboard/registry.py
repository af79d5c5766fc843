from typing import Any, Dict, Iterable, List, Optional

from .channels import Channel, filter_channels, names
from .logs import get_logger

logger = get_logger('registry')


class SubscriptionRegistry:
    """Process-wide map of connection id -> open session and its channels.

    Only touched from the event loop, so plain dict operations are enough.
    Entries are added when a session opens and removed when it closes.
    """

    def __init__(self):
        self._sessions: Dict[str, Any] = {}

    def add(self, session) -> None:
        self._sessions[session.connection_id] = session

    def remove(self, connection_id: str):
        return self._sessions.pop(connection_id, None)

    def get(self, connection_id: str):
        return self._sessions.get(connection_id)

    def __contains__(self, connection_id) -> bool:
        return connection_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def ids(self) -> List[str]:
        return list(self._sessions)

    def sessions(self, transport: Optional[str] = None) -> List[Any]:
        return [s for s in self._sessions.values() if transport is None or s.transport == transport]

    def subscribe(self, connection_id: str, channels: Iterable) -> Optional[List[Channel]]:
        """Add the valid channels; returns the full resulting set, or None for an unknown id."""
        session = self._sessions.get(connection_id)
        if session is None:
            return None
        for ch in filter_channels(channels):
            if ch not in session.channels:
                session.channels.append(ch)
        return list(session.channels)

    def unsubscribe(self, connection_id: str, channels: Iterable) -> Optional[List[Channel]]:
        """Remove the valid channels; returns the ones actually removed, or None for an unknown id."""
        session = self._sessions.get(connection_id)
        if session is None:
            return None
        removed = []
        for ch in filter_channels(channels):
            if ch in session.channels:
                session.channels.remove(ch)
                removed.append(ch)
        return removed

    async def broadcast(self, channel: Channel, message: Dict[str, Any]) -> int:
        """Push to every session subscribed to ``channel``. Best effort, no retry."""
        targets = [s for s in self._sessions.values() if channel in s.channels]
        return await self._deliver(targets, message)

    async def broadcast_all(self, message: Dict[str, Any]) -> int:
        return await self._deliver(list(self._sessions.values()), message)

    async def _deliver(self, targets, message) -> int:
        delivered = 0
        for session in targets:
            if await session.push(message):
                delivered += 1
            else:
                logger.debug('broadcast skipped closed session %s', session.connection_id)
        return delivered

    def stats(self) -> Dict[str, Any]:
        sessions = list(self._sessions.values())
        channels = []
        for s in sessions:
            for ch in s.channels:
                if ch not in channels:
                    channels.append(ch)
        return {
            'totalConnections': len(sessions),
            'channels': names(channels),
            'clients': [s.describe() for s in sessions],
        }
