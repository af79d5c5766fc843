"""Server-push-only binding: a session delivered as ``text/event-stream``."""
import asyncio
from typing import AsyncIterator, Iterable, Optional

from fastapi.responses import StreamingResponse

from ..envelopes import encode_sse
from ..hub import RealtimeHub

STREAM_HEADERS = {
    'Cache-Control': 'no-cache, no-transform',
    'Connection': 'keep-alive',
    'X-Accel-Buffering': 'no',
}

_CLOSE = object()


async def session_events(hub: RealtimeHub, connection_id: str, channels: Iterable,
                         page_size: Optional[int] = None) -> AsyncIterator[str]:
    """Open a session and yield its envelopes as SSE frames until it closes.

    The session is created inside the generator so that a response that is
    never iterated never leaves a registry entry or timers behind.
    """
    queue: asyncio.Queue = asyncio.Queue()

    async def push(msg):
        queue.put_nowait(msg)

    async def close():
        queue.put_nowait(_CLOSE)

    session = await hub.open_session('sse', push, close, channels,
                                     page_size=page_size, connection_id=connection_id)
    try:
        while True:
            msg = await queue.get()
            if msg is _CLOSE:
                break
            yield encode_sse(msg)
    finally:
        # runs on client disconnect (task cancelled) as well as normal close
        session.detach('client_disconnect')


def push_stream_response(hub: RealtimeHub, channels: Iterable, page_size: Optional[int] = None,
                         prefix: str = 'sse') -> StreamingResponse:
    connection_id = hub.new_connection_id(prefix)
    headers = dict(STREAM_HEADERS, **{'X-Client-Id': connection_id})
    return StreamingResponse(
        session_events(hub, connection_id, list(channels), page_size),
        media_type='text/event-stream',
        headers=headers,
    )
