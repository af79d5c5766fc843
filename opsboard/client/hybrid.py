"""Pick a transport once at startup: the socket if it handshakes in time, else the push stream."""
import asyncio
from typing import Callable, Optional

from ..errors import TransportError
from ..logs import emit_event, get_logger
from .transports import Transport

logger = get_logger('client.hybrid')

HANDSHAKE_TIMEOUT = 5.0

SOCKET = 'websocket'
STREAM = 'stream'


async def _handshake(transport: Transport) -> str:
    await transport.open()
    msg = await transport.receive()
    if msg.get('type') != 'connected':
        raise TransportError(f"expected 'connected', got {msg.get('type')!r}")
    return msg.get('connectionId')


async def choose_transport(ws_factory: Callable[[], Transport], stream_factory: Callable[[], Transport],
                           handshake_timeout: float = HANDSHAKE_TIMEOUT) -> Callable[[], Transport]:
    """Return the factory to use for this client's lifetime.

    The probe connection is closed either way; the chosen factory is not
    re-evaluated on later reconnects.
    """
    probe = ws_factory()
    chosen: Optional[str] = None
    try:
        await asyncio.wait_for(_handshake(probe), handshake_timeout)
        chosen = SOCKET
    except asyncio.TimeoutError:
        logger.info('socket handshake timed out after %.1fs, using push stream', handshake_timeout)
    except Exception as e:
        logger.info('socket unavailable (%s), using push stream', e)
    finally:
        try:
            await probe.close()
        except Exception:
            logger.debug('probe close failed', exc_info=True)
    chosen = chosen or STREAM
    emit_event('transport_chosen', transport=chosen)
    return ws_factory if chosen == SOCKET else stream_factory
