from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .. import envelopes
from ..channels import WS_STREAM_DEFAULT, filter_channels, parse_channel_param
from ..errors import ActionFailed, UnknownActionError
from ..hub import RealtimeHub
from ..logs import get_logger
from .deps import get_hub, verify_admin_key
from .push_stream import push_stream_response

router = APIRouter()
logger = get_logger('api.ws')

# The app is expected to carry a RealtimeHub at app.state.hub


@router.websocket('/api/ws')
async def realtime_socket(websocket: WebSocket):
    await websocket.accept()
    hub: Optional[RealtimeHub] = getattr(websocket.app.state, 'hub', None)
    if hub is None:
        # If no hub, accept then close
        await websocket.close()
        return

    async def push(msg):
        await websocket.send_json(msg)

    async def close():
        await websocket.close(code=1001)

    requested = websocket.query_params.get('channels') or ''
    session = await hub.open_session('ws', push, close, filter_channels(requested.split(',')))
    try:
        while not session.closed:
            message = await websocket.receive()
            if message['type'] == 'websocket.disconnect':
                break
            raw = message.get('text')
            if raw is None:
                raw = message.get('bytes')
            await session.handle_raw(raw)
    except WebSocketDisconnect:
        pass
    except RuntimeError as e:
        # raised by starlette when the socket was closed underneath us (eviction)
        logger.debug('socket %s stopped receiving: %s', session.connection_id, e)
    finally:
        session.detach('client_disconnect')


@router.get('/api/ws')
async def realtime_socket_stream(channels: Optional[str] = None, hub: RealtimeHub = Depends(get_hub)):
    """Push-only fallback for the socket endpoint, same envelopes and cadence."""
    return push_stream_response(hub, parse_channel_param(channels, WS_STREAM_DEFAULT),
                                page_size=hub.settings.ws_page_size)


class SocketAction(BaseModel):
    action: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    id: Optional[str] = None
    timestamp: Any = None


@router.post('/api/ws', dependencies=[Depends(verify_admin_key)])
async def realtime_socket_action(body: SocketAction, hub: RealtimeHub = Depends(get_hub)):
    """Request half for clients on the push-only stream."""
    if body.action == 'ping':
        return envelopes.pong(body.timestamp, envelopes.compute_latency(body.timestamp))
    if body.action == 'subscribe':
        return {'success': True, 'message': 'Use query params ?channels=activities,sessions for the stream'}
    try:
        result = await hub.dispatcher.dispatch(body.action, body.payload)
    except UnknownActionError as e:
        return JSONResponse({'success': False, 'error': e.message, 'code': e.code}, status_code=400)
    except ActionFailed as e:
        return JSONResponse({'success': False, 'error': e.message}, status_code=e.status)
    hub.results.record(body.id, result)
    return {'success': True, 'action': body.action, 'result': result}
