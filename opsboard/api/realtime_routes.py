"""Push stream with paired request endpoints.

GET  /api/realtime                 event stream (default: activities, agents, notifications)
POST /api/realtime                 subscribe / unsubscribe an open stream by client id
POST /api/realtime/action          run a client action, optionally keyed by requestId
GET  /api/realtime/action          poll the outcome of a keyed action
GET  /api/realtime/stats           open sessions and their channels
"""
from typing import Any, List, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..channels import REALTIME_DEFAULT, names, parse_channel_param
from ..errors import ActionFailed, UnknownActionError
from ..hub import RealtimeHub
from ..logs import get_logger
from .deps import get_hub, verify_admin_key
from .push_stream import push_stream_response

router = APIRouter(prefix='/api/realtime')
logger = get_logger('api.realtime')


class SubscriptionRequest(BaseModel):
    clientId: Optional[str] = None
    connectionId: Optional[str] = None
    action: str
    channels: List[Any] = []


class ActionRequest(BaseModel):
    type: str
    payload: Any = None
    requestId: Optional[str] = None


@router.get('')
async def realtime_stream(channels: Optional[str] = None, hub: RealtimeHub = Depends(get_hub)):
    return push_stream_response(hub, parse_channel_param(channels, REALTIME_DEFAULT),
                                page_size=hub.settings.realtime_page_size, prefix='client')


@router.post('')
async def update_subscriptions(body: SubscriptionRequest, hub: RealtimeHub = Depends(get_hub)):
    client_id = body.clientId or body.connectionId
    session = hub.registry.get(client_id) if client_id else None
    if session is None:
        return JSONResponse({'error': 'Invalid client ID'}, status_code=400)
    if body.action == 'subscribe':
        await session.subscribe(body.channels)
    elif body.action == 'unsubscribe':
        await session.unsubscribe(body.channels)
    else:
        return JSONResponse({'error': f'Unknown subscription action: {body.action}'}, status_code=400)
    return {'success': True, 'subscriptions': names(session.channels)}


@router.post('/action', dependencies=[Depends(verify_admin_key)])
async def realtime_action(body: ActionRequest, hub: RealtimeHub = Depends(get_hub)):
    payload = body.payload if isinstance(body.payload, dict) else {}
    try:
        result = await hub.dispatcher.dispatch(body.type, payload)
    except UnknownActionError:
        error = f'Unknown action type: {body.type}'
        hub.results.record(body.requestId, error=error)
        return JSONResponse({'error': error, 'requestId': body.requestId}, status_code=400)
    except ActionFailed as e:
        hub.results.record(body.requestId, error=e.message)
        return JSONResponse({'error': e.message, 'requestId': body.requestId}, status_code=e.status)

    hub.results.record(body.requestId, result)
    return {'success': True, 'result': result, 'requestId': body.requestId}


@router.get('/action')
async def realtime_action_result(requestId: Optional[str] = None, hub: RealtimeHub = Depends(get_hub)):
    if not requestId:
        return JSONResponse({'error': 'requestId required'}, status_code=400)
    result = hub.results.get(requestId)
    if result is None:
        return {'status': 'pending'}
    return result


@router.get('/stats')
async def realtime_stats(hub: RealtimeHub = Depends(get_hub)):
    return hub.stats()
