from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ..errors import DataSourceError
from ..hub import RealtimeHub
from .deps import get_hub, verify_admin_key

router = APIRouter(prefix='/api/activities')


class ActivityIn(BaseModel):
    type: str
    description: str
    status: str = 'success'
    metadata: Optional[Dict[str, Any]] = None
    duration_ms: Optional[int] = None
    tokens_used: Optional[int] = None


@router.get('')
async def list_activities(limit: int = 50, sort: str = 'newest', status: Optional[str] = None,
                          hub: RealtimeHub = Depends(get_hub)):
    if sort not in ('newest', 'oldest'):
        raise HTTPException(status_code=400, detail='sort must be newest or oldest')
    try:
        return hub.store.get_activities(limit=min(max(limit, 1), 500), sort=sort, status=status)
    except DataSourceError as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.post('', dependencies=[Depends(verify_admin_key)])
async def log_activity(body: ActivityIn, hub: RealtimeHub = Depends(get_hub)):
    """Append an activity; open streams pick it up on their next poll."""
    aid = hub.store.log_activity(body.type, body.description, body.status, body.metadata,
                                 body.duration_ms, body.tokens_used)
    return {'id': aid}


@router.get('/{activity_id}')
async def get_activity(activity_id: str, hub: RealtimeHub = Depends(get_hub)):
    activity = hub.store.get_activity_by_id(activity_id)
    if activity is None:
        raise HTTPException(status_code=404, detail='activity not found')
    return activity
