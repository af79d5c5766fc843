from typing import Optional

from fastapi import Header, HTTPException, Request

from ..hub import RealtimeHub


def get_hub(request: Request) -> RealtimeHub:
    hub = getattr(request.app.state, 'hub', None)
    if hub is None:
        raise HTTPException(status_code=503, detail='realtime_unavailable')
    return hub


def verify_admin_key(request: Request, x_admin_key: Optional[str] = Header(None)):
    """Require X-ADMIN-KEY on action endpoints when an admin key is configured."""
    hub = getattr(request.app.state, 'hub', None)
    expected = hub.settings.admin_key if hub is not None else None
    if not expected:
        # No admin key configured -> allow access (development convenience)
        return True
    if x_admin_key == expected:
        return True
    raise HTTPException(status_code=401, detail='invalid admin key')
