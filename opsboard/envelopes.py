"""Wire envelopes exchanged between the realtime server and its clients.

Server -> client messages are plain dicts ``{type, timestamp, ...}`` built by
the helpers below and never mutated after creation. Client -> server messages
are validated with pydantic into one of the ``ClientMessage`` models.
"""
import json
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from .channels import Channel, names
from .errors import ProtocolError

SERVER_TYPES = frozenset({
    'connected', 'subscribed', 'unsubscribed', 'pong', 'heartbeat',
    'activity', 'session', 'notification', 'status', 'action_result', 'error',
})
CLIENT_TYPES = frozenset({'subscribe', 'unsubscribe', 'ping', 'action'})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def now_iso() -> str:
    return isoformat(utcnow())


def envelope(type_: str, **fields: Any) -> Dict[str, Any]:
    """Build a server envelope. ``None`` valued fields are left off the wire."""
    msg = {'type': type_, 'timestamp': now_iso()}
    for k, v in fields.items():
        if v is not None:
            msg[k] = v
    return msg


# --- server envelope builders ---

def connected(connection_id: str) -> Dict[str, Any]:
    return envelope('connected', connectionId=connection_id, serverTime=now_iso())


def subscribed(channels: Iterable[Channel]) -> Dict[str, Any]:
    return envelope('subscribed', channels=names(channels))


def unsubscribed(channels: Iterable[Channel]) -> Dict[str, Any]:
    return envelope('unsubscribed', channels=names(channels))


def pong(client_timestamp: Any, latency: int) -> Dict[str, Any]:
    return envelope('pong', clientTimestamp=client_timestamp, latency=latency)


def heartbeat() -> Dict[str, Any]:
    return envelope('heartbeat')


def activity_batch(activities: List[Dict[str, Any]]) -> Dict[str, Any]:
    return envelope('activity', data={'action': 'batch', 'activities': activities})


def activity_created(activity: Dict[str, Any]) -> Dict[str, Any]:
    return envelope('activity', data={'id': activity.get('id'), 'action': 'create', 'activity': activity})


def activity_updated(activity: Dict[str, Any]) -> Dict[str, Any]:
    return envelope('activity', data={'id': activity.get('id'), 'action': 'update', 'activity': activity})


def status(component: str, state: str = 'online', message: Optional[str] = None,
           metrics: Optional[Dict[str, float]] = None) -> Dict[str, Any]:
    data = {'component': component, 'status': state}
    if message is not None:
        data['message'] = message
    if metrics is not None:
        data['metrics'] = metrics
    return envelope('status', data=data)


def error(code: str, message: str, details: Any = None) -> Dict[str, Any]:
    return envelope('error', code=code, message=message, details=details)


def action_result(request_id: Optional[str], success: bool, result: Any = None,
                  error_message: Optional[str] = None) -> Dict[str, Any]:
    return envelope('action_result', requestId=request_id or '', success=success,
                    result=result, error=error_message)


def encode_sse(msg: Dict[str, Any]) -> str:
    return f'data: {json.dumps(msg, default=str)}\n\n'


# --- client messages ---

class SubscribeMessage(BaseModel):
    type: Literal['subscribe']
    channels: List[Any]
    id: Optional[str] = None


class UnsubscribeMessage(BaseModel):
    type: Literal['unsubscribe']
    channels: List[Any]
    id: Optional[str] = None


class PingMessage(BaseModel):
    type: Literal['ping']
    timestamp: Union[str, int, float, None] = None
    id: Optional[str] = None


class ActionMessage(BaseModel):
    type: Literal['action']
    action: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    id: Optional[str] = None


ClientMessage = Union[SubscribeMessage, UnsubscribeMessage, PingMessage, ActionMessage]

_client_adapter = TypeAdapter(
    Union[SubscribeMessage, UnsubscribeMessage, PingMessage, ActionMessage]
)


def parse_client_message(raw: Union[str, bytes, Dict[str, Any]]) -> ClientMessage:
    """Decode and validate a client message.

    Raises ProtocolError with code PARSE_ERROR (not JSON), UNKNOWN_TYPE
    (``type`` missing or not a client type) or INVALID_MESSAGE (bad shape).
    """
    if isinstance(raw, (str, bytes, bytearray)):
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            raise ProtocolError('PARSE_ERROR', 'Invalid message format')
    else:
        data = raw
    if not isinstance(data, dict):
        raise ProtocolError('PARSE_ERROR', 'Invalid message format')
    if data.get('type') not in CLIENT_TYPES:
        raise ProtocolError('UNKNOWN_TYPE', f"Unknown message type: {data.get('type')}")
    try:
        return _client_adapter.validate_python(data)
    except ValidationError as e:
        raise ProtocolError('INVALID_MESSAGE', 'Invalid message fields',
                            details=e.errors(include_url=False, include_context=False))


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Accept ISO-8601 strings (``Z`` suffix allowed) or epoch milliseconds."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt
    return None


def compute_latency(client_timestamp: Any, now: Optional[datetime] = None) -> int:
    """Milliseconds between the client's timestamp and now, clamped at zero.

    A timestamp from the future (clock skew) or one that cannot be parsed
    reports 0.
    """
    sent = parse_timestamp(client_timestamp)
    if sent is None:
        return 0
    now = now or utcnow()
    try:
        delta_ms = (now - sent).total_seconds() * 1000.0
    except OverflowError:
        return 0
    return max(0, int(delta_ms))
