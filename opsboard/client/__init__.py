from .backoff import backoff_delay
from .controller import RealtimeClient
from .hybrid import choose_transport
from .state import ConnState, ReconnectStateMachine
from .transports import ActionOutcome, StreamTransport, Transport, WebSocketTransport

__all__ = [
    'ActionOutcome',
    'ConnState',
    'RealtimeClient',
    'ReconnectStateMachine',
    'StreamTransport',
    'Transport',
    'WebSocketTransport',
    'backoff_delay',
    'choose_transport',
]
