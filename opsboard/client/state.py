"""Reconnection state machine, independent of the transport it drives.

States: IDLE -> CONNECTING -> OPEN -> (closed/errored) -> BACKOFF -> CONNECTING ...
A failure streak that reaches ``max_attempts`` ends in FAILED, which only
``manual_reconnect()`` leaves. Every successful open resets the streak.
"""
from enum import Enum
from typing import Optional

from .backoff import BASE_DELAY, MAX_DELAY, backoff_delay

MAX_RECONNECT_ATTEMPTS = 10


class ConnState(str, Enum):
    IDLE = 'idle'
    CONNECTING = 'connecting'
    OPEN = 'open'
    BACKOFF = 'backoff'
    FAILED = 'failed'


class ReconnectStateMachine:
    def __init__(self, max_attempts: int = MAX_RECONNECT_ATTEMPTS, base_delay: float = BASE_DELAY,
                 max_delay: float = MAX_DELAY):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.state = ConnState.IDLE
        self.attempt = 0
        self.delay: Optional[float] = None
        self.status = 'Disconnected'
        self.last_error: Optional[str] = None

    def start(self) -> ConnState:
        if self.state in (ConnState.IDLE, ConnState.BACKOFF):
            self.state = ConnState.CONNECTING
            self.delay = None
            self.status = 'Connecting...'
        return self.state

    def opened(self) -> ConnState:
        self.state = ConnState.OPEN
        self.attempt = 0
        self.delay = None
        self.status = 'Connected'
        self.last_error = None
        return self.state

    def closed(self, reason: str = 'Connection closed') -> ConnState:
        return self._failure(reason)

    def errored(self, reason: str = 'Connection error') -> ConnState:
        return self._failure(reason)

    def _failure(self, reason: str) -> ConnState:
        if self.state not in (ConnState.CONNECTING, ConnState.OPEN):
            # stray event after stop() or while already waiting
            return self.state
        self.attempt += 1
        self.last_error = reason
        if self.attempt >= self.max_attempts:
            self.state = ConnState.FAILED
            self.delay = None
            self.status = 'Connection failed'
        else:
            self.state = ConnState.BACKOFF
            self.delay = backoff_delay(self.attempt, self.base_delay, self.max_delay)
            self.status = 'Reconnecting...'
        return self.state

    def manual_reconnect(self) -> ConnState:
        self.attempt = 0
        self.delay = None
        self.last_error = None
        self.state = ConnState.CONNECTING
        self.status = 'Connecting...'
        return self.state

    def stop(self) -> ConnState:
        self.state = ConnState.IDLE
        self.delay = None
        self.status = 'Disconnected'
        return self.state

    @property
    def terminal(self) -> bool:
        return self.state == ConnState.FAILED
