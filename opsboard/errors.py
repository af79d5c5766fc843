from typing import Any, Optional


class OpsboardError(Exception):
    """Base class for errors raised by the realtime layer."""


class ProtocolError(OpsboardError):
    """A client message could not be understood. The connection stays open."""

    def __init__(self, code: str, message: str, details: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details


class UnknownActionError(ProtocolError):
    def __init__(self, action: Optional[str], details: Any = None):
        super().__init__('UNKNOWN_ACTION', f'Unknown action: {action}', details)
        self.action = action


class ActionFailed(OpsboardError):
    """A known action was requested but could not be carried out."""

    def __init__(self, message: str, status: int = 400):
        super().__init__(message)
        self.message = message
        self.status = status


class DataSourceError(OpsboardError):
    """The activity store could not be read."""


class TransportError(OpsboardError):
    """A client transport could not be opened or used."""


class TransportClosed(TransportError):
    def __init__(self, reason: str = 'Connection closed'):
        super().__init__(reason)
        self.reason = reason
