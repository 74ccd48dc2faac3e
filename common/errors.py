"""
Error hierarchy shared by server and client.

Errors that can cross the wire carry a ``code`` that the server writes into
ERROR packets and the client maps back to an exception class.
"""


class GridSyncError(Exception):
    """Base error for all grid sync exceptions."""

    code = 'Internal'

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        return {'code': self.code, 'message': self.message}


class InvalidArgumentError(GridSyncError):
    """Malformed request arguments. Never retried."""

    code = 'InvalidArgument'


class UnknownMethodError(GridSyncError):
    """The requested procedure does not exist on the server."""

    code = 'UnknownMethod'


class RemoteError(GridSyncError):
    """Any other failure reported by the server."""

    def __init__(self, message: str, code: str = 'Internal'):
        super().__init__(message, {'code': code})
        self.code = code


# Transport errors: transient, retried by the caller's policy
class TransportError(GridSyncError):
    """Communication with the peer failed."""

    code = 'Transport'


class ConnectionClosedError(TransportError):
    """The connection was closed or reset."""

    code = 'ConnectionClosed'


class CallTimeoutError(TransportError):
    """No reply arrived within the call timeout."""

    code = 'Timeout'

    def __init__(self, message: str, method: str = None, timeout: float = None):
        super().__init__(message, {'method': method, 'timeout': timeout})
        self.method = method
        self.timeout = timeout


class ProtocolError(TransportError):
    """Bytes on the wire did not form a valid packet."""

    code = 'Protocol'


# Exhaustion errors: fatal at startup
class ServerUnavailableError(GridSyncError):
    """Could not connect to the server within the allowed attempts."""

    code = 'ServerUnavailable'

    def __init__(self, message: str, address: tuple = None, attempts: int = 0):
        super().__init__(message, {'address': address, 'attempts': attempts})
        self.address = address
        self.attempts = attempts


class RegistrationError(GridSyncError):
    """Player registration failed after all retries."""

    code = 'RegistrationFailed'


_WIRE_ERRORS = {
    InvalidArgumentError.code: InvalidArgumentError,
    UnknownMethodError.code: UnknownMethodError,
}


def error_from_wire(code: str, message: str) -> GridSyncError:
    """Rebuild the exception a server reported in an ERROR packet."""
    cls = _WIRE_ERRORS.get(code)
    if cls is None:
        return RemoteError(message, code=code)
    return cls(message)
