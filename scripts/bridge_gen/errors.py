"""
Error types

Defines the error taxonomy shared by the interface model, the marshalling
protocol and the runtime, plus the status codes of the boundary calling
convention.
"""

from typing import Optional

# Scaffolding call status codes
CALL_SUCCESS = 0
CALL_ERROR = 1
CALL_UNEXPECTED_ERROR = 2


class BridgeError(Exception):
    """Base class for all bridge_gen errors"""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            detail_str = ', '.join(f'{k}={v}' for k, v in self.details.items())
            return f'{self.message} ({detail_str})'
        return self.message


class ValidationError(BridgeError):
    """The interface model is internally inconsistent

    Always raised at generation time, before any binding is emitted.
    """


class InternalFault(BridgeError):
    """Unexpected failure inside native logic (status 2)"""


class ProtocolError(InternalFault):
    """A buffer is malformed or truncated

    Fatal to the one call in progress and surfaced to host code as an
    internal fault.
    """


class DeclaredError(BridgeError):
    """Base class of every ErrorEnum raised across the boundary"""
