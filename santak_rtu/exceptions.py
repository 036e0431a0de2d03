"""
Connector Exceptions - Custom exceptions for connector-specific errors.
"""
from typing import Any, Dict, Optional


class ConnectorException(Exception):
    """
    Base exception for all connector errors.

    All connector exceptions should inherit from this class to allow
    for consistent error handling across sessions and the plugin API.
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Error body used in the plugin API response envelope."""
        return {
            'error': self.code,
            'message': self.message,
            'details': self.details
        }


class MalformedFrameError(ConnectorException):
    """Raised when a frame does not have the token count of its kind."""

    def __init__(self, kind: str, expected: int, actual: int):
        self.kind = kind
        self.expected = expected
        self.actual = actual
        super().__init__(
            message=f"{kind} frame expects {expected} tokens, got {actual}",
            code='MALFORMED_FRAME',
            details={'kind': kind, 'expected': expected, 'actual': actual}
        )


class ExternalServiceException(ConnectorException):
    """Raised when a platform HTTP or MQTT call fails."""

    def __init__(
        self,
        service: str,
        message: str,
        original_error: Optional[str] = None
    ):
        self.service = service
        super().__init__(
            message=f"{service} call failed: {message}",
            code='EXTERNAL_SERVICE_ERROR',
            details={
                'service': service,
                'original_error': original_error
            }
        )
