"""Error taxonomy shared by the messaging core and its transports.

Service code raises these; the realtime session reports them to the
originating connection as ``message-error`` frames and the HTTP endpoints map
them onto status codes.
"""

from __future__ import annotations


class MurmurError(RuntimeError):
    """Base exception for failures that are reported back to a client.

    Attributes:
        message: Client-safe description of the failure.
        code: Stable machine-readable identifier.
    """

    code = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(MurmurError):
    """Raised when a required field is missing, empty or malformed."""

    code = "validation_error"


class AuthorizationError(MurmurError):
    """Raised when the friendship gate or identity checks reject an operation."""

    code = "authorization_error"


class NotFoundError(MurmurError):
    """Raised when a referenced user, friendship or message does not exist."""

    code = "not_found"


class InfrastructureError(MurmurError):
    """Raised when a store or lookup call fails.

    The wrapped exception is chained as ``__cause__`` for logging; the client
    only ever sees the generic message.
    """

    code = "infrastructure_error"


__all__ = [
    "AuthorizationError",
    "InfrastructureError",
    "MurmurError",
    "NotFoundError",
    "ValidationError",
]
