"""
Error taxonomy shared by the Query API and the realtime gateway.

Each error carries an HTTP status for the REST path and a category string
that is echoed in `error` events on the live channel.
"""

from typing import Optional


class ChatError(Exception):
    """Base exception for the messaging core"""

    status_code: int = 500
    category: str = "internal"

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class Unauthenticated(ChatError):
    """Missing or invalid bearer credential"""

    status_code = 401
    category = "unauthenticated"

    def __init__(self, message: str = "Could not validate credentials"):
        super().__init__(message)


class Forbidden(ChatError):
    """Authenticated, but not a participant of the conversation"""

    status_code = 403
    category = "forbidden"

    def __init__(self, message: str = "You are not part of this conversation"):
        super().__init__(message)


class NotFound(ChatError):
    """Referenced conversation or counterparty does not exist"""

    status_code = 404
    category = "not_found"

    def __init__(self, resource: str, id: Optional[str] = None):
        message = f"{resource} not found"
        if id:
            message += f" with id: {id}"
        super().__init__(message)


class ValidationFailed(ChatError):
    """Empty content, missing identifiers and similar input errors"""

    status_code = 422
    category = "validation"


class PersistenceFailure(ChatError):
    """The document store was unavailable or rejected a write"""

    status_code = 503
    category = "persistence"
