"""
Chat error taxonomy.

Validation and configuration errors are raised before a stream is opened and
map straight onto HTTP status codes. Upstream errors happen mid-stream and are
turned into a terminal `error` event by the relay.
"""

from typing import Optional


class ChatError(Exception):
    """Base class. `message` is always safe to show to the client."""

    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ChatValidationError(ChatError):
    """The client sent an unusable request (missing user id, empty message...)."""

    status_code = 400


class ChatConfigurationError(ChatError):
    """The service is misconfigured, e.g. no upstream API key."""

    status_code = 500


class UpstreamError(ChatError):
    """The completion provider failed or could not be reached."""

    status_code = 502

    def __init__(self, message: str, upstream_status: Optional[int] = None):
        super().__init__(message)
        self.upstream_status = upstream_status
