"""
Custom exceptions for the Catenis API client library.
"""

import json
from http import HTTPStatus
from typing import Optional


class CatenisClientError(Exception):
    """Base exception for Catenis client errors."""
    pass


class ClientError(CatenisClientError):
    """Raised on local failures (bad request data, connection problems, etc.)."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self):
        if self.cause is not None:
            return f"{self.message}: {self.cause}"
        return self.message


class ConfigurationError(ClientError):
    """Raised when client configuration is invalid."""
    pass


class TransportError(ClientError):
    """Raised when an HTTP request or WebSocket operation fails."""
    pass


class TransportTimeout(TransportError):
    """Raised when no WebSocket frame arrives within the read timeout."""
    pass


class TransportClosed(TransportError):
    """Raised when the WebSocket connection is already closed."""
    pass


class NotificationParseError(ClientError):
    """Raised when a notification message cannot be parsed."""
    pass


class ApiError(CatenisClientError):
    """Raised when the Catenis API returns a non-success response."""

    def __init__(self, status_code: int, body_message: Optional[str] = None,
                 catenis_message: Optional[str] = None):
        self.status_code = status_code
        self.body_message = body_message
        self.catenis_message = catenis_message
        super().__init__(self.error_message)

    @property
    def status_message(self) -> Optional[str]:
        try:
            return HTTPStatus(self.status_code).phrase
        except ValueError:
            return None

    @property
    def error_message(self) -> str:
        description = self.catenis_message or self.body_message or self.status_message or ''
        return f"[{self.status_code}] - {description}"

    @classmethod
    def from_response(cls, response) -> 'ApiError':
        """
        Build error from a non-success ``requests.Response``.

        The Catenis API reports errors as ``{"status": "error", "message": ...}``;
        anything else is kept as the raw body text.
        """
        body = response.text or None
        catenis_message = None

        if body:
            try:
                parsed = json.loads(body)
            except ValueError:
                parsed = None

            if isinstance(parsed, dict) and isinstance(parsed.get('message'), str) \
                    and 'status' in parsed:
                catenis_message = parsed['message']

        return cls(
            response.status_code,
            body_message=None if catenis_message else body,
            catenis_message=catenis_message
        )
