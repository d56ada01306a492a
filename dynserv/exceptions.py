"""
Copyright (C) 2026 Garudex Labs.  All Rights Reserved.
Dynserv, a product of Garudex Labs

Exception hierarchy for Dynserv.

All custom exceptions inherit from DynservError base class. Errors raised
while admitting or relaying a request derive from ProxyError, which knows
how to render itself as the JSON error body returned to the caller.
"""

from typing import Any, Dict, Optional

from fastapi import status
from fastapi.responses import JSONResponse


class DynservError(Exception):
    """Base exception for all Dynserv errors."""
    pass


# Configuration Errors
class ConfigurationError(DynservError):
    """Base exception for configuration-related errors."""
    pass


class InvalidConfigurationError(ConfigurationError):
    """Raised when configuration is invalid or malformed."""
    pass


# Key lookup Errors
class ConfigStoreUnavailableError(DynservError):
    """Raised when a named config store cannot be opened."""
    pass


# Connection Errors
class CallerDisconnectedError(DynservError):
    """Raised when the caller goes away before the upstream answered."""
    pass


# Proxy Errors
class ProxyError(DynservError):
    """
    Base exception for every rejection path of the gateway.

    Each subclass fixes the error kind and HTTP status. Instances carry the
    fields of the JSON body; fields left as None are omitted.

    Attributes:
        kind: Stable error kind name (e.g. "Unauthorized")
        status_code: HTTP status returned to the caller
        error: Value of the "error" field
        message: Optional "message" field
        details: Optional "details" field
        usage: Optional "usage" field
        target: Optional "target" field (caller-supplied URL, echoed back)
    """

    kind = "ProxyError"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        error: str,
        message: Optional[str] = None,
        details: Optional[str] = None,
        usage: Optional[str] = None,
        target: Optional[str] = None,
    ):
        super().__init__(details or message or error)
        self.error = error
        self.message = message
        self.details = details
        self.usage = usage
        self.target = target

    def to_dict(self) -> Dict[str, Any]:
        """Build the JSON error body."""
        body: Dict[str, Any] = {"error": self.error}
        for field_name in ("message", "details", "usage", "target"):
            value = getattr(self, field_name)
            if value is not None:
                body[field_name] = value
        return body

    def to_response(self) -> JSONResponse:
        """Render the error as an application/json response."""
        return JSONResponse(status_code=self.status_code, content=self.to_dict())


class UnauthorizedError(ProxyError):
    """Raised when the API key is missing or does not match."""

    kind = "Unauthorized"
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self):
        super().__init__("Unauthorized", message="Invalid or missing API key")


class MissingParameterError(ProxyError):
    """Raised when the target URL query parameter is absent or empty."""

    kind = "MissingParameter"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self):
        super().__init__(
            "Missing 'url' query parameter",
            usage="Add ?url=https://example.com/path to your request",
        )


class InvalidURLError(ProxyError):
    """Raised when the target URL cannot be parsed as an absolute URL."""

    kind = "InvalidURL"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, details: Optional[str] = None, error: str = "Invalid URL provided"):
        super().__init__(error, details=details)


class UnsupportedSchemeError(ProxyError):
    """Raised when the target URL does not use https."""

    kind = "UnsupportedScheme"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, scheme: str = ""):
        super().__init__(
            "Only https URLs are supported",
            usage="Use https:// URLs (e.g., ?url=https://example.com/path)",
        )
        self.scheme = scheme


class ForbiddenHostError(ProxyError):
    """Raised when the target host is private or internal."""

    kind = "Forbidden"
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, hostname: str = "", rule: Optional[str] = None):
        super().__init__(
            "Forbidden",
            message="Requests to private or internal hosts are not allowed",
        )
        self.hostname = hostname
        self.rule = rule


class UpstreamFailureError(ProxyError):
    """Raised when the upstream cannot be reached or the transfer fails."""

    kind = "UpstreamFailure"
    status_code = status.HTTP_502_BAD_GATEWAY

    CREATE_BACKEND = "Failed to create backend"
    CREATE_REQUEST = "Failed to create origin request"
    FETCH = "Failed to fetch from origin"

    def __init__(self, details: str, target: Optional[str] = None, stage: str = FETCH):
        super().__init__(stage, details=details, target=target)
        self.stage = stage
