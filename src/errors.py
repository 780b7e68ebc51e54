"""
Error types raised while talking to the ISDA Soil API.

Every error derives from ISDAError so the tool layer can catch them with a
single except clause and turn them into a user-facing failure message.

    ISDAError
    ├── ValidationError          bad coordinate/depth, raised before any request
    ├── AuthenticationError      the /login exchange was rejected
    ├── ProtocolError            upstream answered with an unexpected body
    ├── RequestTimeoutError      a request exceeded the configured timeout
    ├── NetworkError             any other transport failure
    ├── APIError                 non-success status from a data endpoint
    └── ServiceUnavailableError  the client is not configured
"""


class ISDAError(Exception):
    """
    Base class for all ISDA Soil API client errors.

    Attributes:
        message: Human-readable error description, safe to show to the caller
    """

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(ISDAError):
    """Raised when a coordinate or depth filter is out of range."""


class AuthenticationError(ISDAError):
    """
    Raised when the login endpoint rejects the configured credentials.

    Attributes:
        status_code: HTTP status returned by the login endpoint
        body: Response body text (or the status reason when the body is empty)
    """

    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"ISDA Soil API authentication error ({status_code}): {body}")


class ProtocolError(ISDAError):
    """Raised when a response is not shaped the way the API documents it."""


class RequestTimeoutError(ISDAError):
    """
    Raised when a request to the API does not complete in time.

    Attributes:
        timeout: The timeout that was exceeded, in seconds
    """

    def __init__(self, message: str, timeout: float):
        self.timeout = timeout
        super().__init__(message)


class NetworkError(ISDAError):
    """Raised on connection failures and other transport errors."""


class APIError(ISDAError):
    """
    Raised when a data endpoint answers with a non-success status.

    Attributes:
        status_code: HTTP status returned by the endpoint
        body: Response body text (or the status reason when the body is empty)
    """

    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"ISDA Soil API error ({status_code}): {body}")


class ServiceUnavailableError(ISDAError):
    """Raised when no client could be built, e.g. credentials are missing."""
