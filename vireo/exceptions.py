from http import HTTPStatus
from typing import Dict, Optional


class VireoError(Exception):
    """Base class for errors raised by the framework itself."""


class HTTPError(VireoError):
    """Error carrying the HTTP status the final handler should answer with."""

    def __init__(
        self,
        status_code: int = 500,
        message: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        if message is None:
            message = HTTPStatus(status_code).phrase
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.headers = headers or {}

    @property
    def status(self) -> int:
        return self.status_code

    @property
    def expose(self) -> bool:
        """Client errors are safe to show to the caller, server errors are not."""
        return self.status_code < 500

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.status_code}: {self.message!r}>"


class BadRequest(HTTPError):
    def __init__(self, message: str = "Bad Request", headers: Optional[Dict[str, str]] = None):
        super().__init__(400, message, headers)


class NotFound(HTTPError):
    def __init__(self, message: str = "Not Found", headers: Optional[Dict[str, str]] = None):
        super().__init__(404, message, headers)


class MethodNotAllowed(HTTPError):
    def __init__(self, message: str = "Method Not Allowed", headers: Optional[Dict[str, str]] = None):
        super().__init__(405, message, headers)


class ParamDecodeError(BadRequest):
    """A captured path parameter is not valid percent-encoded UTF-8."""

    def __init__(self, value: str):
        super().__init__(f"Failed to decode param '{value}'")
        self.value = value


class RejectedError(VireoError):
    """An awaitable returned by a handler was cancelled without an error."""

    def __init__(self, message: str = "Rejected promise"):
        super().__init__(message)


class SettingError(VireoError, TypeError):
    """A setting was given a value that cannot be compiled."""


class ViewError(VireoError):
    """A view could not be resolved or has no engine."""


class HeadersSentError(VireoError, RuntimeError):
    """The response was already finished when something tried to write to it."""
