"""
Final handler for Vireo applications.

The continuation of last resort: it runs when a request walked off the end
of the outermost router, either unanswered (404) or with an error nobody
handled.
"""

import html
import logging
import traceback
from http import HTTPStatus
from typing import Any, Awaitable, Callable, Mapping, Optional
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)

_DOCUMENT = (
    "<!DOCTYPE html>\n"
    '<html lang="en">\n'
    "<head>\n"
    '<meta charset="utf-8">\n'
    "<title>Error</title>\n"
    "</head>\n"
    "<body>\n"
    "<pre>{message}</pre>\n"
    "</body>\n"
    "</html>\n"
)


def final_handler(
    request,
    response,
    env: str = "development",
    on_error: Optional[Callable[[Any, Any], None]] = None,
) -> Callable[..., Awaitable[None]]:
    """
    Build the ``done`` continuation for one request.

    Args:
        request: The request being dispatched
        response: Its response
        env: Application environment; "production" hides error details
        on_error: Called as ``on_error(err, request)`` before an error response is sent
    """

    async def done(err: Any = None) -> None:
        if err is not None:
            status = error_status(err)
            if status is None:
                status = response.status_code if 400 <= response.status_code <= 599 else 500
                headers = None
            else:
                headers = getattr(err, "headers", None)
            message = _error_message(err, status, env)
        else:
            status = 404
            headers = None
            message = f"Cannot {request.method} {_resource_name(request)}"

        logger.debug("default %s", status)

        if err is not None and on_error is not None:
            on_error(err, request)

        if response.headers_sent:
            # too late to change anything, just close the exchange
            if not response.finished:
                await response.end()
            return

        await _send(request, response, status, headers, message)

    return done


def error_status(err: Any) -> Optional[int]:
    """Status carried by ``err`` (``status_code`` or ``status``) when it is a 4xx/5xx."""
    for attr in ("status_code", "status"):
        value = getattr(err, attr, None)
        if isinstance(value, int) and not isinstance(value, bool) and 400 <= value <= 599:
            return value
    return None


def _error_message(err: Any, status: int, env: str) -> str:
    if env != "production":
        if isinstance(err, BaseException):
            return "".join(traceback.format_exception(type(err), err, err.__traceback__)).rstrip()
        return str(err)

    return _phrase(status)


def _phrase(status: int) -> str:
    try:
        return HTTPStatus(status).phrase
    except ValueError:
        return str(status)


def _resource_name(request) -> str:
    url = getattr(request, "original_url", None) or request.url
    return urlsplit(url).path or "/"


def _document(message: str) -> str:
    body = html.escape(message, quote=False).replace("\n", "<br>").replace("  ", " &nbsp;")
    return _DOCUMENT.format(message=body)


async def _send(request, response, status: int, headers: Optional[Mapping[str, Any]], message: str) -> None:
    body = _document(message)

    # start from a clean slate
    for name in response.header_names():
        response.remove(name)

    response.status(status)
    if isinstance(headers, Mapping):
        response.set(headers)

    response.set("Content-Security-Policy", "default-src 'none'")
    response.set("X-Content-Type-Options", "nosniff")
    response.set("Content-Type", "text/html; charset=utf-8")

    data = body.encode("utf-8")
    response.set("Content-Length", len(data))
    await response.end(data)
