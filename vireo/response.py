"""
Response class for Vireo framework.
"""

import json
import mimetypes
import os
import re
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime
from http import HTTPStatus
from typing import Any, Callable, Awaitable, Dict, List, Mapping, Optional, Tuple, Union
from urllib.parse import quote

from .exceptions import HeadersSentError
from .extensions import Extensible

HeaderValue = Union[str, List[str]]

_CHARSET_RE = re.compile(r";\s*charset\s*=", re.IGNORECASE)
_CHARSET_PARAM_RE = re.compile(r";\s*charset\s*=\s*[^;]*", re.IGNORECASE)
_CALLBACK_RE = re.compile(r"[^\[\]\w$.]")

# Types that get "; charset=utf-8" appended when set without one
_TEXT_TYPES_RE = re.compile(r"^(text/|application/(javascript|json))", re.IGNORECASE)

_COOKIE_NAME_RE = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")
# characters encodeURIComponent leaves alone
_COOKIE_SAFE = "!~*'()"
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_SHORT_TYPES = {
    "html": "text/html",
    "text": "text/plain",
    "txt": "text/plain",
    "json": "application/json",
    "js": "application/javascript",
    "bin": "application/octet-stream",
}


def lookup_type(value: str) -> str:
    """Resolve "html", ".json", "png", ... to a full MIME type; full types pass through."""
    if "/" in value:
        return value

    ext = value.lstrip(".").lower()
    if ext in _SHORT_TYPES:
        return _SHORT_TYPES[ext]

    guessed, _ = mimetypes.guess_type(f"file.{ext}", strict=False)
    return guessed or "application/octet-stream"


def _set_charset(content_type: str, charset: str) -> str:
    base = _CHARSET_PARAM_RE.sub("", content_type)
    return f"{base}; charset={charset}"


def _encode_url(url: str) -> str:
    # leave valid escapes and reserved characters alone
    return quote(url, safe="!#$%&'()*+,/:;=?@[]~")


def _http_date(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return format_datetime(value.astimezone(timezone.utc), usegmt=True)


def _content_disposition(filename: Optional[str]) -> str:
    """Build an "attachment" Content-Disposition, with a UTF-8 filename* for non-Latin-1 names."""
    if not filename:
        return "attachment"

    name = os.path.basename(filename)
    try:
        name.encode("latin-1")
    except UnicodeEncodeError:
        fallback = name.encode("latin-1", "replace").decode("latin-1")
        encoded = quote(name, safe="!#$&+.^_`|~-")
        return f"attachment; filename={_quote_header(fallback)}; filename*=UTF-8''{encoded}"

    return f"attachment; filename={_quote_header(name)}"


def _quote_header(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


class Response(Extensible):
    """
    Response writer over an ASGI ``send`` callable.

    Header setters return the response for chaining; the writers
    (``send``, ``json``, ``redirect``, ``end``, ...) are coroutines:

        await res.status(201).set("Location", "/users/1").json({"id": 1})

    Attributes:
        status_code (int): Status that will be sent, 200 by default
        headers_sent (bool): The start message went out; headers are frozen
        finished (bool): The final body message went out
        locals (dict): Response-scoped template locals
        req: The request being answered
    """

    _capability_kind = "response"

    def __init__(
        self,
        send: Callable[[Dict[str, Any]], Awaitable[None]],
        request: Any = None,
    ):
        self._send = send
        self._headers: Dict[str, Tuple[str, HeaderValue]] = {}
        self.status_code = 200
        self.headers_sent = False
        self.finished = False
        self.locals: Dict[str, Any] = {}
        self.req = request
        self.app = None

    def _setting(self, name: str, default: Any = None) -> Any:
        if self.app is None:
            return default
        return self.app.get(name)

    @property
    def _method(self) -> str:
        return getattr(self.req, "method", "GET")

    # ------------------ STATUS & HEADERS ------------------

    def status(self, code: int) -> "Response":
        """Set the status code (supports method chaining)."""
        if isinstance(code, bool) or not isinstance(code, int):
            raise TypeError(f"Invalid status code: {code!r}. Status code must be an integer.")
        if not 100 <= code <= 999:
            raise ValueError(f"Invalid status code: {code}. Status code must be between 100 and 999.")

        self.status_code = code
        return self

    def set(self, field: Union[str, Mapping[str, Any]], value: Any = None) -> "Response":
        """
        Set a header, or several from a mapping (supports method chaining).

        Lists set a repeated header. A Content-Type without a charset gets
        "utf-8" when it is a text type.
        """
        if isinstance(field, Mapping):
            for name, item in field.items():
                self.set(name, item)
            return self

        self._check_writable()

        if isinstance(value, (list, tuple)):
            header: HeaderValue = [str(item) for item in value]
        else:
            header = str(value)

        if field.lower() == "content-type":
            if isinstance(header, list):
                raise TypeError("Content-Type cannot be set to a list")
            if not _CHARSET_RE.search(header) and _TEXT_TYPES_RE.match(header):
                header = f"{header}; charset=utf-8"

        self._headers[field.lower()] = (field, header)
        return self

    header = set

    def get(self, field: str) -> Optional[HeaderValue]:
        """Get a response header value by name (case-insensitive)."""
        entry = self._headers.get(field.lower())
        return entry[1] if entry else None

    def has(self, field: str) -> bool:
        return field.lower() in self._headers

    def header_names(self) -> List[str]:
        return [name for name, _ in self._headers.values()]

    def remove(self, field: str) -> "Response":
        self._check_writable()
        self._headers.pop(field.lower(), None)
        return self

    def append(self, field: str, value: Any) -> "Response":
        """Append to a header, turning it into a repeated header when it exists."""
        prev = self.get(field)
        if prev is None:
            return self.set(field, value)

        current = prev if isinstance(prev, list) else [prev]
        extra = list(value) if isinstance(value, (list, tuple)) else [value]
        return self.set(field, current + extra)

    def type(self, content_type: str) -> "Response":
        """Set Content-Type from a MIME type or an extension ("json", ".html")."""
        return self.set("Content-Type", lookup_type(content_type))

    content_type = type

    def attachment(self, filename: Optional[str] = None) -> "Response":
        """Set Content-Disposition to "attachment", typed from ``filename``'s extension."""
        if filename:
            ext = os.path.splitext(filename)[1]
            if ext:
                self.type(ext)

        return self.set("Content-Disposition", _content_disposition(filename))

    def location(self, url: str) -> "Response":
        """Set the Location header; "back" means the Referrer (or "/")."""
        if url == "back":
            url = (self.req.get("Referrer") if self.req is not None else None) or "/"
        return self.set("Location", _encode_url(url))

    def vary(self, field: str) -> "Response":
        """Add ``field`` to the Vary header, once."""
        current = self.get("Vary") or ""
        if isinstance(current, list):
            current = ", ".join(current)

        if current.strip() == "*":
            return self

        fields = [item.strip() for item in current.split(",") if item.strip()]
        for name in (item.strip() for item in field.split(",")):
            if name == "*":
                return self.set("Vary", "*")
            if name and name.lower() not in (item.lower() for item in fields):
                fields.append(name)

        return self.set("Vary", ", ".join(fields))

    def links(self, links: Mapping[str, str]) -> "Response":
        """
        Add a Link header.

        Example:
            res.links({"next": "/users?page=2", "last": "/users?page=5"})
            -> Link: </users?page=2>; rel="next", </users?page=5>; rel="last"
        """
        value = ", ".join(f'<{url}>; rel="{rel}"' for rel, url in links.items())
        current = self.get("Link")
        if current:
            value = f"{current}, {value}"
        return self.set("Link", value)

    def cookie(
        self,
        name: str,
        value: Any,
        max_age: Optional[int] = None,
        expires: Optional[datetime] = None,
        path: Optional[str] = "/",
        domain: Optional[str] = None,
        secure: bool = False,
        httponly: bool = False,
        samesite: Optional[str] = None,
    ) -> "Response":
        """
        Append a Set-Cookie header (supports method chaining).

        Args:
            name: Cookie name
            value: Cookie value; dicts and lists are stored as "j:" + JSON
            max_age: Cookie lifetime in seconds, also written as Expires
            expires: Cookie expiration datetime
            path: Cookie path, "/" by default
            domain: Cookie domain
            secure: Whether cookie requires HTTPS
            httponly: Whether cookie is HTTP-only
            samesite: SameSite attribute ('Strict', 'Lax', or 'None')

        Returns:
            self for method chaining
        """
        if not isinstance(name, str) or not _COOKIE_NAME_RE.match(name):
            raise TypeError(f"argument name is invalid: {name!r}")

        if isinstance(value, (dict, list)):
            value = "j:" + json.dumps(value, separators=(",", ":"))

        cookie_parts = [f"{name}={quote(str(value), safe=_COOKIE_SAFE)}"]

        if max_age is not None:
            cookie_parts.append(f"Max-Age={int(max_age)}")
            expires = datetime.now(timezone.utc) + timedelta(seconds=max_age)
        if expires is not None:
            cookie_parts.append(f"Expires={_http_date(expires)}")
        if path:
            cookie_parts.append(f"Path={path}")
        if domain:
            cookie_parts.append(f"Domain={domain}")
        if secure:
            cookie_parts.append("Secure")
        if httponly:
            cookie_parts.append("HttpOnly")
        if samesite:
            cookie_parts.append(f"SameSite={samesite.capitalize()}")

        return self.append("Set-Cookie", "; ".join(cookie_parts))

    def clear_cookie(
        self, name: str, path: Optional[str] = "/", domain: Optional[str] = None, **options: Any
    ) -> "Response":
        """Expire cookie ``name``; ``path`` and ``domain`` must match the ones it was set with."""
        options.pop("max_age", None)
        options.pop("expires", None)
        return self.cookie(name, "", expires=_EPOCH, path=path, domain=domain, **options)

    def _check_writable(self) -> None:
        if self.headers_sent:
            raise HeadersSentError("Cannot set headers after they are sent to the client")

    def _raw_headers(self) -> List[List[bytes]]:
        headers: List[List[bytes]] = []
        for name, value in self._headers.values():
            for item in value if isinstance(value, list) else [value]:
                headers.append([name.lower().encode("latin-1"), item.encode("latin-1")])
        return headers

    # ------------------ WRITERS ------------------

    async def send(self, body: Any = None) -> None:
        """
        Send a response body.

        - str: text/html unless a Content-Type is already set, utf-8 charset
        - bytes: application/octet-stream unless a Content-Type is already set
        - None: empty body
        - anything else: serialized with ``json``

        GET and HEAD responses get an ETag from the "etag fn" setting and a
        304 when the request is fresh.
        """
        if body is not None and not isinstance(body, (str, bytes, bytearray, memoryview)):
            await self.json(body)
            return

        if isinstance(body, str):
            content_type = self.get("Content-Type")
            if not content_type:
                self.type("html")
            elif isinstance(content_type, str):
                self.set("Content-Type", _set_charset(content_type, "utf-8"))
            data = body.encode("utf-8")
        elif body is None:
            data = b""
        else:
            data = bytes(body)
            if not self.get("Content-Type"):
                self.type("bin")

        self.set("Content-Length", len(data))

        etag_fn = self._setting("etag fn")
        if etag_fn is not None and self._method in ("GET", "HEAD") and not self.get("ETag"):
            tag = etag_fn(data)
            if tag:
                self.set("ETag", tag)

        if self.req is not None and getattr(self.req, "fresh", False):
            self.status_code = 304

        if self.status_code in (204, 304):
            for field in ("Content-Type", "Content-Length", "Transfer-Encoding"):
                self._headers.pop(field.lower(), None)
            data = b""

        if self.status_code == 205:
            self.set("Content-Length", "0")
            self._headers.pop("transfer-encoding", None)
            data = b""

        await self.end(data)

    async def json(self, obj: Any) -> None:
        """Send ``obj`` as JSON, honouring "json spaces", "json replacer" and "json escape"."""
        body = _stringify(
            obj,
            self._setting("json replacer"),
            self._setting("json spaces"),
            self._setting("json escape"),
        )
        if not self.get("Content-Type"):
            self.set("Content-Type", "application/json")
        await self.send(body)

    async def jsonp(self, obj: Any) -> None:
        """Send ``obj`` as JSON, wrapped in the callback named by the query string."""
        body = _stringify(
            obj,
            self._setting("json replacer"),
            self._setting("json spaces"),
            self._setting("json escape"),
        )
        callback_name = self._setting("jsonp callback name", "callback")
        callback = self.req.query.get(callback_name) if self.req is not None else None
        if isinstance(callback, list):
            callback = callback[0] if callback else None

        if not self.get("Content-Type"):
            self.set("X-Content-Type-Options", "nosniff")
            self.set("Content-Type", "application/json")

        if isinstance(callback, str) and callback:
            self.set("X-Content-Type-Options", "nosniff")
            self.set("Content-Type", "text/javascript")

            callback = _CALLBACK_RE.sub("", callback)
            body = body.replace("\u2028", "\\u2028").replace("\u2029", "\\u2029")
            body = f"/**/ typeof {callback} === 'function' && {callback}({body});"

        await self.send(body)

    async def send_status(self, code: int) -> None:
        """Set the status and send its reason phrase as the body."""
        self.status(code)
        try:
            phrase = HTTPStatus(code).phrase
        except ValueError:
            phrase = str(code)
        self.type("txt")
        await self.send(phrase)

    async def redirect(self, url: str, status: int = 302) -> None:
        """Redirect to ``url`` with a short body describing the redirect."""
        if isinstance(url, int) and isinstance(status, str):
            # redirect(301, "/new") ordering
            url, status = status, url

        self.location(url)
        address = self.get("Location")

        try:
            phrase = HTTPStatus(status).phrase
        except ValueError:
            phrase = str(status)

        accept = self.req.get("Accept") if self.req is not None else None
        self.status(status)
        if accept and "html" in accept:
            href = _escape_html(address)
            self.type("html")
            await self.send(f"<p>{phrase}. Redirecting to <a href=\"{href}\">{href}</a></p>")
        else:
            self.type("txt")
            await self.send(f"{phrase}. Redirecting to {address}")

    async def render(self, view: str, options: Optional[Dict[str, Any]] = None) -> None:
        """Render ``view`` with the application's engines and send the result as HTML."""
        if self.app is None:
            raise RuntimeError("Response is not bound to an application")

        options = dict(options or {})
        options["_locals"] = self.locals
        html = await self.app.render(view, options)
        await self.send(html)

    async def write(self, chunk: Union[str, bytes]) -> None:
        """Stream a body chunk; the first call sends the status line and headers."""
        if self.finished:
            raise HeadersSentError("Cannot write to a finished response")

        data = chunk.encode("utf-8") if isinstance(chunk, str) else bytes(chunk)
        await self._start()
        if self._method != "HEAD":
            await self._send({"type": "http.response.body", "body": data, "more_body": True})

    async def end(self, body: Union[str, bytes, None] = None) -> None:
        """Finish the response, sending the headers first if nothing went out yet."""
        if self.finished:
            raise HeadersSentError("Cannot write to a finished response")

        data = body.encode("utf-8") if isinstance(body, str) else bytes(body or b"")
        if self._method == "HEAD":
            data = b""

        await self._start()
        self.finished = True
        await self._send({"type": "http.response.body", "body": data, "more_body": False})

    async def _start(self) -> None:
        if self.headers_sent:
            return
        self.headers_sent = True
        await self._send(
            {
                "type": "http.response.start",
                "status": self.status_code,
                "headers": self._raw_headers(),
            }
        )

    def __repr__(self) -> str:
        return f"<Response {self.status_code} sent={self.headers_sent}>"


def _stringify(obj: Any, replacer: Optional[Callable[[Any], Any]], spaces: Any, escape: Any) -> str:
    indent = spaces if isinstance(spaces, (int, str)) and spaces else None
    separators = (",", ": ") if indent is not None else (",", ":")
    body = json.dumps(obj, default=replacer, indent=indent, separators=separators, ensure_ascii=False)

    if escape:
        body = body.replace("<", "\\u003c").replace(">", "\\u003e").replace("&", "\\u0026")

    return body


def _escape_html(value: Any) -> str:
    return (
        str(value)
        .replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&#39;")
    )
