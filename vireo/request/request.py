"""
Request class for Vireo framework.
"""

import ipaddress
from typing import Any, Awaitable, Callable, Dict, List, Optional, TYPE_CHECKING, Union
from urllib.parse import urlsplit

from ..extensions import Extensible
from ..proxy import all_addresses, proxy_address
from ..response import lookup_type
from ..utils import flatten, is_fresh, parse_extended_query

if TYPE_CHECKING:
    from ..application import Application
    from ..response import Response
    from ..routing import Route


class Request(Extensible):
    """
    Request object that wraps an ASGI scope for easier access to HTTP request data.

    Routing state lives in plain attributes that the router rewrites while a
    request travels through mounted routers and applications:

    - ``url``: path plus query string, relative to the current mount point
    - ``base_url``: the mount prefix consumed so far
    - ``original_url``: the url as received, never rewritten
    - ``params``: parameters captured by the matched layer

    Everything derived from headers (``ip``, ``hostname``, ``protocol``, ...)
    honours the application's "trust proxy" setting.
    """

    _capability_kind = "request"

    app: Optional["Application"]
    res: Optional["Response"]
    route: Optional["Route"]

    def __init__(
        self,
        scope: Dict[str, Any],
        receive: Optional[Callable[[], Awaitable[Dict[str, Any]]]] = None,
    ):
        """
        Initialize Request object from ASGI scope and receive callable.

        Args:
            scope: ASGI scope dictionary containing request metadata
            receive: ASGI receive callable for reading request body
        """
        self._scope = scope
        self._receive = receive
        self._raw_body: Optional[bytes] = None
        self._headers: Optional[Dict[str, str]] = None

        self.method: str = scope.get("method", "GET").upper()

        path = scope.get("raw_path")
        path = path.decode("latin-1") if isinstance(path, bytes) else scope.get("path", "/")
        query_string = scope.get("query_string", b"")
        if isinstance(query_string, bytes):
            query_string = query_string.decode("latin-1")

        self.url: str = f"{path}?{query_string}" if query_string else path
        self.original_url: str = self.url
        self.base_url: str = ""
        self.params: Dict[Any, Any] = {}
        self.route = None
        self.res = None
        self.app = None

        # Filled by body-parsing middleware
        self.body: Any = None

    @property
    def scope(self) -> Dict[str, Any]:
        return self._scope

    def _setting(self, name: str, default: Any = None) -> Any:
        if self.app is None:
            return default
        return self.app.get(name)

    # ------------------ URL ------------------

    @property
    def path(self) -> str:
        """Path part of ``url`` (e.g., '/users/1')"""
        return urlsplit(self.url).path

    @property
    def query_string(self) -> str:
        return urlsplit(self.url).query

    @property
    def query(self) -> Dict[str, Any]:
        """
        Query string parsed with the "query parser fn" setting.

        Example with the default "extended" parser:
            '?user[name]=tobi&tags=a&tags=b' -> {'user': {'name': 'tobi'}, 'tags': ['a', 'b']}
        """
        parser = self._setting("query parser fn", parse_extended_query)
        if parser is None:
            return {}
        return parser(self.query_string)

    # ------------------ HEADERS ------------------

    @property
    def headers(self) -> Dict[str, str]:
        """
        Request headers with lowercase names; repeated headers are joined with ", ".
        """
        if self._headers is None:
            headers: Dict[str, str] = {}
            for name, value in self._scope.get("headers", []):
                key = name.decode("latin-1").lower()
                text = value.decode("latin-1")
                headers[key] = f"{headers[key]}, {text}" if key in headers else text
            self._headers = headers
        return self._headers

    def get(self, name: str) -> Optional[str]:
        """
        Get a header value by name (case-insensitive).

        "Referrer" and "Referer" are interchangeable.
        """
        if not isinstance(name, str) or not name:
            raise TypeError("name argument is required to req.get")

        lower = name.lower()
        if lower in ("referer", "referrer"):
            return self.headers.get("referrer") or self.headers.get("referer")
        return self.headers.get(lower)

    header = get

    def is_(self, *types: Union[str, List[str]]) -> Union[str, bool, None]:
        """
        Check the request Content-Type against ``types``.

        Types may be extensions ("json", "html"), full MIME types, wildcards
        ("text/*", "*/json") or suffixes ("+json"). Returns the first match,
        False when nothing matches and None when the request has no body.

            # Content-Type: application/json; charset=utf-8
            req.is_("html", "json")   # -> "json"
            req.is_("application/*")  # -> "application/json"
        """
        length = (self.headers.get("content-length") or "").strip()
        if "transfer-encoding" not in self.headers and not length.isdigit():
            return None

        content_type = self.headers.get("content-type")
        actual = content_type.split(";", 1)[0].strip().lower() if content_type else ""
        if "/" not in actual:
            return False

        wanted = flatten(types)
        if not wanted:
            return actual

        for candidate in wanted:
            expected = _normalize_type(candidate)
            if expected and _mime_match(expected, actual):
                return actual if candidate.startswith("+") or "*" in candidate else candidate

        return False

    # ------------------ CONNECTION ------------------

    @property
    def _socket_address(self) -> str:
        client = self._scope.get("client")
        return client[0] if client else ""

    def _trusted(self, hop: int = 0) -> bool:
        trust = self._setting("trust proxy fn")
        return bool(trust and trust(self._socket_address, hop))

    @property
    def protocol(self) -> str:
        """
        "http" or "https"; X-Forwarded-Proto is used when the socket peer is trusted.
        """
        scheme = self._scope.get("scheme", "http")
        proto = "https" if scheme in ("https", "wss") else "http"

        if not self._trusted(0):
            return proto

        header = self.headers.get("x-forwarded-proto")
        if not header:
            return proto
        return header.split(",", 1)[0].strip()

    @property
    def secure(self) -> bool:
        return self.protocol == "https"

    @property
    def ip(self) -> str:
        """Remote address, the furthest one reachable through trusted proxies."""
        trust = self._setting("trust proxy fn")
        if trust is None:
            return self._socket_address
        return proxy_address(self._socket_address, self.headers.get("x-forwarded-for"), trust)

    @property
    def ips(self) -> List[str]:
        """Trusted X-Forwarded-For addresses, client first; empty when nothing is trusted."""
        trust = self._setting("trust proxy fn")
        if trust is None:
            return []
        addresses = all_addresses(self._socket_address, self.headers.get("x-forwarded-for"), trust)
        return list(reversed(addresses[1:]))

    @property
    def host(self) -> Optional[str]:
        """Host header (X-Forwarded-Host when trusted), including any port."""
        host = None
        if self._trusted(0):
            host = self.headers.get("x-forwarded-host")
            if host:
                # first value of a proxy chain
                host = host.split(",", 1)[0].strip()

        return host or self.headers.get("host")

    @property
    def hostname(self) -> Optional[str]:
        host = self.host
        if not host:
            return None

        # IPv6 literal support
        offset = host.index("]") + 1 if host.startswith("[") and "]" in host else 0
        index = host.find(":", offset)
        return host[:index] if index != -1 else host

    @property
    def subdomains(self) -> List[str]:
        """
        Subdomains, most specific last.

        Example with "subdomain offset" 2: "tobi.ferrets.example.com" -> ["ferrets", "tobi"]
        """
        hostname = self.hostname
        if not hostname:
            return []

        offset = self._setting("subdomain offset", 2) or 0
        if _is_ip(hostname.strip("[]")):
            parts = [hostname]
        else:
            parts = list(reversed(hostname.split(".")))
        return parts[offset:]

    @property
    def xhr(self) -> bool:
        return (self.headers.get("x-requested-with") or "").lower() == "xmlhttprequest"

    # ------------------ FRESHNESS ------------------

    @property
    def fresh(self) -> bool:
        """True when the client's cached copy matches the response being built."""
        if self.method not in ("GET", "HEAD"):
            return False

        res = self.res
        if res is None:
            return False

        status = res.status_code
        if (200 <= status < 300) or status == 304:
            return is_fresh(self.headers, {
                "etag": res.get("ETag"),
                "last-modified": res.get("Last-Modified"),
            })

        return False

    @property
    def stale(self) -> bool:
        return not self.fresh

    # ------------------ BODY ------------------

    async def read(self) -> bytes:
        """
        Receive the complete HTTP request body from the ASGI receive callable.

        The body is read once and cached.
        """
        if self._raw_body is not None:
            return self._raw_body

        body_parts: List[bytes] = []
        if self._receive is not None:
            while True:
                message = await self._receive()
                if message["type"] == "http.request":
                    body_part = message.get("body", b"")
                    if body_part:
                        body_parts.append(body_part)
                    if not message.get("more_body", False):
                        break
                elif message["type"] == "http.disconnect":
                    break

        self._raw_body = b"".join(body_parts)
        return self._raw_body

    def __repr__(self) -> str:
        return f"<Request {self.method} {self.url}>"


def _is_ip(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


def _normalize_type(value: str) -> Optional[str]:
    if not isinstance(value, str) or not value:
        return None
    if value == "urlencoded":
        return "application/x-www-form-urlencoded"
    if value == "multipart":
        return "multipart/*"
    if value.startswith("+"):
        return "*/*" + value
    return lookup_type(value).lower()


def _mime_match(expected: str, actual: str) -> bool:
    """Match ``actual`` against ``expected``, which may hold "*" wildcards and a "*+suffix" subtype."""
    expected_type, _, expected_sub = expected.partition("/")
    actual_type, _, actual_sub = actual.partition("/")

    if expected_type != "*" and expected_type != actual_type:
        return False

    if expected_sub.startswith("*+"):
        return actual_sub.endswith(expected_sub[1:])

    return expected_sub == "*" or expected_sub == actual_sub
