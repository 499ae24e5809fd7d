"""
Layer class for Vireo routing.

A Layer pairs a path matcher with a single handler. It is the unit of both
a Router's middleware stack and a Route's per-method stack.
"""

import logging
import re
from typing import Any, Callable, Dict, List, Optional, TYPE_CHECKING
from urllib.parse import unquote

from ..exceptions import ParamDecodeError
from ..handlers import invoke, is_error_handler
from .path import PathKey, PathPattern, compile_path

if TYPE_CHECKING:
    from .route import Route

logger = logging.getLogger(__name__)

_BAD_ESCAPE_RE = re.compile(r"%(?![0-9A-Fa-f]{2})")


class Layer:
    """
    A path pattern bound to one handler.

    Attributes:
        handle: The handler (a plain callable or an ErrorHandler)
        name: Handler name, used in debug output
        regexp: Compiled matcher for the path pattern
        keys: Keys of the matcher's capturing groups, in order
        method: Lower-case HTTP method when the layer belongs to a Route
        route: The Route this layer dispatches to, when created by Router.route()
        params: Parameters captured by the last successful match, else None
        path: Path prefix consumed by the last successful match, else None
    """

    def __init__(
        self,
        path: PathPattern,
        handle: Callable[..., Any],
        sensitive: bool = False,
        strict: bool = False,
        end: bool = True,
    ):
        logger.debug("new layer %r", path)
        self.handle = handle
        self.name = getattr(handle, "__name__", "<anonymous>")
        self.method: Optional[str] = None
        self.route: Optional["Route"] = None
        self.params: Optional[Dict[Any, Any]] = None
        self.path: Optional[str] = None

        self.keys: List[PathKey]
        self.regexp, self.keys = compile_path(path, sensitive=sensitive, strict=strict, end=end)

        self._fast_star = path == "*"
        self._fast_slash = path == "/" and not end

    @property
    def is_error_handler(self) -> bool:
        return is_error_handler(self.handle)

    def match(self, path: Optional[str]) -> bool:
        """
        Check if this layer matches ``path``; on success populate ``params``
        and ``path``.

        Raises:
            ParamDecodeError: If a captured value is not valid percent-encoding
        """
        match = None

        if path is not None:
            # non-ending "/" matches everything
            if self._fast_slash:
                self.params = {}
                self.path = ""
                return True

            # "*" captures the whole path in a single parameter
            if self._fast_star:
                self.params = {0: decode_param(path)}
                self.path = path
                return True

            match = self.regexp.match(path)

        if match is None:
            self.params = None
            self.path = None
            return False

        params: Dict[Any, Any] = {}
        for key, raw in zip(self.keys, match.groups()):
            value = decode_param(raw)
            # a later non-participating group never overwrites a captured value
            if value is not None or key.name not in params:
                params[key.name] = value

        self.params = params
        self.path = match.group(0)
        return True

    async def handle_request(self, request, response, next) -> Any:
        """
        Run a request handler; error handlers are skipped.

        Returns the step left pending, for ``run`` to continue with.
        """
        if self.is_error_handler:
            return next()

        return await invoke(self.handle, (request, response), next)

    async def handle_error(self, error, request, response, next) -> Any:
        """Offer ``error`` to an error handler; request handlers pass it on."""
        if not self.is_error_handler:
            return next(error)

        return await invoke(self.handle, (error, request, response), next)

    def __repr__(self) -> str:
        method = f" {self.method.upper()}" if self.method else ""
        return f"<Layer{method} {self.regexp.pattern!r} {self.name}>"


def decode_param(value: Optional[str]) -> Optional[str]:
    """Percent-decode a captured value, rejecting malformed escapes."""
    if not isinstance(value, str) or not value:
        return value

    if "%" not in value:
        return value

    if _BAD_ESCAPE_RE.search(value):
        raise ParamDecodeError(value)

    try:
        return unquote(value, errors="strict")
    except UnicodeDecodeError as exc:
        raise ParamDecodeError(value) from exc
