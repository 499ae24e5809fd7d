"""
Route class for Vireo framework.

A Route is a fixed path with a per-method stack of handlers.
"""

import logging
from typing import Any, Callable, Dict, List

from ..handlers import ROUTE, ROUTER, is_signal, run
from ..methods import METHODS, attribute_name
from ..utils import flatten
from .layer import Layer

logger = logging.getLogger(__name__)


class Route:
    """
    Represents a single path and the handlers registered for its HTTP methods.

    Handlers are appended with the verb methods (``get``, ``post``, ...) or
    with ``all``. Every call returns the route so registrations chain:

        app.route("/book").all(authenticate).get(show_book).post(update_book)

    Attributes:
        path (str): The path pattern this route was created for.
        stack (List[Layer]): One Layer per registered handler, in order.
        methods (Dict[str, bool]): Lower-case methods with at least one handler;
                                   the "_all" key is set once ``all`` was used.
    """

    def __init__(self, path: Any):
        logger.debug("new route %r", path)
        self.path = path
        self.stack: List[Layer] = []
        self.methods: Dict[str, bool] = {}

    def handles_method(self, method: str) -> bool:
        """Determine if the route handles a given method."""
        if self.methods.get("_all"):
            return True

        name = method.lower()
        if name == "head" and not self.methods.get("head"):
            name = "get"

        return bool(self.methods.get(name))

    def allowed_methods(self) -> List[str]:
        """Supported HTTP methods, upper-cased, with an implicit HEAD for GET."""
        methods = [name for name in self.methods if name != "_all"]

        if self.methods.get("get") and not self.methods.get("head"):
            methods.append("head")

        return [name.upper() for name in methods]

    async def dispatch(self, request, response, done: Callable[..., Any]) -> None:
        """Dispatch ``request``/``response`` into this route's stack."""
        await run(self.walk(request, response, done))

    def walk(self, request, response, done: Callable[..., Any]) -> Any:
        """Start a dispatch and return its first step, for ``run`` to drive."""
        stack = self.stack
        if not stack:
            return done()

        method = request.method.lower()
        if method == "head" and not self.methods.get("head"):
            method = "get"

        request.route = self
        idx = 0

        async def next(err=None):
            nonlocal idx

            # signal to exit route
            if is_signal(err, ROUTE):
                return done()

            # signal to exit router
            if is_signal(err, ROUTER):
                return done(err)

            while idx < len(stack):
                layer = stack[idx]
                idx += 1
                if layer.method and layer.method != method:
                    continue

                if err is not None:
                    return await layer.handle_error(err, request, response, next)
                return await layer.handle_request(request, response, next)

            return done(err)

        return next()

    def all(self, *handlers) -> "Route":
        """Add handlers for every HTTP method."""
        for handle in self._check_handlers("all", handlers):
            layer = Layer("/", handle)
            layer.method = None

            self.methods["_all"] = True
            self.stack.append(layer)

        return self

    def add(self, method: str, *handlers) -> "Route":
        """Add handlers for ``method``."""
        method = method.lower()
        for handle in self._check_handlers(attribute_name(method), handlers):
            logger.debug("%s %r", method, self.path)
            layer = Layer("/", handle)
            layer.method = method

            self.methods[method] = True
            self.stack.append(layer)

        return self

    @staticmethod
    def _check_handlers(name: str, handlers) -> List[Callable[..., Any]]:
        handles = flatten(handlers)
        for handle in handles:
            if not callable(handle):
                raise TypeError(
                    f"Route.{name}() requires a callback function but got a {type(handle).__name__}"
                )
        return handles

    def __repr__(self) -> str:
        methods_str = ",".join(sorted(self.allowed_methods())) or "-"
        return f"<Route {methods_str} {self.path}>"


def _verb(method: str):
    def register(self: Route, *handlers) -> Route:
        return self.add(method, *handlers)

    register.__name__ = attribute_name(method)
    register.__doc__ = f"Add handlers for {method.upper()} requests."
    return register


for _method in METHODS:
    setattr(Route, attribute_name(_method), _verb(_method))
