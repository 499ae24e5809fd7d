"""
Router class for Vireo framework.

A Router is an ordered middleware stack. Requests walk the stack in
registration order; layers registered with ``use`` match path prefixes,
layers created by ``route`` match whole paths and dispatch into a Route.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlsplit

from ..handlers import ROUTE, ROUTER, ErrorHandler, invoke, is_signal, run
from ..methods import METHODS, attribute_name
from ..utils import flatten
from .layer import Layer
from .path import PathPattern
from .route import Route

logger = logging.getLogger(__name__)


def is_mountable(obj: Any) -> bool:
    """True for application-like objects: they expose ``handle`` and ``set``."""
    return (
        not isinstance(obj, Router)
        and callable(getattr(obj, "handle", None))
        and callable(getattr(obj, "set", None))
    )


@dataclass
class _ParamCall:
    """Outcome of running the param handlers for one parameter value."""

    match: Any
    value: Any
    error: Any = None


class Router:
    """
    Ordered middleware stack with path-prefix mounting and sub-delegation.

    Args:
        case_sensitive: Match paths case-sensitively
        strict: Treat "/foo" and "/foo/" as different paths
        merge_params: Expose the parent router's params on ``request.params``
        owner: Application that owns this router; it becomes the ``parent``
               of applications mounted with ``use``

    Example:
        router = Router()
        router.use(log_request)
        router.route("/users/:id").get(show_user).put(update_user)
        app.use("/api", router)
    """

    def __init__(
        self,
        case_sensitive: bool = False,
        strict: bool = False,
        merge_params: bool = False,
        owner: Any = None,
    ):
        self.case_sensitive = case_sensitive
        self.strict = strict
        self.merge_params = merge_params
        self.owner = owner
        self.params: Dict[str, List[Callable[..., Any]]] = {}
        self.stack: List[Layer] = []

    async def __call__(self, request, response, next) -> None:
        await self.handle(request, response, next)

    # -- Registration --

    def param(self, name: str, fn: Callable[..., Any]) -> "Router":
        """
        Map a parameter name to a pre-processing handler.

        The handler is called as ``fn(request, response, next, value, name)``
        the first time a matched layer captures ``name`` during a request,
        before the layer's own handler runs.
        """
        if not callable(fn):
            raise TypeError(f"invalid param() call for {name}, got {type(fn).__name__}")

        if name.startswith(":"):
            name = name[1:]

        self.params.setdefault(name, []).append(fn)
        return self

    def use(self, *args) -> "Router":
        """
        Add middleware, optionally under a path prefix.

        Handlers may be plain callables, ``error_handler`` tagged callables,
        other routers or mountable applications, passed individually or in
        (nested) lists.

            router.use(middleware)
            router.use("/admin", [authenticate, audit], admin_router)
        """
        path, handlers = _split_path(args)

        if not handlers:
            raise TypeError("Router.use() requires a middleware function")

        for fn in handlers:
            if is_mountable(fn):
                self._mount(path, fn)
                continue

            if not callable(fn):
                raise TypeError(
                    f"Router.use() requires a middleware function but got a {type(fn).__name__}"
                )

            logger.debug("use %r %s", path, getattr(fn, "__name__", "<anonymous>"))
            layer = Layer(path, fn, sensitive=self.case_sensitive, strict=False, end=False)
            layer.route = None
            self.stack.append(layer)

        return self

    def use_error(self, *args) -> "Router":
        """Add error-handling middleware, optionally under a path prefix."""
        path, handlers = _split_path(args)
        if not handlers:
            raise TypeError("Router.use_error() requires a middleware function")
        return self.use(path, [ErrorHandler(fn) for fn in handlers])

    def _mount(self, path: PathPattern, app: Any) -> None:
        """Mount an application-like object under ``path``."""
        logger.debug(".use app under %r", path)
        app.mountpath = path
        app.parent = self.owner

        async def mounted_app(request, response, next):
            orig = request.app

            async def restore(err=None):
                # hand the caller's capabilities back before continuing
                if orig is not None:
                    request.bind(orig)
                    response.bind(orig)
                return next(err)

            await app.handle(request, response, restore)

        layer = Layer(path, mounted_app, sensitive=self.case_sensitive, strict=False, end=False)
        layer.route = None
        self.stack.append(layer)

        emit = getattr(app, "emit", None)
        if callable(emit):
            emit("mount", self.owner)

    def route(self, path: PathPattern) -> Route:
        """Create a new Route for ``path`` and append it to the stack."""
        route = Route(path)
        layer = Layer(path, route.dispatch, sensitive=self.case_sensitive, strict=self.strict, end=True)
        layer.route = route
        self.stack.append(layer)
        return route

    def all(self, path: PathPattern, *handlers):
        """Register handlers for every method on ``path``; decorator when no handlers are given."""
        if not handlers:
            return _decorator(lambda fn: self.route(path).all(fn))

        self.route(path).all(*handlers)
        return self

    def add(self, method: str, path: PathPattern, *handlers):
        """Register handlers for ``method`` on ``path``; decorator when no handlers are given."""
        if not handlers:
            return _decorator(lambda fn: self.route(path).add(method, fn))

        self.route(path).add(method, *handlers)
        return self

    # -- Dispatch --

    async def handle(self, request, response, out: Callable[..., Any]) -> None:
        """Dispatch ``request``/``response`` into the stack, ending with ``out``."""
        await run(self.walk(request, response, out))

    def walk(self, request, response, out: Callable[..., Any]) -> Any:
        """
        Start a dispatch and return its first step.

        Every step returns the one to run after it, so ``run`` drives the
        whole stack in a loop. Only a handler that awaits ``next()`` adds
        to the call depth.
        """
        idx = 0
        protohost = _get_protohost(request.url)
        removed = ""
        slash_added = False
        param_called: Dict[Any, _ParamCall] = {}
        options: List[str] = []
        stack = self.stack

        parent_params = request.params
        parent_url = request.base_url or ""
        done = _restore(out, request, "base_url", "params")

        # answer OPTIONS requests nobody handled
        if request.method == "OPTIONS":
            done = _wrap_options(done, response, options)

        request.base_url = parent_url
        request.original_url = request.original_url or request.url

        async def next(err=None):
            nonlocal idx, removed, slash_added

            layer_error = None if is_signal(err, ROUTE) else err

            # remove added slash
            if slash_added:
                request.url = request.url[1:]
                slash_added = False

            # restore altered url
            if removed:
                request.url = protohost + removed + request.url[len(protohost) :]
                request.base_url = parent_url
                removed = ""

            # signal to exit router
            if is_signal(layer_error, ROUTER):
                return done(None)

            if idx >= len(stack):
                return done(layer_error)

            path = _get_pathname(request)
            if path is None:
                return done(layer_error)

            layer = None
            match: Any = False
            route = None

            while match is not True and idx < len(stack):
                layer = stack[idx]
                idx += 1

                try:
                    match = layer.match(path)
                except Exception as exc:
                    match = exc

                route = layer.route

                if not isinstance(match, bool):
                    # hold on to the decode error
                    layer_error = layer_error or match

                if match is not True:
                    continue

                if route is None:
                    # process non-route handlers normally
                    continue

                if layer_error is not None:
                    # routes do not match with a pending error
                    match = False
                    continue

                method = request.method
                has_method = route.handles_method(method)

                if not has_method and method == "OPTIONS":
                    _append_methods(options, route.allowed_methods())

                if not has_method and method != "HEAD":
                    match = False

            if match is not True:
                return done(layer_error)

            if route is not None:
                request.route = route

            request.params = (
                merge_params(layer.params, parent_params) if self.merge_params else dict(layer.params)
            )
            layer_path = layer.path

            async def after_params(err=None):
                if err is not None:
                    return next(layer_error if layer_error is not None else err)
                if route is not None:
                    return route.walk(request, response, next)
                return await trim_prefix(layer, layer_error, layer_path, path)

            return self._process_params(layer, param_called, request, response, after_params)

        async def trim_prefix(layer, layer_error, layer_path, path):
            nonlocal removed, slash_added

            if layer_path:
                if layer_path != path[: len(layer_path)]:
                    return next(layer_error)

                # validate path breaks on a path separator
                c = path[len(layer_path) : len(layer_path) + 1]
                if c and c not in "/.":
                    return next(layer_error)

                logger.debug("trim prefix (%s) from url %s", layer_path, request.url)
                removed = layer_path
                request.url = protohost + request.url[len(protohost) + len(removed) :]

                # ensure leading slash
                if not protohost and not request.url.startswith("/"):
                    request.url = "/" + request.url
                    slash_added = True

                # setup base URL (no trailing slash)
                request.base_url = parent_url + (removed[:-1] if removed.endswith("/") else removed)

            logger.debug("%s %s : %s", layer.name, layer_path, request.original_url)

            if layer_error is not None:
                return await layer.handle_error(layer_error, request, response, next)
            if isinstance(layer.handle, Router):
                return layer.handle.walk(request, response, next)
            return await layer.handle_request(request, response, next)

        return next()

    def _process_params(self, layer: Layer, called: Dict[Any, _ParamCall], request, response, done) -> Any:
        """Run param handlers for the keys ``layer`` captured, then call ``done``."""
        keys = layer.keys
        if not keys or not self.params:
            return done()

        i = 0

        async def param(err=None):
            nonlocal i

            if err is not None:
                return done(err)

            while i < len(keys):
                name = keys[i].name
                i += 1

                value = request.params.get(name)
                callbacks = self.params.get(name) if isinstance(name, str) else None
                if value is None or not callbacks:
                    continue

                prior = called.get(name)
                if prior is not None and (
                    prior.match == value
                    or (prior.error is not None and not is_signal(prior.error, ROUTE))
                ):
                    # param previously called with same value or error occurred
                    request.params[name] = prior.value
                    if prior.error is not None:
                        return done(prior.error)
                    continue

                state = called[name] = _ParamCall(match=value, value=value)
                return self._run_param_callbacks(callbacks, state, name, value, request, response, param)

            return done()

        return param()

    @staticmethod
    def _run_param_callbacks(callbacks, state: _ParamCall, name, value, request, response, param) -> Any:
        index = 0

        async def param_callback(err=None):
            nonlocal index

            # store updated value
            state.value = request.params.get(name)

            if err is not None:
                state.error = err
                return param(err)

            if index >= len(callbacks):
                return param()

            fn = callbacks[index]
            index += 1
            return await invoke(
                lambda req, res, cont: fn(req, res, cont, value, name), (request, response), param_callback
            )

        return param_callback()

    def __repr__(self) -> str:
        return f"<Router layers={len(self.stack)}>"


def _verb(method: str):
    def register(self: Router, path: PathPattern, *handlers):
        return self.add(method, path, *handlers)

    register.__name__ = attribute_name(method)
    register.__doc__ = f"Register {method.upper()} handlers on ``path``; decorator when no handlers are given."
    return register


for _method in METHODS:
    setattr(Router, attribute_name(_method), _verb(_method))


# ------------------ HELPERS ------------------


def _decorator(register: Callable[[Callable[..., Any]], Any]):
    def decorator(fn):
        register(fn)
        return fn

    return decorator


def _is_path(value: Any) -> bool:
    return isinstance(value, (str, re.Pattern))


def _split_path(args) -> tuple:
    """Separate an optional leading path from the handler arguments."""
    path: PathPattern = "/"
    offset = 0

    if args:
        first = args[0]
        head = first
        while isinstance(head, (list, tuple)) and head:
            head = head[0]

        # the first argument is a path, or a list of paths
        if _is_path(head) or (isinstance(first, (list, tuple)) and not first):
            path = first
            offset = 1

    return path, flatten(args[offset:])


def merge_params(params: Dict[Any, Any], parent: Optional[Dict[Any, Any]]) -> Dict[Any, Any]:
    """
    Merge a layer's captured params with the parent router's params.

    Values already defined by the parent are kept; a captured value only
    fills names the parent lacks or left as None. Numeric keys are shifted
    past the parent's numeric keys.
    """
    params = dict(params or {})
    if not isinstance(parent, dict) or not parent:
        return params

    merged = dict(parent)

    if 0 in params and 0 in parent:
        # shift numeric params after the parent's
        count = 0
        while count in params:
            count += 1
        offset = 0
        while offset in parent:
            offset += 1
        for i in range(count - 1, -1, -1):
            params[i + offset] = params[i]
            if i < offset:
                del params[i]

    for name, value in params.items():
        if merged.get(name) is None:
            merged[name] = value

    return merged


def _get_pathname(request) -> Optional[str]:
    try:
        return urlsplit(request.url).path
    except (TypeError, ValueError):
        return None


def _get_protohost(url: str) -> str:
    """Protocol and host of an absolute request URL, else an empty string."""
    if not url or url.startswith("/"):
        return ""

    search_index = url.find("?")
    path_length = search_index if search_index != -1 else len(url)
    fqdn_index = url[:path_length].find("://")

    if fqdn_index == -1:
        return ""

    slash = url.find("/", 3 + fqdn_index)
    return url[:slash] if slash != -1 else url


def _append_methods(target: List[str], methods: List[str]) -> None:
    for method in methods:
        if method not in target:
            target.append(method)


def _restore(fn, obj, *props):
    """Wrap ``fn`` so the given attributes of ``obj`` are restored before it runs."""
    saved = [getattr(obj, prop) for prop in props]

    async def restored(err=None):
        for prop, value in zip(props, saved):
            setattr(obj, prop, value)
        return fn(err)

    return restored


def _wrap_options(done, response, options: List[str]):
    async def options_done(err=None):
        if err is not None or not options:
            return done(err)

        try:
            body = ",".join(options)
            response.set("Allow", body)
            await response.send(body)
        except Exception as exc:
            return done(exc)

    return options_done
