"""
Vireo - an asynchronous (ASGI) web framework built around a middleware router.
"""

import logging
import os
from collections import ChainMap, defaultdict
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import uvicorn

from .extensions import Capabilities
from .finalhandler import final_handler
from .handlers import run
from .logger import EnvironmentLoggerAdapter, request_extra
from .methods import METHODS, attribute_name
from .proxy import compile_trust
from .request import Request
from .response import Response
from .routing import Route, Router
from .routing.path import PathPattern
from .types import ASGIReceive, ASGIScope, ASGISend
from .utils import compile_etag, compile_query_parser
from .view import View

logger = logging.getLogger(__name__)

_MISSING = object()

# Settings that derive a compiled companion "<name> fn" setting
_COMPILED_SETTINGS: Dict[str, Callable[[Any], Any]] = {
    "etag": compile_etag,
    "query parser": compile_query_parser,
    "trust proxy": compile_trust,
}


def default_settings() -> Dict[str, Any]:
    """Framework defaults; the bottom layer of every root application's settings."""
    env = os.environ.get("VIREO_ENV", "development")
    settings: Dict[str, Any] = {
        "x-powered-by": True,
        "env": env,
        "etag": "weak",
        "query parser": "extended",
        "subdomain offset": 2,
        "trust proxy": False,
        "view": View,
        "views": os.path.join(os.getcwd(), "views"),
        "jsonp callback name": "callback",
    }

    for name, compile_fn in _COMPILED_SETTINGS.items():
        settings[f"{name} fn"] = compile_fn(settings[name])

    if env == "production":
        settings["view cache"] = True

    return settings


class Application:
    """
    Main Vireo application class. To create an application, instantiate this class.

    An application is a settings store, a template engine registry and a
    lazily created root Router. It is also an ASGI callable, and it can be
    mounted inside another application with ``use``:

        app = Vireo()
        admin = Vireo()

        @admin.get("/")
        async def dashboard(req, res, next):
            await res.send(f"admin mounted at {admin.mountpath}")

        app.use("/admin", admin)
    """

    def __init__(self, logger: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None):
        """Initialize the Vireo application.

        Args:
            logger: Logger used to report unhandled errors. Defaults to the
                    "vireo.application" logger tagged with the app's environment.
        """
        self.settings: ChainMap = ChainMap({}, default_settings())
        self.engines: ChainMap = ChainMap({})
        self.cache: Dict[str, View] = {}
        self.locals: Dict[str, Any] = {"settings": self.settings}

        self.mountpath: PathPattern = "/"
        self.parent: Optional["Application"] = None

        # Helpers exposed on every request/response this app handles
        self.request = Capabilities("request")
        self.response = Capabilities("response")

        self._logger = logger
        self._router: Optional[Router] = None
        self._listeners: Dict[str, List[Callable[..., Any]]] = defaultdict(list)

        # Lifespan event handlers
        self._startup_handlers: List[Callable[[], Awaitable[None]]] = []
        self._shutdown_handlers: List[Callable[[], Awaitable[None]]] = []

        self.on("mount", self._on_mount)

    def _on_mount(self, parent: Optional["Application"]) -> None:
        """Delegate settings, engines and capabilities to the parent application."""
        if parent is None:
            return

        logger.debug("inherit settings from %r", parent)
        self.settings.maps[1:] = [parent.settings]
        self.engines.maps[1:] = [parent.engines]
        self.request.inherit(parent.request)
        self.response.inherit(parent.response)

    # ------------------ SETTINGS ------------------

    def set(self, setting: str, value: Any = _MISSING) -> Any:
        """
        Assign ``setting`` to ``value``, or return its value when called with one argument.

        Setting "etag", "query parser" or "trust proxy" also compiles the
        matching "... fn" setting.

        Raises:
            SettingError: If the value of a compiled setting is not understood
        """
        if value is _MISSING:
            return self.settings.get(setting)

        logger.debug('set "%s" to %r', setting, value)
        compile_fn = _COMPILED_SETTINGS.get(setting)
        if compile_fn is not None:
            compiled = compile_fn(value)
            self.settings[setting] = value
            self.settings[f"{setting} fn"] = compiled
        else:
            self.settings[setting] = value

        return self

    def enabled(self, setting: str) -> bool:
        return bool(self.set(setting))

    def disabled(self, setting: str) -> bool:
        return not self.set(setting)

    def enable(self, setting: str) -> "Application":
        return self.set(setting, True)

    def disable(self, setting: str) -> "Application":
        return self.set(setting, False)

    def path(self) -> str:
        """Canonical path of the app: the mount paths of every ancestor joined."""
        if self.parent is None:
            return ""
        mountpath = self.mountpath if isinstance(self.mountpath, str) else str(self.mountpath)
        return self.parent.path() + mountpath

    # ------------------ EVENTS ------------------

    def on(self, event: str, listener: Callable[..., Any]) -> "Application":
        self._listeners[event].append(listener)
        return self

    def emit(self, event: str, *args: Any) -> bool:
        listeners = list(self._listeners.get(event, ()))
        for listener in listeners:
            listener(*args)
        return bool(listeners)

    # Lifespan event handlers
    def _register_event_handler(
        self, event_type: str, func: Callable[[], Awaitable[None]]
    ) -> None:
        """
        Internal method to register an event handler.

        Raises:
            ValueError: If event_type is not "startup" or "shutdown"
        """
        if event_type == "startup":
            self._startup_handlers.append(func)
        elif event_type == "shutdown":
            self._shutdown_handlers.append(func)
        else:
            raise ValueError(
                f"Invalid event type: {event_type}. Must be 'startup' or 'shutdown'"
            )

    def on_event(self, event_type: str):
        """
        Register a function to run on application startup or shutdown.

        Example:
            @app.on_event("startup")
            async def connect():
                await database.connect()
        """

        def decorator(
            func: Callable[[], Awaitable[None]],
        ) -> Callable[[], Awaitable[None]]:
            self._register_event_handler(event_type, func)
            return func

        return decorator

    def add_event_handler(
        self, event_type: str, func: Callable[[], Awaitable[None]]
    ) -> None:
        """Add an event handler for startup or shutdown."""
        self._register_event_handler(event_type, func)

    async def _run_startup_handlers(self) -> None:
        for handler in self._startup_handlers:
            await handler()

    async def _run_shutdown_handlers(self) -> None:
        for handler in self._shutdown_handlers:
            await handler()

    # ------------------ ROUTING ------------------

    @property
    def router(self) -> Router:
        """The root router, created on first use with the routing settings."""
        if self._router is None:
            self._router = Router(
                case_sensitive=self.enabled("case sensitive routing"),
                strict=self.enabled("strict routing"),
                owner=self,
            )
        return self._router

    def use(self, *args) -> "Application":
        """
        Mount middleware, routers or applications, optionally under a path.

            app.use(logger_middleware)
            app.use("/api", api_router)
            app.use("/blog", blog_app)
        """
        self.router.use(*args)
        return self

    def use_error(self, *args) -> "Application":
        """Mount error-handling middleware, optionally under a path."""
        self.router.use_error(*args)
        return self

    def route(self, path: PathPattern) -> Route:
        """Create a Route for ``path``; chain verbs on it to register handlers."""
        return self.router.route(path)

    def param(self, name: Union[str, List[str]], fn: Callable[..., Any]) -> "Application":
        """Register a parameter pre-processor for one name or a list of names."""
        names = name if isinstance(name, (list, tuple)) else [name]
        for item in names:
            self.router.param(item, fn)
        return self

    def all(self, path: PathPattern, *handlers):
        """
        Register handlers for every HTTP method on ``path``.

        Returns a decorator when called with only a path.
        """
        if not handlers:
            def decorator(fn):
                self.all(path, fn)
                return fn

            return decorator

        route = self.router.route(path)
        for method in METHODS:
            route.add(method, *handlers)
        return self

    def get(self, *args):
        """
        Return a setting when called with a single setting name, otherwise
        register GET handlers (or return a decorator when given only a path).

            env = app.get("env")
            app.get("/users", list_users)

            @app.get("/users/:id")
            async def show_user(req, res, next): ...
        """
        if len(args) == 1 and _is_setting_name(args[0]):
            return self.settings.get(args[0])

        if not args:
            raise TypeError("get() requires a setting name or a path")

        return self._add("get", args[0], *args[1:])

    def _add(self, method: str, path: PathPattern, *handlers):
        if not handlers:
            return self.router.add(method, path)

        self.router.add(method, path, *handlers)
        return self

    # ------------------ VIEWS ------------------

    def engine(self, ext: str, fn: Callable[..., Any]) -> "Application":
        """
        Register a template engine for files with extension ``ext``.

        The engine is called as ``fn(path, options)`` and returns the
        rendered string, or an awaitable resolving to it.
        """
        if not callable(fn):
            raise TypeError("callback function required")

        extension = ext if ext.startswith(".") else f".{ext}"
        self.engines[extension] = fn
        return self

    async def render(self, name: str, options: Optional[Dict[str, Any]] = None) -> str:
        """
        Render view ``name`` with app locals, ``options["_locals"]`` and ``options`` merged.

        Raises:
            ViewError: If the view cannot be found or has no engine
        """
        opts = dict(options or {})
        render_options: Dict[str, Any] = {**self.locals, **(opts.get("_locals") or {}), **opts}

        if render_options.get("cache") is None:
            render_options["cache"] = self.enabled("view cache")

        view = self.cache.get(name) if render_options["cache"] else None
        if view is None:
            view_class = self.get("view") or View
            view = view_class(
                name,
                default_engine=self.get("view engine"),
                root=self.get("views"),
                engines=self.engines,
            )

            if not view.path:
                raise view.lookup_error()

            if render_options["cache"]:
                self.cache[name] = view

        return await view.render(render_options)

    # ------------------ DISPATCH ------------------

    async def handle(self, request: Request, response: Response, callback: Optional[Callable[..., Any]] = None) -> None:
        """
        Dispatch a request into the application.

        Args:
            request: The request
            response: Its response
            callback: Continuation to run when the router is done; defaults
                      to the final handler (404 or error page)
        """
        done = callback or final_handler(
            request,
            response,
            env=self.get("env"),
            on_error=self._log_error,
        )

        if self.enabled("x-powered-by"):
            response.set("X-Powered-By", "Vireo")

        request.res = response
        response.req = request
        request.bind(self)
        response.bind(self)

        if response.locals is None:
            response.locals = {}

        if self._router is None:
            logger.debug("no routes defined on app")
            await run(done())
            return

        await self._router.handle(request, response, done)

    def _log_error(self, err: Any, request: Optional[Request] = None) -> None:
        env = self.get("env")
        if env == "test":
            return

        log = self._logger or EnvironmentLoggerAdapter(logging.getLogger(__name__), env)
        extra = request_extra(request) if request is not None else {}
        exc_info = (type(err), err, err.__traceback__) if isinstance(err, BaseException) else None
        log.error("unhandled error: %s", err, exc_info=exc_info, extra=extra)

    async def __call__(self, scope: ASGIScope, receive: ASGIReceive, send: ASGISend) -> None:
        """
        ASGI application entrypoint.
        This method is called by the ASGI server (uvicorn for example) for each incoming connection.

        Args:
            scope: Connection scope information
            receive: Callable to receive messages from the client
            send: Callable to send messages to the client
        """
        if scope["type"] == "http":
            await self._handle_http(scope, receive, send)
        elif scope["type"] == "lifespan":
            await self._handle_lifespan(scope, receive, send)
        elif scope["type"] == "websocket":
            await self._handle_unsupported_protocol(send)

    async def _handle_lifespan(self, scope: ASGIScope, receive: ASGIReceive, send: ASGISend) -> None:
        """
        Handle ASGI lifespan protocol for startup and shutdown events.
        """
        while True:
            message = await receive()

            if message["type"] == "lifespan.startup":
                try:
                    await self._run_startup_handlers()
                    await send({"type": "lifespan.startup.complete"})
                except Exception as e:
                    await send({"type": "lifespan.startup.failed", "message": str(e)})
            elif message["type"] == "lifespan.shutdown":
                try:
                    await self._run_shutdown_handlers()
                    await send({"type": "lifespan.shutdown.complete"})
                except Exception as e:
                    await send({"type": "lifespan.shutdown.failed", "message": str(e)})
                return

    async def _handle_unsupported_protocol(self, send: ASGISend) -> None:
        # For non-HTTP protocols, just close the connection
        await send({"type": "websocket.close", "code": 1000})

    async def _handle_http(self, scope: ASGIScope, receive: ASGIReceive, send: ASGISend) -> None:
        """
        Handle HTTP requests through the router, closing any exchange left open.
        """
        request = Request(scope, receive)
        response = Response(send, request)

        try:
            await self.handle(request, response)
        except Exception as exc:
            # Handle errors with 500 response
            logger.exception("error while dispatching %s %s", request.method, request.original_url)
            await self._close(response, 500, f"Internal Server Error: {exc}")
            return

        if not response.finished:
            logger.warning(
                "%s %s was not answered by any handler",
                request.method,
                request.original_url,
                extra=request_extra(request),
            )
            await self._close(response, 500, "Internal Server Error")

    @staticmethod
    async def _close(response: Response, status: int, message: str) -> None:
        if response.finished:
            return

        if response.headers_sent:
            await response.end()
            return

        for name in response.header_names():
            response.remove(name)
        response.status(status).type("txt")
        await response.send(message)

    def listen(self, port: int = 3000, host: str = "127.0.0.1", **kwargs: Any) -> None:
        """Serve the application with uvicorn (blocks until the server stops)."""
        logger.info("listening on http://%s:%s", host, port)
        uvicorn.run(self, host=host, port=port, **kwargs)

    def __repr__(self) -> str:
        return f"<Application mountpath={self.mountpath!r}>"


def _is_setting_name(value: Any) -> bool:
    return isinstance(value, str) and not value.startswith("/") and value != "*"


def _verb(method: str):
    def register(self: Application, path: PathPattern, *handlers):
        return self._add(method, path, *handlers)

    register.__name__ = attribute_name(method)
    register.__doc__ = f"Register {method.upper()} handlers on ``path``; decorator when given only a path."
    return register


for _method in METHODS:
    if _method != "get":
        setattr(Application, attribute_name(_method), _verb(_method))


Vireo = Application
