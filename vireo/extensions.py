"""
Per-application request and response extensions.

Every application owns two ``Capabilities`` bundles, ``app.request`` and
``app.response``. Helpers stored on them become attributes of the request
and response objects the application handles:

    @app.response.define
    async def ok(self, data):
        await self.status(200).json(data)

    app.request.tenant = property(lambda req: req.hostname.split(".")[0])

A mounted application's bundles fall back to its parent's, so helpers
defined on the parent are visible in the child unless the child overrides
them.
"""

import inspect
import types
from collections import ChainMap
from typing import Any, Callable, Iterator, Optional


class Capabilities:
    """
    A named set of helpers resolved by attribute access.

    Plain functions are bound to the object they are looked up for,
    ``property`` objects are evaluated against it, anything else is
    returned as is.
    """

    def __init__(self, kind: str):
        object.__setattr__(self, "_kind", kind)
        object.__setattr__(self, "_members", ChainMap({}))

    # Access by attributes (read)
    def __getattr__(self, name: str) -> Any:
        members = object.__getattribute__(self, "_members")
        if name in members:
            return members[name]
        raise AttributeError(f"{self._kind} capabilities have no attribute '{name}'")

    # Access by attributes (write)
    def __setattr__(self, name: str, value: Any) -> None:
        if name.startswith("_"):
            raise AttributeError(f"cannot define private {self._kind} capability '{name}'")
        self._members.maps[0][name] = value

    def __delattr__(self, name: str) -> None:
        own = self._members.maps[0]
        if name not in own:
            raise AttributeError(f"{self._kind} capabilities have no own attribute '{name}'")
        del own[name]

    def __contains__(self, name: object) -> bool:
        return name in self._members

    def __iter__(self) -> Iterator[str]:
        return iter(self._members)

    def define(self, fn: Optional[Callable[..., Any]] = None, *, name: Optional[str] = None):
        """Register ``fn`` under its own name (or ``name``); usable as a decorator."""

        def register(func: Callable[..., Any]) -> Callable[..., Any]:
            key = name or getattr(func, "__name__", None)
            if not key:
                raise TypeError("define() requires a name for anonymous helpers")
            setattr(self, key, func)
            return func

        if fn is None:
            return register
        return register(fn)

    def inherit(self, parent: "Capabilities") -> None:
        """Fall back to ``parent`` for names this bundle does not define."""
        own = self._members.maps[0]
        object.__setattr__(self, "_members", ChainMap(own, parent._members))

    def resolve(self, target: Any, name: str) -> Any:
        """Look ``name`` up for ``target``; raises KeyError if undefined."""
        value = self._members[name]

        if isinstance(value, property):
            if value.fget is None:
                raise AttributeError(f"unreadable {self._kind} capability '{name}'")
            return value.fget(target)

        if inspect.isfunction(value):
            return types.MethodType(value, target)

        return value

    def __repr__(self) -> str:
        return f"<Capabilities {self._kind} {sorted(self._members)}>"


class Extensible:
    """
    Mixin for request/response objects: unknown attributes resolve through
    the bound application's capability bundle.
    """

    _capabilities: Optional[Capabilities] = None
    _capability_kind = ""

    def bind(self, app: Any) -> None:
        """Attach ``app`` and expose its capability bundle."""
        self.app = app
        self._capabilities = getattr(app, self._capability_kind, None) if app is not None else None

    def __getattr__(self, name: str) -> Any:
        # only called when normal lookup failed
        if not name.startswith("_"):
            capabilities = self._capabilities
            if capabilities is not None and name in capabilities:
                return capabilities.resolve(self, name)
        raise AttributeError(f"'{type(self).__name__}' object has no attribute '{name}'")
