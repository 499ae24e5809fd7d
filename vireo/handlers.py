"""
Handler tagging and invocation for Vireo.

Every middleware or route handler is either a request handler, called as
``handler(request, response, next)``, or an error handler, called as
``handler(error, request, response, next)``. The role is fixed at
registration time: plain callables are request handlers, callables wrapped
with ``error_handler`` are error handlers.
"""

import asyncio
import inspect
from typing import Any, Callable, List

from .exceptions import RejectedError

ROUTE = "route"
ROUTER = "router"


def is_signal(value: Any, signal: str) -> bool:
    """True if ``value`` is the continuation sentinel ``signal``."""
    return isinstance(value, str) and value == signal


class ErrorHandler:
    """
    A callable tagged as an error handler.

    Usage:
        @error_handler
        async def on_error(err, request, response, next):
            await response.status(500).send(str(err))
    """

    __slots__ = ("func", "__wrapped__")

    def __init__(self, func: Callable[..., Any]):
        if isinstance(func, ErrorHandler):
            func = func.func
        if not callable(func):
            raise TypeError(
                f"error_handler() requires a callable but got a {type(func).__name__}"
            )
        self.func = func
        self.__wrapped__ = func

    @property
    def __name__(self) -> str:
        return getattr(self.func, "__name__", "<anonymous>")

    def __call__(self, error, request, response, next):
        return self.func(error, request, response, next)

    def __repr__(self) -> str:
        return f"<ErrorHandler {self.__name__}>"


def error_handler(func: Callable[..., Any]) -> ErrorHandler:
    """Tag ``func`` as an error-handling middleware."""
    return ErrorHandler(func)


def is_error_handler(handler: Any) -> bool:
    return isinstance(handler, ErrorHandler)


class Continuation:
    """
    One call of ``next``, not yet run.

    Awaiting it runs the rest of the dispatch to completion. A continuation
    the handler never awaited is returned to the dispatch loop instead, so a
    long chain of handlers that only call ``next()`` does not nest.
    """

    __slots__ = ("_step", "_err", "started")

    def __init__(self, step: Callable[..., Any], err: Any = None):
        self._step = step
        self._err = err
        self.started = False

    def resume(self) -> Any:
        """Start the step and return whatever it leaves pending."""
        self.started = True
        return self._step(self._err)

    def __await__(self):
        return run(self.resume()).__await__()


class Next:
    """
    Continuation handed to a handler.

    Calling it returns a ``Continuation``. Async handlers ``await next()``;
    synchronous handlers may simply call ``next()`` and the dispatch resumes
    once the handler returns.
    """

    __slots__ = ("_step", "_calls")

    def __init__(self, step: Callable[..., Any]):
        self._step = step
        self._calls: List[Continuation] = []

    def __call__(self, err: Any = None) -> Continuation:
        call = Continuation(self._step, err)
        self._calls.append(call)
        return call

    @property
    def called(self) -> bool:
        return bool(self._calls)

    def owns(self, value: Any) -> bool:
        return any(call is value for call in self._calls)

    def pending(self) -> List[Continuation]:
        """Calls the handler made but never awaited."""
        return [call for call in self._calls if not call.started]


async def run(step: Any) -> None:
    """
    Drive a dispatch to completion.

    ``step`` is an awaitable (or None). Each awaited step returns the step to
    run after it, or None once the walk is over.
    """
    while step is not None:
        if isinstance(step, Continuation):
            step = step.resume()
            continue
        step = await step


def _cancelling() -> bool:
    task = asyncio.current_task()
    return task is not None and task.cancelling() > 0


async def invoke(handler: Callable[..., Any], args: tuple, step: Callable[..., Any]) -> Any:
    """
    Call ``handler(*args, next)`` and route any failure into ``step``.

    A synchronous raise, an exception from the returned awaitable and an
    awaitable that ends up cancelled (a rejection carrying no error) all
    continue the dispatch with an error, exactly as ``next(error)`` would.

    Returns the continuation left pending for the caller's ``run`` loop,
    or None when the handler finished the walk itself.
    """
    cont = Next(step)
    error = None

    try:
        result = handler(*args, cont)
        if inspect.isawaitable(result) and not cont.owns(result):
            await result
    except asyncio.CancelledError:
        if _cancelling():
            raise
        error = RejectedError()
    except Exception as exc:
        error = exc

    pending = cont.pending()

    if error is not None:
        for call in pending:
            await call
        return cont(error)

    if not pending:
        return None

    for call in pending[:-1]:
        await call
    return pending[-1]
