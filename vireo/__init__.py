from .application import Application, Vireo
from .exceptions import (
    BadRequest,
    HTTPError,
    HeadersSentError,
    MethodNotAllowed,
    NotFound,
    ParamDecodeError,
    RejectedError,
    SettingError,
    VireoError,
    ViewError,
)
from .finalhandler import final_handler
from .handlers import ROUTE, ROUTER, ErrorHandler, error_handler
from .request import Request
from .response import Response
from .routing import Layer, Route, Router
from .view import View

__version__ = "0.1.0"
__all__ = [
    "Vireo",
    "Application",
    "Router",
    "Route",
    "Layer",
    "Request",
    "Response",
    "View",
    "ErrorHandler",
    "error_handler",
    "final_handler",
    "ROUTE",
    "ROUTER",
    "VireoError",
    "HTTPError",
    "BadRequest",
    "NotFound",
    "MethodNotAllowed",
    "ParamDecodeError",
    "RejectedError",
    "SettingError",
    "ViewError",
    "HeadersSentError",
]
