from .layer import Layer
from .path import PathKey, compile_path
from .route import Route
from .router import Router

__all__ = ["Layer", "PathKey", "Route", "Router", "compile_path"]
