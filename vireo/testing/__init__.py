"""
Vireo Testing Package.

Provides testing utilities for Vireo applications:
- TestClient: drives an application in-process through its ASGI interface
- TestRequest: Builder pattern for HTTP requests
- TestResponse: Response examination utilities
"""

from .client import TestClient
from .request import TestRequest
from .response import TestResponse

__all__ = ["TestClient", "TestRequest", "TestResponse"]
