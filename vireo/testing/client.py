"""
TestClient class for executing HTTP requests against Vireo applications.
"""

import asyncio
import concurrent.futures
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import unquote

from .request import TestRequest
from .response import TestResponse


class TestClient:
    """
    HTTP test client for Vireo applications.

    Executes TestRequest objects against an application's ASGI interface,
    in-process, and returns TestResponse objects:

        client = TestClient(app)
        response = client.get("/users/1?fields=name")
        assert response.status_code == 200

    From async tests, ``await client.fetch("GET", "/users/1")`` runs on the
    current event loop.
    """

    __test__ = False

    def __init__(self, app):
        """
        Initialize TestClient with a Vireo application.

        Args:
            app: Vireo application (or any ASGI callable)
        """
        self.app = app

    def build_scope(self, method: str, url: str, request: TestRequest, body_headers: Dict[str, str]) -> Dict[str, Any]:
        """Build the ASGI http scope for ``method`` and ``url`` (which may carry a query string)."""
        path, _, query = url.partition("?")
        extra_query = request.build_query_string().decode("latin-1")
        query_string = "&".join(part for part in (query, extra_query) if part)

        # Request headers take precedence over body headers
        header_names = {name.lower() for name, _ in request.build_headers()}
        headers: List[Tuple[str, str]] = [
            (name, value) for name, value in body_headers.items() if name.lower() not in header_names
        ]
        headers.extend(request.build_headers())
        if "host" not in header_names:
            headers.insert(0, ("host", "testserver"))

        return {
            "type": "http",
            "asgi": {"version": "3.0"},
            "http_version": "1.1",
            "method": method.upper(),
            "scheme": request.scheme,
            "path": unquote(path),
            "raw_path": path.encode("latin-1"),
            "query_string": query_string.encode("latin-1"),
            "headers": [[name.lower().encode("latin-1"), value.encode("latin-1")] for name, value in headers],
            "client": request.client,
            "server": ("testserver", 80),
        }

    def execute(self, method: str, url: str, request: Optional[TestRequest] = None) -> TestResponse:
        """
        Execute a TestRequest against the application.

        Args:
            method: HTTP method (GET, POST, PUT, etc.)
            url: Request URL path, optionally with a query string
            request: TestRequest object with request configuration

        Returns:
            TestResponse object with the response data
        """
        coro = self.fetch(method, url, request)

        try:
            asyncio.get_running_loop()
        except RuntimeError:
            # No event loop running, create one
            return asyncio.run(coro)

        # Inside a running loop (pytest-asyncio): run on a fresh loop in a worker thread
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as executor:
            return executor.submit(asyncio.run, coro).result()

    async def fetch(self, method: str, url: str, request: Optional[TestRequest] = None) -> TestResponse:
        """Execute a request on the running event loop."""
        request = request or TestRequest()
        body, body_headers = request.build_body()
        scope = self.build_scope(method, url, request, body_headers)
        return await self._make_request(scope, body, url)

    async def _make_request(self, scope: dict, body: bytes, request_url: str = "") -> TestResponse:
        """Execute the request against the ASGI application."""
        response_data: Dict[str, Any] = {}
        body_parts: List[bytes] = []
        request_sent = False

        async def receive():
            nonlocal request_sent
            if request_sent:
                return {"type": "http.disconnect"}
            request_sent = True
            return {
                "type": "http.request",
                "body": body,
                "more_body": False,
            }

        async def send(message):
            if message["type"] == "http.response.start":
                response_data["status"] = message["status"]
                response_data["headers"] = message["headers"]
            elif message["type"] == "http.response.body":
                body_parts.append(message.get("body", b""))
                response_data["more_body"] = message.get("more_body", False)

        await self.app(scope, receive, send)

        status_code = response_data.get("status", 500)
        headers = []
        for key, value in response_data.get("headers", []):
            if isinstance(key, bytes):
                key = key.decode("latin-1")
            if isinstance(value, bytes):
                value = value.decode("latin-1")
            headers.append((key, value))

        return TestResponse(status_code, headers, b"".join(body_parts), request_url)

    # Convenience methods for executing common requests
    def get(self, url: str, request: Optional[TestRequest] = None) -> TestResponse:
        """Execute a GET request."""
        return self.execute("GET", url, request)

    def post(self, url: str, request: Optional[TestRequest] = None) -> TestResponse:
        """Execute a POST request."""
        return self.execute("POST", url, request)

    def put(self, url: str, request: Optional[TestRequest] = None) -> TestResponse:
        """Execute a PUT request."""
        return self.execute("PUT", url, request)

    def patch(self, url: str, request: Optional[TestRequest] = None) -> TestResponse:
        """Execute a PATCH request."""
        return self.execute("PATCH", url, request)

    def delete(self, url: str, request: Optional[TestRequest] = None) -> TestResponse:
        """Execute a DELETE request."""
        return self.execute("DELETE", url, request)

    def head(self, url: str, request: Optional[TestRequest] = None) -> TestResponse:
        """Execute a HEAD request."""
        return self.execute("HEAD", url, request)

    def options(self, url: str, request: Optional[TestRequest] = None) -> TestResponse:
        """Execute an OPTIONS request."""
        return self.execute("OPTIONS", url, request)
