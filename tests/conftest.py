"""
Shared fixtures for the Vireo test suite.
"""

import pytest

from vireo import Request, Response, Vireo
from vireo.testing import TestClient


class Exchange:
    """Collects the ASGI messages a Response sends."""

    def __init__(self):
        self.messages = []

    async def send(self, message):
        self.messages.append(message)

    @property
    def status(self):
        for message in self.messages:
            if message["type"] == "http.response.start":
                return message["status"]
        return None

    @property
    def headers(self):
        headers = {}
        for message in self.messages:
            if message["type"] == "http.response.start":
                for name, value in message["headers"]:
                    headers[name.decode("latin-1")] = value.decode("latin-1")
        return headers

    @property
    def body(self):
        return b"".join(
            message.get("body", b"") for message in self.messages if message["type"] == "http.response.body"
        )


def build_scope(method="GET", path="/", query=b"", headers=None, client=("127.0.0.1", 50000), scheme="http"):
    return {
        "type": "http",
        "method": method,
        "scheme": scheme,
        "path": path,
        "raw_path": path.encode("latin-1"),
        "query_string": query,
        "headers": [[k.lower().encode("latin-1"), v.encode("latin-1")] for k, v in (headers or [])],
        "client": client,
        "server": ("testserver", 80),
    }


@pytest.fixture
def app():
    """Application running in the "test" environment (no error logging)."""
    application = Vireo()
    application.set("env", "test")
    return application


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def make_exchange():
    """Factory returning (request, response, exchange) for direct dispatch tests."""

    def factory(method="GET", path="/", **kwargs):
        exchange = Exchange()
        request = Request(build_scope(method, path, **kwargs))
        response = Response(exchange.send, request)
        request.res = response
        return request, response, exchange

    return factory
