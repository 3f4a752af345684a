import asyncio

import httpx
import pytest
from fastapi.testclient import TestClient

from app import app, get_http_client


class Upstream:
    """Stand-in for the Binance hosts, records every request it receives."""

    def __init__(self, handler=None):
        self.requests = []
        self.handler = handler or (lambda request: httpx.Response(200, json={"ok": True}))

    async def __call__(self, request: httpx.Request):
        self.requests.append(request)
        resp = self.handler(request)
        if not isinstance(resp, httpx.Response):
            resp = await resp
        return resp


@pytest.fixture
def upstream():
    return Upstream()


@pytest.fixture
def mock_http_client(upstream):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
    yield http_client
    asyncio.run(http_client.aclose())


@pytest.fixture
def test_client(mock_http_client):
    app.dependency_overrides[get_http_client] = lambda: mock_http_client
    try:
        with TestClient(app) as client:
            yield client
    finally:
        app.dependency_overrides.clear()
