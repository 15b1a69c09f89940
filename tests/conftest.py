"""
Shared fixtures: a minimal stand-in for aiohttp's session/response pair so
upstream calls can be exercised without network access.
"""
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


class FakeContent:
    def __init__(self, chunks):
        self.chunks = list(chunks)

    async def iter_chunked(self, _size):
        for chunk in self.chunks:
            yield chunk


class FakeResponse:
    def __init__(self, status=200, json_data=None, text="", chunks=(), headers=None):
        self.status = status
        self._json = json_data
        self._text = text
        self.headers = headers or {}
        self.content = FakeContent(chunks)
        self.closed = False

    async def json(self, content_type="application/json"):
        if isinstance(self._json, Exception):
            raise self._json
        return self._json

    async def text(self):
        return self._text

    def close(self):
        self.closed = True

    def release(self):
        self.closed = True


class FakeRequest:
    """Awaitable and async-context-manager, like aiohttp's request wrapper."""

    def __init__(self, outcome):
        self.outcome = outcome

    async def _resolve(self):
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        return self.outcome

    def __await__(self):
        return self._resolve().__await__()

    async def __aenter__(self):
        return await self._resolve()

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    def __init__(self, routes=None, default=None):
        self.routes = routes or {}
        self.default = default if default is not None else FakeResponse(status=404)
        self.calls = []
        self.closed = False

    def get(self, url, **kwargs):
        self.calls.append((url, kwargs))
        for prefix, outcome in self.routes.items():
            if url.startswith(prefix):
                return FakeRequest(outcome)
        return FakeRequest(self.default)


@pytest.fixture
def fake_session(monkeypatch):
    """Install a FakeSession behind upstream_client.get_client_session."""
    import proxy_egress
    import upstream_client

    session = FakeSession()

    async def _get_session():
        return session

    monkeypatch.setattr(upstream_client, "get_client_session", _get_session)
    monkeypatch.setattr(proxy_egress, "get_client_session", _get_session)
    if "main" in sys.modules:
        monkeypatch.setattr(sys.modules["main"], "get_client_session", _get_session)
    return session
