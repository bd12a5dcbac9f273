"""
Shared fixtures: a scripted fake weather agent and a minimal config.
"""

import asyncio
import json

import httpx
import pytest

AGENT_URL = "http://agent.test/api/agents/weatherAgent/stream"


class FakeAgent:
    """
    Scripted upstream for httpx.MockTransport.

    chunks      byte chunks to stream back, in order
    status      HTTP status to answer with
    delay       seconds to sleep before each chunk
    fail_after  raise httpx.ReadError after this many chunks
    """

    def __init__(self, chunks=(), status=200, delay=0.0, fail_after=None, connect_error=False):
        self.chunks = [c.encode() if isinstance(c, str) else c for c in chunks]
        self.status = status
        self.delay = delay
        self.fail_after = fail_after
        self.connect_error = connect_error
        self.requests: list[dict] = []

    async def _body(self):
        for i, chunk in enumerate(self.chunks):
            if self.fail_after is not None and i >= self.fail_after:
                raise httpx.ReadError("upstream went away")
            if self.delay:
                await asyncio.sleep(self.delay)
            yield chunk

    async def handler(self, request: httpx.Request) -> httpx.Response:
        if self.connect_error:
            raise httpx.ConnectError("connection refused", request=request)
        self.requests.append(json.loads(request.content))
        if self.status >= 400:
            return httpx.Response(self.status)
        return httpx.Response(
            self.status,
            headers={"content-type": "text/plain; charset=utf-8"},
            content=self._body(),
        )

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def fake_agent():
    """Factory: fake_agent(chunks=[...], status=200, ...) -> FakeAgent."""
    return FakeAgent


@pytest.fixture
def cfg(tmp_path):
    return {
        "server": {"host": "127.0.0.1", "port": 5000},
        "agent": {
            "url": AGENT_URL,
            "timeout": 10,
            "max_concurrent": 4,
            "default_thread_id": "demo-thread",
            "headers": {"x-mastra-dev-playground": "true"},
        },
        "storage": {"backend": "memory", "sqlite_path": str(tmp_path / "test.db")},
        "demo_user": "demo-user",
        "logging": {"level": "WARNING"},
    }
