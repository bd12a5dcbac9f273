"""
Relay: the core of weatherchat.
Takes a chat turn (message history + thread id), opens one streaming POST
to the hosted weather agent, and hands the upstream bytes back chunk by
chunk as they arrive.

The relay is content-agnostic: it never parses, merges or splits chunks,
and it never retries. maxRetries/maxSteps are hints for the agent and are
forwarded as-is.

Two phases:
  open()      connect and check the status. Fails with UpstreamError
              before any byte has been handed out.
  iteration   RelayStream yields raw chunks. A failure here is a
              StreamError; whatever was already yielded stays yielded.

A semaphore bounds how many upstream calls are in flight per process.
A slot is held from connect until the upstream response is closed.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

import httpx

from weatherchat.errors import StreamError, UpstreamError

logger = logging.getLogger(__name__)

# Execution parameters the agent accepts, with the values the web client sends.
DEFAULT_OPTIONS = {
    "runId": "weatherAgent",
    "maxRetries": 2,
    "maxSteps": 5,
    "temperature": 0.5,
    "topP": 1,
    "runtimeContext": {},
    "resourceId": "weatherAgent",
}


class RelayStream:
    """
    One open upstream response. Iterate it once to receive the chunks;
    closing it (explicitly or by finishing the iteration) frees the slot.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        response: httpx.Response,
        release: Callable[[], None],
        thread_id: str,
    ):
        self._client = client
        self._response = response
        self._release = release
        self._slot_held = True
        self._consumed = False
        self._t0 = time.monotonic()
        self.thread_id = thread_id
        self.status_code = response.status_code
        self.chunks = 0
        self.bytes = 0

    @property
    def content_type(self) -> str:
        return self._response.headers.get("content-type", "")

    async def __aiter__(self):
        if self._consumed:
            raise RuntimeError("RelayStream can only be iterated once")
        self._consumed = True
        try:
            async for chunk in self._response.aiter_bytes():
                self.chunks += 1
                self.bytes += len(chunk)
                yield chunk
        except httpx.HTTPError as e:
            logger.warning(
                "Relay stream for thread %s broke after %d bytes: %s",
                self.thread_id, self.bytes, e,
            )
            raise StreamError(f"Upstream stream failed: {e}") from e
        else:
            logger.info(
                "Relay finished for thread %s: %d chunks, %d bytes in %.0fms",
                self.thread_id, self.chunks, self.bytes,
                (time.monotonic() - self._t0) * 1000,
            )
        finally:
            await self.aclose()

    def _release_slot(self):
        if self._slot_held:
            self._slot_held = False
            self._release()

    async def aclose(self):
        """Close the upstream response. Safe to call more than once."""
        # Free the slot before awaiting: a cancelled caller may not get past the first await.
        self._release_slot()
        if not self._response.is_closed:
            await self._response.aclose()
        if not self._client.is_closed:
            await self._client.aclose()

    @property
    def closed(self) -> bool:
        return self._response.is_closed and not self._slot_held


class AgentRelay:
    """Streaming pass-through client for the hosted weather agent."""

    def __init__(
        self,
        url: str,
        timeout: float = 120,
        max_concurrent: int = 16,
        headers: dict | None = None,
        defaults: dict | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.url = url
        self.timeout = timeout
        self.max_concurrent = max_concurrent
        self.headers = dict(headers or {})
        self.defaults = {**DEFAULT_OPTIONS, **(defaults or {})}
        self._transport = transport
        self._slots = asyncio.Semaphore(max_concurrent)
        self._in_flight = 0

    @classmethod
    def from_config(cls, cfg: dict, transport: httpx.AsyncBaseTransport | None = None) -> "AgentRelay":
        a = cfg.get("agent", {})
        defaults = {
            "runId": a.get("run_id", DEFAULT_OPTIONS["runId"]),
            "resourceId": a.get("resource_id", DEFAULT_OPTIONS["resourceId"]),
            "maxRetries": a.get("max_retries", DEFAULT_OPTIONS["maxRetries"]),
            "maxSteps": a.get("max_steps", DEFAULT_OPTIONS["maxSteps"]),
            "temperature": a.get("temperature", DEFAULT_OPTIONS["temperature"]),
            "topP": a.get("top_p", DEFAULT_OPTIONS["topP"]),
        }
        return cls(
            url=a["url"],
            timeout=a.get("timeout", 120),
            max_concurrent=a.get("max_concurrent", 16),
            headers=a.get("headers", {}),
            defaults=defaults,
            transport=transport,
        )

    @property
    def in_flight(self) -> int:
        """Upstream calls currently holding a slot."""
        return self._in_flight

    async def _acquire(self):
        await self._slots.acquire()
        self._in_flight += 1

    def _release(self):
        self._in_flight -= 1
        self._slots.release()

    def build_payload(self, messages: list[dict], thread_id: str, options: dict | None = None) -> dict:
        """Request body for the agent: caller options win over configured defaults."""
        payload = {"messages": messages, **self.defaults}
        for key, value in (options or {}).items():
            if value is not None:
                payload[key] = value
        payload["threadId"] = thread_id
        return payload

    async def open(
        self,
        messages: list[dict],
        thread_id: str,
        options: dict | None = None,
    ) -> RelayStream:
        """
        Connect to the agent and return the open stream.
        Raises UpstreamError if the call cannot be established or the agent
        answers with a non-2xx status; nothing has been streamed in that case.
        """
        payload = self.build_payload(messages, thread_id, options)
        await self._acquire()
        client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        try:
            request = client.build_request("POST", self.url, json=payload, headers=self.headers)
            response = await client.send(request, stream=True)
        except httpx.HTTPError as e:
            self._release()
            await client.aclose()
            logger.warning("Weather agent unreachable (thread %s): %s", thread_id, e)
            raise UpstreamError(f"Failed to reach weather agent: {e}") from e
        except BaseException:
            self._release()
            await client.aclose()
            raise

        if not response.is_success:
            self._release()
            await response.aclose()
            await client.aclose()
            logger.warning(
                "Weather agent answered HTTP %d (thread %s)", response.status_code, thread_id
            )
            raise UpstreamError(
                f"Weather agent API responded with {response.status_code}",
                status_code=response.status_code,
            )

        logger.info(
            "Relay open for thread %s (%d messages, %d/%d slots)",
            thread_id, len(messages), self.in_flight, self.max_concurrent,
        )
        return RelayStream(client, response, self._release, thread_id)

    async def relay(self, messages: list[dict], thread_id: str, options: dict | None = None):
        """Open and drain in one go. Yields raw byte chunks."""
        stream = await self.open(messages, thread_id, options)
        async for chunk in stream:
            yield chunk
