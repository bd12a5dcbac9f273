"""
Client for the weatherchat HTTP API: the part the browser plays in the
web app, usable from Python and from the CLI.

One chat turn goes:
  1. make sure a conversation is selected (create one if not)
  2. store the user message
  3. call the relay with the whole history
  4. decode the byte stream incrementally, growing `streaming_message`
  5. store the finished assistant message, clear the buffer

A failure in 3-5 sets `error`, clears the buffer and stores nothing for
the assistant. Streaming is pull-based: turn() is an async generator the
caller drains; send_message() drains it for you.
"""

from __future__ import annotations

import codecs
import logging
import time
from datetime import datetime, timezone

import httpx

from weatherchat.errors import (
    NotFoundError,
    StreamError,
    UpstreamError,
    ValidationError,
    WeatherChatError,
)

logger = logging.getLogger(__name__)

TITLE_LIMIT = 50


def make_title(content: str) -> str:
    """First 50 characters of the opening message, with ... when cut."""
    if len(content) > TITLE_LIMIT:
        return content[:TITLE_LIMIT] + "..."
    return content


def make_thread_id() -> str:
    return f"thread-{int(time.time() * 1000)}"


class WeatherChatClient:
    """Stateful chat client: tracks the selected conversation and the live reply."""

    def __init__(
        self,
        base_url: str = "http://localhost:5000",
        timeout: float = 120,
        http: httpx.AsyncClient | None = None,
    ):
        self._http = http or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self.conversations: list[dict] = []
        self.current_conversation: dict | None = None
        self.streaming_message = ""
        self.is_streaming = False
        self.error: str | None = None
        self.last_reply: dict | None = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    async def aclose(self):
        await self._http.aclose()

    @property
    def current_conversation_id(self) -> str | None:
        return self.current_conversation["id"] if self.current_conversation else None

    # ------------------------------------------------------------------
    # Plain API calls
    # ------------------------------------------------------------------

    async def _request(self, method: str, path: str, **kwargs):
        try:
            resp = await self._http.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise WeatherChatError(f"{method} {path} failed: {e}") from e

        if resp.status_code == 404:
            raise NotFoundError(self._error_text(resp))
        if resp.status_code == 400:
            raise ValidationError(self._error_text(resp))
        if not resp.is_success:
            raise WeatherChatError(f"{method} {path} -> HTTP {resp.status_code}: {self._error_text(resp)}")
        return resp.json()

    @staticmethod
    def _error_text(resp: httpx.Response) -> str:
        try:
            return resp.json().get("error", resp.text)
        except ValueError:
            return resp.text

    async def load_conversations(self) -> list[dict]:
        """Refresh the list; selects the most recent one if nothing is selected."""
        self.conversations = await self._request("GET", "/api/conversations")
        if self.current_conversation is None and self.conversations:
            self.current_conversation = self.conversations[0]
        return self.conversations

    async def select(self, conversation_id: str) -> dict:
        self.current_conversation = await self._request("GET", f"/api/conversations/{conversation_id}")
        return self.current_conversation

    async def load_messages(self, conversation_id: str | None = None) -> list[dict]:
        conversation_id = conversation_id or self.current_conversation_id
        if conversation_id is None:
            return []
        return await self._request("GET", f"/api/conversations/{conversation_id}/messages")

    async def create_conversation(self, title: str, thread_id: str) -> dict:
        conv = await self._request(
            "POST", "/api/conversations", json={"title": title, "threadId": thread_id}
        )
        self.conversations.insert(0, conv)
        self.current_conversation = conv
        return conv

    async def create_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        metadata: dict | None = None,
    ) -> dict:
        body = {"role": role, "content": content}
        if metadata is not None:
            body["metadata"] = metadata
        return await self._request(
            "POST", f"/api/conversations/{conversation_id}/messages", json=body
        )

    async def delete_conversation(self, conversation_id: str):
        await self._request("DELETE", f"/api/conversations/{conversation_id}")
        self.conversations = [c for c in self.conversations if c["id"] != conversation_id]
        if self.current_conversation_id == conversation_id:
            self.current_conversation = None

    def new_conversation(self):
        """Deselect; the next message starts a fresh conversation."""
        self.current_conversation = None

    async def clear_history(self):
        for conv in list(await self.load_conversations()):
            await self.delete_conversation(conv["id"])

    async def get_settings(self) -> dict:
        return await self._request("GET", "/api/settings")

    async def update_settings(self, **changes) -> dict:
        return await self._request("PATCH", "/api/settings", json=changes)

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def stream_reply(self, messages: list[dict], thread_id: str):
        """
        Call the relay and yield decoded text as it arrives.
        UpstreamError if the call is refused, StreamError if it breaks midway.
        """
        # Execution parameters come from the server's configured defaults
        payload = {"messages": messages, "threadId": thread_id}
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        started = False
        try:
            async with self._http.stream("POST", "/api/weather-agent/stream", json=payload) as resp:
                if not resp.is_success:
                    await resp.aread()
                    raise UpstreamError(
                        f"Weather agent API responded with {resp.status_code}",
                        status_code=resp.status_code,
                    )
                started = True
                async for chunk in resp.aiter_bytes():
                    text = decoder.decode(chunk)
                    if text:
                        yield text
        except httpx.HTTPError as e:
            if started:
                raise StreamError(f"Connection lost mid-reply: {e}") from e
            raise UpstreamError(f"Failed to reach weather agent: {e}") from e

        tail = decoder.decode(b"", final=True)
        if tail:
            yield tail

    async def _ensure_conversation(self, content: str) -> dict:
        if self.current_conversation is not None:
            return self.current_conversation
        return await self.create_conversation(make_title(content), make_thread_id())

    async def turn(self, content: str):
        """
        Run one chat turn, yielding reply text as it streams.
        The stored assistant message ends up in `last_reply`.
        """
        if not content.strip():
            return
        if self.is_streaming:
            raise RuntimeError("a reply is already streaming")

        self.is_streaming = True
        self.streaming_message = ""
        self.error = None
        self.last_reply = None
        try:
            conv = await self._ensure_conversation(content)
            await self.create_message(conv["id"], "user", content)
            history = [
                {"role": m["role"], "content": m["content"]}
                for m in await self.load_messages(conv["id"])
            ]

            async for text in self.stream_reply(history, conv["threadId"]):
                self.streaming_message += text
                yield text
            self.last_reply = await self.create_message(
                conv["id"],
                "assistant",
                self.streaming_message,
                metadata={"timestamp": datetime.now(timezone.utc).isoformat()},
            )
        except WeatherChatError as e:
            self.error = str(e)
            logger.warning("Weather agent error: %s", e)
            raise
        finally:
            self.is_streaming = False
            self.streaming_message = ""

    async def send_message(self, content: str) -> dict | None:
        """Run a full turn. Returns the stored assistant message, or None on failure."""
        try:
            async for _ in self.turn(content):
                pass
        except WeatherChatError:
            return None
        return self.last_reply
