"""
gateway/gateway_client.py — Async Event Stream Client

Thin async client for the gateway: opens the event stream, learns the
POST endpoint from the first `endpoint` event, then sends messages over
HTTP POST and yields the messages pushed back on the stream.

Usage:
    async with GatewayClient("http://127.0.0.1:3000/mcp") as client:
        await client.send({"type": "ping"})
        async for msg in client.messages():
            print(msg)
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncGenerator
from typing import Any, Optional

import httpx

from streamgate.exceptions import TransportError
from streamgate.gateway.protocol import SSE_CONTENT_TYPE, EventType, session_id_from_endpoint
from streamgate.observability.logger import get_logger

log = get_logger(__name__)

_END = object()


class GatewayClient:
    """
    Async SSE client for the streamgate gateway.

    Async context manager — connects on enter, disconnects on exit.
    """

    def __init__(
        self,
        url: str = "http://127.0.0.1:3000/mcp",
        *,
        headers: Optional[dict[str, str]] = None,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._url = url
        self._headers = dict(headers or {})
        self._timeout = timeout
        self._http = http_client
        self._owns_http = http_client is None
        self._response: Optional[httpx.Response] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._inbox: asyncio.Queue = asyncio.Queue()

        self.endpoint: Optional[str] = None
        self.session_id: Optional[str] = None

    async def __aenter__(self) -> "GatewayClient":
        await self.connect()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.disconnect()

    # ─────────────────────────────────────────────────────────────────────────
    # Connection lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    async def connect(self) -> None:
        """Open the event stream and wait for the endpoint announcement."""
        if self._http is None:
            # The stream is long-lived: no read timeout on it.
            self._http = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout, read=None))

        request = self._http.build_request(
            "GET", self._url, headers={"Accept": SSE_CONTENT_TYPE, **self._headers}
        )
        self._response = await self._http.send(request, stream=True)
        if self._response.status_code != 200:
            await self._response.aread()
            status, text = self._response.status_code, self._response.text
            await self.disconnect()
            raise TransportError(f"Stream request failed with {status}: {text}")

        events = self._iter_events(self._response)
        try:
            endpoint = await asyncio.wait_for(self._next_endpoint(events), self._timeout)
        except asyncio.TimeoutError as e:
            await self.disconnect()
            raise TransportError("Timed out waiting for the endpoint event") from e
        except TransportError:
            await self.disconnect()
            raise

        self.endpoint = str(httpx.URL(self._url).join(endpoint))
        self.session_id = session_id_from_endpoint(endpoint)
        self._reader_task = asyncio.create_task(self._reader_loop(events))
        log.info("gateway_client.connected", url=self._url, session_id=self.session_id)

    async def disconnect(self) -> None:
        """Close the stream (the server then drops the session)."""
        if self._reader_task is not None:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            self._reader_task = None
        if self._response is not None:
            await self._response.aclose()
            self._response = None
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None
        log.info("gateway_client.disconnected", session_id=self.session_id)

    # ─────────────────────────────────────────────────────────────────────────
    # Event stream parsing
    # ─────────────────────────────────────────────────────────────────────────

    @staticmethod
    async def _iter_events(
        response: httpx.Response,
    ) -> AsyncGenerator[tuple[str, str], None]:
        """Yield (event, data) pairs from a text/event-stream body."""
        event, data = EventType.MESSAGE.value, []
        async for line in response.aiter_lines():
            if not line:
                if data:
                    yield event, "\n".join(data)
                event, data = EventType.MESSAGE.value, []
                continue
            if line.startswith(":"):
                continue  # keep-alive comment
            name, _, value = line.partition(":")
            if value.startswith(" "):
                value = value[1:]
            if name == "event":
                event = value
            elif name == "data":
                data.append(value)

    @staticmethod
    async def _next_endpoint(events: AsyncGenerator[tuple[str, str], None]) -> str:
        async for event, data in events:
            if event == EventType.ENDPOINT.value:
                return data
        raise TransportError("Stream ended before the endpoint event arrived")

    async def _reader_loop(self, events: AsyncGenerator[tuple[str, str], None]) -> None:
        try:
            async for event, data in events:
                if event != EventType.MESSAGE.value:
                    continue
                try:
                    await self._inbox.put(json.loads(data))
                except json.JSONDecodeError:
                    log.warning("gateway_client.bad_message", data=data[:200])
        except httpx.HTTPError as e:
            log.warning("gateway_client.connection_lost", error=str(e))
        finally:
            await self._inbox.put(_END)

    # ─────────────────────────────────────────────────────────────────────────
    # Public API
    # ─────────────────────────────────────────────────────────────────────────

    async def send(self, message: Any) -> int:
        """POST one message to the session endpoint; returns the HTTP status."""
        if self._http is None or self.endpoint is None:
            raise TransportError("Client is not connected")
        resp = await self._http.post(self.endpoint, json=message, headers=self._headers)
        if resp.status_code >= 300:
            raise TransportError(f"POST failed with {resp.status_code}: {resp.text}")
        return resp.status_code

    async def messages(self) -> AsyncGenerator[Any, None]:
        """Yield messages pushed on the stream until it closes."""
        while True:
            msg = await self._inbox.get()
            if msg is _END:
                # Leave the marker for any other consumer.
                await self._inbox.put(_END)
                return
            yield msg
