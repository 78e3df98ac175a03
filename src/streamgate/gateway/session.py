"""
gateway/session.py — Per-Session State and Event Stream

One Session exists per open event stream. It owns:
  - the SSE response pushing messages to exactly one client connection
  - the application server instance bound to that client
  - the lifecycle state (OPENING → ACTIVE → CLOSING → CLOSED)
  - the attachment status of its application server
  - a closed event: the session's cancellation token, set once when the
    stream goes away and observable by anything holding the session
"""

from __future__ import annotations

import asyncio
import time
from enum import Enum
from typing import Any, Optional

from aiohttp import web
from aiohttp_sse import EventSourceResponse

from streamgate.exceptions import MessageRejectedError, SessionClosedError, TransportError
from streamgate.gateway.application import ApplicationServer
from streamgate.gateway.policy import HostGuard
from streamgate.gateway.protocol import (
    JSON_CONTENT_TYPE,
    EventType,
    encode_message,
    endpoint_url,
)
from streamgate.observability.logger import get_logger

log = get_logger(__name__)


class SessionState(str, Enum):
    OPENING = "opening"
    ACTIVE  = "active"
    CLOSING = "closing"
    CLOSED  = "closed"


class AttachState(str, Enum):
    PENDING  = "pending"
    ATTACHED = "attached"
    FAILED   = "failed"


class Session:
    """One client's event stream plus its bound application server."""

    def __init__(
        self,
        session_id: str,
        server: ApplicationServer,
        *,
        endpoint: str,
        guard: Optional[HostGuard] = None,
        ping_interval: float = 15.0,
    ):
        self.id = session_id
        self.server = server
        self.endpoint = endpoint
        self.guard = guard or HostGuard()
        self.created_at = time.time()

        self.state = SessionState.OPENING
        self.attach_state = AttachState.PENDING
        self.attach_error: Optional[str] = None

        self.stream: Optional[EventSourceResponse] = None
        self._ping_interval = ping_interval

        # Metrics
        self.messages_received: int = 0
        self.messages_sent: int = 0

        self._closed = asyncio.Event()
        # Set when attachment succeeds, fails, or the session closes first
        self._attach_done = asyncio.Event()

    # ── State ─────────────────────────────────────────────────────────────────

    @property
    def is_active(self) -> bool:
        return self.state is SessionState.ACTIVE

    @property
    def is_closed(self) -> bool:
        return self._closed.is_set()

    @property
    def endpoint_url(self) -> str:
        return endpoint_url(self.endpoint, self.id)

    def info(self) -> dict[str, Any]:
        """Health snapshot: lifecycle, attachment and traffic counters."""
        return {
            "session_id": self.id,
            "state": self.state.value,
            "attach_state": self.attach_state.value,
            "attach_error": self.attach_error,
            "created_at": self.created_at,
            "messages_received": self.messages_received,
            "messages_sent": self.messages_sent,
        }

    # ── Event stream ──────────────────────────────────────────────────────────

    async def start(self, request: web.Request) -> EventSourceResponse:
        """
        Open the event stream on `request` and announce the POST endpoint.

        The session becomes ACTIVE once the endpoint event has been written.
        """
        if self.stream is not None:
            raise TransportError(f"Event stream for session '{self.id}' already started")
        if self.state is not SessionState.OPENING:
            raise SessionClosedError(self.id, self.state.value)

        stream = EventSourceResponse(ping_interval=self._ping_interval)
        self.stream = stream

        await stream.prepare(request)
        await stream.send(self.endpoint_url, event=EventType.ENDPOINT.value)

        # close() may have run while the endpoint event was being written
        if self.state is SessionState.OPENING:
            self.state = SessionState.ACTIVE
        log.debug("session.stream_started", session_id=self.id)
        return stream

    async def send(self, message: Any) -> None:
        """Push one message to the client as an SSE `message` event."""
        if not self.is_active or self.stream is None:
            raise SessionClosedError(self.id, self.state.value)
        try:
            await self.stream.send(encode_message(message), event=EventType.MESSAGE.value)
        except ConnectionResetError as e:
            raise SessionClosedError(
                self.id, self.state.value, f"Event stream for session '{self.id}' was reset"
            ) from e
        except (asyncio.TimeoutError, TimeoutError) as e:
            # aiohttp-sse has already stopped the stream and aborted the transport.
            raise SessionClosedError(
                self.id, self.state.value, f"Event stream for session '{self.id}' stalled"
            ) from e
        self.messages_sent += 1

    async def wait_disconnected(self) -> None:
        """Suspend until the client connection drops or close() stops the stream."""
        if self.stream is None or self.is_closed:
            await self._closed.wait()
            return
        await self.stream.wait()

    async def wait_closed(self) -> None:
        """Suspend until close() has run. Intended for application servers."""
        await self._closed.wait()

    def mark_closing(self) -> None:
        if self.state in (SessionState.OPENING, SessionState.ACTIVE):
            self.state = SessionState.CLOSING

    def close(self) -> None:
        """Stop the stream and signal the closed event. Idempotent."""
        if self.state is SessionState.CLOSED:
            return
        self.mark_closing()
        self._closed.set()
        self._attach_done.set()
        if self.stream is not None and self.stream.prepared:
            try:
                self.stream.stop_streaming()
            except RuntimeError:
                # Response was prepared but never started its keep-alive task.
                pass
        self.state = SessionState.CLOSED
        log.debug("session.closed", session_id=self.id)

    # ── Application server attachment ─────────────────────────────────────────

    def mark_attached(self) -> None:
        self.attach_state = AttachState.ATTACHED
        self.attach_error = None
        self._attach_done.set()

    def mark_attach_failed(self, error: BaseException) -> None:
        self.attach_state = AttachState.FAILED
        self.attach_error = str(error) or type(error).__name__
        self._attach_done.set()

    async def wait_attached(self) -> bool:
        """Wait for attachment to settle; True if the server is attached."""
        await self._attach_done.wait()
        return self.attach_state is AttachState.ATTACHED

    # ── Inbound messages ──────────────────────────────────────────────────────

    async def handle_post_message(self, request: web.Request, message: Any) -> web.Response:
        """
        Deliver one parsed inbound message to the bound application server.

        Response contract:
            403  Host/Origin rejected by the rebinding guard
            400  Content-Type is not application/json
            400  the application server raised MessageRejectedError
            404  the session closed while waiting for attachment
            503  the application server failed to attach
            500  the event stream was never established
            202  accepted; any reply arrives on the event stream
        """
        if not self.is_active:
            return web.Response(status=500, text="Event stream not established")

        problem = self.guard.check(request.headers)
        if problem is not None:
            log.info("session.request_rejected", session_id=self.id, reason=problem)
            return web.Response(status=403, text=problem)

        if request.content_type != JSON_CONTENT_TYPE:
            return web.Response(
                status=400, text=f"Unsupported content-type: {request.content_type}"
            )

        attached = await self.wait_attached()
        if not self.is_active:
            return web.Response(status=404, text="Session not found")
        if not attached:
            return web.Response(
                status=503, text="Session is not attached to an application server"
            )

        try:
            await self.server.receive(self, message)
        except MessageRejectedError as e:
            log.info("session.message_rejected", session_id=self.id, reason=str(e))
            return web.Response(status=400, text=f"Invalid message: {e}")

        self.messages_received += 1
        return web.Response(status=202, text="Accepted")

    def __repr__(self) -> str:
        return (
            f"Session(id={self.id!r}, state={self.state.value}, "
            f"attach={self.attach_state.value})"
        )
