"""
gateway/application.py — Application Server Binding

The gateway routes bytes; an application server gives them meaning. One
application server instance is created per session by a ServerFactory and
attached when the session's stream opens.

An application server:
  - is attached once with `attach(session)`; raising marks the session's
    attachment as failed but leaves the stream open
  - receives each parsed inbound message via `receive(session, message)`;
    raising MessageRejectedError answers the POST with 400
  - pushes replies with `await session.send(message)` at any time while the
    session is active
  - may `await session.wait_closed()` to release its own resources when the
    client goes away
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Protocol, runtime_checkable

if TYPE_CHECKING:
    from streamgate.gateway.session import Session


@runtime_checkable
class ApplicationServer(Protocol):
    """Per-session message handler bound to one event stream."""

    async def attach(self, session: "Session") -> None:
        """Bind to `session`. Called once, in the background, after the stream starts."""

    async def receive(self, session: "Session", message: Any) -> None:
        """Handle one inbound message delivered over HTTP POST."""


ServerFactory = Callable[[], ApplicationServer]
