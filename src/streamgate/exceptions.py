"""
exceptions.py — streamgate Unified Error Hierarchy

All streamgate-specific exceptions live here. Every layer of the stack
raises typed subclasses of StreamGateError — never bare Exception.

Import from here, not from individual modules:
    from streamgate.exceptions import MessageParseError, GatewayBindError

Hierarchy:
    StreamGateError
    ├── GatewayError
    │   ├── MessageParseError
    │   ├── MessageRejectedError
    │   ├── SessionClosedError
    │   └── TransportError
    │       └── GatewayBindError
    └── ConfigError
"""

from __future__ import annotations


# ─────────────────────────────────────────────────────────────────────────────
# Root
# ─────────────────────────────────────────────────────────────────────────────

class StreamGateError(Exception):
    """Base class for all streamgate exceptions."""


# ─────────────────────────────────────────────────────────────────────────────
# Gateway layer
# ─────────────────────────────────────────────────────────────────────────────

class GatewayError(StreamGateError):
    """Base for session gateway errors."""


class MessageParseError(GatewayError):
    """An inbound request body is empty or not valid JSON."""


class MessageRejectedError(GatewayError):
    """
    Raised by an application server to refuse an inbound message.

    The gateway answers the POST that carried the message with a 400.
    """


class SessionClosedError(GatewayError):
    """An operation needs an active stream but the session is not ACTIVE."""

    def __init__(self, session_id: str, state: str = "", message: str = "") -> None:
        self.session_id = session_id
        self.state = state
        super().__init__(
            message or f"Session '{session_id}' is not active (state={state or 'unknown'})."
        )


class TransportError(GatewayError):
    """Listener or event-stream level failure."""


class GatewayBindError(TransportError):
    """The HTTP listener could not bind to the configured address."""

    def __init__(self, host: str, port: int, message: str = "") -> None:
        self.host = host
        self.port = port
        super().__init__(message or f"Could not bind gateway listener to {host}:{port}")


# ─────────────────────────────────────────────────────────────────────────────
# Configuration
# ─────────────────────────────────────────────────────────────────────────────

class ConfigError(StreamGateError):
    """Raised by Settings.validate_all() when one or more config problems are found."""
