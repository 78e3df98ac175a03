"""
gateway/ — SSE Session Gateway

Multiplexes many long-lived client sessions over one HTTP mount path:
an event stream (GET) carries server → client messages, and stateless
POSTs carry client → server messages, correlated by session id.

Each session is bound to its own application server instance; the gateway
only routes JSON between the two and never interprets payloads.
"""

from streamgate.gateway.application import ApplicationServer, ServerFactory
from streamgate.gateway.gateway_client import GatewayClient
from streamgate.gateway.gateway_server import GatewayServer
from streamgate.gateway.protocol import EventType
from streamgate.gateway.session import AttachState, Session, SessionState
from streamgate.gateway.session_store import SessionRegistry

__all__ = [
    "ApplicationServer",
    "ServerFactory",
    "AttachState",
    "EventType",
    "GatewayClient",
    "GatewayServer",
    "Session",
    "SessionRegistry",
    "SessionState",
]
