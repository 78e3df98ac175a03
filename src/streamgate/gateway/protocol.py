"""
gateway/protocol.py — Event Stream Wire Format

Names and helpers shared by the gateway server and client:
  - SSE event names (the initial `endpoint` announcement, then `message`)
  - where an inbound POST carries its session id (query param, then header)
  - JSON body parsing / message encoding

The gateway never looks inside a message; it only checks that the body is
JSON and hands the decoded value to the application server.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any

from yarl import URL

from streamgate.exceptions import MessageParseError


# ─────────────────────────────────────────────────────────────────────────────
# Event types
# ─────────────────────────────────────────────────────────────────────────────

class EventType(str, Enum):
    """SSE `event:` names pushed from server to client."""

    ENDPOINT = "endpoint"   # first event: where to POST inbound messages
    MESSAGE  = "message"    # every application-server message afterwards


# ─────────────────────────────────────────────────────────────────────────────
# Session id carriers
# ─────────────────────────────────────────────────────────────────────────────

SESSION_ID_PARAM  = "sessionId"
SESSION_ID_HEADER = "X-Session-ID"

JSON_CONTENT_TYPE = "application/json"
SSE_CONTENT_TYPE  = "text/event-stream"


def endpoint_url(path: str, session_id: str) -> str:
    """Relative URL announced in the endpoint event, e.g. `/mcp?sessionId=...`."""
    return str(URL(path).update_query({SESSION_ID_PARAM: session_id}))


def session_id_from_endpoint(endpoint: str) -> str | None:
    """Extract the session id from an endpoint event's data, if present."""
    return URL(endpoint).query.get(SESSION_ID_PARAM) or None


# ─────────────────────────────────────────────────────────────────────────────
# Message bodies
# ─────────────────────────────────────────────────────────────────────────────

def parse_message(body: bytes | str) -> Any:
    """
    Decode a POST body as JSON.

    Raises MessageParseError for empty bodies, non-UTF-8 bytes and
    malformed JSON.
    """
    if isinstance(body, bytes):
        try:
            body = body.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MessageParseError(f"Body is not valid UTF-8: {e}") from e
    if not body.strip():
        raise MessageParseError("Body is empty")
    try:
        return json.loads(body)
    except json.JSONDecodeError as e:
        raise MessageParseError(str(e)) from e


def encode_message(message: Any) -> str:
    """Serialize an outbound message for an SSE `data:` field."""
    # Compact separators keep the payload on one line; json.dumps escapes
    # embedded newlines so the SSE frame cannot be split.
    return json.dumps(message, separators=(",", ":"))
