"""
tests/unit/test_session.py — Session Lifecycle Tests

Covers the session state machine, outbound sends, attachment tracking and
the inbound POST response contract without a live listener.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from aiohttp.test_utils import make_mocked_request

from streamgate.exceptions import MessageRejectedError, SessionClosedError, TransportError
from streamgate.gateway.policy import HostGuard
from streamgate.gateway.session import AttachState, Session, SessionState


def _session(**kwargs) -> Session:
    return Session("sess-1", AsyncMock(), endpoint="/mcp", **kwargs)


def _active_session(**kwargs) -> Session:
    session = _session(**kwargs)
    session.stream = MagicMock()
    session.stream.send = AsyncMock()
    session.stream.prepared = False
    session.state = SessionState.ACTIVE
    return session


def _post(headers=None):
    headers = {"Content-Type": "application/json", **(headers or {})}
    return make_mocked_request("POST", "/mcp?sessionId=sess-1", headers=headers)


# ─────────────────────────────────────────────────────────────────────────────
# State machine
# ─────────────────────────────────────────────────────────────────────────────

class TestSessionState:
    def test_new_session_is_opening(self):
        session = _session()
        assert session.state is SessionState.OPENING
        assert session.attach_state is AttachState.PENDING
        assert session.is_active is False
        assert session.is_closed is False

    def test_endpoint_url(self):
        assert _session().endpoint_url == "/mcp?sessionId=sess-1"

    def test_close_is_idempotent(self):
        session = _active_session()
        session.close()
        session.close()
        assert session.state is SessionState.CLOSED
        assert session.is_closed is True

    def test_close_before_start(self):
        session = _session()
        session.close()
        assert session.state is SessionState.CLOSED

    def test_mark_closing_only_from_live_states(self):
        session = _active_session()
        session.mark_closing()
        assert session.state is SessionState.CLOSING
        session.close()
        session.mark_closing()
        assert session.state is SessionState.CLOSED

    def test_close_stops_prepared_stream(self):
        session = _active_session()
        session.stream.prepared = True
        session.close()
        session.stream.stop_streaming.assert_called_once()

    def test_info_snapshot(self):
        session = _active_session()
        info = session.info()
        assert info["session_id"] == "sess-1"
        assert info["state"] == "active"
        assert info["attach_state"] == "pending"
        assert info["messages_received"] == 0
        assert info["messages_sent"] == 0

    @pytest.mark.asyncio
    async def test_wait_closed_resolves_on_close(self):
        session = _active_session()
        waiter = asyncio.create_task(session.wait_closed())
        await asyncio.sleep(0)
        assert not waiter.done()
        session.close()
        await asyncio.wait_for(waiter, timeout=1.0)

    @pytest.mark.asyncio
    async def test_wait_disconnected_without_stream_waits_for_close(self):
        session = _session()
        session.close()
        await asyncio.wait_for(session.wait_disconnected(), timeout=1.0)

    @pytest.mark.asyncio
    async def test_start_uses_configured_ping_interval(self):
        session = _session(ping_interval=0.05)
        with patch("streamgate.gateway.session.EventSourceResponse") as sse_cls:
            sse_cls.return_value.prepare = AsyncMock()
            sse_cls.return_value.send = AsyncMock()
            await session.start(make_mocked_request("GET", "/mcp"))
        sse_cls.assert_called_once_with(ping_interval=0.05)
        sse_cls.return_value.send.assert_awaited_once_with(
            "/mcp?sessionId=sess-1", event="endpoint"
        )
        assert session.is_active

    @pytest.mark.asyncio
    async def test_start_twice_rejected(self):
        session = _session()
        session.stream = MagicMock()
        with pytest.raises(TransportError, match="already started"):
            await session.start(make_mocked_request("GET", "/mcp"))

    @pytest.mark.asyncio
    async def test_start_after_close_rejected(self):
        session = _session()
        session.close()
        with pytest.raises(SessionClosedError):
            await session.start(make_mocked_request("GET", "/mcp"))


# ─────────────────────────────────────────────────────────────────────────────
# Outbound
# ─────────────────────────────────────────────────────────────────────────────

class TestSessionSend:
    @pytest.mark.asyncio
    async def test_send_writes_message_event(self):
        session = _active_session()
        await session.send({"type": "pong"})
        session.stream.send.assert_awaited_once_with('{"type":"pong"}', event="message")
        assert session.messages_sent == 1

    @pytest.mark.asyncio
    async def test_send_on_opening_session_rejected(self):
        session = _session()
        with pytest.raises(SessionClosedError):
            await session.send({"type": "pong"})

    @pytest.mark.asyncio
    async def test_send_on_closed_session_rejected(self):
        session = _active_session()
        session.close()
        with pytest.raises(SessionClosedError):
            await session.send({"type": "pong"})

    @pytest.mark.asyncio
    async def test_send_connection_reset_becomes_session_closed(self):
        session = _active_session()
        session.stream.send.side_effect = ConnectionResetError("gone")
        with pytest.raises(SessionClosedError, match="reset"):
            await session.send({"type": "pong"})
        assert session.messages_sent == 0

    @pytest.mark.asyncio
    async def test_send_stalled_client_becomes_session_closed(self):
        session = _active_session()
        session.stream.send.side_effect = TimeoutError()
        with pytest.raises(SessionClosedError, match="stalled"):
            await session.send({"type": "pong"})
        assert session.messages_sent == 0


# ─────────────────────────────────────────────────────────────────────────────
# Attachment
# ─────────────────────────────────────────────────────────────────────────────

class TestAttachment:
    @pytest.mark.asyncio
    async def test_wait_attached_true_after_mark_attached(self):
        session = _active_session()
        session.mark_attached()
        assert await session.wait_attached() is True
        assert session.attach_state is AttachState.ATTACHED

    @pytest.mark.asyncio
    async def test_wait_attached_false_after_failure(self):
        session = _active_session()
        session.mark_attach_failed(RuntimeError("boom"))
        assert await session.wait_attached() is False
        assert session.attach_state is AttachState.FAILED
        assert session.attach_error == "boom"

    def test_attach_error_falls_back_to_type_name(self):
        session = _active_session()
        session.mark_attach_failed(RuntimeError())
        assert session.attach_error == "RuntimeError"

    @pytest.mark.asyncio
    async def test_close_releases_attach_waiters(self):
        session = _active_session()
        waiter = asyncio.create_task(session.wait_attached())
        await asyncio.sleep(0)
        session.close()
        assert await asyncio.wait_for(waiter, timeout=1.0) is False


# ─────────────────────────────────────────────────────────────────────────────
# Inbound POST contract
# ─────────────────────────────────────────────────────────────────────────────

class TestHandlePostMessage:
    @pytest.mark.asyncio
    async def test_accepted(self):
        session = _active_session()
        session.mark_attached()
        resp = await session.handle_post_message(_post(), {"type": "ping"})
        assert resp.status == 202
        assert resp.text == "Accepted"
        session.server.receive.assert_awaited_once_with(session, {"type": "ping"})
        assert session.messages_received == 1

    @pytest.mark.asyncio
    async def test_not_established(self):
        session = _session()
        resp = await session.handle_post_message(_post(), {"type": "ping"})
        assert resp.status == 500
        session.server.receive.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_wrong_content_type(self):
        session = _active_session()
        session.mark_attached()
        resp = await session.handle_post_message(
            _post({"Content-Type": "text/plain"}), {"type": "ping"}
        )
        assert resp.status == 400
        assert "text/plain" in resp.text
        session.server.receive.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_guard_rejection(self):
        guard = HostGuard.for_listener("127.0.0.1", 3000, ["http://app.example"])
        session = _active_session(guard=guard)
        session.mark_attached()
        resp = await session.handle_post_message(
            _post({"Host": "rebind.example"}), {"type": "ping"}
        )
        assert resp.status == 403
        assert resp.text == "Invalid Host header: rebind.example"

    @pytest.mark.asyncio
    async def test_attach_failed(self):
        session = _active_session()
        session.mark_attach_failed(RuntimeError("boom"))
        resp = await session.handle_post_message(_post(), {"type": "ping"})
        assert resp.status == 503
        session.server.receive.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_waits_for_pending_attach(self):
        session = _active_session()
        task = asyncio.create_task(session.handle_post_message(_post(), {"type": "ping"}))
        await asyncio.sleep(0)
        assert not task.done()
        session.mark_attached()
        resp = await asyncio.wait_for(task, timeout=1.0)
        assert resp.status == 202

    @pytest.mark.asyncio
    async def test_closed_while_waiting_for_attach(self):
        session = _active_session()
        task = asyncio.create_task(session.handle_post_message(_post(), {"type": "ping"}))
        await asyncio.sleep(0)
        session.close()
        resp = await asyncio.wait_for(task, timeout=1.0)
        assert resp.status == 404
        session.server.receive.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rejected_message(self):
        session = _active_session()
        session.mark_attached()
        session.server.receive.side_effect = MessageRejectedError("missing 'type'")
        resp = await session.handle_post_message(_post(), {})
        assert resp.status == 400
        assert resp.text == "Invalid message: missing 'type'"
        assert session.messages_received == 0

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self):
        session = _active_session()
        session.mark_attached()
        session.server.receive.side_effect = RuntimeError("crash")
        with pytest.raises(RuntimeError):
            await session.handle_post_message(_post(), {"type": "ping"})
