"""
gateway/gateway_server.py — SSE Session Gateway

Multiplexes many client sessions over one HTTP mount path:

    GET  <path>                     open an event stream → new session
    POST <path>?sessionId=<id>      deliver one message to that session
    OPTIONS *                       CORS preflight, always 204

Each GET creates a Session, registers it, announces the POST endpoint on
the stream, attaches a fresh application server in the background, then
holds the connection until the client (or shutdown) closes it. Each POST
is stateless: parse, resolve the session, hand the message over.

Usage:
    server = GatewayServer(MyAppServer, host="127.0.0.1", port=3000)
    await server.start()          # starts listening
    await server.wait_closed()    # blocks until shutdown
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Optional, Sequence

import structlog
from aiohttp import web

from streamgate.exceptions import GatewayBindError, MessageParseError
from streamgate.gateway.application import ServerFactory
from streamgate.gateway.policy import HostGuard, cors_headers, is_loopback
from streamgate.gateway.protocol import SESSION_ID_HEADER, SESSION_ID_PARAM, parse_message
from streamgate.gateway.session import Session
from streamgate.gateway.session_store import SessionRegistry
from streamgate.observability.logger import bind_session, clear_session, get_logger

if TYPE_CHECKING:
    from streamgate.config.settings import Settings

log = get_logger(__name__)

_SESSION_KEY = web.RequestKey("session", Session)
_ALLOWED_METHODS = "GET, POST, OPTIONS"


class GatewayServer:
    """
    HTTP + Server-Sent Events gateway.

    Owns the aiohttp application, the session registry and the background
    attach tasks. The registry is the only state shared between requests.
    """

    def __init__(
        self,
        server_factory: ServerFactory,
        *,
        host: str = "127.0.0.1",
        port: int = 3000,
        path: str = "/mcp",
        allowed_origins: Optional[Sequence[str]] = None,
        ping_interval: float = 15.0,
        max_body_bytes: int = 4 * 1024 * 1024,
        registry: Optional[SessionRegistry] = None,
        logger: Optional[structlog.stdlib.BoundLogger] = None,
    ):
        self._server_factory = server_factory
        self._host = host
        self._port = port
        self._path = path
        self._allowed_origins: list[str] = list(allowed_origins or [])
        self._ping_interval = ping_interval
        self._max_body_bytes = max_body_bytes
        self._registry = registry or SessionRegistry()
        self._log = logger or log

        self._guard = HostGuard.for_listener(host, port, self._allowed_origins)
        self._attach_tasks: set[asyncio.Task] = set()
        self._runner: Optional[web.AppRunner] = None
        self._stopped = asyncio.Event()

        self.app = self._build_app()

    @classmethod
    def from_settings(
        cls,
        settings: "Settings",
        server_factory: ServerFactory,
        **kwargs: Any,
    ) -> "GatewayServer":
        gw = settings.gateway
        return cls(
            server_factory,
            host=gw.host,
            port=gw.port,
            path=gw.path,
            allowed_origins=gw.allowed_origins,
            ping_interval=gw.ping_interval,
            max_body_bytes=gw.max_body_bytes,
            **kwargs,
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Properties
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    @property
    def path(self) -> str:
        return self._path

    @property
    def url(self) -> str:
        return f"http://{self._host}:{self._port}{self._path}"

    async def session_health(self) -> list[dict[str, Any]]:
        """Lifecycle and attachment status of every registered session."""
        return await self._registry.snapshot()

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    def _build_app(self) -> web.Application:
        app = web.Application(client_max_size=self._max_body_bytes)
        app.on_response_prepare.append(self._apply_cors)
        # One catch-all route: path and method classification happen in
        # _handle so policy runs before any routing decision.
        app.router.add_route("*", "/{tail:.*}", self._handle)
        return app

    async def start(self) -> None:
        """Start listening. Raises GatewayBindError if the address is unusable."""
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()

        site = web.TCPSite(self._runner, self._host, self._port)
        try:
            await site.start()
        except OSError as e:
            self._log.error(
                "gateway.bind_failed", host=self._host, port=self._port, error=str(e)
            )
            await self._runner.cleanup()
            self._runner = None
            raise GatewayBindError(
                self._host, self._port,
                f"Could not bind gateway listener to {self._host}:{self._port}: {e}",
            ) from e

        if self._port == 0:
            # Ephemeral port: report and guard the port actually bound.
            self._port = self._runner.addresses[0][1]
            self._guard = HostGuard.for_listener(self._host, self._port, self._allowed_origins)

        self._stopped.clear()
        self._log.info("gateway.started", url=self.url)
        self._warn_insecure_defaults()

    async def wait_closed(self) -> None:
        """Block until shutdown() has completed."""
        await self._stopped.wait()

    async def shutdown(self) -> None:
        """Close every open session, then stop the listener."""
        for session_id in await self._registry.list_sessions():
            session = await self._registry.get(session_id)
            if session is not None:
                session.close()

        for task in list(self._attach_tasks):
            task.cancel()

        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None

        self._stopped.set()
        self._log.info("gateway.stopped")

    def _warn_insecure_defaults(self) -> None:
        if not self._allowed_origins:
            self._log.warning(
                "gateway.no_allowed_origins",
                hint="Set gateway.allowed_origins to restrict cross-origin access.",
            )
        if not is_loopback(self._host):
            self._log.warning(
                "gateway.non_loopback_bind",
                host=self._host,
                hint="The gateway is reachable from the network. "
                     "Bind to 127.0.0.1 for local-only access.",
            )

    # ─────────────────────────────────────────────────────────────────────────
    # Policy + routing
    # ─────────────────────────────────────────────────────────────────────────

    async def _apply_cors(self, request: web.Request, response: web.StreamResponse) -> None:
        response.headers.update(
            cors_headers(request.headers.get("Origin"), self._allowed_origins)
        )

    async def _handle(self, request: web.Request) -> web.StreamResponse:
        """Classify one request and dispatch it."""
        if request.method == "OPTIONS":
            return web.Response(status=204)

        if request.path != self._path:
            return web.Response(status=404, text="Not Found")

        try:
            if request.method == "GET":
                return await self._open_stream(request)
            if request.method == "POST":
                return await self._deliver_message(request)
            return web.Response(
                status=405,
                text="Method Not Allowed",
                headers={"Allow": _ALLOWED_METHODS},
            )
        except web.HTTPException:
            raise
        except Exception as e:
            self._log.exception(
                "gateway.request_failed",
                method=request.method,
                error=str(e),
                error_type=type(e).__name__,
            )
            session = request.get(_SESSION_KEY)
            if session is not None and session.stream is not None and session.stream.prepared:
                # Headers are already on the wire; nothing more can be sent.
                return session.stream
            return web.Response(status=500, text="Internal Server Error")
        finally:
            clear_session()

    # ─────────────────────────────────────────────────────────────────────────
    # GET — open a stream
    # ─────────────────────────────────────────────────────────────────────────

    def _new_session(self, session_id: str) -> Session:
        return Session(
            session_id,
            self._server_factory(),
            endpoint=self._path,
            guard=self._guard,
            ping_interval=self._ping_interval,
        )

    async def _open_stream(self, request: web.Request) -> web.StreamResponse:
        problem = self._guard.check(request.headers)
        if problem is not None:
            self._log.info("gateway.stream_rejected", reason=problem)
            return web.Response(status=403, text=problem)

        # Registered before the stream is prepared: the endpoint event can
        # never reach a client ahead of the registry entry it names.
        session = await self._registry.create(self._new_session)
        request[_SESSION_KEY] = session
        bind_session(session.id)

        attach_task: Optional[asyncio.Task] = None
        try:
            stream = await session.start(request)
            self._log.info("gateway.stream_opened", session_id=session.id)

            attach_task = asyncio.create_task(self._attach(session))
            self._attach_tasks.add(attach_task)
            attach_task.add_done_callback(self._attach_tasks.discard)

            await session.wait_disconnected()
            return stream
        finally:
            session.mark_closing()
            if attach_task is not None and not attach_task.done():
                attach_task.cancel()
            await self._registry.remove(session.id)
            session.close()
            self._log.info("gateway.stream_closed", session_id=session.id)

    async def _attach(self, session: Session) -> None:
        """Bind the session's application server; failure leaves the stream open."""
        try:
            await session.server.attach(session)
        except Exception as e:
            session.mark_attach_failed(e)
            self._log.error(
                "gateway.attach_failed",
                session_id=session.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return
        session.mark_attached()
        self._log.info("gateway.stream_established", session_id=session.id)

    # ─────────────────────────────────────────────────────────────────────────
    # POST — deliver one message
    # ─────────────────────────────────────────────────────────────────────────

    async def _deliver_message(self, request: web.Request) -> web.StreamResponse:
        body = await request.read()
        try:
            message = parse_message(body)
        except MessageParseError as e:
            self._log.info("gateway.invalid_body", error=str(e))
            return web.Response(status=400, text="Invalid JSON")

        # Query parameter first; the header is a compatibility fallback.
        session_id = request.query.get(SESSION_ID_PARAM) or request.headers.get(SESSION_ID_HEADER)
        if not session_id:
            return web.Response(
                status=400,
                text=f"Missing {SESSION_ID_PARAM} query parameter or {SESSION_ID_HEADER} header",
            )

        session = await self._registry.get(session_id)
        if session is None or not session.is_active:
            self._log.debug("gateway.session_not_found", session_id=session_id)
            return web.Response(status=404, text="Session not found")

        bind_session(session.id)
        response = await session.handle_post_message(request, message)
        self._log.info(
            "gateway.message_handled", session_id=session.id, status=response.status
        )
        return response
