"""Connection-level server loop.

One anyio task per accepted connection. Each task reads requests off the
socket, hands them to the Dispatcher, and writes the responses back,
keeping the connection open while both sides agree to.

Shutdown sequence:

1. The accept loop stops and the listener is closed, so new connects are
   refused.
2. Connections idling between requests (or waiting for a connection
   slot) are closed immediately.
3. Requests already being dispatched get up to the grace period to
   finish; their connections close after the response.
4. Anything still running at the deadline is cancelled.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager, contextmanager
from typing import TYPE_CHECKING

import anyio
from anyio.abc import SocketAttribute, SocketStream, TaskGroup, TaskStatus
from anyio.streams.buffered import BufferedByteReceiveStream

from perch.config import ServerConfig
from perch.dispatch import Dispatcher
from perch.errors import MalformedRequest
from perch.server.errors import default_error_response
from perch.server.protocol import read_body, read_head
from perch.server.sender import (
    DateCache,
    UnsafeHeaderError,
    render_interim_continue,
    render_response,
)

if TYPE_CHECKING:
    from perch.app import App
    from perch.http.request import Request
    from perch.http.response import Response

logger = logging.getLogger("perch.server")

_DISCONNECTS = (
    anyio.BrokenResourceError,
    anyio.ClosedResourceError,
    anyio.EndOfStream,
    anyio.IncompleteRead,
)


class ServerHandle:
    """A running server, as returned by ``start()``.

    ``address`` is the actual bound ``(host, port)``; with ``port=0`` in
    the config this is where to find the server.
    """

    __slots__ = ("_server", "address")

    def __init__(self, server: Server, address: tuple[str, int]) -> None:
        self._server = server
        self.address = address

    @property
    def url(self) -> str:
        host, port = self.address
        if ":" in host:
            host = f"[{host}]"
        return f"http://{host}:{port}"

    @property
    def closing(self) -> bool:
        return self._server.closing

    async def shutdown(self, grace_period: float | None = None) -> None:
        """Stop the server gracefully; returns once it has fully stopped."""
        await self._server.shutdown(grace_period)

    async def wait(self) -> None:
        """Block until the server has stopped."""
        await self._server.stopped.wait()

    def __repr__(self) -> str:
        return f"ServerHandle({self.url})"


class Server:
    """HTTP/1.1 server for one Dispatcher and one ServerConfig.

    Use ``start()`` / ``serve()`` rather than driving it directly.
    """

    def __init__(self, dispatcher: Dispatcher, config: ServerConfig) -> None:
        self.dispatcher = dispatcher
        self.config = config
        self.stopped = anyio.Event()
        self._limiter = anyio.CapacityLimiter(config.max_connections)
        self._accept_scope = anyio.CancelScope()
        self._idle: set[anyio.CancelScope] = set()
        self._drained = anyio.Event()
        self._open = 0
        self._closing = False
        self._grace_period = config.grace_period
        self._dates = DateCache()

    @property
    def closing(self) -> bool:
        return self._closing

    # -- Lifecycle --

    async def run(self, *, task_status: TaskStatus[ServerHandle] = anyio.TASK_STATUS_IGNORED) -> None:
        """Bind, report the handle through *task_status*, serve until shutdown."""
        cfg = self.config
        listener = await anyio.create_tcp_listener(
            local_host=cfg.host,
            local_port=cfg.port,
            backlog=cfg.backlog,
        )
        try:
            host, port = listener.extra(SocketAttribute.local_address)[:2]
            handle = ServerHandle(self, (host, port))
            logger.info("Listening on %s", handle.url)

            async with anyio.create_task_group() as connections:
                task_status.started(handle)
                with self._accept_scope:
                    while True:
                        stream = await listener.accept()
                        connections.start_soon(self._serve_connection, stream)

                # Refuse new connects from here on
                await listener.aclose()
                await self._drain(connections)
        finally:
            await listener.aclose()
            self.stopped.set()
            logger.info("Server stopped")

    async def shutdown(self, grace_period: float | None = None) -> None:
        """Begin the shutdown sequence (once) and wait for it to finish."""
        if not self._closing:
            self._closing = True
            if grace_period is not None:
                self._grace_period = grace_period
            logger.info(
                "Shutting down; %d open connection(s), grace period %.1fs",
                self._open,
                self._grace_period,
            )
            self._accept_scope.cancel()
            for scope in list(self._idle):
                scope.cancel()
            if self._open == 0:
                self._drained.set()
        await self.stopped.wait()

    async def _drain(self, connections: TaskGroup) -> None:
        with anyio.move_on_after(self._grace_period) as deadline:
            await self._drained.wait()
        if deadline.cancelled_caught:
            logger.info(
                "Grace period expired; cancelling %d connection(s) still running",
                self._open,
            )
            connections.cancel_scope.cancel()

    @contextmanager
    def _idle_scope(self, timeout: float | None) -> Iterator[anyio.CancelScope]:
        """Cancel scope for a wait that shutdown may interrupt at once."""
        with anyio.move_on_after(timeout) as scope:
            self._idle.add(scope)
            if self._closing:
                scope.cancel()
            try:
                yield scope
            finally:
                self._idle.discard(scope)

    # -- Connections --

    async def _serve_connection(self, stream: SocketStream) -> None:
        self._open += 1
        try:
            async with stream:
                with self._idle_scope(None) as waiting:
                    await self._limiter.acquire()
                if waiting.cancelled_caught:
                    return
                try:
                    await self._keep_alive_loop(stream)
                finally:
                    self._limiter.release()
        except _DISCONNECTS:
            logger.debug("Client disconnected")
        except Exception:
            # One broken connection must not take the listener down
            logger.exception("Connection task failed")
        finally:
            self._open -= 1
            if self._closing and self._open == 0:
                self._drained.set()

    async def _keep_alive_loop(self, stream: SocketStream) -> None:
        cfg = self.config
        client = _peer(stream)
        buffered = BufferedByteReceiveStream(stream)
        # The first request gets read_timeout; later ones wait at most keep_alive_timeout
        head_timeout = cfg.read_timeout

        async def send_continue() -> None:
            await stream.send(render_interim_continue())

        while True:
            with self._idle_scope(head_timeout) as waiting:
                try:
                    head = await read_head(buffered, max_header_size=cfg.max_header_size)
                except MalformedRequest as exc:
                    await self._reject(stream, exc)
                    return
            if waiting.cancelled_caught:
                logger.debug("Closing idle connection from %s", _format_peer(client))
                return
            if head is None:
                return

            with anyio.move_on_after(cfg.read_timeout) as reading:
                try:
                    request = await read_body(
                        buffered,
                        head,
                        max_body_size=cfg.max_body_size,
                        client=client,
                        send_continue=send_continue,
                    )
                except MalformedRequest as exc:
                    await self._reject(stream, exc)
                    return
            if reading.cancelled_caught:
                await self._reject(stream, MalformedRequest("Request Timeout", status=408))
                return

            response = await self.dispatcher.dispatch(request)
            keep_alive = request.keep_alive and bool(cfg.keep_alive_timeout) and not self._closing
            await stream.send(self._render(request, response, keep_alive=keep_alive))
            logger.debug(
                '%s "%s %s HTTP/%s" %d',
                _format_peer(client),
                request.method,
                request.url,
                request.http_version,
                response.status,
            )
            if not keep_alive:
                return
            head_timeout = cfg.keep_alive_timeout

    def _render(self, request: Request, response: Response, *, keep_alive: bool) -> bytes:
        head = request.method == "HEAD"
        try:
            return render_response(
                response,
                head=head,
                keep_alive=keep_alive,
                server_name=self.config.server_name,
                date=self._dates.get(),
            )
        except (UnicodeEncodeError, UnsafeHeaderError):
            logger.exception(
                "Response headers for %s %s cannot be sent", request.method, request.path
            )
            return render_response(
                default_error_response(500),
                head=head,
                keep_alive=keep_alive,
                server_name=self.config.server_name,
                date=self._dates.get(),
            )

    async def _reject(self, stream: SocketStream, exc: MalformedRequest) -> None:
        """Answer a request that could not be framed, then give up on the socket."""
        logger.debug("Rejecting malformed request (%d): %s", exc.status, exc.detail)
        payload = render_response(
            default_error_response(exc.status, exc.detail),
            keep_alive=False,
            server_name=self.config.server_name,
            date=self._dates.get(),
        )
        await stream.send(payload)


def _peer(stream: SocketStream) -> tuple[str, int] | None:
    address = stream.extra(SocketAttribute.remote_address, None)
    if isinstance(address, tuple):
        return address[0], address[1]
    return None


def _format_peer(client: tuple[str, int] | None) -> str:
    if client is None:
        return "-"
    return f"{client[0]}:{client[1]}"


def _as_dispatcher(app: App | Dispatcher) -> Dispatcher:
    if isinstance(app, Dispatcher):
        return app
    return app.freeze()


# -- Public API --


async def start(
    app: App | Dispatcher,
    config: ServerConfig | None = None,
    task_group: TaskGroup | None = None,
) -> ServerHandle:
    """Bind and start serving *app* inside *task_group*.

    Returns once the listener is bound. Startup errors (route conflicts,
    invalid configuration, address in use) propagate and no handle is
    returned.
    """
    if task_group is None:
        msg = "start() needs a task group to run in; use serve() otherwise."
        raise TypeError(msg)
    server = Server(_as_dispatcher(app), config or ServerConfig())
    return await task_group.start(server.run)


async def shutdown(handle: ServerHandle, grace_period: float | None = None) -> None:
    """Gracefully stop the server behind *handle*.

    New connects are refused at once; in-flight requests get up to
    *grace_period* seconds (default: the config's) before being cancelled.
    """
    await handle.shutdown(grace_period)


@asynccontextmanager
async def serve(
    app: App | Dispatcher,
    config: ServerConfig | None = None,
) -> AsyncIterator[ServerHandle]:
    """Run a server for the duration of the ``async with`` block::

        async with serve(app, ServerConfig(port=0)) as handle:
            ...  # talk to handle.address
    """
    async with anyio.create_task_group() as tg:
        handle = await start(app, config, tg)
        try:
            yield handle
        finally:
            with anyio.CancelScope(shield=True):
                await handle.shutdown()
