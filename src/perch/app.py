"""perch application class.

Mutable during setup (route registration, managed state, catchers,
middleware). Frozen into a Dispatcher the first time it serves a request
or is started.
"""

import inspect
import logging
import signal
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from typing import Any

import anyio

from perch._internal.types import Catcher, Handler
from perch.config import ServerConfig
from perch.dispatch import Dispatcher
from perch.errors import ConfigurationError
from perch.guards import Guard, Param
from perch.http.request import Request
from perch.http.response import Response
from perch.logs import configure_logging
from perch.middleware.protocol import Middleware
from perch.routing.route import Route, SegmentKind
from perch.routing.router import RouteTable
from perch.state import State

logger = logging.getLogger("perch.app")


@dataclass(slots=True)
class _PendingRoute:
    """A route waiting to be compiled."""

    pattern: str
    handler: Handler
    methods: tuple[str, ...]
    guards: tuple[Guard, ...]
    name: str | None


class App:
    """The perch application.

    Usage::

        app = App()

        @app.get("/items/<id>", guards=[Param("id", "positive_int")])
        def show_item(id: int) -> dict:
            return {"id": id}

        app.run()

    Without an explicit *config*, settings come from the ``PERCH_*``
    environment variables (``ServerConfig.from_env``).

    Thread safety:
        Setup is single-threaded (decorators at import time). The freeze
        transition uses a Lock + double-check so exactly one caller
        compiles the route table.
    """

    __slots__ = (
        "_catchers",
        "_dispatcher",
        "_freeze_lock",
        "_middleware",
        "_pending_routes",
        "_routes",
        "config",
        "state",
    )

    def __init__(self, config: ServerConfig | None = None) -> None:
        self.config: ServerConfig = config or ServerConfig.from_env()
        self.state = State()
        self._pending_routes: list[_PendingRoute] = []
        self._catchers: dict[int | type, Catcher] = {}
        self._middleware: list[Middleware] = []
        self._freeze_lock = threading.Lock()

        # Compiled state, set by freeze()
        self._routes: RouteTable | None = None
        self._dispatcher: Dispatcher | None = None

    # -- Route registration --

    def route(
        self,
        pattern: str,
        *,
        methods: Sequence[str] | None = None,
        guards: Sequence[Guard] = (),
        name: str | None = None,
    ) -> Callable[[Handler], Handler]:
        """Register a route handler via decorator.

        Args:
            pattern: Path pattern. ``<name>`` captures one segment,
                a final ``<name..>`` captures the rest of the path.
            methods: HTTP methods. Defaults to ``["GET"]``.
            guards: Guards run in order before the handler. Each
                successful guard's value is passed as a keyword argument
                named after the guard.
            name: Optional route name (shown by ``perch routes``).
        """
        upper = tuple(m.upper() for m in (methods or ("GET",)))

        def decorator(func: Handler) -> Handler:
            self._check_not_frozen()
            self._pending_routes.append(_PendingRoute(pattern, func, upper, tuple(guards), name))
            return func

        return decorator

    def get(self, pattern: str, **kwargs: Any) -> Callable[[Handler], Handler]:
        return self.route(pattern, methods=("GET",), **kwargs)

    def post(self, pattern: str, **kwargs: Any) -> Callable[[Handler], Handler]:
        return self.route(pattern, methods=("POST",), **kwargs)

    def put(self, pattern: str, **kwargs: Any) -> Callable[[Handler], Handler]:
        return self.route(pattern, methods=("PUT",), **kwargs)

    def patch(self, pattern: str, **kwargs: Any) -> Callable[[Handler], Handler]:
        return self.route(pattern, methods=("PATCH",), **kwargs)

    def delete(self, pattern: str, **kwargs: Any) -> Callable[[Handler], Handler]:
        return self.route(pattern, methods=("DELETE",), **kwargs)

    # -- Managed state --

    def manage(self, resource: Any, *, as_type: type | None = None) -> None:
        """Make *resource* available to guards (``Managed(type)``).

        The resource is constructed by the caller and shared by every
        request; it brings its own synchronization.
        """
        self._check_not_frozen()
        self.state.manage(resource, as_type=as_type)

    # -- Error catchers --

    def catch(self, status_or_exception: int | type[Exception]) -> Callable[[Catcher], Catcher]:
        """Register an error catcher via decorator.

        The catcher may take ``()``, ``(request)`` or ``(request, error)``
        and returns anything a handler may return::

            @app.catch(404)
            def not_found(request):
                return {"error": f"{request.path} not found"}
        """

        def decorator(func: Catcher) -> Catcher:
            self._check_not_frozen()
            self._catchers[status_or_exception] = func
            return func

        return decorator

    # -- Middleware --

    def add_middleware(self, middleware: Middleware) -> None:
        """Add a middleware to the pipeline (first added runs outermost)."""
        self._check_not_frozen()
        self._middleware.append(middleware)

    # -- Runtime --

    @property
    def frozen(self) -> bool:
        return self._dispatcher is not None

    @property
    def routes(self) -> RouteTable:
        """The compiled route table (freezes the app)."""
        self.freeze()
        return self._routes  # type: ignore[return-value]

    def freeze(self) -> Dispatcher:
        """Compile routes and return the Dispatcher. Idempotent.

        Raises ``ConflictError`` for duplicate routes and
        ``ConfigurationError`` for routes whose guards and handler
        signature do not fit together.
        """
        if self._dispatcher is not None:
            return self._dispatcher
        with self._freeze_lock:
            if self._dispatcher is None:
                self._dispatcher = self._freeze()
            return self._dispatcher

    def _freeze(self) -> Dispatcher:
        """MUST only be called while holding _freeze_lock."""
        table = RouteTable()
        for pending in self._pending_routes:
            for method in pending.methods:
                route = table.register(
                    method,
                    pending.pattern,
                    pending.handler,
                    guards=pending.guards,
                    name=pending.name,
                )
                _validate_route(route)
        table.compile()
        self.state.freeze()
        self._routes = table

        dispatcher = Dispatcher(
            table,
            state=self.state,
            catchers=self._catchers,
            middleware=self._middleware,
        )
        logger.debug("Compiled %d route(s)", len(table))
        return dispatcher

    async def handle(self, request: Request) -> Response:
        """Dispatch one request without the network."""
        return await self.freeze().dispatch(request)

    def run(self, host: str | None = None, port: int | None = None) -> None:
        """Serve until SIGINT/SIGTERM, then shut down gracefully.

        Configures logging from the config, freezes the app (so route
        errors surface before binding) and blocks.
        """
        config = self.config
        if host is not None:
            config = config.with_address(host)
        if port is not None:
            config = replace(config, port=port)

        configure_logging(config.log_level, config.log_format)
        self.freeze()
        anyio.run(self._serve_until_signalled, config)

    async def _serve_until_signalled(self, config: ServerConfig) -> None:
        from perch.server.loop import serve

        with anyio.open_signal_receiver(signal.SIGINT, signal.SIGTERM) as signals:
            async with serve(self, config):
                async for signum in signals:
                    logger.info("Received %s", signal.Signals(signum).name)
                    break

    # -- Internal --

    def _check_not_frozen(self) -> None:
        if self._dispatcher is not None:
            msg = (
                "Cannot modify the app after it has started serving requests. "
                "Register routes, state, catchers and middleware before app.run()."
            )
            raise RuntimeError(msg)


def _validate_route(route: Route) -> None:
    """Check a route's guards and handler signature against each other."""
    captured = {
        seg.name for seg in route.segments if seg.kind is not SegmentKind.LITERAL and seg.name
    }
    names: set[str] = set()
    for g in route.guards:
        if isinstance(g, Param) and g.param not in captured:
            msg = (
                f"Route {route.method} {route.pattern!r}: guard Param({g.param!r}) "
                f"does not match any <param> in the pattern."
            )
            raise ConfigurationError(msg)
        if g.name in names:
            msg = f"Route {route.method} {route.pattern!r}: two guards are named {g.name!r}."
            raise ConfigurationError(msg)
        names.add(g.name)

    sig = inspect.signature(route.handler, eval_str=True)
    for param in sig.parameters.values():
        if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            continue
        has_default = param.default is not inspect.Parameter.empty
        if param.kind is inspect.Parameter.POSITIONAL_ONLY:
            # Handlers are called with keyword arguments only
            if has_default:
                continue
        elif has_default or param.name in names:
            continue
        elif param.name == "request" or param.annotation is Request:
            continue
        msg = (
            f"Route {route.method} {route.pattern!r}: handler parameter {param.name!r} "
            "is not provided by any guard."
        )
        raise ConfigurationError(msg)
