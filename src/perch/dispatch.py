"""Dispatcher — from a parsed Request to exactly one Response.

Matches the request against the route table, walks the ranked
candidates running each route's guards, invokes the first handler whose
guards all succeed, and converts the result into a Response.

Candidate policy:

- ``Forward`` from any guard moves on to the next candidate.
- ``Failure`` from a route's last guard is the answer.
- ``Failure`` from an earlier guard is remembered; only candidates of the
  same rank are still tried, then the remembered failure is the answer.
- No candidate at all, or only forwards: 404.

Handler and guard faults are caught here and become 500 responses; the
server loop never sees them.
"""

import inspect
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from perch._internal.invoke import invoke
from perch.errors import HTTPError, NotFound
from perch.guards import Failure, Forward, GuardContext, Outcome, Success, run_guard
from perch.http.request import Request
from perch.http.response import Response
from perch.middleware.protocol import Middleware, Next
from perch.routing.route import Route, RouteMatch
from perch.routing.router import RouteTable
from perch.server.errors import handle_http_error, handle_internal_error
from perch.server.negotiation import negotiate
from perch.state import State

logger = logging.getLogger("perch.dispatch")


@dataclass(frozen=True, slots=True)
class HandlerPlan:
    """How to call a handler: which keyword arguments it accepts."""

    accepts: frozenset[str]
    request_param: str | None
    takes_var_kwargs: bool

    @classmethod
    def for_handler(cls, handler: Callable[..., Any]) -> "HandlerPlan":
        sig = inspect.signature(handler, eval_str=True)
        accepts: set[str] = set()
        request_param: str | None = None
        var_kwargs = False
        for name, param in sig.parameters.items():
            if param.kind is inspect.Parameter.VAR_KEYWORD:
                var_kwargs = True
            elif param.kind is inspect.Parameter.VAR_POSITIONAL:
                continue
            elif name == "request" or param.annotation is Request:
                request_param = name
            else:
                accepts.add(name)
        return cls(frozenset(accepts), request_param, var_kwargs)

    def kwargs(self, request: Request, values: Mapping[str, Any]) -> dict[str, Any]:
        """Build handler kwargs from the request and guard values."""
        if self.takes_var_kwargs:
            kwargs = dict(values)
        else:
            kwargs = {name: value for name, value in values.items() if name in self.accepts}
        if self.request_param is not None:
            kwargs[self.request_param] = request
        return kwargs


@dataclass(frozen=True, slots=True)
class _GuardRun:
    """Result of running one candidate's guards."""

    outcome: Outcome
    values: dict[str, Any]
    terminal: bool = False


class Dispatcher:
    """Route a Request to a handler and produce its Response.

    Usage::

        dispatcher = Dispatcher(table, state=state, catchers={404: not_found})
        response = await dispatcher.dispatch(request)

    ``dispatch`` never raises for request-level problems.
    """

    __slots__ = ("_pipeline", "_plans", "catchers", "middleware", "routes", "state")

    def __init__(
        self,
        routes: RouteTable,
        *,
        state: State | None = None,
        catchers: Mapping[int | type, Callable[..., Any]] | None = None,
        middleware: Sequence[Middleware] = (),
    ) -> None:
        if not routes.compiled:
            routes.compile()
        self.routes = routes
        self.state = state or State()
        self.catchers: Mapping[int | type, Callable[..., Any]] = MappingProxyType(
            dict(catchers or {})
        )
        self.middleware = tuple(middleware)
        self._plans: dict[int, HandlerPlan] = {
            id(route): HandlerPlan.for_handler(route.handler) for route in routes.routes
        }

        # Wrap middleware around the routing step, first registered outermost
        handler: Next = self._route
        for mw in reversed(self.middleware):
            outer = handler

            async def make_next(req: Request, _mw: Any = mw, _next: Next = outer) -> Response:
                return await _mw(req, _next)

            handler = make_next
        self._pipeline: Next = handler

    async def dispatch(self, request: Request) -> Response:
        """Process one request through middleware, routing, guards and handler."""
        try:
            return await self._pipeline(request)
        except HTTPError as exc:
            return await handle_http_error(exc, request, self.catchers)
        except Exception as exc:
            return await handle_internal_error(exc, request, self.catchers)

    async def _route(self, request: Request) -> Response:
        candidates = self.routes.match_segments(request.method, request.segments)
        if not candidates:
            raise NotFound(f"No route matches {request.method} {request.path!r}")

        last_failure: Failure | None = None
        failure_rank: tuple[int, ...] | None = None

        for candidate in candidates:
            if failure_rank is not None and candidate.rank != failure_rank:
                break

            bound = request.with_path_params(candidate.path_params)
            run = await self._run_guards(candidate, bound)

            match run.outcome:
                case Success():
                    return await self._invoke(candidate.route, bound, run.values)
                case Forward(reason=reason):
                    route = candidate.route
                    logger.debug("Forwarded past %s %s: %s", route.method, route.pattern, reason)
                    continue
                case Failure() as failure if run.terminal:
                    raise HTTPError(failure.status, failure.message)
                case Failure() as failure:
                    last_failure = failure
                    failure_rank = candidate.rank

        if last_failure is not None:
            raise HTTPError(last_failure.status, last_failure.message)
        raise NotFound(f"No route accepted {request.method} {request.path!r}")

    async def _run_guards(self, candidate: RouteMatch, request: Request) -> _GuardRun:
        """Run a candidate's guards in order, stopping at the first non-success."""
        guards = candidate.route.guards
        values: dict[str, Any] = {}
        for index, guard in enumerate(guards):
            ctx = GuardContext(request=request, prior=MappingProxyType(values), state=self.state)
            outcome = await run_guard(guard, ctx)
            if isinstance(outcome, Success):
                values[guard.name] = outcome.value
                continue
            return _GuardRun(outcome, values, terminal=index == len(guards) - 1)
        return _GuardRun(Success(), values)

    async def _invoke(self, route: Route, request: Request, values: dict[str, Any]) -> Response:
        plan = self._plans.get(id(route)) or HandlerPlan.for_handler(route.handler)
        result = await invoke(route.handler, **plan.kwargs(request, values))
        return negotiate(result)
