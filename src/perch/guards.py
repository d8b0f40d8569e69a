"""Request guards — per-route extraction and validation units.

A guard looks at a request and answers with one of three outcomes:

- ``Success(value)`` — the value is handed to the handler under the
  guard's ``name``.
- ``Forward()`` — this route does not apply; the dispatcher tries the
  next candidate route.
- ``Failure(status, message)`` — the request is rejected with *status*.

A route's guards run in declaration order and the first ``Forward`` or
``Failure`` stops the rest. Guards only read: the request, the values of
earlier guards on the same route (``ctx.prior``), and managed state.

Any object with a ``name`` attribute and an ``extract(ctx)`` method (sync
or async) is a guard. Plain functions become guards with ``@guard``::

    @guard
    def admin(ctx: GuardContext) -> Outcome:
        if ctx.prior["user"].is_admin:
            return Success(True)
        return Failure(403, "admins only")

    @app.get("/admin", guards=[BearerToken(verify=load_user, name="user"), admin])
    def dashboard(user): ...
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from perch._internal.invoke import invoke
from perch.errors import HTTPError
from perch.extraction import ExtractionError, extract_dataclass
from perch.http.request import Request
from perch.routing.params import resolve_converter
from perch.state import State

logger = logging.getLogger("perch.guards")


# -- Outcomes --


@dataclass(frozen=True, slots=True)
class Success:
    """The guard extracted *value*."""

    value: Any = None


@dataclass(frozen=True, slots=True)
class Forward:
    """The guard declines this route; try the next candidate."""

    reason: str = ""


@dataclass(frozen=True, slots=True)
class Failure:
    """The guard rejects the request with an HTTP status."""

    status: int
    message: str = ""


type Outcome = Success | Forward | Failure


# -- Protocol --


@dataclass(frozen=True, slots=True)
class GuardContext:
    """Everything a guard may read.

    ``prior`` maps the names of earlier guards on the same route to their
    extracted values, in declaration order. It is read-only.
    """

    request: Request
    prior: Mapping[str, Any]
    state: State

    @property
    def path_params(self) -> Mapping[str, str]:
        return self.request.path_params


@runtime_checkable
class Guard(Protocol):
    """Protocol for request guards.

    ``extract`` may be a plain method or a coroutine method.
    """

    name: str

    def extract(self, ctx: GuardContext) -> Outcome | Awaitable[Outcome]: ...


async def run_guard(guard: Guard, ctx: GuardContext) -> Outcome:
    """Run one guard and normalize what it produced into an Outcome.

    An ``HTTPError`` raised by the guard becomes a ``Failure`` with the
    same status. Any other exception propagates to the dispatcher, which
    reports it as a 500.
    """
    try:
        outcome = await invoke(guard.extract, ctx)
    except HTTPError as exc:
        return Failure(exc.status, exc.detail)

    if not isinstance(outcome, Success | Forward | Failure):
        msg = (
            f"Guard {guard.name!r} returned {type(outcome).__name__}; "
            "expected Success, Forward or Failure."
        )
        raise TypeError(msg)
    return outcome


# -- Function guards --


class FunctionGuard:
    """Adapter that turns ``func(ctx)`` into a guard.

    Returning anything other than an Outcome counts as ``Success(value)``.
    """

    __slots__ = ("func", "name")

    def __init__(self, func: Callable[[GuardContext], Any], name: str | None = None) -> None:
        self.func = func
        self.name = name or func.__name__

    async def extract(self, ctx: GuardContext) -> Outcome:
        result = self.func(ctx)
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, Success | Forward | Failure):
            return result
        return Success(result)

    def __repr__(self) -> str:
        return f"guard({self.name})"


def guard(
    func: Callable[[GuardContext], Any] | None = None,
    *,
    name: str | None = None,
) -> Any:
    """Decorator: make a guard out of a function of ``GuardContext``.

    Usable bare (``@guard``) or with a name (``@guard(name="user")``).
    """
    if func is not None:
        return FunctionGuard(func, name)

    def decorator(f: Callable[[GuardContext], Any]) -> FunctionGuard:
        return FunctionGuard(f, name)

    return decorator


# -- Built-in guards --

_MISSING: Any = object()


class Param:
    """Convert a path parameter captured by the route pattern.

    Conversion failure answers ``Failure(422)``, or ``Forward()`` when
    ``forward=True`` so a less specific route can take the request::

        Param("id", "positive_int")
        Param("id", int, forward=True)
    """

    __slots__ = ("_convert", "forward", "name", "param")

    def __init__(
        self,
        param: str,
        convert: str | Callable[[str], Any] = str,
        *,
        forward: bool = False,
        name: str | None = None,
    ) -> None:
        self.param = param
        self.name = name or param
        self.forward = forward
        self._convert = resolve_converter(convert)

    def extract(self, ctx: GuardContext) -> Outcome:
        raw = ctx.path_params.get(self.param)
        if raw is None:
            return Failure(500, f"Route has no path parameter <{self.param}>")
        try:
            return Success(self._convert(raw))
        except (ValueError, TypeError):
            if self.forward:
                return Forward(f"path parameter {self.param!r} did not convert")
            return Failure(422, f"Invalid path parameter {self.param!r}: {raw!r}")


class Query:
    """Read and convert a query-string parameter.

    Missing without a default, or failing conversion, answers 422.
    With ``multi=True`` the value is a list of every occurrence.
    """

    __slots__ = ("_convert", "default", "key", "multi", "name")

    def __init__(
        self,
        key: str,
        convert: str | Callable[[str], Any] = str,
        *,
        default: Any = _MISSING,
        multi: bool = False,
        name: str | None = None,
    ) -> None:
        self.key = key
        self.name = name or key
        self.default = default
        self.multi = multi
        self._convert = resolve_converter(convert)

    def extract(self, ctx: GuardContext) -> Outcome:
        values = ctx.request.query.get_list(self.key)
        if not values:
            if self.default is _MISSING:
                return Failure(422, f"Missing query parameter {self.key!r}")
            return Success(self.default)
        try:
            if self.multi:
                return Success([self._convert(v) for v in values])
            return Success(self._convert(values[0]))
        except (ValueError, TypeError):
            return Failure(422, f"Invalid query parameter {self.key!r}")


class Header:
    """Read a request header. A missing required header answers 400."""

    __slots__ = ("header", "name", "required")

    def __init__(self, header: str, *, required: bool = True, name: str | None = None) -> None:
        self.header = header
        self.name = name or header.lower().replace("-", "_")
        self.required = required

    def extract(self, ctx: GuardContext) -> Outcome:
        value = ctx.request.headers.get(self.header)
        if value is None and self.required:
            return Failure(400, f"Missing header {self.header!r}")
        return Success(value)


class Cookie:
    """Read a request cookie. A missing required cookie answers 401."""

    __slots__ = ("cookie", "name", "required")

    def __init__(self, cookie: str, *, required: bool = True, name: str | None = None) -> None:
        self.cookie = cookie
        self.name = name or cookie
        self.required = required

    def extract(self, ctx: GuardContext) -> Outcome:
        value = ctx.request.cookies.get(self.cookie)
        if value is None and self.required:
            return Failure(401, f"Missing cookie {self.cookie!r}")
        return Success(value)


class BearerToken:
    """Authenticate ``Authorization: Bearer <token>``.

    ``verify`` is an external collaborator (sync or async) called with the
    token. A falsy result rejects the request with 401; a truthy result
    becomes the extracted value (``True`` is replaced by the token
    itself). Without ``verify`` the raw token is the value.
    """

    __slots__ = ("name", "verify")

    def __init__(
        self,
        verify: Callable[[str], Any] | None = None,
        *,
        name: str = "token",
    ) -> None:
        self.verify = verify
        self.name = name

    async def extract(self, ctx: GuardContext) -> Outcome:
        header = ctx.request.headers.get("authorization")
        if header is None:
            return Failure(401, "Missing bearer token")
        scheme, _, token = header.partition(" ")
        token = token.strip()
        if scheme.lower() != "bearer" or not token:
            return Failure(401, "Malformed Authorization header")

        if self.verify is None:
            return Success(token)

        verified = await invoke(self.verify, token)
        if not verified:
            logger.debug("Rejected bearer token for %s %s", ctx.request.method, ctx.request.path)
            return Failure(401, "Invalid or expired token")
        return Success(token if verified is True else verified)


class Json:
    """Parse the body as JSON, optionally into a dataclass ``schema``.

    A non-JSON content type forwards so a sibling route can accept another
    encoding. Unparseable JSON answers 400; a schema mismatch answers 422.
    """

    __slots__ = ("name", "schema")

    def __init__(self, schema: type | None = None, *, name: str = "payload") -> None:
        self.schema = schema
        self.name = name

    def extract(self, ctx: GuardContext) -> Outcome:
        media = ctx.request.media_type
        if media != "application/json" and not media.endswith("+json"):
            return Forward("body is not JSON")
        try:
            data = ctx.request.json()
        except ValueError:
            return Failure(400, "Malformed JSON body")
        if self.schema is None:
            return Success(data)
        if not isinstance(data, Mapping):
            return Failure(422, "JSON body must be an object")
        try:
            return Success(extract_dataclass(self.schema, data))
        except ExtractionError as exc:
            return Failure(422, str(exc))


class Form:
    """Parse an URL-encoded body, optionally into a dataclass ``schema``."""

    __slots__ = ("name", "schema")

    def __init__(self, schema: type | None = None, *, name: str = "form") -> None:
        self.schema = schema
        self.name = name

    def extract(self, ctx: GuardContext) -> Outcome:
        if ctx.request.media_type != "application/x-www-form-urlencoded":
            return Forward("body is not a form")
        try:
            form = ctx.request.form()
        except UnicodeDecodeError:
            return Failure(400, "Malformed form body")
        if self.schema is None:
            return Success(form)
        try:
            return Success(extract_dataclass(self.schema, form))
        except ExtractionError as exc:
            return Failure(422, str(exc))


class Managed:
    """Hand a managed resource (``App.manage``) to the handler."""

    __slots__ = ("key", "name")

    def __init__(self, key: type, *, name: str | None = None) -> None:
        self.key = key
        self.name = name or key.__name__.lower()

    def extract(self, ctx: GuardContext) -> Outcome:
        if self.key not in ctx.state:
            logger.error("No managed %s; call app.manage() before serving", self.key.__name__)
            return Failure(500, "Internal Server Error")
        return Success(ctx.state.get(self.key))
