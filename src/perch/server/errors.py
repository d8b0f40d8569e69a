"""Error handling pipeline for perch requests.

Maps HTTPError exceptions, guard failures and unexpected faults to
Response objects, using registered catchers or plain-text defaults.
"""

import inspect
import logging
from collections.abc import Callable, Mapping
from typing import Any

from perch.errors import HTTPError
from perch.http.request import Request
from perch.http.response import Response
from perch.server.negotiation import negotiate

logger = logging.getLogger("perch.dispatch")

REASONS: dict[int, str] = {
    400: "Bad Request",
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not Found",
    405: "Method Not Allowed",
    413: "Content Too Large",
    415: "Unsupported Media Type",
    422: "Unprocessable Content",
    431: "Request Header Fields Too Large",
    500: "Internal Server Error",
    501: "Not Implemented",
    503: "Service Unavailable",
}


def default_error_response(status: int, detail: str = "") -> Response:
    """Plain-text error response: the detail, or the reason phrase."""
    return Response(body=detail or REASONS.get(status, f"Error {status}"), status=status)


async def call_catcher(
    catcher: Callable[..., Any],
    request: Request,
    exc: Exception,
) -> Response:
    """Invoke a user-registered catcher with introspected arguments.

    Catchers may accept zero, one (request), or two (request, exc) args.
    Supports both sync and async catchers.
    """
    sig = inspect.signature(catcher)
    params = list(sig.parameters.values())

    if len(params) >= 2:
        result = catcher(request, exc)
    elif len(params) == 1:
        result = catcher(request)
    else:
        result = catcher()

    if inspect.isawaitable(result):
        result = await result

    return negotiate(result)


async def _catch(
    status: int,
    exc: Exception,
    request: Request,
    catchers: Mapping[int | type, Callable[..., Any]],
) -> Response | None:
    """Run the catcher for *exc* (by type, then status), if any."""
    catcher = catchers.get(type(exc)) or catchers.get(status)
    if catcher is None:
        return None
    try:
        response = await call_catcher(catcher, request, exc)
    except Exception:
        logger.exception("Catcher for %d failed on %s %s", status, request.method, request.path)
        return None
    # Keep the error status unless the catcher chose its own
    if response.status == 200:
        response = response.with_status(status)
    return response


async def handle_http_error(
    exc: HTTPError,
    request: Request,
    catchers: Mapping[int | type, Callable[..., Any]],
) -> Response:
    """Map an HTTPError (raised or from a guard failure) to a Response."""
    logger.debug("%d %s %s — %s", exc.status, request.method, request.path, exc.detail)

    response = await _catch(exc.status, exc, request, catchers)
    if response is None:
        response = default_error_response(exc.status, exc.detail)
    for name, value in exc.headers:
        response = response.with_header(name, value)
    return response


async def handle_internal_error(
    exc: Exception,
    request: Request,
    catchers: Mapping[int | type, Callable[..., Any]],
) -> Response:
    """Handle unexpected exceptions as 500 errors. Never raises."""
    logger.exception("500 %s %s", request.method, request.path)

    response = await _catch(500, exc, request, catchers)
    if response is None:
        return default_error_response(500)
    return response
