"""Content negotiation — maps handler return values to Response objects.

isinstance-based dispatch, no magic, fully predictable.
"""

import json as json_module
from typing import Any

from perch.http.response import Redirect, Response

JSON_CONTENT_TYPE = "application/json; charset=utf-8"


def json_response(value: Any, status: int = 200) -> Response:
    """Serialize *value* as a JSON response.

    Keys are emitted in insertion order so identical handler output
    always yields identical bytes.
    """
    return Response(
        body=json_module.dumps(value, default=str, separators=(",", ":")),
        status=status,
        content_type=JSON_CONTENT_TYPE,
    )


def negotiate(value: Any) -> Response:
    """Convert a route handler's return value to a Response.

    Dispatch order:

    1. ``Response``         -> pass through
    2. ``Redirect``         -> 3xx with Location header
    3. ``None``             -> 204, empty body
    4. ``str``              -> 200, text/plain
    5. ``bytes``            -> 200, application/octet-stream
    6. ``dict`` / ``list``  -> 200, application/json
    7. ``(value, int)``     -> negotiate value, override status
    8. ``(value, int, dict)`` -> negotiate value, override status + headers
    """
    match value:
        case Response():
            return value
        case Redirect():
            return (
                Response(body="")
                .with_status(value.status)
                .with_header("Location", value.url)
                .with_headers(dict(value.headers))
            )
        case None:
            return Response(body="", status=204)
        case str():
            return Response(body=value)
        case bytes():
            return Response(body=value, content_type="application/octet-stream")
        case dict() | list():
            return json_response(value)
        case (inner, int() as status):
            return negotiate(inner).with_status(status)
        case (inner, int() as status, dict() as headers):
            return negotiate(inner).with_status(status).with_headers(headers)
        case _:
            msg = (
                f"Cannot convert {type(value).__name__} to a response. "
                "Return str, bytes, dict, list, None, Response, or Redirect."
            )
            raise TypeError(msg)
