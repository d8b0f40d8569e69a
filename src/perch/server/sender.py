"""Response serialization — turns a perch Response into HTTP/1.1 bytes.

The whole response is rendered into one buffer and written with a single
``send``; bodies are always fully materialized, so ``Content-Length`` is
always known.
"""

import re
import time
from email.utils import formatdate
from http import HTTPStatus

from perch.http.response import Response

# Framing headers the server owns; handler-supplied values are dropped
_HOP_BY_HOP = frozenset({"content-length", "transfer-encoding", "connection", "keep-alive"})

_TOKEN = re.compile(r"[!#$%&'*+\-.^_`|~0-9A-Za-z]+")
_UNSAFE_VALUE = re.compile(r"[\r\n\x00]")


class UnsafeHeaderError(ValueError):
    """A response header would break HTTP framing (CR, LF, NUL or a bad name)."""


def _checked(name: str, value: str) -> str:
    if not _TOKEN.fullmatch(name):
        msg = f"Invalid response header name {name!r}"
        raise UnsafeHeaderError(msg)
    if _UNSAFE_VALUE.search(value):
        msg = f"Response header {name!r} contains CR, LF or NUL"
        raise UnsafeHeaderError(msg)
    return value


def _body_allowed(status: int) -> bool:
    """Whether an HTTP status code permits a response body."""
    # RFC: 1xx, 204, and 304 responses do not include a message body.
    return not (100 <= status < 200 or status in {204, 304})


def reason_phrase(status: int) -> str:
    try:
        return HTTPStatus(status).phrase
    except ValueError:
        return ""


class DateCache:
    """``Date`` header value, reformatted at most once per second."""

    __slots__ = ("_second", "_value")

    def __init__(self) -> None:
        self._second = -1
        self._value = ""

    def get(self) -> str:
        now = time.time()
        second = int(now)
        if second != self._second:
            self._second = second
            self._value = formatdate(now, usegmt=True)
        return self._value


def render_response(
    response: Response,
    *,
    head: bool = False,
    keep_alive: bool = True,
    server_name: str = "perch",
    date: str | None = None,
) -> bytes:
    """Serialize *response* to wire bytes.

    ``head`` suppresses the body but keeps the ``Content-Length`` the body
    would have had. ``keep_alive`` selects the ``Connection`` header.

    Raises ``UnsafeHeaderError`` when a header name or value would split
    the response, and ``UnicodeEncodeError`` for non-latin-1 headers.
    """
    status = response.status
    lines = [f"HTTP/1.1 {status} {reason_phrase(status)}".rstrip()]

    allowed = _body_allowed(status)
    body = response.body_bytes if allowed else b""

    if allowed:
        lines.append(f"content-type: {_checked('content-type', response.content_type)}")

    seen: set[str] = set()
    for name, value in response.headers:
        lowered = name.lower()
        if lowered in _HOP_BY_HOP or lowered == "content-type":
            continue
        seen.add(lowered)
        lines.append(f"{lowered}: {_checked(name, value)}")
    lines.extend(
        f"set-cookie: {_checked('set-cookie', cookie.to_header_value())}"
        for cookie in response.cookies
    )

    if allowed:
        lines.append(f"content-length: {len(body)}")
    lines.append(f"connection: {'keep-alive' if keep_alive else 'close'}")
    if "date" not in seen:
        lines.append(f"date: {date or formatdate(usegmt=True)}")
    if "server" not in seen and server_name:
        lines.append(f"server: {server_name}")

    head_bytes = ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1")
    if head:
        return head_bytes
    return head_bytes + body


def render_interim_continue() -> bytes:
    """The ``100 Continue`` interim response."""
    return b"HTTP/1.1 100 Continue\r\n\r\n"
