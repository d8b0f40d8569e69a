"""Perch exception hierarchy.

Shared across the route table, guards, dispatcher and server loop so every
module raises and catches the same types.
"""

from dataclasses import dataclass


class PerchError(Exception):
    """Base for all perch-specific errors."""


class ConfigurationError(PerchError):
    """Raised when app or server configuration is invalid.

    Typically raised while registering routes or during ``App.freeze()``,
    before the server binds its socket.
    """


class ConflictError(ConfigurationError):
    """Raised when the same (method, pattern) pair is registered twice."""

    def __init__(self, method: str, pattern: str) -> None:
        self.method = method
        self.pattern = pattern
        super().__init__(f"Route {method} {pattern!r} is already registered.")


@dataclass(frozen=True, slots=True)
class HTTPError(PerchError):
    """An error that maps directly to an HTTP status code.

    Raised by handlers, guards, or the request parser. The dispatcher
    catches these and renders the matching error response.
    """

    status: int
    detail: str = ""
    headers: tuple[tuple[str, str], ...] = ()

    def __str__(self) -> str:
        if self.detail:
            return f"{self.status}: {self.detail}"
        return str(self.status)


class NotFound(HTTPError):  # noqa: N818 — conventional name in web frameworks
    """404 — no route matched the request."""

    def __init__(self, detail: str = "Not Found") -> None:
        super().__init__(status=404, detail=detail)


class MalformedRequest(HTTPError):  # noqa: N818
    """The request framing could not be parsed.

    Always answered with ``Connection: close``; the server drops the
    connection after writing the response.
    """

    def __init__(self, detail: str = "Bad Request", status: int = 400) -> None:
        super().__init__(status=status, detail=detail)
