"""perch — a small HTTP/1.1 request-dispatch core.

Routes are ranked by specificity, guarded by typed extractors that can
succeed, forward to the next route, or fail with a status, and served by
an anyio connection loop with keep-alive and graceful shutdown.

Basic usage::

    from perch import App, Param

    app = App()

    @app.get("/items/<id>", guards=[Param("id", "positive_int")])
    def show_item(id: int) -> dict:
        return {"id": id}

    app.run()
"""

__version__ = "0.1.0"
__all__ = [
    "App",
    "BearerToken",
    "ConfigurationError",
    "ConflictError",
    "Cookie",
    "Dispatcher",
    "Failure",
    "Form",
    "Forward",
    "Guard",
    "GuardContext",
    "HTTPError",
    "Header",
    "Json",
    "Managed",
    "Middleware",
    "Next",
    "NotFound",
    "Param",
    "PerchError",
    "Query",
    "Redirect",
    "Request",
    "Response",
    "RouteTable",
    "ServerConfig",
    "ServerHandle",
    "Success",
    "guard",
    "serve",
    "shutdown",
    "start",
]

_GUARDS = (
    "BearerToken",
    "Cookie",
    "Failure",
    "Form",
    "Forward",
    "Guard",
    "GuardContext",
    "Header",
    "Json",
    "Managed",
    "Param",
    "Query",
    "Success",
    "guard",
)
_ERRORS = ("ConfigurationError", "ConflictError", "HTTPError", "NotFound", "PerchError")
_SERVER = ("ServerHandle", "serve", "shutdown", "start")


def __getattr__(name: str) -> object:
    """Lazy imports for public API.

    Keeps ``import perch`` fast while providing a clean top-level API.
    """
    if name == "App":
        from perch.app import App

        return App

    if name == "ServerConfig":
        from perch.config import ServerConfig

        return ServerConfig

    if name == "Request":
        from perch.http.request import Request

        return Request

    if name in ("Response", "Redirect"):
        from perch.http import response as _resp

        return getattr(_resp, name)

    if name in _GUARDS:
        from perch import guards as _guards

        return getattr(_guards, name)

    if name in _ERRORS:
        from perch import errors as _errors

        return getattr(_errors, name)

    if name in _SERVER:
        from perch.server import loop as _loop

        return getattr(_loop, name)

    if name == "Dispatcher":
        from perch.dispatch import Dispatcher

        return Dispatcher

    if name == "RouteTable":
        from perch.routing.router import RouteTable

        return RouteTable

    if name in ("Middleware", "Next"):
        from perch.middleware import protocol as _mw

        return getattr(_mw, name)

    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)
