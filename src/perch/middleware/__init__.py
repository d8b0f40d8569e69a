"""Middleware — async callables wrapped around the dispatcher.

A middleware receives the request and the ``next`` callable, and returns
a Response::

    async def timing(request: Request, next: Next) -> Response:
        start = time.monotonic()
        response = await next(request)
        return response.with_header("X-Time", f"{time.monotonic() - start:.3f}")
"""

from perch.middleware.builtin import CORSConfig, CORSMiddleware
from perch.middleware.protocol import Middleware, Next

__all__ = ["CORSConfig", "CORSMiddleware", "Middleware", "Next"]
