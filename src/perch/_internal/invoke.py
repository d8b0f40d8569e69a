"""Invoke helpers — call sync or async callables uniformly.

Handlers, guards, catchers and collaborator callbacks (token verifiers)
can all be ``def`` or ``async def``. The sync/async check lives here so
the dispatcher never branches on it.

Usage::

    from perch._internal.invoke import invoke

    outcome = await invoke(guard.extract, ctx)
"""

import inspect
from typing import Any


async def invoke(func: Any, *args: Any, **kwargs: Any) -> Any:
    """Call *func* and await the result if it is awaitable.

    Plain functions run inline on the connection task; coroutine functions
    may suspend on I/O without holding up other connections::

        @app.get("/health")
        def health():
            return "ok"

        @app.get("/users/<id>", guards=[Param("id", int)])
        async def user(id: int):
            return await db.fetch_user(id)
    """
    result = func(*args, **kwargs)
    if inspect.isawaitable(result):
        result = await result
    return result
