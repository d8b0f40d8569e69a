"""Managed application state.

Externally constructed resources (database clients, token stores, HTTP
clients) are registered once with ``App.manage()`` and handed to guards
through ``GuardContext.state``. The registry is frozen with the app, so
request-time reads need no lock; each resource brings its own
synchronization.
"""

from collections.abc import Iterator
from typing import Any


class State:
    """Type-keyed registry of shared resources.

    Usage::

        state = State()
        state.manage(TokenStore(path))
        store = state.get(TokenStore)
    """

    __slots__ = ("_frozen", "_items")

    def __init__(self) -> None:
        self._items: dict[type, Any] = {}
        self._frozen = False

    def manage(self, resource: Any, *, as_type: type | None = None) -> None:
        """Register *resource* under its own type (or *as_type*).

        Raises ``RuntimeError`` after the app froze and ``ValueError``
        when a resource of that type is already managed.
        """
        if self._frozen:
            msg = "Cannot manage new state after the app has started serving requests."
            raise RuntimeError(msg)
        key = as_type or type(resource)
        if key in self._items:
            msg = f"A {key.__name__} instance is already managed."
            raise ValueError(msg)
        self._items[key] = resource

    def get[T](self, key: type[T]) -> T:
        """Return the managed resource for *key*. Raises ``KeyError`` if absent."""
        return self._items[key]

    def __contains__(self, key: object) -> bool:
        return key in self._items

    def __iter__(self) -> Iterator[type]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def freeze(self) -> None:
        self._frozen = True
