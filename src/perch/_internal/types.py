"""Shared type aliases used across perch modules."""

from collections.abc import Callable
from typing import Any, TypeAlias

# Route handler — user-defined function with variable signature
Handler: TypeAlias = Callable[..., Any]

# Error catcher — receives (request, error?) and returns a response value
Catcher: TypeAlias = Callable[..., Any]

# Raw header pairs exactly as they arrived on the wire
RawHeaders: TypeAlias = tuple[tuple[bytes, bytes], ...]
