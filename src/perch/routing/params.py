"""Path and query value converters.

Guards such as ``Param("id", "int")`` name a converter by string or pass
any callable that raises ``ValueError``/``TypeError`` on bad input.
"""

from collections.abc import Callable
from typing import Any


def positive_int(value: str) -> int:
    """Parse a strictly positive base-10 integer (``"42"`` -> 42)."""
    if not value.isdigit():
        msg = f"{value!r} is not a positive integer"
        raise ValueError(msg)
    number = int(value)
    if number <= 0:
        msg = f"{value!r} is not a positive integer"
        raise ValueError(msg)
    return number


def boolean(value: str) -> bool:
    """Parse ``true/1/yes/on`` and ``false/0/no/off`` (case-insensitive)."""
    lowered = value.strip().lower()
    if lowered in ("true", "1", "yes", "on"):
        return True
    if lowered in ("false", "0", "no", "off"):
        return False
    msg = f"{value!r} is not a boolean"
    raise ValueError(msg)


CONVERTERS: dict[str, Callable[[str], Any]] = {
    "str": str,
    "int": int,
    "float": float,
    "bool": boolean,
    "positive_int": positive_int,
}


def resolve_converter(convert: str | Callable[[str], Any]) -> Callable[[str], Any]:
    """Look up a named converter, or return *convert* unchanged if callable.

    Raises ``KeyError`` for unknown converter names.
    """
    if isinstance(convert, str):
        return CONVERTERS[convert]
    return convert
