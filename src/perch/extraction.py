"""Typed extraction of JSON and form body data into dataclasses.

Populates dataclass instances from request data, converting string
values to the annotated field types. Used by the ``Json`` and ``Form``
guards when they are given a ``schema``.

Supported field types: ``str``, ``int``, ``float``, ``bool``, and
``X | None`` of those. Fields without a default are required. A missing
required field or a failed conversion is reported per field through
``ExtractionError`` so the guard can answer 422 with every problem at
once.
"""

from __future__ import annotations

import dataclasses
import types
import typing
from collections.abc import Mapping
from typing import Any

from perch.routing.params import boolean


class ExtractionError(ValueError):
    """Raised when data cannot be bound to a dataclass.

    Attributes:
        errors: Field name -> error message.
    """

    def __init__(self, errors: dict[str, str]) -> None:
        self.errors = errors
        detail = "; ".join(f"{name}: {message}" for name, message in sorted(errors.items()))
        super().__init__(detail)


def extract_dataclass[T](cls: type[T], data: Mapping[str, Any]) -> T:
    """Create a dataclass instance from a mapping (form fields or parsed JSON).

    For each field in *cls*, looks up the field name in *data* and
    converts the value to the field's annotated type. Missing fields use
    the dataclass default; a missing field without a default is an error.

    Raises:
        ExtractionError: If any field is missing or fails conversion.
    """
    hints = typing.get_type_hints(cls)
    kwargs: dict[str, Any] = {}
    errors: dict[str, str] = {}

    for f in dataclasses.fields(cls):  # type: ignore[arg-type]
        if not f.init:
            continue
        if f.name not in data:
            if f.default is dataclasses.MISSING and f.default_factory is dataclasses.MISSING:
                errors[f.name] = "field required"
            continue

        try:
            kwargs[f.name] = _convert(data[f.name], hints.get(f.name, Any))
        except (ValueError, TypeError) as exc:
            errors[f.name] = str(exc) or "invalid value"

    if errors:
        raise ExtractionError(errors)
    return cls(**kwargs)


def _convert(value: Any, target_type: Any) -> Any:
    """Convert *value* to *target_type*, raising ``ValueError`` on failure."""
    optional, target_type = _unwrap_optional(target_type)
    if value is None:
        if optional:
            return None
        msg = "value may not be null"
        raise ValueError(msg)

    if target_type is str:
        if not isinstance(value, str | int | float):
            msg = f"expected a string, got {type(value).__name__}"
            raise TypeError(msg)
        return str(value).strip() if isinstance(value, str) else str(value)

    if target_type is bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return boolean(value)
        msg = f"expected a boolean, got {type(value).__name__}"
        raise TypeError(msg)

    if target_type is int:
        if isinstance(value, bool) or isinstance(value, float):
            msg = f"expected an integer, got {value!r}"
            raise ValueError(msg)
        return int(value)

    if target_type is float:
        if isinstance(value, bool):
            msg = f"expected a number, got {value!r}"
            raise ValueError(msg)
        return float(value)

    # Unknown type — pass the raw value through
    return value


def _unwrap_optional(hint: Any) -> tuple[bool, Any]:
    """``int | None`` -> ``(True, int)``; ``int`` -> ``(False, int)``."""
    origin = typing.get_origin(hint)
    if origin is typing.Union or origin is types.UnionType:
        args = [a for a in typing.get_args(hint) if a is not type(None)]
        if len(args) == 1:
            return True, args[0]
    return False, hint
