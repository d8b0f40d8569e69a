"""URL-encoded form parsing.

``FormData`` offers the same ``get_list`` access as ``Headers`` and
``QueryParams``. Uses stdlib ``urllib.parse``; multipart bodies are left
to the application.
"""

from collections.abc import Iterator, Mapping
from urllib.parse import parse_qs


class FormData(Mapping[str, str]):
    """Immutable parsed form data.

    ``__getitem__`` returns the first value for a key.
    ``get_list`` returns all values for a key (checkboxes, multi-selects).
    """

    __slots__ = ("_data",)

    def __init__(self, data: dict[str, list[str]]) -> None:
        object.__setattr__(self, "_data", data)

    def __getitem__(self, key: str) -> str:
        return self._data[key][0]

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        items = ", ".join(f"{k!r}: {self[k]!r}" for k in self)
        return f"FormData({{{items}}})"

    def get(self, key: str, default: str | None = None) -> str | None:  # type: ignore[override]
        """Return the first value for *key*, or *default* if missing."""
        values = self._data.get(key)
        if values:
            return values[0]
        return default

    def get_list(self, key: str) -> list[str]:
        """Return all values for *key*."""
        return list(self._data.get(key, []))


def parse_urlencoded(body: bytes) -> FormData:
    """Parse an ``application/x-www-form-urlencoded`` body.

    Raises ``UnicodeDecodeError`` if the body is not valid UTF-8.
    """
    return FormData(parse_qs(body.decode("utf-8"), keep_blank_values=True))
