"""Query string parameters for ``Request.query``."""

from collections.abc import Iterator, Mapping
from urllib.parse import parse_qsl


class QueryParams(Mapping[str, str]):
    """Read-only, multi-valued view of a query string.

    Indexing returns the first value for a name; ``get_list`` returns
    every value in the order it appeared (``?tag=a&tag=b``). Names with
    an empty value (``?flag=``) are kept.
    """

    __slots__ = ("_string", "_values")

    def __init__(self, query_string: str = "") -> None:
        self._string = query_string
        self._values: dict[str, list[str]] = {}
        for name, value in parse_qsl(query_string, keep_blank_values=True):
            self._values.setdefault(name, []).append(value)

    def __getitem__(self, key: str) -> str:
        return self._values[key][0]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"QueryParams({self._string!r})"

    def get_list(self, key: str) -> list[str]:
        """Return all values for *key*, or an empty list."""
        return list(self._values.get(key, ()))

    @property
    def string(self) -> str:
        """The query string as received, still percent-encoded."""
        return self._string
