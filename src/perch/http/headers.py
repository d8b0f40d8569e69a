"""Immutable, case-insensitive HTTP headers.

Implements ``Mapping[str, str]`` plus ``get_list`` for repeated names.
Stores raw byte pairs in wire order; decodes on access.
"""

from collections.abc import Iterable, Iterator, Mapping


class Headers(Mapping[str, str]):
    """Immutable, case-insensitive HTTP headers.

    ``__getitem__`` returns the first matching value.
    ``get_list`` returns all values for a header (e.g. repeated ``Accept``).
    Iteration yields lower-cased names in first-seen order.
    """

    __slots__ = ("_raw",)

    def __init__(self, raw: tuple[tuple[bytes, bytes], ...] = ()) -> None:
        object.__setattr__(self, "_raw", raw)

    @classmethod
    def from_pairs(cls, pairs: Iterable[tuple[str, str]] | Mapping[str, str]) -> "Headers":
        """Build headers from ``str`` pairs (or a plain mapping)."""
        items = pairs.items() if isinstance(pairs, Mapping) else pairs
        return cls(
            tuple(
                (name.encode("latin-1"), value.encode("latin-1")) for name, value in items
            )
        )

    def __getitem__(self, key: str) -> str:
        key_lower = key.lower().encode("latin-1")
        for name, value in self._raw:
            if name.lower() == key_lower:
                return value.decode("latin-1")
        raise KeyError(key)

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, str):
            return False
        key_lower = key.lower().encode("latin-1")
        return any(name.lower() == key_lower for name, _ in self._raw)

    def __iter__(self) -> Iterator[str]:
        seen: set[str] = set()
        for name, _ in self._raw:
            key = name.decode("latin-1").lower()
            if key not in seen:
                seen.add(key)
                yield key

    def __len__(self) -> int:
        return len(set(self))

    def __repr__(self) -> str:
        items = ", ".join(f"{k!r}: {self[k]!r}" for k in self)
        return f"Headers({{{items}}})"

    def get(self, key: str, default: str | None = None) -> str | None:  # type: ignore[override]
        """Return the first value for *key*, or *default* if missing."""
        try:
            return self[key]
        except KeyError:
            return default

    def get_list(self, key: str) -> list[str]:
        """Return all values for *key*, in the order they were received."""
        key_lower = key.lower().encode("latin-1")
        return [value.decode("latin-1") for name, value in self._raw if name.lower() == key_lower]

    def tokens(self, key: str) -> set[str]:
        """Comma-separated tokens across every *key* header, lower-cased.

        ``Connection: keep-alive, Upgrade`` -> ``{"keep-alive", "upgrade"}``.
        """
        found: set[str] = set()
        for value in self.get_list(key):
            found.update(token.strip().lower() for token in value.split(",") if token.strip())
        return found

    @property
    def raw(self) -> tuple[tuple[bytes, bytes], ...]:
        """Access raw header byte pairs."""
        return self._raw
