"""Route table with trie-based candidate lookup and specificity ranking.

Routes are registered during setup and compiled into an immutable
lookup structure when the app freezes. After ``compile()`` the table is
only ever read, so concurrent connection tasks share it without locks.
"""

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from perch.errors import ConfigurationError, ConflictError
from perch.routing.route import PathSegment, Route, RouteMatch, SegmentKind

if TYPE_CHECKING:
    from perch.guards import Guard


def parse_pattern(pattern: str) -> tuple[PathSegment, ...]:
    """Parse a route pattern string into segments.

    Examples::

        "/items"            -> (PathSegment("items"),)
        "/items/<id>"       -> (PathSegment("items"), PathSegment("<id>", PARAM, "id"))
        "/files/<path..>"   -> (PathSegment("files"), PathSegment("<path..>", WILDCARD, "path"))

    Raises ``ConfigurationError`` for malformed patterns.
    """
    if not pattern.startswith("/"):
        msg = f"Route pattern {pattern!r} must start with '/'."
        raise ConfigurationError(msg)

    segments: list[PathSegment] = []
    names: set[str] = set()
    parts = [p for p in pattern.split("/") if p]
    for index, part in enumerate(parts):
        if part.startswith("{") and part.endswith("}"):
            msg = (
                f"Route pattern {pattern!r} uses {{param}} syntax. "
                "perch expects <param> (or <param..> for a trailing wildcard)."
            )
            raise ConfigurationError(msg)

        if not (part.startswith("<") and part.endswith(">")):
            if "<" in part or ">" in part:
                msg = f"Route pattern {pattern!r}: parameters must span a whole segment ({part!r})."
                raise ConfigurationError(msg)
            segments.append(PathSegment(value=part))
            continue

        inner = part[1:-1]
        kind = SegmentKind.PARAM
        if inner.endswith(".."):
            inner = inner[:-2]
            kind = SegmentKind.WILDCARD
            if index != len(parts) - 1:
                msg = f"Route pattern {pattern!r}: wildcard <{inner}..> must be the last segment."
                raise ConfigurationError(msg)

        if not inner.isidentifier():
            msg = f"Route pattern {pattern!r}: invalid parameter name {inner!r}."
            raise ConfigurationError(msg)
        if inner in names:
            msg = f"Route pattern {pattern!r}: duplicate parameter name {inner!r}."
            raise ConfigurationError(msg)
        names.add(inner)
        segments.append(PathSegment(value=part, kind=kind, name=inner))

    return tuple(segments)


def canonical_pattern(segments: Sequence[PathSegment]) -> str:
    """Normalized pattern text (``/items/<id>/`` -> ``/items/<id>``)."""
    return "/" + "/".join(seg.value for seg in segments)


@dataclass(slots=True)
class _Entry:
    """A registered route plus its registration sequence number."""

    route: Route
    order: int


@dataclass(slots=True)
class _TrieNode:
    """A node in the route trie. Mutable during registration only."""

    # Literal segment children: "items" -> node
    children: dict[str, "_TrieNode"] = field(default_factory=dict)
    # Shared child for every parameter name at this depth
    param_child: "_TrieNode | None" = None
    # Wildcard routes rooted at this node, keyed by method
    wildcard: dict[str, list[_Entry]] = field(default_factory=dict)
    # Routes ending at this node, keyed by method
    routes: dict[str, list[_Entry]] = field(default_factory=dict)


class RouteTable:
    """Ranked route table.

    Usage::

        table = RouteTable()
        table.register("GET", "/items/new", new_item)
        table.register("GET", "/items/<id>", show_item, guards=(Param("id", "int"),))
        table.compile()
        candidates = table.match("GET", "/items/42")

    ``match`` returns *every* candidate whose pattern fits the path,
    most specific first. Literal segments outrank parameters, parameters
    outrank wildcards, compared left to right; ties go to the route that
    was registered first.
    """

    __slots__ = ("_compiled", "_count", "_keys", "_root")

    def __init__(self) -> None:
        self._root = _TrieNode()
        self._keys: dict[tuple[str, str], Route] = {}
        self._count = 0
        self._compiled = False

    # -- Registration --

    def register(
        self,
        method: str,
        pattern: str,
        handler: Callable[..., Any],
        *,
        guards: Sequence["Guard"] = (),
        name: str | None = None,
    ) -> Route:
        """Build a Route from its parts and add it. Returns the Route."""
        route = Route(
            method=method.upper(),
            pattern=pattern,
            handler=handler,
            guards=tuple(guards),
            name=name,
            segments=parse_pattern(pattern),
        )
        self.add(route)
        return route

    def add(self, route: Route) -> None:
        """Add a route. Must be called before compile().

        Raises ``ConflictError`` if the same (method, pattern) pair is
        already registered; the existing route stays in place.
        """
        if self._compiled:
            msg = "Cannot add routes after compilation."
            raise RuntimeError(msg)

        segments = route.segments or parse_pattern(route.pattern)
        if not route.segments:
            route = Route(
                method=route.method.upper(),
                pattern=route.pattern,
                handler=route.handler,
                guards=route.guards,
                name=route.name,
                segments=segments,
            )

        key = (route.method, canonical_pattern(segments))
        if key in self._keys:
            raise ConflictError(route.method, key[1])

        node = self._root
        for seg in segments:
            if seg.kind is SegmentKind.WILDCARD:
                node.wildcard.setdefault(route.method, []).append(_Entry(route, self._count))
                break
            if seg.kind is SegmentKind.PARAM:
                if node.param_child is None:
                    node.param_child = _TrieNode()
                node = node.param_child
            else:
                node = node.children.setdefault(seg.value, _TrieNode())
        else:
            node.routes.setdefault(route.method, []).append(_Entry(route, self._count))

        self._keys[key] = route
        self._count += 1

    def compile(self) -> None:
        """Freeze the table. No more routes can be added."""
        self._compiled = True

    @property
    def compiled(self) -> bool:
        return self._compiled

    @property
    def routes(self) -> list[Route]:
        """All registered routes, in registration order."""
        return list(self._keys.values())

    def __len__(self) -> int:
        return len(self._keys)

    # -- Lookup --

    def match(self, method: str, path: str) -> list[RouteMatch]:
        """Return ranked candidates for *method* and *path*.

        An empty list means no route fits. ``HEAD`` falls back to the
        ``GET`` candidates when no ``HEAD`` route fits.
        """
        return self.match_segments(method, [p for p in path.split("/") if p])

    def match_segments(self, method: str, segments: Sequence[str]) -> list[RouteMatch]:
        """Like ``match``, for a path already split into decoded segments."""
        method = method.upper()
        parts = list(segments)
        entries = self._collect(method, parts)
        if not entries and method == "HEAD":
            entries = self._collect("GET", parts)

        entries.sort(key=lambda e: (e.route.rank, e.order))
        return [
            RouteMatch(route=e.route, path_params=e.route.capture(parts), order=e.order)
            for e in entries
        ]

    def _collect(self, method: str, parts: list[str]) -> list[_Entry]:
        found: list[_Entry] = []
        self._walk(self._root, parts, 0, method, found)
        return found

    def _walk(
        self,
        node: _TrieNode,
        parts: list[str],
        index: int,
        method: str,
        found: list[_Entry],
    ) -> None:
        """Depth-first search: literal child, then parameter, then wildcard."""
        if index == len(parts):
            found.extend(node.routes.get(method, ()))
        else:
            child = node.children.get(parts[index])
            if child is not None:
                self._walk(child, parts, index + 1, method, found)
            if node.param_child is not None:
                self._walk(node.param_child, parts, index + 1, method, found)

        # Wildcards consume zero or more remaining segments
        found.extend(node.wildcard.get(method, ()))
