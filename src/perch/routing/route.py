"""Route, PathSegment and RouteMatch frozen dataclasses."""

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import IntEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from perch.guards import Guard


class SegmentKind(IntEnum):
    """Segment kinds, ordered from most to least specific."""

    LITERAL = 0
    PARAM = 1
    WILDCARD = 2


@dataclass(frozen=True, slots=True)
class PathSegment:
    """A parsed segment of a route pattern.

    Literal:   ``/items``      (kind=LITERAL)
    Param:     ``/<id>``       (kind=PARAM, name="id")
    Wildcard:  ``/<path..>``   (kind=WILDCARD, name="path")
    """

    value: str
    kind: SegmentKind = SegmentKind.LITERAL
    name: str | None = None


@dataclass(frozen=True, slots=True)
class Route:
    """A frozen (method, pattern) -> handler binding.

    Created during app setup, added to the route table at freeze time.
    ``guards`` run in declaration order before the handler; their
    successful values are passed to the handler by guard name.
    """

    method: str
    pattern: str
    handler: Callable[..., Any]
    guards: tuple["Guard", ...] = ()
    name: str | None = None
    segments: tuple[PathSegment, ...] = field(default=(), compare=False)

    @property
    def rank(self) -> tuple[int, ...]:
        """Specificity key: one ``SegmentKind`` per segment, lower wins."""
        return tuple(int(seg.kind) for seg in self.segments)

    def capture(self, parts: list[str]) -> dict[str, str]:
        """Bind this route's parameter names to the matched path parts."""
        params: dict[str, str] = {}
        for index, seg in enumerate(self.segments):
            if seg.kind is SegmentKind.PARAM:
                params[seg.name or ""] = parts[index]
            elif seg.kind is SegmentKind.WILDCARD:
                params[seg.name or ""] = "/".join(parts[index:])
        return params


@dataclass(frozen=True, slots=True)
class RouteMatch:
    """A candidate route for a request, with its raw path captures."""

    route: Route
    path_params: Mapping[str, str]
    order: int = 0

    @property
    def rank(self) -> tuple[int, ...]:
        return self.route.rank
