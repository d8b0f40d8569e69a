"""Immutable HTTP request.

Frozen metadata plus the fully received body. The server loop reads the
whole body (bounded by ``ServerConfig.max_body_size``) before dispatch, so
parsed views of it are plain synchronous calls.
"""

from __future__ import annotations

import json as json_module
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any
from urllib.parse import unquote

from perch.http.cookies import parse_cookies
from perch.http.headers import Headers
from perch.http.query import QueryParams

if TYPE_CHECKING:
    from perch.http.forms import FormData


@dataclass(frozen=True, slots=True)
class Request:
    """An immutable HTTP request.

    Cookies are parsed once at creation time (in ``build``) and stored
    as a frozen field, not re-parsed on every access. ``path_params``
    holds the raw captures of the candidate route currently being tried;
    the dispatcher swaps them per candidate with ``with_path_params``.

    ``path`` is the percent-decoded path for display; routing uses
    ``segments``, decoded one segment at a time from ``raw_path`` so an
    encoded ``%2F`` stays inside its segment.
    """

    method: str
    path: str
    headers: Headers
    query: QueryParams
    body: bytes
    http_version: str
    client: tuple[str, int] | None
    cookies: Mapping[str, str]
    path_params: Mapping[str, str] = field(default_factory=dict)
    raw_path: str = ""

    # Private: mutable cache for parsed body views
    # (dict contents are mutable even though the field reference is frozen)
    _cache: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    # -- Computed properties --

    @property
    def content_type(self) -> str | None:
        """The Content-Type header value."""
        return self.headers.get("content-type")

    @property
    def media_type(self) -> str:
        """Content-Type without parameters, lower-cased (``""`` if absent)."""
        ct = self.content_type or ""
        return ct.split(";", 1)[0].strip().lower()

    @property
    def segments(self) -> tuple[str, ...]:
        """Non-empty path segments, each percent-decoded on its own."""
        return tuple(unquote(part) for part in (self.raw_path or self.path).split("/") if part)

    @property
    def content_length(self) -> int:
        """Length of the received body."""
        return len(self.body)

    @property
    def url(self) -> str:
        """Request target (path + query string)."""
        qs = self.query.string
        if qs:
            return f"{self.path}?{qs}"
        return self.path

    @property
    def keep_alive(self) -> bool:
        """Whether the client asked for the connection to persist."""
        tokens = self.headers.tokens("connection")
        if self.http_version == "1.0":
            return "keep-alive" in tokens
        return "close" not in tokens

    # -- Parsed body views --

    def text(self) -> str:
        """Decode the body as UTF-8."""
        return self.body.decode("utf-8")

    def json(self) -> Any:
        """Parse the body as JSON.

        Result is cached. Raises ``ValueError`` on invalid JSON.
        """
        if "_json" not in self._cache:
            self._cache["_json"] = json_module.loads(self.body)
        return self._cache["_json"]

    def form(self) -> FormData:
        """Parse the body as ``application/x-www-form-urlencoded`` data.

        Result is cached.
        """
        if "_form" not in self._cache:
            from perch.http.forms import parse_urlencoded

            self._cache["_form"] = parse_urlencoded(self.body)
        return self._cache["_form"]

    # -- Derivation --

    def with_path_params(self, path_params: Mapping[str, str]) -> Request:
        """Return a copy bound to another candidate's path parameters.

        The parsed-body cache is shared so guards on different candidates
        parse the body once.
        """
        return replace(self, path_params=dict(path_params), _cache=self._cache)

    # -- Factory --

    @classmethod
    def build(
        cls,
        method: str,
        target: str,
        *,
        headers: Headers | None = None,
        body: bytes = b"",
        http_version: str = "1.1",
        client: tuple[str, int] | None = None,
    ) -> Request:
        """Create a Request from a request-line target (``/path?query``).

        The path is kept raw in ``raw_path`` and percent-decoded into
        ``path``; the query string is kept raw and parsed by ``QueryParams``.
        """
        headers = headers if headers is not None else Headers()
        raw_path, _, query_string = target.partition("?")
        return cls(
            method=method.upper(),
            path=unquote(raw_path) or "/",
            raw_path=raw_path or "/",
            headers=headers,
            query=QueryParams(query_string),
            body=body,
            http_version=http_version,
            client=client,
            cookies=parse_cookies(headers.get("cookie", "")),
        )
