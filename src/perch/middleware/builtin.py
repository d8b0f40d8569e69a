"""Built-in middleware: CORS.

Handles preflight requests and adds the CORS response headers to every
response for an allowed origin.
"""

from dataclasses import dataclass

from perch.http.request import Request
from perch.http.response import Response
from perch.middleware.protocol import Next


@dataclass(frozen=True, slots=True)
class CORSConfig:
    """CORS middleware configuration.

    All fields have secure defaults (nothing is allowed).
    Override what you need::

        CORSConfig(
            allow_origins=("https://example.com",),
            allow_methods=("GET", "POST"),
        )
    """

    allow_origins: tuple[str, ...] = ()
    allow_methods: tuple[str, ...] = ("GET", "HEAD", "OPTIONS")
    allow_headers: tuple[str, ...] = ()
    expose_headers: tuple[str, ...] = ()
    allow_credentials: bool = False
    max_age: int = 600  # 10 minutes

    @classmethod
    def permissive(cls) -> "CORSConfig":
        """Allow any origin, the common verbs, any header, with credentials.

        Suitable for demos and local front-end development only.
        """
        return cls(
            allow_origins=("*",),
            allow_methods=("POST", "GET", "DELETE", "PATCH", "OPTIONS"),
            allow_headers=("*",),
            allow_credentials=True,
        )


class CORSMiddleware:
    """Standards-compliant CORS middleware.

    Handles:
    - Preflight ``OPTIONS`` requests (returns 204 with CORS headers)
    - Simple and actual requests (adds CORS headers to response)
    - Credential support (``Access-Control-Allow-Credentials``)
    - Wildcard origins (``"*"``); with credentials the origin is echoed

    Usage::

        app.add_middleware(CORSMiddleware(CORSConfig(
            allow_origins=("https://example.com",),
            allow_methods=("GET", "POST", "PUT"),
            allow_headers=("Content-Type", "Authorization"),
        )))
    """

    __slots__ = ("config",)

    def __init__(self, config: CORSConfig | None = None) -> None:
        self.config = config or CORSConfig()

    def _is_allowed_origin(self, origin: str) -> bool:
        if "*" in self.config.allow_origins:
            return True
        return origin in self.config.allow_origins

    def _add_cors_headers(self, response: Response, origin: str) -> Response:
        cfg = self.config

        if "*" in cfg.allow_origins and not cfg.allow_credentials:
            response = response.with_header("Access-Control-Allow-Origin", "*")
        else:
            response = response.with_header("Access-Control-Allow-Origin", origin)
            response = response.with_header("Vary", "Origin")

        if cfg.allow_credentials:
            response = response.with_header("Access-Control-Allow-Credentials", "true")

        if cfg.expose_headers:
            response = response.with_header(
                "Access-Control-Expose-Headers",
                ", ".join(cfg.expose_headers),
            )

        return response

    def _preflight_response(self, request: Request, origin: str) -> Response:
        cfg = self.config
        response = self._add_cors_headers(Response(body="", status=204), origin)

        if request.headers.get("access-control-request-method"):
            response = response.with_header(
                "Access-Control-Allow-Methods",
                ", ".join(cfg.allow_methods),
            )

        if cfg.allow_headers == ("*",):
            # Echo what the browser asked for; "*" is ignored with credentials
            requested = request.headers.get("access-control-request-headers")
            if requested:
                response = response.with_header("Access-Control-Allow-Headers", requested)
        elif cfg.allow_headers:
            response = response.with_header(
                "Access-Control-Allow-Headers",
                ", ".join(cfg.allow_headers),
            )

        return response.with_header("Access-Control-Max-Age", str(cfg.max_age))

    async def __call__(self, request: Request, next: Next) -> Response:
        origin = request.headers.get("origin")

        # No Origin header — not a CORS request
        if origin is None or not self._is_allowed_origin(origin):
            return await next(request)

        if request.method == "OPTIONS" and request.headers.get("access-control-request-method"):
            return self._preflight_response(request, origin)

        response = await next(request)
        return self._add_cors_headers(response, origin)
