"""Cookie parsing and ``Set-Cookie`` serialization.

``parse_cookies`` feeds ``Request.cookies`` and the ``Cookie`` guard;
``SetCookie`` backs ``Response.with_cookie`` and ``without_cookie``.
Cookies are host-only: no ``Domain`` attribute is ever emitted.
"""

from dataclasses import dataclass

_SAMESITE = {"lax": "Lax", "strict": "Strict", "none": "None"}


def parse_cookies(header: str) -> dict[str, str]:
    """Parse a ``Cookie`` header value into a name-value dict.

    Pairs without ``=`` or with an empty name are skipped. A value wrapped
    in double quotes is unwrapped. When a name repeats, the first value
    wins, since clients list the most specific path first.
    """
    cookies: dict[str, str] = {}
    for pair in header.split(";"):
        name, sep, value = pair.partition("=")
        name = name.strip()
        if not sep or not name or name in cookies:
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] == '"':
            value = value[1:-1]
        cookies[name] = value
    return cookies


@dataclass(frozen=True, slots=True)
class SetCookie:
    """A ``Set-Cookie`` directive attached to a Response."""

    name: str
    value: str
    max_age: int | None = None
    path: str = "/"
    secure: bool = False
    httponly: bool = True
    samesite: str = "lax"

    def __post_init__(self) -> None:
        if self.samesite.lower() not in _SAMESITE:
            msg = f"samesite must be one of {', '.join(_SAMESITE)}, got {self.samesite!r}"
            raise ValueError(msg)

    def to_header_value(self) -> str:
        """Serialize to a ``Set-Cookie`` header value."""
        parts = [f"{self.name}={self.value}"]
        if self.max_age is not None:
            parts.append(f"Max-Age={self.max_age}")
        if self.path:
            parts.append(f"Path={self.path}")
        # SameSite=None is only valid together with Secure
        if self.secure or self.samesite.lower() == "none":
            parts.append("Secure")
        if self.httponly:
            parts.append("HttpOnly")
        parts.append(f"SameSite={_SAMESITE[self.samesite.lower()]}")
        return "; ".join(parts)
