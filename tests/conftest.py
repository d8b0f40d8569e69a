"""Shared helpers for perch tests.

``RawConnection`` speaks HTTP/1.1 over a real TCP socket so server tests
can observe framing, keep-alive and connection close exactly as a client
would.
"""

from dataclasses import dataclass

import anyio
import pytest
from anyio.abc import SocketStream
from anyio.streams.buffered import BufferedByteReceiveStream

from perch.config import ServerConfig


@dataclass(frozen=True, slots=True)
class RawResponse:
    status: int
    headers: dict[str, str]
    body: bytes
    raw: bytes

    @property
    def text(self) -> str:
        return self.body.decode("utf-8")

    def without_date(self) -> bytes:
        """Wire bytes with the Date line removed."""
        lines = self.raw.split(b"\r\n")
        return b"\r\n".join(line for line in lines if not line.lower().startswith(b"date:"))


class RawConnection:
    """A client socket that reads whole HTTP/1.1 responses."""

    def __init__(self, stream: SocketStream) -> None:
        self.stream = stream
        self.buffered = BufferedByteReceiveStream(stream)

    @classmethod
    async def open(cls, address: tuple[str, int]) -> "RawConnection":
        host, port = address
        return cls(await anyio.connect_tcp(host, port))

    async def send(self, data: bytes) -> None:
        await self.stream.send(data)

    async def request(
        self,
        method: str,
        target: str,
        *,
        headers: dict[str, str] | None = None,
        body: bytes = b"",
        version: str = "HTTP/1.1",
    ) -> RawResponse:
        lines = [f"{method} {target} {version}", "Host: test"]
        for name, value in (headers or {}).items():
            lines.append(f"{name}: {value}")
        if body:
            lines.append(f"Content-Length: {len(body)}")
        await self.send(("\r\n".join(lines) + "\r\n\r\n").encode("latin-1") + body)
        return await self.read_response(head=method == "HEAD")

    async def read_response(self, *, head: bool = False) -> RawResponse:
        with anyio.fail_after(5):
            head_bytes = await self.buffered.receive_until(b"\r\n\r\n", 65536)
            status_line, *header_lines = head_bytes.decode("latin-1").split("\r\n")
            headers: dict[str, str] = {}
            for line in header_lines:
                name, _, value = line.partition(":")
                headers[name.strip().lower()] = value.strip()
            length = int(headers.get("content-length", "0"))
            body = b""
            if length and not head:
                body = await self.buffered.receive_exactly(length)
        status = int(status_line.split(" ", 2)[1])
        return RawResponse(status, headers, body, head_bytes + b"\r\n\r\n" + body)

    async def is_closed_by_peer(self, timeout: float = 2.0) -> bool:
        """True once the server has closed its side of the connection."""
        with anyio.move_on_after(timeout):
            try:
                await self.buffered.receive()
            except (anyio.EndOfStream, anyio.BrokenResourceError):
                return True
        return False

    async def aclose(self) -> None:
        await self.stream.aclose()

    async def __aenter__(self) -> "RawConnection":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()


@pytest.fixture
def connect():
    """Open a RawConnection: ``async with await connect(handle.address) as conn``."""
    return RawConnection.open


@pytest.fixture
def server_config() -> ServerConfig:
    """Ephemeral-port config with short timeouts for fast tests."""
    return ServerConfig(port=0, keep_alive_timeout=2.0, grace_period=2.0)
