"""HTTP/1.1 request framing.

Reads one request off a buffered byte stream: request line, header
block, then a body delimited by ``Content-Length`` or chunked transfer
encoding. Anything that cannot be framed safely raises
``MalformedRequest``; the caller answers it and closes the connection.
"""

import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import anyio
from anyio.streams.buffered import BufferedByteReceiveStream

from perch.errors import MalformedRequest
from perch.http.headers import Headers
from perch.http.request import Request

# RFC 9110 token characters
_TOKEN = re.compile(rb"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")
_VERSIONS = {b"HTTP/1.1": "1.1", b"HTTP/1.0": "1.0"}
_MAX_CHUNK_LINE = 1024
# Bare hex digits only: no sign, prefix, underscores or surrounding space
_CHUNK_SIZE = re.compile(rb"[0-9A-Fa-f]{1,16}")


@dataclass(frozen=True, slots=True)
class RequestHead:
    """Parsed request line and header block."""

    method: str
    target: str
    http_version: str
    headers: Headers


async def read_head(
    stream: BufferedByteReceiveStream,
    *,
    max_header_size: int,
) -> RequestHead | None:
    """Read the request line and headers of the next request.

    Returns ``None`` when the peer closed the connection cleanly between
    requests. Raises ``MalformedRequest`` for framing errors and
    ``anyio.IncompleteRead`` when the peer vanished mid-request.
    """
    try:
        head = await stream.receive_until(b"\r\n\r\n", max_header_size)
    except anyio.IncompleteRead:
        if not stream.buffer.strip(b"\r\n"):
            return None
        raise
    except anyio.DelimiterNotFound:
        raise MalformedRequest("Request Header Fields Too Large", status=431) from None
    # The delimiter may arrive in the same read that overshoots the limit
    if len(head) > max_header_size:
        raise MalformedRequest("Request Header Fields Too Large", status=431)

    # Tolerate stray CRLFs left over from a previous request
    head = head.lstrip(b"\r\n")
    if not head:
        raise MalformedRequest("Empty request")

    request_line, _, header_block = head.partition(b"\r\n")
    method, target, version = _parse_request_line(request_line)
    headers = _parse_headers(header_block)

    if version == "1.1" and "host" not in headers:
        raise MalformedRequest("Missing Host header")
    return RequestHead(method, target, version, headers)


async def read_request(
    stream: BufferedByteReceiveStream,
    *,
    max_header_size: int,
    max_body_size: int,
    client: tuple[str, int] | None = None,
    send_continue: Callable[[], Awaitable[None]] | None = None,
) -> Request | None:
    """Read a complete request (head and body) from *stream*."""
    head = await read_head(stream, max_header_size=max_header_size)
    if head is None:
        return None
    return await read_body(
        stream,
        head,
        max_body_size=max_body_size,
        client=client,
        send_continue=send_continue,
    )


async def read_body(
    stream: BufferedByteReceiveStream,
    head: RequestHead,
    *,
    max_body_size: int,
    client: tuple[str, int] | None = None,
    send_continue: Callable[[], Awaitable[None]] | None = None,
) -> Request:
    """Read the body announced by *head* and build the Request.

    *send_continue* is awaited before reading a body when an HTTP/1.1
    client sent ``Expect: 100-continue``.
    """
    body = await _read_body(
        stream,
        head.headers,
        max_body_size=max_body_size,
        send_continue=send_continue if head.http_version == "1.1" else None,
    )
    return Request.build(
        head.method,
        head.target,
        headers=head.headers,
        body=body,
        http_version=head.http_version,
        client=client,
    )


def _parse_request_line(line: bytes) -> tuple[str, str, str]:
    parts = line.split(b" ")
    if len(parts) != 3:
        raise MalformedRequest("Malformed request line")
    method, target, version = parts

    if not _TOKEN.match(method):
        raise MalformedRequest("Malformed request method")
    if version not in _VERSIONS:
        if version.startswith(b"HTTP/"):
            raise MalformedRequest("HTTP Version Not Supported", status=505)
        raise MalformedRequest("Malformed HTTP version")

    try:
        text_target = target.decode("ascii")
    except UnicodeDecodeError:
        raise MalformedRequest("Request target must be ASCII") from None

    return method.decode("ascii"), _origin_form(text_target), _VERSIONS[version]


def _origin_form(target: str) -> str:
    """Reduce absolute-form (``http://host/p?q``) and ``*`` to a path target."""
    if target.startswith("/"):
        return target
    if target == "*":
        return "/"
    scheme, sep, rest = target.partition("://")
    if sep and scheme.lower() in ("http", "https"):
        slash = rest.find("/")
        return rest[slash:] if slash >= 0 else "/"
    raise MalformedRequest("Malformed request target")


def _parse_headers(block: bytes) -> Headers:
    pairs: list[tuple[bytes, bytes]] = []
    if not block:
        return Headers(())
    for line in block.split(b"\r\n"):
        if line[:1] in (b" ", b"\t"):
            raise MalformedRequest("Obsolete header line folding")
        name, sep, value = line.partition(b":")
        if not sep or not _TOKEN.match(name):
            raise MalformedRequest("Malformed header line")
        pairs.append((name, value.strip(b" \t")))
    return Headers(tuple(pairs))


async def _read_body(
    stream: BufferedByteReceiveStream,
    headers: Headers,
    *,
    max_body_size: int,
    send_continue: Callable[[], Awaitable[None]] | None,
) -> bytes:
    transfer_encoding = headers.tokens("transfer-encoding")
    lengths = set(headers.get_list("content-length"))

    if transfer_encoding and lengths:
        raise MalformedRequest("Both Transfer-Encoding and Content-Length present")

    if transfer_encoding:
        if transfer_encoding != {"chunked"}:
            raise MalformedRequest("Unsupported Transfer-Encoding", status=501)
        await _maybe_continue(headers, send_continue)
        return await _read_chunked(stream, max_body_size)

    if not lengths:
        return b""
    if len(lengths) > 1:
        raise MalformedRequest("Conflicting Content-Length headers")

    raw_length = lengths.pop().strip()
    if not (raw_length.isascii() and raw_length.isdigit()):
        raise MalformedRequest("Malformed Content-Length")
    length = int(raw_length)
    if length > max_body_size:
        raise MalformedRequest("Content Too Large", status=413)
    if length == 0:
        return b""

    await _maybe_continue(headers, send_continue)
    return await stream.receive_exactly(length)


async def _maybe_continue(
    headers: Headers,
    send_continue: Callable[[], Awaitable[None]] | None,
) -> None:
    if send_continue is not None and "100-continue" in headers.tokens("expect"):
        await send_continue()


async def _read_chunked(stream: BufferedByteReceiveStream, max_body_size: int) -> bytes:
    chunks: list[bytes] = []
    total = 0
    while True:
        try:
            size_line = await stream.receive_until(b"\r\n", _MAX_CHUNK_LINE)
        except anyio.DelimiterNotFound:
            raise MalformedRequest("Malformed chunk size line") from None

        size_text, ext, _ = size_line.partition(b";")
        if ext:
            # Whitespace is allowed only between the size and an extension
            size_text = size_text.rstrip(b" \t")
        if not _CHUNK_SIZE.fullmatch(size_text):
            raise MalformedRequest("Malformed chunk size")
        size = int(size_text, 16)

        if size == 0:
            # Trailer section ends with an empty line; trailers are discarded
            while True:
                try:
                    trailer = await stream.receive_until(b"\r\n", _MAX_CHUNK_LINE)
                except anyio.DelimiterNotFound:
                    raise MalformedRequest("Malformed chunk trailer") from None
                if not trailer:
                    return b"".join(chunks)

        total += size
        if total > max_body_size:
            raise MalformedRequest("Content Too Large", status=413)
        chunks.append(await stream.receive_exactly(size))
        if await stream.receive_exactly(2) != b"\r\n":
            raise MalformedRequest("Chunk not terminated by CRLF")
