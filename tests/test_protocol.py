"""Tests for perch.server.protocol — HTTP/1.1 request framing."""

import anyio
import pytest
from anyio.streams.buffered import BufferedByteReceiveStream

from perch.errors import MalformedRequest
from perch.server.protocol import read_head, read_request

LIMITS = {"max_header_size": 8192, "max_body_size": 1024}


def _stream(*chunks: bytes) -> BufferedByteReceiveStream:
    send, receive = anyio.create_memory_object_stream[bytes](len(chunks) + 1)
    for chunk in chunks:
        send.send_nowait(chunk)
    send.close()
    return BufferedByteReceiveStream(receive)


async def _read(*chunks: bytes, **limits: int):
    return await read_request(_stream(*chunks), **{**LIMITS, **limits})


async def _status_of_rejection(*chunks: bytes, **limits: int) -> int:
    with pytest.raises(MalformedRequest) as exc_info:
        await _read(*chunks, **limits)
    return exc_info.value.status


class TestRequestLine:
    async def test_simple_get(self) -> None:
        request = await _read(b"GET /items/42?x=1 HTTP/1.1\r\nHost: a\r\n\r\n")
        assert request.method == "GET"
        assert request.path == "/items/42"
        assert request.query.get("x") == "1"
        assert request.http_version == "1.1"
        assert request.body == b""

    async def test_percent_decoded_path(self) -> None:
        request = await _read(b"GET /a%20b HTTP/1.1\r\nHost: a\r\n\r\n")
        assert request.path == "/a b"

    async def test_absolute_form_target(self) -> None:
        request = await _read(b"GET http://example.com/x?y=2 HTTP/1.1\r\nHost: a\r\n\r\n")
        assert request.path == "/x"
        assert request.query.get("y") == "2"

    async def test_http_10_without_host(self) -> None:
        request = await _read(b"GET / HTTP/1.0\r\n\r\n")
        assert request.http_version == "1.0"

    async def test_split_across_chunks(self) -> None:
        request = await _read(b"GE", b"T / HT", b"TP/1.1\r\nHo", b"st: a\r\n\r\n")
        assert request.path == "/"

    async def test_leading_blank_lines_tolerated(self) -> None:
        request = await _read(b"\r\nGET / HTTP/1.1\r\nHost: a\r\n\r\n")
        assert request.method == "GET"

    @pytest.mark.parametrize(
        "line",
        [
            b"GET /\r\n\r\n",
            b"GET  / HTTP/1.1\r\n\r\n",
            b"G@T / HTTP/1.1\r\n\r\n",
            b"GET / FTP/1.1\r\n\r\n",
            b"GET nowhere HTTP/1.1\r\nHost: a\r\n\r\n",
            b"\xff\xfe\r\n\r\n",
        ],
    )
    async def test_malformed_request_line(self, line: bytes) -> None:
        assert await _status_of_rejection(line) == 400

    async def test_unsupported_version(self) -> None:
        assert await _status_of_rejection(b"GET / HTTP/2.0\r\n\r\n") == 505

    async def test_missing_host_on_11(self) -> None:
        assert await _status_of_rejection(b"GET / HTTP/1.1\r\n\r\n") == 400


class TestHeaders:
    async def test_values_are_trimmed_and_case_insensitive(self) -> None:
        request = await _read(b"GET / HTTP/1.1\r\nHost: a\r\nX-Thing:   padded  \r\n\r\n")
        assert request.headers["x-thing"] == "padded"

    async def test_repeated_headers_kept(self) -> None:
        request = await _read(b"GET / HTTP/1.1\r\nHost: a\r\nAccept: a\r\nAccept: b\r\n\r\n")
        assert request.headers.get_list("accept") == ["a", "b"]

    async def test_cookies_parsed(self) -> None:
        request = await _read(b"GET / HTTP/1.1\r\nHost: a\r\nCookie: sid=1; t=2\r\n\r\n")
        assert request.cookies == {"sid": "1", "t": "2"}

    @pytest.mark.parametrize(
        "header",
        [b"NoColon", b"Bad Name: x", b" folded: x", b": empty-name"],
    )
    async def test_malformed_header_line(self, header: bytes) -> None:
        raw = b"GET / HTTP/1.1\r\nHost: a\r\n" + header + b"\r\n\r\n"
        assert await _status_of_rejection(raw) == 400

    async def test_head_too_large(self) -> None:
        raw = b"GET / HTTP/1.1\r\nHost: a\r\nX-Big: " + b"x" * 500 + b"\r\n\r\n"
        assert await _status_of_rejection(raw, max_header_size=128) == 431


class TestBody:
    async def test_content_length(self) -> None:
        request = await _read(
            b"POST /f HTTP/1.1\r\nHost: a\r\nContent-Length: 5\r\n\r\n",
            b"hel",
            b"lo",
        )
        assert request.body == b"hello"

    async def test_leaves_pipelined_bytes(self) -> None:
        stream = _stream(
            b"POST / HTTP/1.1\r\nHost: a\r\nContent-Length: 2\r\n\r\nokGET /next HTTP/1.1\r\nHost: a\r\n\r\n"
        )
        first = await read_request(stream, **LIMITS)
        second = await read_request(stream, **LIMITS)
        assert first.body == b"ok"
        assert second.path == "/next"

    async def test_chunked(self) -> None:
        raw = (
            b"POST / HTTP/1.1\r\nHost: a\r\nTransfer-Encoding: chunked\r\n\r\n"
            b"5\r\nhello\r\n"
            b"6;ext=1\r\n world\r\n"
            b"0\r\nX-Trailer: yes\r\n\r\n"
        )
        request = await _read(raw)
        assert request.body == b"hello world"

    async def test_body_too_large(self) -> None:
        raw = b"POST / HTTP/1.1\r\nHost: a\r\nContent-Length: 2048\r\n\r\n"
        assert await _status_of_rejection(raw) == 413

    async def test_chunked_too_large(self) -> None:
        raw = b"POST / HTTP/1.1\r\nHost: a\r\nTransfer-Encoding: chunked\r\n\r\n10\r\n" + b"x" * 16
        assert await _status_of_rejection(raw + b"\r\n0\r\n\r\n", max_body_size=8) == 413

    @pytest.mark.parametrize(
        "headers",
        [
            b"Content-Length: abc\r\n",
            b"Content-Length: -1\r\n",
            b"Content-Length: 1\r\nContent-Length: 2\r\n",
            b"Content-Length: 1\r\nTransfer-Encoding: chunked\r\n",
        ],
    )
    async def test_bad_framing(self, headers: bytes) -> None:
        raw = b"POST / HTTP/1.1\r\nHost: a\r\n" + headers + b"\r\nx"
        assert await _status_of_rejection(raw) == 400

    async def test_unsupported_transfer_encoding(self) -> None:
        raw = b"POST / HTTP/1.1\r\nHost: a\r\nTransfer-Encoding: gzip, chunked\r\n\r\n"
        assert await _status_of_rejection(raw) == 501

    @pytest.mark.parametrize(
        "size_line",
        [b"zz", b"0x5", b"0_5", b"+5", b"-5", b" 5", b"5 ", b"", b"1" * 17],
    )
    async def test_bad_chunk_size(self, size_line: bytes) -> None:
        raw = (
            b"POST / HTTP/1.1\r\nHost: a\r\nTransfer-Encoding: chunked\r\n\r\n"
            + size_line
            + b"\r\nhello\r\n0\r\n\r\n"
        )
        assert await _status_of_rejection(raw) == 400

    async def test_chunk_extension_after_whitespace(self) -> None:
        request = await _read(
            b"POST / HTTP/1.1\r\nHost: a\r\nTransfer-Encoding: chunked\r\n\r\n"
            b"5 ;name=value\r\nhello\r\n0\r\n\r\n"
        )
        assert request.body == b"hello"

    async def test_truncated_body_raises_incomplete_read(self) -> None:
        with pytest.raises(anyio.IncompleteRead):
            await _read(b"POST / HTTP/1.1\r\nHost: a\r\nContent-Length: 10\r\n\r\nabc")

    async def test_expect_continue(self) -> None:
        sent: list[str] = []

        async def send_continue() -> None:
            sent.append("100")

        raw = b"POST / HTTP/1.1\r\nHost: a\r\nExpect: 100-continue\r\nContent-Length: 2\r\n\r\nhi"
        request = await read_request(_stream(raw), send_continue=send_continue, **LIMITS)
        assert request.body == b"hi"
        assert sent == ["100"]


class TestConnectionEnd:
    async def test_clean_close_returns_none(self) -> None:
        assert await read_head(_stream(), max_header_size=1024) is None

    async def test_close_after_blank_lines_returns_none(self) -> None:
        assert await read_head(_stream(b"\r\n"), max_header_size=1024) is None

    async def test_partial_head_raises_incomplete_read(self) -> None:
        with pytest.raises(anyio.IncompleteRead):
            await read_head(_stream(b"GET / HT"), max_header_size=1024)
