"""Tests for perch.http — Request, Headers, QueryParams, cookies, forms."""

import pytest

from perch.http.cookies import parse_cookies
from perch.http.forms import parse_urlencoded
from perch.http.headers import Headers
from perch.http.query import QueryParams
from perch.http.request import Request


class TestHeaders:
    def test_case_insensitive(self) -> None:
        headers = Headers.from_pairs([("Content-Type", "text/html")])
        assert headers["content-type"] == "text/html"
        assert "CONTENT-TYPE" in headers
        assert headers.get("missing") is None

    def test_repeated_values(self) -> None:
        headers = Headers(((b"Accept", b"a"), (b"accept", b"b")))
        assert headers["accept"] == "a"
        assert headers.get_list("ACCEPT") == ["a", "b"]
        assert list(headers) == ["accept"]
        assert len(headers) == 1

    def test_tokens(self) -> None:
        headers = Headers.from_pairs([("Connection", "Keep-Alive, Upgrade"), ("Connection", "te")])
        assert headers.tokens("connection") == {"keep-alive", "upgrade", "te"}

    def test_from_mapping(self) -> None:
        headers = Headers.from_pairs({"X-A": "1"})
        assert headers.raw == ((b"X-A", b"1"),)


class TestQueryParams:
    def test_values(self) -> None:
        query = QueryParams("a=1&b=2&a=3&empty=")
        assert query["a"] == "1"
        assert query.get_list("a") == ["1", "3"]
        assert query.get("empty") == ""
        assert query.get("missing", "d") == "d"

    def test_percent_decoding(self) -> None:
        assert QueryParams("q=hello%20world&p=a+b")["q"] == "hello world"
        assert QueryParams("p=a+b")["p"] == "a b"

    def test_order_and_string_kept(self) -> None:
        query = QueryParams("tag=b&x=%2F&tag=a")
        assert list(query) == ["tag", "x"]
        assert query.get_list("tag") == ["b", "a"]
        assert query["x"] == "/"
        assert query.string == "tag=b&x=%2F&tag=a"
        assert "x" in query
        assert query.get_list("missing") == []


class TestCookiesAndForms:
    def test_parse_cookies(self) -> None:
        assert parse_cookies("a=1; b = 2;;junk") == {"a": "1", "b": "2"}
        assert parse_cookies("") == {}

    def test_parse_cookies_edge_cases(self) -> None:
        assert parse_cookies('=x; a="q"; a=second; b=') == {"a": "q", "b": ""}
        assert parse_cookies("t=a=b") == {"t": "a=b"}

    def test_parse_urlencoded(self) -> None:
        form = parse_urlencoded(b"name=Ada&tag=x&tag=y")
        assert form["name"] == "Ada"
        assert form.get_list("tag") == ["x", "y"]

    def test_parse_urlencoded_rejects_bad_utf8(self) -> None:
        with pytest.raises(UnicodeDecodeError):
            parse_urlencoded(b"name=\xff")


class TestRequest:
    def test_build(self) -> None:
        request = Request.build(
            "get",
            "/items/a%2Fb?x=1",
            headers=Headers.from_pairs({"Cookie": "sid=9"}),
            client=("10.0.0.1", 1234),
        )
        assert request.method == "GET"
        assert request.path == "/items/a/b"
        assert request.url == "/items/a/b?x=1"
        assert request.raw_path == "/items/a%2Fb"
        assert request.segments == ("items", "a/b")
        assert request.cookies == {"sid": "9"}
        assert request.client == ("10.0.0.1", 1234)

    def test_empty_target_defaults_to_root(self) -> None:
        assert Request.build("GET", "?x=1").path == "/"

    def test_media_type(self) -> None:
        request = Request.build(
            "POST", "/", headers=Headers.from_pairs({"Content-Type": "Application/JSON; charset=utf-8"})
        )
        assert request.media_type == "application/json"

    def test_json_is_cached(self) -> None:
        request = Request.build("POST", "/", body=b'{"a": 1}')
        first = request.json()
        assert first == {"a": 1}
        assert request.json() is first

    def test_json_invalid(self) -> None:
        with pytest.raises(ValueError):
            Request.build("POST", "/", body=b"{").json()

    def test_form_and_text(self) -> None:
        request = Request.build("POST", "/", body=b"a=1")
        assert request.text() == "a=1"
        assert request.form()["a"] == "1"
        assert request.content_length == 3

    def test_with_path_params_shares_cache(self) -> None:
        request = Request.build("POST", "/", body=b"[1]")
        bound = request.with_path_params({"id": "7"})
        assert bound.path_params == {"id": "7"}
        assert request.path_params == {}
        assert bound.json() is request.json()

    @pytest.mark.parametrize(
        ("version", "connection", "expected"),
        [
            ("1.1", None, True),
            ("1.1", "close", False),
            ("1.1", "Keep-Alive", True),
            ("1.0", None, False),
            ("1.0", "keep-alive", True),
        ],
    )
    def test_keep_alive(self, version: str, connection: str | None, expected: bool) -> None:
        headers = Headers.from_pairs({"Connection": connection} if connection else {})
        request = Request.build("GET", "/", headers=headers, http_version=version)
        assert request.keep_alive is expected
