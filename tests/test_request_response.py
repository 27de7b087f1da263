"""
Tests for request.py, response.py and context.py.
"""

import io
import json
import logging

import pytest

from collector import Collector
from collector.context import CancelToken, Context
from collector.errors import CancelledError
from collector.request import Request
from collector.response import Response


# ====================================================================
# Context & cancellation
# ====================================================================

class TestContext:

    def test_put_get(self):
        ctx = Context()
        ctx.put("k", "v")
        ctx.put("n", 3)
        assert ctx.get("k") == "v"
        assert ctx.get("n") == ""
        assert ctx.get_any("n") == 3
        assert ctx.get("missing") == ""
        assert "k" in ctx and len(ctx) == 2

    def test_for_each(self):
        ctx = Context({"a": "1", "b": "2"})
        assert sorted(ctx.for_each(lambda k, v: k + v)) == ["a1", "b2"]

    def test_copy_is_independent(self):
        ctx = Context({"a": "1"})
        other = ctx.copy()
        other.put("a", "2")
        assert ctx.get("a") == "1"


class TestCancelToken:

    def test_cancel(self):
        token = CancelToken()
        assert not token.cancelled
        token.raise_if_cancelled()
        token.cancel()
        assert token.cancelled
        with pytest.raises(CancelledError):
            token.raise_if_cancelled()


# ====================================================================
# Request
# ====================================================================

class TestAbsoluteURL:

    def test_relative(self):
        r = Request("http://a.com/docs/page")
        assert r.absolute_url("other") == "http://a.com/docs/other"
        assert r.absolute_url("/root") == "http://a.com/root"

    def test_fragment_only(self):
        assert Request("http://a.com/").absolute_url("#top") == ""

    def test_fragment_stripped(self):
        assert Request("http://a.com/").absolute_url("/x#frag") == "http://a.com/x"

    def test_absolute_untouched(self):
        assert Request("http://a.com/").absolute_url("https://b.com/y") == "https://b.com/y"

    def test_base_url(self):
        r = Request("http://a.com/docs/page")
        r.base_url = "/sub/"
        assert r.absolute_url("child") == "http://a.com/sub/child"


class TestRequestBody:

    def test_bytes_body_reusable(self):
        r = Request("http://a.com/", method="POST", body=b"data")
        assert r.read_body() == b"data"
        assert r.get_body() == b"data"

    def test_str_body_encoded(self):
        assert Request("http://a.com/", body="é").read_body() == "é".encode("utf-8")

    def test_bytesio_body_reusable(self):
        r = Request("http://a.com/", body=io.BytesIO(b"stream"))
        assert r.get_body() == b"stream"
        assert r.get_body() == b"stream"

    def test_no_body(self):
        r = Request("http://a.com/")
        assert r.read_body() is None
        assert r.get_body is None


class TestAbort:

    def test_abort_outside_request_hook_ignored(self, caplog):
        r = Request("http://a.com/")
        with caplog.at_level(logging.WARNING):
            r.abort()
        assert not r.aborted
        assert "abort() ignored" in caplog.text


class TestMarshal:

    def test_round_trip(self):
        source = Request(
            "http://a.com/form",
            method="POST",
            headers={"X-Test": "1"},
            body=b"a=1",
            ctx=Context({"page": "3", "obj": object()}),
            id=99,
        )
        payload = json.loads(source.marshal())
        assert set(payload) == {"method", "url", "body", "headers", "ctx"}
        assert payload["headers"] == {"X-Test": ["1"]}
        assert payload["ctx"] == {"page": "3"}

        c = Collector()
        r = c.unmarshal_request(source.marshal())
        assert r.method == "POST"
        assert r.url == "http://a.com/form"
        assert r.read_body() == b"a=1"
        assert r.headers["x-test"] == "1"
        assert r.ctx.get("page") == "3"
        assert r.collector is c

    def test_fresh_ids(self):
        c = Collector()
        data = Request("http://a.com/").marshal()
        assert c.unmarshal_request(data).id == 1
        assert c.unmarshal_request(data).id == 2

    def test_unmarshalled_request_can_be_sent(self, site):
        c = Collector()
        seen = []
        c.on_response(lambda r: seen.append(json.loads(r.body)))
        r = c.unmarshal_request(Request(site.url("/echo-body"), method="POST", body=b"x=1").marshal())
        assert r.do() is None
        assert seen == [{"method": "POST", "body": "x=1"}]


# ====================================================================
# Response
# ====================================================================

class TestResponse:

    def test_text_declared_charset(self):
        r = Response(body="café".encode("latin-1"), headers={"Content-Type": "text/html; charset=ISO-8859-1"})
        assert r.text == "café"

    def test_fix_charset_transcodes(self):
        r = Response(body="café".encode("latin-1"), headers={"Content-Type": "text/html; charset=iso-8859-1"})
        r.fix_charset(detect_charset=False)
        assert r.body == "café".encode("utf-8")
        assert r.text == "café"

    def test_fix_charset_forced_encoding(self):
        r = Response(body="café".encode("cp1252"), headers={"Content-Type": "text/html"})
        r.fix_charset(detect_charset=False, default_encoding="cp1252")
        assert r.body == "café".encode("utf-8")

    def test_fix_charset_leaves_binary(self):
        raw = b"\x89PNG\r\n\x1a\n\xff\xfe"
        r = Response(body=raw, headers={"Content-Type": "image/png; charset=iso-8859-1"})
        r.fix_charset(detect_charset=True)
        assert r.body == raw

    def test_fix_charset_detects_utf8(self):
        raw = ("Größere Übersicht über die Bücher. " * 8).encode("utf-8")
        r = Response(body=raw, headers={"Content-Type": "text/html"})
        r.fix_charset(detect_charset=True)
        assert r.body == raw

    def test_fix_charset_unknown_charset(self, caplog):
        r = Response(body=b"abc", headers={"Content-Type": "text/html; charset=no-such-charset"})
        with caplog.at_level(logging.WARNING):
            r.fix_charset(detect_charset=False)
        assert r.body == b"abc"
        assert r.charset == ""
        assert r.text == "abc"
        assert "Unknown charset 'no-such-charset'" in caplog.text

    def test_forced_unknown_encoding(self):
        r = Response(body=b"abc", headers={"Content-Type": "text/html"})
        r.fix_charset(detect_charset=False, default_encoding="x-bogus")
        assert r.body == b"abc"

    def test_save(self, tmp_path):
        r = Response(body=b"payload")
        path = r.save(str(tmp_path / "out.bin"))
        assert path.read_bytes() == b"payload"

    def test_file_name_from_url(self):
        r = Response(request=Request("http://a.com/files/report.pdf"))
        assert r.file_name() == "filesreport.pdf"

    def test_file_name_with_query(self):
        r = Response(request=Request("http://a.com/search?q=1"))
        assert r.file_name() == "search_q_1.unknown"

    def test_file_name_from_disposition(self):
        r = Response(
            headers={"Content-Disposition": 'attachment; filename="data 1.csv"'},
            request=Request("http://a.com/download"),
        )
        assert r.file_name() == "data_1.csv"

    def test_headers_case_insensitive(self):
        r = Response(headers={"content-type": "text/plain"})
        assert r.content_type == "text/plain"
