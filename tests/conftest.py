"""
Shared fixtures: a small threaded HTTP site served from 127.0.0.1.

Routes:
    /robots.txt                 disallows /private for every agent
    /                           HTML index linking to /page/1 and /page/2
    /page/<n>                   HTML page linking back to /
    /base                       HTML with <base href="/sub/">
    /xml                        application/xml document
    /status/<code>              empty-ish HTML with the given status
    /redirect                   302 → /
    /redirect-chain/<n>         302 → /redirect-chain/<n-1> … → 200
    /redirect-away              302 → http://elsewhere.invalid/
    /set-cookie                 sets ``session=abc``
    /echo-headers               request headers as JSON
    /echo-body                  request method and body as JSON
    /latin1                     ISO-8859-1 encoded HTML
    /big                        2000 bytes of text
    /empty                      text/html with no body
    /blank, /comment-only       text/html with only whitespace / only a comment
    /r307                       307 → /echo-body (method and body kept)
    /bogus-charset              text/html declaring an unknown charset
    /private                    HTML (blocked by robots.txt)

Every request is counted in ``site.hits`` (path → count).
"""

import json
import threading
from collections import Counter
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest


INDEX_HTML = """<html><head><title>Home</title></head>
<body>
  <h1>Hello</h1>
  <a href="/page/1">one</a>
  <a href="/page/2">two</a>
  <a href="#top">top</a>
  <p class="x">alpha</p>
  <p class="x">beta</p>
</body></html>"""

PAGE_HTML = """<html><head><title>Page {n}</title></head>
<body><a href="/">home</a></body></html>"""

BASE_HTML = """<html><head><base href="/sub/"><title>Based</title></head>
<body><a href="child">child</a></body></html>"""

XML_DOC = """<?xml version="1.0" encoding="UTF-8"?>
<catalog>
  <book id="1"><title>First</title></book>
  <book id="2"><title>Second</title></book>
</catalog>"""


class _Handler(BaseHTTPRequestHandler):
    site = None  # set by the fixture

    def log_message(self, format, *args):
        pass

    # ------------------------------------------------------------------

    def _send(self, status, body=b"", content_type="text/html; charset=utf-8", headers=None):
        if isinstance(body, str):
            body = body.encode("utf-8")
        self.send_response(status)
        if content_type:
            self.send_header("Content-Type", content_type)
        for name, value in (headers or {}).items():
            self.send_header(name, value)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(body)

    def _redirect(self, location, status=302):
        self._send(status, b"", headers={"Location": location})

    def _read_body(self) -> bytes:
        length = int(self.headers.get("Content-Length") or 0)
        return self.rfile.read(length) if length else b""

    def _route(self):
        self.site.record(self.path)
        path = self.path.split("?", 1)[0]
        body = self._read_body()

        if path == "/robots.txt":
            return self._send(200, "User-agent: *\nDisallow: /private\n", "text/plain")
        if path == "/":
            return self._send(200, INDEX_HTML)
        if path.startswith("/page/"):
            return self._send(200, PAGE_HTML.format(n=path.rsplit("/", 1)[1]))
        if path == "/base" or path.startswith("/sub/"):
            return self._send(200, BASE_HTML)
        if path == "/xml":
            return self._send(200, XML_DOC, "application/xml")
        if path.startswith("/status/"):
            code = int(path.rsplit("/", 1)[1])
            return self._send(code, f"<html><body><p>status {code}</p></body></html>")
        if path == "/redirect":
            return self._redirect("/")
        if path.startswith("/redirect-chain/"):
            n = int(path.rsplit("/", 1)[1])
            if n > 0:
                return self._redirect(f"/redirect-chain/{n - 1}")
            return self._send(200, "<html><body><p>end</p></body></html>")
        if path == "/redirect-away":
            return self._redirect("http://elsewhere.invalid/")
        if path == "/set-cookie":
            return self._send(200, "<html></html>", headers={"Set-Cookie": "session=abc; Path=/"})
        if path == "/echo-headers":
            return self._send(200, json.dumps(dict(self.headers.items())), "application/json")
        if path == "/echo-body":
            payload = {"method": self.command, "body": body.decode("utf-8", "replace")}
            return self._send(200, json.dumps(payload), "application/json")
        if path == "/latin1":
            return self._send(
                200,
                "<html><body><p>café</p></body></html>".encode("latin-1"),
                "text/html; charset=iso-8859-1",
            )
        if path == "/big":
            return self._send(200, "x" * 2000, "text/plain")
        if path == "/empty":
            return self._send(200, b"")
        if path == "/blank":
            return self._send(200, b"\n  \n")
        if path == "/comment-only":
            return self._send(200, b"<!-- nothing -->")
        if path == "/r307":
            return self._redirect("/echo-body", status=307)
        if path == "/bogus-charset":
            return self._send(200, "<html><body><p>plain</p></body></html>", "text/html; charset=x-bogus")
        if path == "/private":
            return self._send(200, "<html><title>Private</title></html>")
        return self._send(404, "<html><body>not found</body></html>")

    do_GET = do_POST = do_HEAD = do_PUT = _route


class TestSite:
    """Handle on the running test server."""

    __test__ = False

    def __init__(self, server):
        self.server = server
        self.host = "127.0.0.1"
        self.port = server.server_address[1]
        self.hits = Counter()
        self._lock = threading.Lock()

    def url(self, path: str = "/") -> str:
        return f"http://{self.host}:{self.port}{path}"

    def record(self, path: str) -> None:
        with self._lock:
            self.hits[path] += 1

    def total_hits(self) -> int:
        with self._lock:
            return sum(self.hits.values())

    def reset(self) -> None:
        with self._lock:
            self.hits.clear()


@pytest.fixture(scope="session")
def _server():
    server = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
    server.daemon_threads = True
    site = TestSite(server)
    _Handler.site = site
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield site
    server.shutdown()
    server.server_close()


@pytest.fixture
def site(_server):
    """The test site with a fresh hit counter."""
    _server.reset()
    return _server


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep COLLECTOR_* variables of the developer's shell out of the tests."""
    import os
    for key in list(os.environ):
        if key.startswith("COLLECTOR_"):
            monkeypatch.delenv(key)
