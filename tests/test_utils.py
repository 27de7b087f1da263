"""
Tests for utils.py.
"""

import threading
import time

import pytest

from collector.utils import (
    RWLock,
    WaitGroup,
    create_form_body,
    create_multipart_body,
    fnv1a_64,
    host_of,
    hostname_of,
    hosts_in,
    is_yes_string,
    sanitize_file_name,
    url_fingerprint,
)


class TestFingerprint:

    def test_fnv1a_vectors(self):
        assert fnv1a_64(b"") == 0xcbf29ce484222325
        assert fnv1a_64(b"a") == 0xaf63dc4c8601ec8c
        assert fnv1a_64(b"foobar") == 0x85944171f73967e8

    def test_raw_url_not_normalised(self):
        assert url_fingerprint("http://a.com/a") != url_fingerprint("http://a.com/a/")


class TestSanitizeFileName:

    @pytest.mark.parametrize("raw,expected", [
        ("2020-01-01 speech/part.json", "2020_01_01_speechpart.json"),
        ("no extension", "no_extension.unknown"),
        ("a&b=c.txt", "a_b_c.txt"),
        ("résumé.pdf", "resume.pdf"),
    ])
    def test_sanitize(self, raw, expected):
        assert sanitize_file_name(raw) == expected


class TestYesString:

    @pytest.mark.parametrize("value", ["1", "yes", "TRUE", " y "])
    def test_yes(self, value):
        assert is_yes_string(value)

    @pytest.mark.parametrize("value", ["", "0", "no", "off", None])
    def test_no(self, value):
        assert not is_yes_string(value)


class TestHosts:

    def test_host_of_keeps_port(self):
        assert host_of("http://user:pw@Example.com:8080/x") == "example.com:8080"

    def test_hostname_of_drops_port(self):
        assert hostname_of("http://user:pw@Example.com:8080/x") == "example.com"

    def test_hostname_of_without_host(self):
        assert hostname_of("/relative") == ""

    def test_hosts_in(self):
        assert hosts_in([" A.com", "", "b.COM "]) == ["a.com", "b.com"]


class TestBodies:

    def test_form_body(self):
        assert create_form_body({"a": "1", "b": "x y"}) == b"a=1&b=x+y"

    def test_multipart_body(self):
        body, content_type = create_multipart_body({"file": b"data", "note": b"hi"}, boundary="XYZ")
        assert content_type == "multipart/form-data; boundary=XYZ"
        assert body.startswith(b"--XYZ\r\n")
        assert b'Content-Disposition: form-data; name="file"\r\n\r\ndata\r\n' in body
        assert b'name="note"\r\n\r\nhi\r\n' in body
        assert body.endswith(b"--XYZ--\r\n")

    def test_multipart_random_boundary(self):
        _, first = create_multipart_body({"a": b"1"})
        _, second = create_multipart_body({"a": b"1"})
        assert first.startswith("multipart/form-data; boundary=")
        assert first != second


class TestWaitGroup:

    def test_wait_for_workers(self):
        wg = WaitGroup()
        done = []

        def worker(n):
            time.sleep(0.05)
            done.append(n)
            wg.done()

        for n in range(3):
            wg.add(1)
            threading.Thread(target=worker, args=(n,)).start()
        assert wg.wait(timeout=5)
        assert sorted(done) == [0, 1, 2]
        assert wg.count == 0

    def test_wait_times_out(self):
        wg = WaitGroup()
        wg.add(1)
        assert wg.wait(timeout=0.05) is False

    def test_negative_counter(self):
        with pytest.raises(ValueError):
            WaitGroup().done()


class TestRWLock:

    def test_readers_share(self):
        lock = RWLock()
        with lock.read():
            entered = threading.Event()

            def reader():
                with lock.read():
                    entered.set()

            t = threading.Thread(target=reader)
            t.start()
            assert entered.wait(timeout=1)
            t.join()

    def test_writer_excludes_readers(self):
        lock = RWLock()
        order = []
        with lock.write():
            def reader():
                with lock.read():
                    order.append("reader")

            t = threading.Thread(target=reader)
            t.start()
            time.sleep(0.05)
            order.append("writer")
        t.join(timeout=1)
        assert order == ["writer", "reader"]
