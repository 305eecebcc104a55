"""
Unit tests for Connection, driven through a local socket pair.
"""

import socket
import threading
import time

import pytest

from helloserver.core.connection import Connection, ConnectionState
from helloserver.http.request import HTTPParseError, parse_request
from helloserver.http.status_codes import HTTPStatus


@pytest.fixture
def pair():
    server_side, client_side = socket.socketpair()
    yield server_side, client_side
    client_side.close()
    server_side.close()


def make_connection(sock, **kwargs) -> Connection:
    kwargs.setdefault("timeout", 2.0)
    kwargs.setdefault("keep_alive_timeout", 0.2)
    return Connection(socket=sock, address=("127.0.0.1", 40000), **kwargs)


def feed(conn: Connection, client: socket.socket, data: bytes):
    client.sendall(data)
    assert conn.fill() is True


class TestNextHead:

    def test_single_request(self, pair):
        server_side, client_side = pair
        conn = make_connection(server_side)

        feed(conn, client_side, b"GET / HTTP/1.1\r\nHost: x\r\n\r\n")

        assert conn.next_head() == b"GET / HTTP/1.1\r\nHost: x"
        assert conn.requests_handled == 1

    def test_incomplete_head(self, pair):
        server_side, client_side = pair
        conn = make_connection(server_side)

        feed(conn, client_side, b"GET / HT")
        assert conn.next_head() is None
        assert conn.has_partial_head

        feed(conn, client_side, b"TP/1.1\r\nHost: x\r\n\r\n")
        assert conn.next_head() == b"GET / HTTP/1.1\r\nHost: x"
        assert not conn.has_partial_head

    def test_pipelined_requests(self, pair):
        server_side, client_side = pair
        conn = make_connection(server_side)

        feed(conn, client_side, b"GET /a HTTP/1.1\r\n\r\nGET /b HTTP/1.1\r\n\r\n")

        assert conn.next_head() == b"GET /a HTTP/1.1"
        assert conn.next_head() == b"GET /b HTTP/1.1"
        assert conn.next_head() is None

    def test_leading_crlf_skipped(self, pair):
        server_side, client_side = pair
        conn = make_connection(server_side)

        feed(conn, client_side, b"\r\n\r\nGET / HTTP/1.1\r\n\r\n")

        assert conn.next_head() == b"GET / HTTP/1.1"

    @pytest.mark.parametrize("raw", [
        b"GET / HTTP/1.1\nHost: x\n\n",
        b"GET / HTTP/1.1\r\nHost: x\n\n",
        b"GET / HTTP/1.1\nHost: x\r\n\r\n",
    ])
    def test_bare_lf_line_endings(self, pair, raw):
        server_side, client_side = pair
        conn = make_connection(server_side)

        feed(conn, client_side, raw + b"GET /next HTTP/1.1\n\n")

        request = parse_request(conn.next_head())
        assert request.method == "GET"
        assert request.headers == {"host": "x"}
        assert conn.next_head() == b"GET /next HTTP/1.1"

    def test_client_closed(self, pair):
        server_side, client_side = pair
        conn = make_connection(server_side)

        client_side.shutdown(socket.SHUT_WR)

        assert conn.fill() is False

    def test_oversized_head(self, pair):
        server_side, client_side = pair
        conn = make_connection(server_side, buffer_size=8192, max_header_size=1024)

        feed(conn, client_side, b"GET / HTTP/1.1\r\nX-Big: " + b"a" * 4096)

        with pytest.raises(HTTPParseError) as exc_info:
            conn.next_head()

        assert exc_info.value.status_code == HTTPStatus.REQUEST_HEADER_FIELDS_TOO_LARGE


class TestDeadline:

    def test_first_request_uses_timeout(self, pair):
        server_side, _ = pair
        conn = make_connection(server_side, timeout=10.0, keep_alive_timeout=1.0)

        before = time.time()
        conn.start_waiting()

        assert before + 10.0 <= conn.deadline <= time.time() + 10.0
        assert conn.state == ConnectionState.READING

    def test_keep_alive_uses_keep_alive_timeout(self, pair):
        server_side, client_side = pair
        conn = make_connection(server_side, timeout=10.0, keep_alive_timeout=1.0)

        conn.start_waiting()
        feed(conn, client_side, b"GET / HTTP/1.1\r\n\r\n")
        conn.next_head()
        assert conn.deadline is None

        conn.start_waiting()
        assert conn.deadline <= time.time() + 1.0
        assert conn.state == ConnectionState.KEEP_ALIVE

    def test_partial_data_keeps_deadline(self, pair):
        server_side, client_side = pair
        conn = make_connection(server_side)

        conn.start_waiting()
        deadline = conn.deadline

        feed(conn, client_side, b"GET / HT")
        conn.next_head()
        conn.start_waiting()

        assert conn.deadline == deadline

    def test_expired(self, pair):
        server_side, _ = pair
        conn = make_connection(server_side, timeout=0.05)

        assert conn.expired() is False
        conn.start_waiting()
        assert conn.expired(conn.deadline + 0.01) is True
        assert conn.expired(conn.deadline - 0.01) is False

    def test_no_timeout_never_expires(self, pair):
        server_side, _ = pair
        conn = make_connection(server_side, timeout=None)

        conn.start_waiting()
        assert conn.expired(time.time() + 3600) is False


class TestDiscardBody:

    def test_content_length_body(self, pair):
        server_side, client_side = pair
        conn = make_connection(server_side)

        feed(conn, client_side, (
            b"POST / HTTP/1.1\r\nContent-Length: 17\r\n\r\n"
            b'{"model": "tiny"}'
            b"GET /next HTTP/1.1\r\n\r\n"
        ))

        request = parse_request(conn.next_head())
        assert conn.discard_body(request) is True
        assert conn.next_head() == b"GET /next HTTP/1.1"

    def test_large_body(self, pair):
        server_side, client_side = pair
        conn = make_connection(server_side, buffer_size=1024)

        body = b"x" * 100_000
        payload = (
            f"PUT / HTTP/1.1\r\nContent-Length: {len(body)}\r\n\r\n".encode()
            + body
            + b"GET /next HTTP/1.1\r\n\r\n"
        )

        # More than the socket buffer holds: write while the connection reads
        writer = threading.Thread(target=client_side.sendall, args=(payload,))
        writer.start()

        head = None
        while head is None:
            assert conn.fill() is True
            head = conn.next_head()

        assert conn.discard_body(parse_request(head)) is True

        writer.join(timeout=5.0)
        while conn.next_head() is None:
            assert conn.fill() is True

    def test_chunked_body(self, pair):
        server_side, client_side = pair
        conn = make_connection(server_side)

        feed(conn, client_side, (
            b"POST / HTTP/1.1\r\nTransfer-Encoding: chunked\r\n\r\n"
            b"5\r\nHello\r\n"
            b"1a;ext=1\r\n" + b"z" * 26 + b"\r\n"
            b"0\r\n"
            b"Trailer: yes\r\n"
            b"\r\n"
            b"GET /next HTTP/1.1\r\n\r\n"
        ))

        request = parse_request(conn.next_head())
        assert conn.discard_body(request) is True
        assert conn.next_head() == b"GET /next HTTP/1.1"

    def test_chunked_body_bare_lf(self, pair):
        server_side, client_side = pair
        conn = make_connection(server_side)

        feed(conn, client_side, (
            b"POST / HTTP/1.1\nTransfer-Encoding: chunked\n\n"
            b"3\nabc\n"
            b"0\n\n"
            b"GET /next HTTP/1.1\n\n"
        ))

        request = parse_request(conn.next_head())
        assert conn.discard_body(request) is True
        assert conn.next_head() == b"GET /next HTTP/1.1"

    def test_bad_chunk_size(self, pair):
        server_side, client_side = pair
        conn = make_connection(server_side)

        feed(conn, client_side, b"POST / HTTP/1.1\r\nTransfer-Encoding: chunked\r\n\r\nzz\r\n")

        request = parse_request(conn.next_head())
        assert conn.discard_body(request) is False

    def test_truncated_body(self, pair):
        server_side, client_side = pair
        conn = make_connection(server_side)

        feed(conn, client_side, b"POST / HTTP/1.1\r\nContent-Length: 100\r\n\r\nshort")
        client_side.shutdown(socket.SHUT_WR)

        request = parse_request(conn.next_head())
        assert conn.discard_body(request) is False

    def test_no_body(self, pair):
        server_side, client_side = pair
        conn = make_connection(server_side)

        feed(conn, client_side, b"GET / HTTP/1.1\r\n\r\n")

        request = parse_request(conn.next_head())
        assert conn.discard_body(request) is True


class TestSendAndClose:

    def test_send_response(self, pair):
        server_side, client_side = pair
        conn = make_connection(server_side)

        assert conn.send_response(b"HTTP/1.1 200 OK\r\n\r\n") is True
        assert client_side.recv(1024) == b"HTTP/1.1 200 OK\r\n\r\n"

    def test_close_is_idempotent(self, pair):
        server_side, client_side = pair
        conn = make_connection(server_side)
        client_side.shutdown(socket.SHUT_WR)

        conn.close()
        conn.close()

        assert conn.state == ConnectionState.CLOSED
        assert client_side.recv(1024) == b""

    def test_close_without_linger_returns_at_once(self, pair):
        server_side, client_side = pair
        conn = make_connection(server_side)

        # The client never closes its side: a lingering close would wait.
        start = time.time()
        conn.close(linger=False)

        assert time.time() - start < 0.2
        assert conn.state == ConnectionState.CLOSED
        assert client_side.recv(1024) == b""
