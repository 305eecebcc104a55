"""
Unit tests for the hello handler.
"""

import pytest

from helloserver.handlers import HelloHandler, HELLO_BODY, CONTENT_TYPE
from helloserver.http.request import HTTPRequest
from helloserver.http.status_codes import HTTPStatus


def make_request(method="GET", target="/", headers=None):
    return HTTPRequest(
        method=method,
        target=target,
        version="HTTP/1.1",
        headers=headers or {},
        client_address=("127.0.0.1", 50000),
    )


class TestHelloHandler:

    def test_constant_body(self):
        assert HELLO_BODY == b"Hello, World!\n"
        assert CONTENT_TYPE == "text/plain"

    def test_get_root(self):
        response = HelloHandler()(make_request())

        assert response.status == HTTPStatus.OK
        assert response.headers == {"Content-Type": "text/plain"}
        assert response.body == b"Hello, World!\n"

    @pytest.mark.parametrize("method,target,headers", [
        ("POST", "/api/train", {"content-type": "application/json", "content-length": "17"}),
        ("GET", "/nonexistent/deeply/nested/path", {}),
        ("DELETE", "/?q=1&q=2", {"authorization": "Bearer x"}),
        ("OPTIONS", "*", {}),
        ("BREW", "/pot", {"accept": "coffee"}),
    ])
    def test_ignores_request(self, method, target, headers):
        expected = HelloHandler()(make_request())
        response = HelloHandler()(make_request(method, target, headers))

        assert response == expected

    def test_fresh_response_each_call(self):
        handler = HelloHandler()
        first = handler(make_request())
        first.headers["Connection"] = "close"

        second = handler(make_request())
        assert "Connection" not in second.headers
