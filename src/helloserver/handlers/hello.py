"""
=============================================================================
THE STATIC RESPONDER
=============================================================================

One handler, one answer:

    ANY METHOD  ANY PATH  ANY HEADERS  ANY BODY
         │
         ▼
    200 OK
    Content-Type: text/plain

    Hello, World!\n

The handler looks at nothing in the request. It does not branch on the
method, the path, the query string, the headers or the body, and it
never reads the body. Because it touches no shared mutable state it can
be called from any number of worker threads at once.

=============================================================================
"""

from ..http.request import HTTPRequest
from ..http.response import HTTPResponse
from ..http.status_codes import HTTPStatus


HELLO_BODY = b"Hello, World!\n"
CONTENT_TYPE = "text/plain"


class HelloHandler:
    """
    Callable that turns any request into the hello response.

    Usage:
        handler = HelloHandler()
        response = handler(request)   # always 200 "Hello, World!\\n"
    """

    def __init__(self, body: bytes = HELLO_BODY, content_type: str = CONTENT_TYPE):
        self.body = body
        self.content_type = content_type

    def __call__(self, request: HTTPRequest) -> HTTPResponse:
        # A fresh response per call: the server adds connection headers
        # to it afterwards.
        return HTTPResponse(
            status=HTTPStatus.OK,
            headers={"Content-Type": self.content_type},
            body=self.body,
        )
