"""
HTTP protocol pieces: request head parsing, response serialization and
the status codes the server emits.
"""

from .request import HTTPRequest, RequestParser, HTTPParseError, parse_request
from .response import HTTPResponse, format_http_date, error_response
from .status_codes import HTTPStatus

__all__ = [
    # Request parsing
    "HTTPRequest",
    "RequestParser",
    "HTTPParseError",
    "parse_request",

    # Response serialization
    "HTTPResponse",
    "format_http_date",
    "error_response",

    # Status codes
    "HTTPStatus",
]
