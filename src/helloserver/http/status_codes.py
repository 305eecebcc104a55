"""
HTTP status codes emitted by the hello server.

Only the codes the server can actually send are listed: the single
success code plus the protocol-level errors answered before a request
ever reaches the handler.
"""

from enum import IntEnum


class HTTPStatus(IntEnum):
    """
    HTTP status codes and reason phrases.

        >>> HTTPStatus.OK == 200
        True
        >>> HTTPStatus.OK.phrase
        'OK'
    """

    OK = 200

    BAD_REQUEST = 400                       # Not an HTTP request at all
    REQUEST_TIMEOUT = 408                   # Head not received in time
    REQUEST_HEADER_FIELDS_TOO_LARGE = 431   # Head exceeds max_header_size

    INTERNAL_SERVER_ERROR = 500
    SERVICE_UNAVAILABLE = 503               # Worker pool saturated

    @property
    def phrase(self) -> str:
        """
        Get the reason phrase for this status code.

            HTTP/1.1 200 OK
                     ─── ──
                      │   └── Reason phrase
                      └────── Status code
        """
        return _STATUS_PHRASES.get(self, "Unknown")


_STATUS_PHRASES = {
    HTTPStatus.OK: "OK",
    HTTPStatus.BAD_REQUEST: "Bad Request",
    HTTPStatus.REQUEST_TIMEOUT: "Request Timeout",
    HTTPStatus.REQUEST_HEADER_FIELDS_TOO_LARGE: "Request Header Fields Too Large",
    HTTPStatus.INTERNAL_SERVER_ERROR: "Internal Server Error",
    HTTPStatus.SERVICE_UNAVAILABLE: "Service Unavailable",
}
