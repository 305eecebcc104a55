"""
Request handlers.

A handler is any callable taking an HTTPRequest and returning an
HTTPResponse. The server ships exactly one: HelloHandler.
"""

from .hello import HelloHandler, HELLO_BODY, CONTENT_TYPE

__all__ = ["HelloHandler", "HELLO_BODY", "CONTENT_TYPE"]
