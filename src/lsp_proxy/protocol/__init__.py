"""
Base protocol LSP: framing Content-Length et codec JSON-RPC.
"""

from .framing import MessageFramer, iter_frames, parse_content_length, parse_headers
from .codec import (
    Message,
    MessageKind,
    classify,
    deserialize,
    make_error_response,
    make_notification,
    make_request,
    make_response,
    serialize,
)

__all__ = [
    "MessageFramer",
    "iter_frames",
    "parse_content_length",
    "parse_headers",
    "Message",
    "MessageKind",
    "classify",
    "deserialize",
    "make_error_response",
    "make_notification",
    "make_request",
    "make_response",
    "serialize",
]
