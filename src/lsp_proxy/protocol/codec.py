"""
Sérialisation / désérialisation des messages JSON-RPC 2.0 encadrés.

`deserialize` ne lève jamais: un contenu illisible renvoie None, le relais
décide ensuite quoi en faire.
"""
from __future__ import annotations

import json
from enum import Enum
from typing import Any, Dict, Optional

from ..core.constants import (
    CONTENT_ENCODING,
    CONTENT_SEPARATOR,
    HEADER_ENCODING,
    JSONRPC_VERSION,
    LENGTH_HEADER,
)

Message = Dict[str, Any]


class MessageKind(str, Enum):
    REQUEST = "request"
    RESPONSE = "response"
    NOTIFICATION = "notification"
    INVALID = "invalid"


def serialize(message: Message) -> bytes:
    """
    Encode un message avec son en-tête Content-Length.

    La longueur est celle du JSON encodé en UTF-8 (octets, pas caractères).
    """
    body = json.dumps(message, ensure_ascii=False, separators=(",", ":")).encode(CONTENT_ENCODING)
    header = f"{LENGTH_HEADER}: {len(body)}".encode(HEADER_ENCODING) + CONTENT_SEPARATOR
    return header + body


def deserialize(frame: bytes) -> Optional[Message]:
    """
    Parse le contenu d'une frame.

    Returns:
        Le message (dict), ou None si le contenu n'est pas un objet JSON valide
    """
    separator = frame.find(CONTENT_SEPARATOR)
    if separator == -1:
        return None
    try:
        message = json.loads(frame[separator + len(CONTENT_SEPARATOR):].decode(CONTENT_ENCODING))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    if not isinstance(message, dict):
        return None
    return message


def classify(message: Optional[Message]) -> MessageKind:
    """Requête = id + method, réponse = id sans method, notification = method sans id."""
    if not isinstance(message, dict):
        return MessageKind.INVALID
    has_method = isinstance(message.get("method"), str)
    has_id = "id" in message and message["id"] is not None
    if has_method and has_id:
        return MessageKind.REQUEST
    if has_method:
        return MessageKind.NOTIFICATION
    if "id" in message and ("result" in message or "error" in message):
        return MessageKind.RESPONSE
    return MessageKind.INVALID


def make_request(request_id: Any, method: str, params: Any = None) -> Message:
    message: Message = {"jsonrpc": JSONRPC_VERSION, "id": request_id, "method": method}
    if params is not None:
        message["params"] = params
    return message


def make_notification(method: str, params: Any = None) -> Message:
    message: Message = {"jsonrpc": JSONRPC_VERSION, "method": method}
    if params is not None:
        message["params"] = params
    return message


def make_response(request_id: Any, result: Any) -> Message:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def make_error_response(request_id: Any, code: int, message: str, data: Any = None) -> Message:
    error: Dict[str, Any] = {"code": int(code), "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": error}
