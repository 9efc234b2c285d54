"""
JSON-RPC 2.0 envelopes framed as newline-delimited JSON.

One message per line, UTF-8, so the transport can frame by ``readline``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Dict, Union

from .mcp_types import INVALID_REQUEST, PARSE_ERROR, DecodeError, ErrorInfo

JSONRPC_VERSION = "2.0"

RequestId = Union[int, str]


@dataclass(frozen=True)
class Request:
    id: RequestId
    method: str
    params: object = None


@dataclass(frozen=True)
class Response:
    id: RequestId | None
    result: object = None
    error: ErrorInfo | None = None


@dataclass(frozen=True)
class Notification:
    method: str
    params: object = None


Message = Union[Request, Response, Notification]


def to_payload(message: Message) -> Dict[str, object]:
    payload: Dict[str, object] = {"jsonrpc": JSONRPC_VERSION}
    if isinstance(message, Request):
        payload["id"] = message.id
        payload["method"] = message.method
        if message.params is not None:
            payload["params"] = message.params
    elif isinstance(message, Notification):
        payload["method"] = message.method
        if message.params is not None:
            payload["params"] = message.params
    elif isinstance(message, Response):
        payload["id"] = message.id
        if message.error is not None:
            payload["error"] = message.error.to_dict()
        else:
            payload["result"] = message.result
    else:
        raise TypeError(f"Unsupported message type: {type(message).__name__}")
    return payload


def encode(message: Message) -> bytes:
    return (json.dumps(to_payload(message), ensure_ascii=False) + "\n").encode("utf-8")


def _is_valid_id(value: object) -> bool:
    return isinstance(value, (int, str)) and not isinstance(value, bool)


def _invalid(message: str, request_id: RequestId | None = None) -> DecodeError:
    return DecodeError(ErrorInfo(code=INVALID_REQUEST, message=message), request_id=request_id)


def _decode_error_object(raw: object, request_id: RequestId | None) -> ErrorInfo:
    if not isinstance(raw, dict):
        raise _invalid("error member must be an object", request_id)
    code = raw.get("code")
    message = raw.get("message")
    if not isinstance(code, int) or isinstance(code, bool):
        raise _invalid("error.code must be an integer", request_id)
    if not isinstance(message, str):
        raise _invalid("error.message must be a string", request_id)
    return ErrorInfo(code=code, message=message, data=raw.get("data"))


def decode(line: bytes | str) -> Message:
    if isinstance(line, bytes):
        try:
            text = line.decode("utf-8")
        except UnicodeDecodeError as err:
            raise DecodeError(ErrorInfo(code=PARSE_ERROR, message=f"Invalid UTF-8: {err}")) from err
    else:
        text = line
    try:
        data = json.loads(text)
    except json.JSONDecodeError as err:
        raise DecodeError(ErrorInfo(code=PARSE_ERROR, message=f"Parse error: {err}")) from err

    if not isinstance(data, dict):
        raise _invalid("JSON-RPC message must be an object")

    raw_id = data.get("id")
    recoverable_id = raw_id if _is_valid_id(raw_id) else None
    if data.get("jsonrpc") != JSONRPC_VERSION:
        raise _invalid("jsonrpc must be '2.0'", recoverable_id)

    params = data.get("params")
    if params is not None and not isinstance(params, (dict, list)):
        raise _invalid("params must be an object or array", recoverable_id)

    if "method" in data:
        method = data["method"]
        if not isinstance(method, str) or not method:
            raise _invalid("method must be a non-empty string", recoverable_id)
        if "id" not in data:
            return Notification(method=method, params=params)
        if not _is_valid_id(raw_id):
            raise _invalid("request id must be a string or integer")
        return Request(id=raw_id, method=method, params=params)

    if "id" not in data:
        raise _invalid("message has neither method nor id")
    if raw_id is not None and not _is_valid_id(raw_id):
        raise _invalid("response id must be a string, integer or null")

    has_result = "result" in data
    has_error = "error" in data
    if has_result == has_error:
        raise _invalid("response must carry exactly one of result or error", recoverable_id)
    if has_error:
        return Response(id=raw_id, error=_decode_error_object(data["error"], recoverable_id))
    return Response(id=raw_id, result=data["result"])
