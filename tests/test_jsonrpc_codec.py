from __future__ import annotations

import json
import unittest

from mcp_vcs.jsonrpc_codec import Notification, Request, Response, decode, encode
from mcp_vcs.mcp_types import INVALID_REQUEST, PARSE_ERROR, DecodeError, ErrorInfo


class CodecTests(unittest.TestCase):
    def test_encode_is_one_json_object_per_line(self) -> None:
        frame = encode(Request(id=7, method="tools/call", params={"name": "git_status", "arguments": {}}))
        self.assertTrue(frame.endswith(b"\n"))
        self.assertEqual(frame.count(b"\n"), 1)
        payload = json.loads(frame)
        self.assertEqual(
            payload,
            {"jsonrpc": "2.0", "id": 7, "method": "tools/call", "params": {"name": "git_status", "arguments": {}}},
        )

    def test_round_trip_of_each_message_kind(self) -> None:
        messages = [
            Request(id="abc", method="tools/list", params={}),
            Request(id=3, method="ping"),
            Response(id=3, result={"tools": []}),
            Response(id=4, result=None),
            Response(id=5, error=ErrorInfo(code=-32601, message="Method not found", data={"method": "x"})),
            Notification(method="notifications/initialized", params={}),
        ]
        for message in messages:
            with self.subTest(message=message):
                self.assertEqual(decode(encode(message)), message)

    def test_non_ascii_text_survives(self) -> None:
        message = Response(id=1, result={"content": [{"type": "text", "text": "変更をコミットしました"}]})
        self.assertEqual(decode(encode(message)), message)

    def test_invalid_json_is_parse_error(self) -> None:
        with self.assertRaises(DecodeError) as ctx:
            decode(b"{not json")
        self.assertEqual(ctx.exception.error.code, PARSE_ERROR)

    def test_invalid_utf8_is_parse_error(self) -> None:
        with self.assertRaises(DecodeError) as ctx:
            decode(b"\xff\xfe{}")
        self.assertEqual(ctx.exception.error.code, PARSE_ERROR)

    def test_wrong_version_is_invalid_request_with_recovered_id(self) -> None:
        with self.assertRaises(DecodeError) as ctx:
            decode(b'{"jsonrpc": "1.0", "id": 12, "result": {}}')
        self.assertEqual(ctx.exception.error.code, INVALID_REQUEST)
        self.assertEqual(ctx.exception.request_id, 12)

    def test_envelope_violations_are_invalid_request(self) -> None:
        cases = [
            b"[1, 2]",
            b'{"jsonrpc": "2.0"}',
            b'{"jsonrpc": "2.0", "id": 1}',
            b'{"jsonrpc": "2.0", "id": 1, "result": {}, "error": {"code": 1, "message": "x"}}',
            b'{"jsonrpc": "2.0", "id": 1, "error": {"message": "no code"}}',
            b'{"jsonrpc": "2.0", "id": true, "method": "x"}',
            b'{"jsonrpc": "2.0", "method": ""}',
            b'{"jsonrpc": "2.0", "method": "x", "params": "scalar"}',
        ]
        for raw in cases:
            with self.subTest(raw=raw):
                with self.assertRaises(DecodeError) as ctx:
                    decode(raw)
                self.assertEqual(ctx.exception.error.code, INVALID_REQUEST)

    def test_error_response_with_null_id(self) -> None:
        message = decode('{"jsonrpc": "2.0", "id": null, "error": {"code": -32700, "message": "Parse error"}}')
        self.assertIsInstance(message, Response)
        assert isinstance(message, Response)
        self.assertIsNone(message.id)
        self.assertEqual(message.error, ErrorInfo(code=-32700, message="Parse error"))


if __name__ == "__main__":
    unittest.main()
