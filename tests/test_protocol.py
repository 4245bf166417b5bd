"""Tests for the wire format."""

import json

import pytest

from pubsub_feed.exceptions import DecodeError
from pubsub_feed.protocol import (
    FrameType, RequestType, build_ping, build_request, encode_frame,
    generate_nonce, parse_frame
)


class TestParseFrame:

    def test_message_frame(self):
        raw = json.dumps({
            "type": "MESSAGE",
            "data": {"topic": "channel-bits-events-v2.123", "message": "{\"data\": {}}"},
        })
        frame = parse_frame(raw)

        assert frame.frame_type == FrameType.MESSAGE
        assert frame.topic == "channel-bits-events-v2.123"
        assert frame.payload == "{\"data\": {}}"
        assert frame.received_at > 0

    def test_flat_message_frame(self):
        frame = parse_frame(json.dumps({"type": "MESSAGE", "topic": "raid.1", "data": {"type": "raid_go_v2"}}))

        assert frame.topic == "raid.1"
        assert frame.payload == {"type": "raid_go_v2"}

    def test_bytes_frame(self):
        assert parse_frame(b'{"type": "PONG"}').frame_type == FrameType.PONG

    def test_response_frame(self):
        frame = parse_frame('{"type": "RESPONSE", "nonce": "abc", "error": ""}')

        assert frame.frame_type == FrameType.RESPONSE
        assert frame.nonce == "abc"
        assert frame.error is None
        assert frame.is_success

    def test_reconnect_frame(self):
        assert parse_frame('{"type": "RECONNECT"}').frame_type == FrameType.RECONNECT

    def test_type_is_case_insensitive(self):
        assert parse_frame('{"type": "pong"}').frame_type == FrameType.PONG

    @pytest.mark.parametrize("raw", [
        "not json",
        "[1, 2, 3]",
        '{"type": "BOGUS"}',
        '{"data": {}}',
        '{"type": "MESSAGE", "data": {"message": "{}"}}',
        '{"type": "MESSAGE", "data": {"topic": "raid.1"}}',
        '{"type": "RESPONSE", "error": ""}',
        b"\xff\xfe",
    ])
    def test_malformed_frames(self, raw):
        with pytest.raises(DecodeError):
            parse_frame(raw)

    def test_decode_error_keeps_raw_data(self):
        with pytest.raises(DecodeError) as exc_info:
            parse_frame("{broken")
        assert exc_info.value.raw_data == "{broken"


class TestResponseOutcome:

    @pytest.mark.parametrize("message, success, reason", [
        ({"error": ""}, True, None),
        ({"error": "ERR_BADAUTH"}, False, "ERR_BADAUTH"),
        ({"status": "ok"}, True, None),
        ({"status": "OK"}, True, None),
        ({"status": "error"}, False, "error"),
        ({"status": "ok", "error": "ERR_SERVER"}, False, "ERR_SERVER"),
    ])
    def test_success_rules(self, message, success, reason):
        frame = parse_frame(json.dumps({"type": "RESPONSE", "nonce": "n", **message}))

        assert frame.is_success is success
        if reason:
            assert frame.failure_reason == reason


class TestRequests:

    def test_listen_request(self):
        request = build_request(RequestType.LISTEN, ["raid.1", "whispers.2"], "token", nonce="n1")

        assert request == {
            "type": "LISTEN",
            "nonce": "n1",
            "data": {"topics": ["raid.1", "whispers.2"], "auth_token": "token"},
        }

    def test_request_without_token(self):
        request = build_request(RequestType.UNLISTEN, ["raid.1"], None)

        assert request["type"] == "UNLISTEN"
        assert "auth_token" not in request["data"]
        assert request["nonce"]

    def test_ping(self):
        assert build_ping() == {"type": "PING"}

    def test_encode_is_compact_json(self):
        assert encode_frame({"type": "PING"}) == '{"type":"PING"}'

    def test_nonces_are_unique(self):
        nonces = {generate_nonce() for _ in range(100)}
        assert len(nonces) == 100
