"""Tests for the event stream parser and vocabulary normalization."""

import json
import logging

import pytest

from agentdeck._exceptions import ParseError
from agentdeck._types import Role
from agentdeck.events import (
    EventStreamParser,
    EventType,
    HeartbeatEvent,
    MessageCompletedEvent,
    MessageStartedEvent,
    PartUpdatedEvent,
    ServerConnectedEvent,
    SessionIdleEvent,
    SessionStatusEvent,
    StreamEvent,
)
from tests.utils.factories import sse_lines


class TestDecodeFrame:
    def test_data_line(self):
        assert EventStreamParser.decode_frame('data: {"type": "server.connected"}') == {
            "type": "server.connected"
        }

    def test_data_without_space(self):
        assert EventStreamParser.decode_frame('data:{"type": "x"}') == {"type": "x"}

    def test_comment_and_blank_frames(self):
        assert EventStreamParser.decode_frame(": keep-alive") is None
        assert EventStreamParser.decode_frame("") is None
        assert EventStreamParser.decode_frame("data: ") is None

    def test_multiline_data_joined(self):
        frame = 'data: {"type":\ndata: "server.connected"}'
        assert EventStreamParser.decode_frame(frame) == {"type": "server.connected"}

    def test_invalid_json_raises_parse_error(self):
        with pytest.raises(ParseError):
            EventStreamParser.decode_frame("data: {not json")

    def test_non_object_raises_parse_error(self):
        with pytest.raises(ParseError):
            EventStreamParser.decode_frame("data: [1, 2]")


class TestParseSSELine:
    def test_malformed_frame_dropped_and_logged(self, caplog):
        with caplog.at_level(logging.WARNING, logger="agentdeck.events"):
            assert EventStreamParser.parse_sse_line("data: {oops") == []
        assert "Failed to parse SSE frame" in caplog.text

    def test_unknown_type_passes_through(self):
        events = EventStreamParser.parse_sse_line(
            'data: {"type": "file.edited", "properties": {"file": "a.py"}}'
        )
        assert len(events) == 1
        assert type(events[0]) is StreamEvent
        assert events[0].type == EventType.UNKNOWN
        assert events[0].wire_type == "file.edited"
        assert events[0].properties == {"file": "a.py"}


class TestNormalization:
    def _one(self, payload: dict) -> StreamEvent:
        events = StreamEvent.from_dict(payload)
        assert len(events) == 1
        return events[0]

    def test_server_connected(self):
        event = self._one({"type": "server.connected", "properties": {}})
        assert isinstance(event, ServerConnectedEvent)

    @pytest.mark.parametrize("wire_type", ["server.heartbeat", "heartbeat"])
    def test_heartbeats(self, wire_type):
        assert isinstance(self._one({"type": wire_type}), HeartbeatEvent)

    @pytest.mark.parametrize("wire_type", ["message.updated", "message.created"])
    def test_message_started_from_both_vocabularies(self, wire_type):
        event = self._one(
            {
                "type": wire_type,
                "properties": {
                    "info": {"id": "m1", "role": "assistant", "time": {"created": 1700000000000}}
                },
            }
        )
        assert isinstance(event, MessageStartedEvent)
        assert event.type == EventType.MESSAGE_STARTED
        assert event.message_id == "m1"
        assert event.role is Role.ASSISTANT
        assert event.created is not None and event.created.year == 2023
        assert event.is_legacy == (wire_type == "message.created")

    def test_message_updated_without_id_dropped(self):
        assert StreamEvent.from_dict({"type": "message.updated", "properties": {"info": {}}}) == []

    def test_message_updated_unknown_role_dropped(self):
        payload = {"type": "message.updated", "properties": {"info": {"id": "m", "role": "tool"}}}
        assert StreamEvent.from_dict(payload) == []

    def test_part_updated_with_delta(self):
        event = self._one(
            {
                "type": "message.part.updated",
                "properties": {
                    "part": {"type": "text", "messageID": "m1", "text": "Hi"},
                    "delta": "Hi",
                },
            }
        )
        assert isinstance(event, PartUpdatedEvent)
        assert event.message_id == "m1"
        assert event.part_type == "text"
        assert event.delta == "Hi"

    def test_empty_delta_treated_as_full_text(self):
        event = self._one(
            {
                "type": "message.part.updated",
                "properties": {"part": {"type": "text", "messageID": "m1", "text": "x"}, "delta": ""},
            }
        )
        assert event.delta is None

    def test_legacy_part_delta_moves_text_into_delta(self):
        event = self._one(
            {
                "type": "message.part.delta",
                "properties": {"part": {"type": "text", "messageID": "m1", "text": " there"}},
            }
        )
        assert isinstance(event, PartUpdatedEvent)
        assert event.delta == " there"
        assert "text" not in event.part

    def test_part_message_id_falls_back_to_properties(self):
        event = self._one(
            {
                "type": "message.part.delta",
                "properties": {"messageID": "m9", "part": {"type": "reasoning", "text": "hmm"}},
            }
        )
        assert event.message_id == "m9"
        assert event.part["text"] == "hmm"

    def test_part_without_message_id_dropped(self):
        payload = {"type": "message.part.updated", "properties": {"part": {"type": "text"}}}
        assert StreamEvent.from_dict(payload) == []

    def test_part_missing_dropped(self):
        assert StreamEvent.from_dict({"type": "message.part.updated", "properties": {}}) == []

    @pytest.mark.parametrize(
        ("status", "busy", "idle"),
        [({"type": "busy"}, True, False), ("running", True, False), ({"type": "idle"}, False, True)],
    )
    def test_session_status_shapes(self, status, busy, idle):
        event = self._one({"type": "session.status", "properties": {"status": status}})
        assert isinstance(event, SessionStatusEvent)
        assert event.is_busy is busy
        assert event.is_idle is idle

    def test_session_status_without_status_dropped(self):
        assert StreamEvent.from_dict({"type": "session.status", "properties": {}}) == []

    def test_session_idle(self):
        event = self._one({"type": "session.idle", "properties": {"sessionID": "s"}})
        assert isinstance(event, SessionIdleEvent)

    def test_legacy_completed(self):
        event = self._one({"type": "message.completed", "properties": {"messageID": "m1"}})
        assert isinstance(event, MessageCompletedEvent)
        assert event.message_id == "m1"
        assert event.is_legacy

    def test_non_dict_properties_tolerated(self):
        event = self._one({"type": "server.connected", "properties": "nope"})
        assert event.properties == {}


class TestParseStream:
    def test_yields_events_in_order(self, stream_response):
        resp = stream_response(
            sse_lines(
                {"type": "server.connected"},
                {"type": "session.status", "properties": {"status": {"type": "busy"}}},
                {"type": "session.idle", "properties": {}},
            )
        )
        types = [e.type for e in EventStreamParser.parse_stream(resp)]
        assert types == [EventType.SERVER_CONNECTED, EventType.SESSION_STATUS, EventType.SESSION_IDLE]

    def test_consecutive_data_lines_without_blank_separator(self, stream_response):
        resp = stream_response(
            ['data: {"type": "server.connected"}', 'data: {"type": "session.idle"}']
        )
        assert len(list(EventStreamParser.parse_stream(resp))) == 2

    def test_bytes_lines_decoded(self, stream_response):
        payload = json.dumps({"type": "server.connected"}).encode()
        resp = stream_response([b"data: " + payload, b""])
        events = list(EventStreamParser.parse_stream(resp))
        assert isinstance(events[0], ServerConnectedEvent)

    def test_comments_and_fields_ignored(self, stream_response):
        resp = stream_response(
            [": ping", "event: message", "id: 7", "retry: 1000", 'data: {"type": "heartbeat"}']
        )
        events = list(EventStreamParser.parse_stream(resp))
        assert len(events) == 1
        assert isinstance(events[0], HeartbeatEvent)

    def test_malformed_frame_does_not_stop_stream(self, stream_response):
        resp = stream_response(
            ["data: {broken", "", 'data: {"type": "server.connected"}', ""]
        )
        events = list(EventStreamParser.parse_stream(resp))
        assert [e.type for e in events] == [EventType.SERVER_CONNECTED]

    def test_reads_without_chunk_buffering(self, stream_response):
        resp = stream_response([])
        list(EventStreamParser.parse_stream(resp))
        resp.iter_lines.assert_called_once_with(chunk_size=None)
