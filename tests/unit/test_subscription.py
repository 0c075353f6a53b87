"""Tests for the background event subscription."""

import threading
from unittest.mock import MagicMock

from agentdeck._exceptions import ConnectionError
from agentdeck.client import EventSubscription
from agentdeck.events import EventType
from tests.utils.factories import sse_lines


def _blocking_response(lines: list[str]):
    """Response that yields ``lines`` then blocks until closed."""
    release = threading.Event()
    resp = MagicMock()

    def _iter_lines(**_kwargs):
        yield from lines
        release.wait(5)
        raise OSError("connection closed")

    resp.iter_lines.side_effect = _iter_lines
    resp.close.side_effect = lambda: release.set()
    return resp


class TestEventSubscription:
    def test_delivers_events_in_order(self, stream_response):
        resp = stream_response(
            sse_lines({"type": "server.connected"}, {"type": "session.idle", "properties": {}})
        )
        received = []
        sub = EventSubscription(resp, received.append).start()
        sub.join(2)
        assert [e.type for e in received] == [EventType.SERVER_CONNECTED, EventType.SESSION_IDLE]

    def test_server_close_reports_error(self, stream_response):
        resp = stream_response(sse_lines({"type": "server.connected"}))
        errors = []
        sub = EventSubscription(resp, lambda e: None, on_error=errors.append).start()
        sub.join(2)
        assert len(errors) == 1
        assert isinstance(errors[0], ConnectionError)
        assert sub.closed
        resp.close.assert_called()

    def test_transport_failure_reports_error(self):
        resp = MagicMock()
        resp.iter_lines.side_effect = OSError("reset by peer")
        errors = []
        sub = EventSubscription(resp, lambda e: None, on_error=errors.append).start()
        sub.join(2)
        assert "reset by peer" in errors[0].message

    def test_close_stops_delivery_without_error(self):
        resp = _blocking_response(sse_lines({"type": "server.connected"}))
        received = threading.Event()
        errors = []
        sub = EventSubscription(resp, lambda e: received.set(), on_error=errors.append).start()
        assert received.wait(2)
        sub()
        sub.join(2)
        assert sub.closed
        assert errors == []
        resp.close.assert_called()

    def test_no_handler_call_after_close_returns(self):
        resp = _blocking_response(
            sse_lines({"type": "server.connected"}, {"type": "session.idle", "properties": {}})
        )
        first = threading.Event()
        calls = []
        sub_holder = {}

        def handler(event):
            calls.append(event.type)
            if event.type == EventType.SERVER_CONNECTED:
                # Closing from inside a handler must not deadlock.
                sub_holder["sub"].close()
                first.set()

        sub_holder["sub"] = sub = EventSubscription(resp, handler)
        sub.start()
        assert first.wait(2)
        sub.join(2)
        assert calls == [EventType.SERVER_CONNECTED]

    def test_handler_exception_does_not_end_stream(self, stream_response):
        resp = stream_response(
            sse_lines({"type": "server.connected"}, {"type": "session.idle", "properties": {}})
        )
        received = []

        def handler(event):
            received.append(event.type)
            if event.type == EventType.SERVER_CONNECTED:
                raise ValueError("bad handler")

        EventSubscription(resp, handler).start().join(2)
        assert received == [EventType.SERVER_CONNECTED, EventType.SESSION_IDLE]

    def test_context_manager_closes(self):
        resp = _blocking_response([])
        with EventSubscription(resp, lambda e: None).start() as sub:
            pass
        assert sub.closed
