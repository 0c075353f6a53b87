"""Tests for the connection registry and handshake gating."""

import threading
import time
from unittest.mock import MagicMock

import pytest

from agentdeck._exceptions import ConnectionError, TimeoutError
from agentdeck.config import ClientConfig
from agentdeck.events import EventType
from agentdeck.filtering import is_event_for_session
from agentdeck.reconstructor import MessageReconstructor
from agentdeck.registry import ConnectionRegistry
from tests.utils.factories import EventFactory as E
from tests.utils.mocks import FakeStreamClient as FakeClient


@pytest.fixture
def clients():
    return []


@pytest.fixture
def registry(clients):
    def factory():
        client = FakeClient()
        clients.append(client)
        return client

    return ConnectionRegistry(client_factory=factory, handshake_timeout=1)


def _registry_with(client: FakeClient, **kwargs) -> ConnectionRegistry:
    return ConnectionRegistry(client_factory=lambda: client, handshake_timeout=1, **kwargs)


class TestGetClient:
    def test_same_key_same_client(self, registry):
        assert registry.get_client("a") is registry.get_client("a")

    def test_different_keys_different_clients(self, registry):
        assert registry.get_client("a") is not registry.get_client("b")

    def test_connects_when_endpoint_given(self, registry):
        client = registry.get_client("a", 4096)
        assert client.is_connected
        assert client.endpoint == 4096

    def test_concurrent_lookup_creates_one_client(self, registry, clients):
        barrier = threading.Barrier(8)
        results = []

        def worker():
            barrier.wait()
            results.append(registry.get_client("shared"))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(clients) == 1
        assert all(r is results[0] for r in results)

    def test_from_config(self):
        config = ClientConfig(host="localhost", request_timeout=3, handshake_timeout=0.5)
        registry = ConnectionRegistry.from_config(config)
        client = registry.get_client("a", 4096)
        assert client.base_url == "http://localhost:4096"
        registry.close()


class TestHandshake:
    def test_ready_after_server_connected(self, registry):
        registry.establish_connection("a", 4096)
        assert registry.is_ready("a")

    def test_already_ready_returns_without_resubscribing(self, registry, clients):
        registry.establish_connection("a", 4096)
        registry.establish_connection("a", 4096)
        assert len(clients[0].subscriptions) == 1

    def test_timeout_without_server_connected(self):
        client = FakeClient(auto_connect=False)
        registry = _registry_with(client)
        started = time.monotonic()
        with pytest.raises(TimeoutError):
            registry.establish_connection("a", 4096, timeout=0.05)
        assert time.monotonic() - started < 1
        assert not registry.is_ready("a")
        assert client.subscriptions[0].closed

    def test_handshake_completed_from_another_thread(self):
        client = FakeClient(auto_connect=False)
        registry = _registry_with(client)
        timer = threading.Timer(0.05, lambda: client.emit(E.connected()))
        timer.start()
        registry.establish_connection("a", 4096, timeout=2)
        assert registry.is_ready("a")

    def test_stream_closed_before_handshake(self):
        registry = _registry_with(FakeClient(fail_before_handshake=True))
        with pytest.raises(ConnectionError):
            registry.establish_connection("a", 4096)
        assert not registry.is_ready("a")

    def test_subscribe_failure_propagates(self):
        client = FakeClient()
        client.subscribe_to_events = MagicMock(side_effect=ConnectionError("refused"))
        registry = _registry_with(client)
        with pytest.raises(ConnectionError, match="refused"):
            registry.establish_connection("a", 4096)

    def test_connection_lost_after_handshake(self):
        client = FakeClient()
        lost = []
        registry = _registry_with(client, on_connection_lost=lambda k, e: lost.append(k))
        registry.establish_connection("a", 4096)
        client.lose_connection()
        assert not registry.is_ready("a")
        assert lost == ["a"]

    def test_reestablish_discards_stale_subscription(self):
        client = FakeClient()
        registry = _registry_with(client)
        registry.establish_connection("a", 4096)
        client.lose_connection()
        received = []
        registry.register_handler("a", received.append)
        received.clear()

        registry.establish_connection("a", 4096)
        assert len(client.subscriptions) == 2
        assert client.subscriptions[0].closed
        client.emit(E.idle(), index=0)  # late event from the old stream
        assert [e.type for e in received] == [EventType.SERVER_CONNECTED]


class TestHandlers:
    def test_backlog_delivered_in_order_on_register(self, registry, clients):
        registry.establish_connection("a", 4096)
        clients[0].emit(E.message_updated("m1"))
        clients[0].emit(E.heartbeat())
        clients[0].emit(E.text("m1", delta="hi"))
        received = []
        registry.register_handler("a", received.append)
        assert [e.type for e in received] == [
            EventType.SERVER_CONNECTED,
            EventType.MESSAGE_STARTED,
            EventType.PART_UPDATED,
        ]

    def test_backlog_overflow_logged(self, registry, clients, monkeypatch, caplog):
        monkeypatch.setattr("agentdeck.registry._BACKLOG_LIMIT", 2)
        registry.establish_connection("a", 4096)
        with caplog.at_level("WARNING", logger="agentdeck.registry"):
            clients[0].emit(E.message_updated("m1"))
            clients[0].emit(E.text("m1", delta="hi"))
            clients[0].emit(E.idle())
            received = []
            registry.register_handler("a", received.append)

        assert [e.type for e in received] == [EventType.PART_UPDATED, EventType.SESSION_IDLE]
        warnings = [r.getMessage() for r in caplog.records]
        assert "Backlog for a is full (2 events); dropping the oldest" in warnings
        assert "Delivering backlog for a after dropping 2 events" in warnings
        assert len(warnings) == 2

    def test_live_events_forwarded(self, registry, clients):
        registry.establish_connection("a", 4096)
        received = []
        registry.register_handler("a", received.append)
        received.clear()
        clients[0].emit(E.idle())
        assert [e.type for e in received] == [EventType.SESSION_IDLE]

    def test_replacing_handler_supersedes_previous(self, registry, clients):
        registry.establish_connection("a", 4096)
        first, second = [], []
        registry.register_handler("a", first.append)
        registry.register_handler("a", second.append)
        first.clear()
        second.clear()
        clients[0].emit(E.idle())
        assert first == []
        assert len(second) == 1

    def test_unsubscribe_stops_delivery(self, registry, clients):
        registry.establish_connection("a", 4096)
        received = []
        unsubscribe = registry.register_handler("a", received.append)
        unsubscribe()
        received.clear()
        clients[0].emit(E.idle())
        assert received == []

    def test_stale_unsubscribe_keeps_newer_handler(self, registry, clients):
        registry.establish_connection("a", 4096)
        unsubscribe_old = registry.register_handler("a", lambda e: None)
        received = []
        registry.register_handler("a", received.append)
        unsubscribe_old()
        clients[0].emit(E.idle())
        assert len(received) == 1

    def test_unsubscribe_waits_for_in_flight_handler(self, registry, clients):
        registry.establish_connection("a", 4096)
        entered, release = threading.Event(), threading.Event()
        calls = []

        def slow_handler(event):
            calls.append(event.type)
            if event.type == EventType.SESSION_IDLE:
                entered.set()
                release.wait(2)

        unsubscribe = registry.register_handler("a", slow_handler)
        calls.clear()
        emitter = threading.Thread(target=clients[0].emit, args=(E.idle(),))
        emitter.start()
        assert entered.wait(2)

        unsubscribed = threading.Event()
        remover = threading.Thread(target=lambda: (unsubscribe(), unsubscribed.set()))
        remover.start()
        assert not unsubscribed.wait(0.1)
        release.set()
        remover.join(2)
        emitter.join(2)
        assert unsubscribed.is_set()

        clients[0].emit(E.idle())
        assert calls == [EventType.SESSION_IDLE]


class TestRemoval:
    def test_remove_client_tears_down(self, registry, clients):
        registry.establish_connection("a", 4096)
        state = registry.state("a")
        received = []
        registry.register_handler("a", received.append)
        received.clear()

        registry.remove_client("a")
        assert clients[0].subscriptions[0].closed
        assert not clients[0].is_connected
        assert not registry.is_ready("a")
        assert "a" not in registry.keys()
        clients[0].emit(E.idle())
        assert received == []
        assert registry.state("a") is not state

    def test_remove_unknown_key_is_noop(self, registry):
        registry.remove_client("missing")

    def test_close_removes_everything(self, registry):
        registry.establish_connection("a", 4096)
        registry.establish_connection("b", 4097)
        with registry:
            pass
        assert registry.keys() == []


class TestIsolation:
    def _wire(self, registry, key, session_id):
        rec = MessageReconstructor(key, registry.state(key))

        def handler(event):
            if is_event_for_session(event, session_id):
                rec.apply(event)

        registry.register_handler(key, handler)
        return rec

    def test_two_conversations_never_share_content(self, registry, clients):
        registry.establish_connection("task:A", 4096)
        registry.establish_connection("task:B", 4097)
        rec_a = self._wire(registry, "task:A", "ses_A")
        rec_b = self._wire(registry, "task:B", "ses_B")
        client_a, client_b = clients

        client_a.emit(E.message_updated("mA", session_id="ses_A"))
        client_b.emit(E.message_updated("mB", session_id="ses_B"))
        client_a.emit(E.text("mA", delta="alpha", session_id="ses_A"))
        client_b.emit(E.text("mB", delta="beta", session_id="ses_B"))
        # Same server broadcasting the other session's traffic
        client_a.emit(E.text("mB", delta="LEAK", session_id="ses_B"))
        client_b.emit(E.idle("ses_B"))
        client_a.emit(E.idle("ses_B"))

        assert [(m.id, m.content) for m in rec_a.messages] == [("mA", "alpha")]
        assert [(m.id, m.content) for m in rec_b.messages] == [("mB", "beta")]
        assert rec_a.messages[0].is_streaming
        assert not rec_b.messages[0].is_streaming
        assert registry.state("task:A") is not registry.state("task:B")
