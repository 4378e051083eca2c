"""
Tests for RelayServer event dispatch.

Tests cover:
- Per-connection receipt ordering
- Cross-connection ordering by store completion
- Disconnect semantics (immediate leave, in-flight sends not cancelled)
- Bounded per-connection queues
- Handler failures contained to the event
- Socket.IO binding
"""

import asyncio

import pytest
import socketio
from prometheus_client import REGISTRY

from anonchat.dispatcher import RECEIVE_EVENT, RelayServer, socketio_deliver
from anonchat.schemas import MessageRecord
from anonchat.utils import new_message_id, utc_now_iso


def send_payload(message, room_id="r1", user_id="u-a", username="A"):
    return {"roomId": room_id, "userId": user_id, "username": username, "message": message}


class ScriptedStore:
    """In-memory store with a per-message insert delay."""

    def __init__(self, delays=None, explode=()):
        self.delays = delays or {}
        self.explode = set(explode)
        self.started = asyncio.Event()
        self.inserted = []

    async def insert(self, candidate):
        self.started.set()
        if candidate.message in self.explode:
            raise RuntimeError("driver crashed")
        await asyncio.sleep(self.delays.get(candidate.message, 0))
        record = MessageRecord(
            id=new_message_id(),
            created_at=utc_now_iso(),
            **candidate.model_dump(exclude={"id", "created_at"}),
        )
        self.inserted.append(record)
        return record


def messages_for(recorder, sid):
    return [payload["message"] for payload in recorder.received_by(sid)]


class TestDispatch:
    """Test event routing to connection sessions."""

    @pytest.mark.asyncio
    async def test_join_then_send_is_broadcast(self, recorder):
        server = RelayServer(ScriptedStore(), recorder)
        await server.connect("a")

        assert server.dispatch("a", "join_room", "r1")
        assert server.dispatch("a", "send_message", send_payload("hello"))
        await server.flush("a")

        assert messages_for(recorder, "a") == ["hello"]
        await server.shutdown()

    @pytest.mark.asyncio
    async def test_unknown_connection(self, recorder):
        server = RelayServer(ScriptedStore(), recorder)

        assert not server.dispatch("ghost", "join_room", "r1")

    @pytest.mark.asyncio
    async def test_unsupported_event(self, recorder):
        server = RelayServer(ScriptedStore(), recorder)
        await server.connect("a")

        assert not server.dispatch("a", "delete_message", {"id": "m1"})
        await server.shutdown()

    @pytest.mark.asyncio
    async def test_duplicate_connect_keeps_session(self, recorder):
        server = RelayServer(ScriptedStore(), recorder)
        await server.connect("a")
        session = server.sessions["a"]
        await server.connect("a")

        assert server.sessions["a"] is session
        await server.shutdown()


class TestOrdering:
    """Test ordering guarantees."""

    @pytest.mark.asyncio
    async def test_same_connection_in_receipt_order(self, recorder):
        store = ScriptedStore(delays={"slow": 0.05, "fast": 0})
        server = RelayServer(store, recorder)
        await server.connect("a")
        server.dispatch("a", "join_room", "r1")
        server.dispatch("a", "send_message", send_payload("slow"))
        server.dispatch("a", "send_message", send_payload("fast"))
        await server.flush("a")

        assert messages_for(recorder, "a") == ["slow", "fast"]
        await server.shutdown()

    @pytest.mark.asyncio
    async def test_across_connections_in_completion_order(self, recorder):
        store = ScriptedStore(delays={"slow": 0.05, "fast": 0})
        server = RelayServer(store, recorder)
        for sid in ["a", "b"]:
            await server.connect(sid)
            server.dispatch(sid, "join_room", "r1")
        await server.flush("a")
        await server.flush("b")

        server.dispatch("a", "send_message", send_payload("slow"))
        server.dispatch("b", "send_message", send_payload("fast", user_id="u-b", username="B"))
        await asyncio.gather(server.flush("a"), server.flush("b"))

        assert messages_for(recorder, "a") == ["fast", "slow"]
        assert messages_for(recorder, "b") == ["fast", "slow"]
        await server.shutdown()


class TestDisconnect:
    """Test disconnect handling."""

    @pytest.mark.asyncio
    async def test_leaves_rooms_immediately(self, recorder):
        server = RelayServer(ScriptedStore(), recorder)
        await server.connect("a")
        server.dispatch("a", "join_room", "r1")
        await server.flush("a")

        await server.disconnect("a")

        assert server.registry.rooms_of("a") == set()
        assert "a" not in server.sessions
        await server.shutdown()

    @pytest.mark.asyncio
    async def test_in_flight_send_completes_without_reaching_sender(self, recorder):
        store = ScriptedStore(delays={"slow": 0.05})
        server = RelayServer(store, recorder)
        for sid in ["a", "b"]:
            await server.connect(sid)
            server.dispatch(sid, "join_room", "r1")
        await server.flush("a")
        await server.flush("b")

        server.dispatch("a", "send_message", send_payload("slow"))
        await store.started.wait()
        worker = server.sessions["a"].worker
        await server.disconnect("a")
        await worker

        assert [r.message for r in store.inserted] == ["slow"]
        assert messages_for(recorder, "a") == []
        assert messages_for(recorder, "b") == ["slow"]
        await server.shutdown()

    @pytest.mark.asyncio
    async def test_queued_events_are_discarded(self, recorder):
        store = ScriptedStore()
        server = RelayServer(store, recorder)
        await server.connect("a")
        server.dispatch("a", "join_room", "r1")
        server.dispatch("a", "send_message", send_payload("never"))

        await server.disconnect("a")
        await server.shutdown()

        assert store.inserted == []
        assert recorder.deliveries == []

    @pytest.mark.asyncio
    async def test_disconnect_unknown_is_noop(self, recorder):
        server = RelayServer(ScriptedStore(), recorder)

        await server.disconnect("ghost")


class TestRoomGauge:
    """Test the active room gauge follows registry membership."""

    @pytest.mark.asyncio
    async def test_tracks_joins_and_disconnects(self, recorder):
        server = RelayServer(ScriptedStore(), recorder)
        await server.connect("a")
        await server.connect("b")
        server.dispatch("a", "join_room", "r1")
        server.dispatch("a", "join_room", "r2")
        server.dispatch("b", "join_room", "r1")
        await server.flush("a")
        await server.flush("b")

        assert REGISTRY.get_sample_value("relay_active_rooms") == 2

        await server.disconnect("a")
        assert REGISTRY.get_sample_value("relay_active_rooms") == 1

        await server.disconnect("b")
        assert REGISTRY.get_sample_value("relay_active_rooms") == 0
        await server.shutdown()


class TestBackpressure:
    """Test bounded per-connection queues."""

    @pytest.mark.asyncio
    async def test_full_queue_drops_events(self, recorder):
        server = RelayServer(ScriptedStore(), recorder, queue_size=2)
        await server.connect("a")

        assert server.dispatch("a", "join_room", "r1")
        assert server.dispatch("a", "send_message", send_payload("one"))
        assert not server.dispatch("a", "send_message", send_payload("two"))

        await server.flush("a")
        assert messages_for(recorder, "a") == ["one"]
        await server.shutdown()


class TestFaultContainment:
    """Test that handler failures do not stop the connection."""

    @pytest.mark.asyncio
    async def test_unexpected_error_is_contained(self, recorder):
        store = ScriptedStore(explode={"boom"})
        server = RelayServer(store, recorder)
        await server.connect("a")
        server.dispatch("a", "join_room", "r1")
        server.dispatch("a", "send_message", send_payload("boom"))
        server.dispatch("a", "send_message", send_payload("after"))
        await server.flush("a")

        assert messages_for(recorder, "a") == ["after"]
        assert "a" in server.sessions
        await server.shutdown()

    @pytest.mark.asyncio
    async def test_invalid_send_keeps_connection(self, recorder):
        server = RelayServer(ScriptedStore(), recorder)
        await server.connect("a")
        server.dispatch("a", "join_room", "r1")
        server.dispatch("a", "send_message", {"roomId": "r1"})
        server.dispatch("a", "send_message", send_payload("ok"))
        await server.flush("a")

        assert messages_for(recorder, "a") == ["ok"]
        await server.shutdown()


class TestSocketIOBinding:
    """Test wiring to python-socketio."""

    def test_register_binds_events(self, recorder):
        sio = socketio.AsyncServer(async_mode="asgi")
        RelayServer(ScriptedStore(), recorder).register(sio)

        handlers = sio.handlers["/"]
        for event in ["connect", "join_room", "send_message", "disconnect", "*"]:
            assert event in handlers

    @pytest.mark.asyncio
    async def test_deliver_emits_to_single_sid(self):
        class FakeSio:
            def __init__(self):
                self.emitted = []

            async def emit(self, event, data, to=None):
                self.emitted.append((event, data, to))

        sio = FakeSio()
        await socketio_deliver(sio)("sid-1", {"message": "hi"})

        assert sio.emitted == [(RECEIVE_EVENT, {"message": "hi"}, "sid-1")]
