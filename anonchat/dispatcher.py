"""Event dispatch between the Socket.IO transport and per-connection relays.

Every connection gets its own bounded event queue drained by one worker task,
so a connection's events are handled strictly in the order they arrived while
other connections keep running whenever a worker is waiting on the store.

Disconnect is applied immediately: the connection leaves all of its rooms and
any events still queued for it are discarded. A store call already in flight
is not cancelled; its broadcast simply no longer reaches the departed
connection.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set

import socketio

from anonchat.config import settings
from anonchat.logging_utils import connection_id_ctx
from anonchat.metrics import record_relay_event, record_room_count, relay_active_connections
from anonchat.registry import Deliver, RoomRegistry
from anonchat.relay import ConnectionState, RelayService
from anonchat.storage import MessageStore

logger = logging.getLogger(__name__)

RECEIVE_EVENT = "receive_message"

# Worker stop marker, enqueued on disconnect
_STOP = object()


class ConnectionSession:
    def __init__(self, relay: RelayService) -> None:
        self.relay = relay
        self.queue: asyncio.Queue = asyncio.Queue()
        self.worker: Optional[asyncio.Task] = None


class RelayServer:
    """Owns the room registry and one ConnectionSession per live sid."""

    def __init__(
        self,
        store: MessageStore,
        deliver: Deliver,
        queue_size: int = settings.EVENT_QUEUE_SIZE,
    ) -> None:
        self.store = store
        self.registry = RoomRegistry(deliver)
        self.queue_size = queue_size
        self.sessions: Dict[str, ConnectionSession] = {}
        self._workers: Set[asyncio.Task] = set()
        self._handlers: Dict[str, Callable[[RelayService, Any], Awaitable[Any]]] = {
            "join_room": self._handle_join,
            "send_message": self._handle_send,
        }

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def connect(self, sid: str) -> None:
        if sid in self.sessions:
            logger.warning(f"Duplicate connect for {sid}, keeping existing session")
            return

        session = ConnectionSession(RelayService(sid, self.registry, self.store))
        session.worker = asyncio.create_task(self._run(sid, session), name=f"relay-{sid}")
        self._workers.add(session.worker)
        session.worker.add_done_callback(self._workers.discard)
        self.sessions[sid] = session

        relay_active_connections.inc()
        record_relay_event("connect")
        logger.info(f"Connection opened: {sid}")

    def dispatch(self, sid: str, event: str, data: Any = None) -> bool:
        """Queue an event for sid. Returns False if it was dropped."""
        session = self.sessions.get(sid)
        if session is None:
            logger.warning(f"Dropping {event} for unknown connection {sid}")
            return False
        if event not in self._handlers:
            logger.warning(f"Dropping unsupported event {event!r} from {sid}")
            return False
        if session.queue.qsize() >= self.queue_size:
            logger.warning(f"Event queue full for {sid}, dropping {event}")
            return False

        session.queue.put_nowait((event, data))
        return True

    async def disconnect(self, sid: str) -> None:
        session = self.sessions.pop(sid, None)
        if session is None:
            return

        rooms = session.relay.disconnect()
        record_room_count(self.registry.room_count)
        # Unbounded underneath, so the stop marker always fits
        session.queue.put_nowait(_STOP)

        relay_active_connections.dec()
        record_relay_event("disconnect")
        logger.info(
            f"Connection closed: {sid}, left rooms {rooms}; "
            f"{self.registry.connection_count} connections remain in {self.registry.room_count} rooms"
        )

    async def flush(self, sid: str) -> None:
        """Wait until every event queued so far for sid has been handled."""
        session = self.sessions.get(sid)
        if session is not None:
            await session.queue.join()

    async def shutdown(self) -> None:
        """Disconnect every session and wait for in-flight work to finish."""
        for sid in list(self.sessions):
            await self.disconnect(sid)
        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)

    # =========================================================================
    # Worker
    # =========================================================================

    async def _run(self, sid: str, session: ConnectionSession) -> None:
        connection_id_ctx.set(sid)
        while True:
            item = await session.queue.get()
            try:
                if item is _STOP:
                    return
                event, data = item
                if session.relay.state is ConnectionState.CLOSED:
                    logger.debug(f"Discarding {event} queued before disconnect")
                    continue
                record_relay_event(event)
                await self._handlers[event](session.relay, data)
            except Exception:
                # Handler failures never take the connection down
                logger.exception(f"Unhandled error while handling event for {sid}")
            finally:
                session.queue.task_done()

    async def _handle_join(self, relay: RelayService, room_id: Any) -> None:
        if relay.join(room_id):
            record_room_count(self.registry.room_count)

    async def _handle_send(self, relay: RelayService, data: Any) -> None:
        await relay.send(data)

    # =========================================================================
    # Transport binding
    # =========================================================================

    def register(self, sio: socketio.AsyncServer) -> None:
        """Bind this server's lifecycle and event handlers to a Socket.IO server."""

        @sio.event
        async def connect(sid, environ, auth=None):
            await self.connect(sid)

        @sio.event
        async def join_room(sid, room_id):
            self.dispatch(sid, "join_room", room_id)

        @sio.event
        async def send_message(sid, data):
            self.dispatch(sid, "send_message", data)

        @sio.event
        async def disconnect(sid, reason=None):
            await self.disconnect(sid)

        @sio.on("*")
        async def unknown_event(event, sid, *args):
            logger.warning(f"Ignoring unknown event {event!r} from {sid}")


def socketio_deliver(sio: socketio.AsyncServer) -> Deliver:
    """Delivery callable that emits receive_message to a single sid."""

    async def deliver(sid: str, payload: Any) -> None:
        await sio.emit(RECEIVE_EVENT, payload, to=sid)

    return deliver
