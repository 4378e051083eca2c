"""Room membership for live connections.

A single RoomRegistry is created per process and handed to the relay server.
Entries are only added by `join` and only removed by `leave`; a room whose last
member leaves is dropped. All mutation happens on the event loop thread, so no
locking is used.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Hashable, Set

logger = logging.getLogger(__name__)

# (connection_ref, payload) -> delivery to that one connection
Deliver = Callable[[Hashable, Any], Awaitable[None]]


class RoomRegistry:
    def __init__(self, deliver: Deliver) -> None:
        self._deliver = deliver
        # room_id -> connection refs
        self._members: Dict[str, Set[Hashable]] = {}

    def join(self, connection_ref: Hashable, room_id: str) -> None:
        """Add connection_ref to room_id. Joining twice has no further effect."""
        self._members.setdefault(room_id, set()).add(connection_ref)
        logger.info(f"Connection {connection_ref} joined room {room_id}")

    def leave(self, connection_ref: Hashable) -> list[str]:
        """Remove connection_ref from every room. Returns the rooms it left."""
        left = []
        for room_id, members in list(self._members.items()):
            if connection_ref in members:
                members.discard(connection_ref)
                left.append(room_id)
                if not members:
                    del self._members[room_id]
        if left:
            logger.info(f"Connection {connection_ref} left rooms {left}")
        return left

    async def broadcast(self, room_id: str, payload: Any) -> int:
        """Deliver payload to every current member of room_id.

        Deliveries run concurrently; one failing member is logged and does not
        affect the others.

        Returns:
            Number of members the payload was delivered to.
        """
        # Snapshot so a join/leave during delivery cannot mutate the iteration
        members = list(self._members.get(room_id, ()))
        if not members:
            logger.debug(f"Broadcast to empty room {room_id}")
            return 0

        results = await asyncio.gather(
            *[self._deliver(member, payload) for member in members],
            return_exceptions=True,
        )

        delivered = 0
        for member, result in zip(members, results):
            if isinstance(result, BaseException):
                logger.warning(f"Delivery to {member} in room {room_id} failed: {result!r}")
            else:
                delivered += 1
        logger.debug(f"Broadcast to room {room_id}: {delivered}/{len(members)} delivered")
        return delivered

    def members(self, room_id: str) -> Set[Hashable]:
        return set(self._members.get(room_id, ()))

    def rooms_of(self, connection_ref: Hashable) -> Set[str]:
        return {room_id for room_id, members in self._members.items() if connection_ref in members}

    @property
    def room_count(self) -> int:
        return len(self._members)

    @property
    def connection_count(self) -> int:
        return len(set().union(*self._members.values())) if self._members else 0
