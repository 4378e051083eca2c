"""
Per-connection relay: join rooms, persist sends, broadcast stored messages.

One RelayService exists per live connection:

    connected --join_room--> joined --disconnect--> closed
        \\________________disconnect_______________/

Senders get no acknowledgment. A send that fails validation or persistence
is logged and dropped; nothing is reported back over the channel.
"""

import logging
from enum import Enum
from typing import Any, Hashable, Optional

from pydantic import ValidationError as SchemaError

from anonchat.errors import EmptyResultWarning, PersistenceError, ValidationError
from anonchat.metrics import record_send_outcome
from anonchat.registry import RoomRegistry
from anonchat.replies import ReplyResolver
from anonchat.schemas import MessageCandidate, MessagePayload, SendMessageRequest
from anonchat.storage import MessageStore

logger = logging.getLogger(__name__)

REQUIRED_SEND_FIELDS = ("roomId", "userId", "username", "message")


class ConnectionState(str, Enum):
    CONNECTED = "connected"
    JOINED = "joined"
    CLOSED = "closed"


class RelayService:
    def __init__(
        self,
        connection_ref: Hashable,
        registry: RoomRegistry,
        store: MessageStore,
    ) -> None:
        self.connection_ref = connection_ref
        self.registry = registry
        self.store = store
        self.state = ConnectionState.CONNECTED

    def join(self, room_id: Any) -> bool:
        """
        Subscribe this connection to room_id.

        Any non-empty string is accepted. Joining more rooms later keeps the
        connection in the joined state.
        """
        if self.state is ConnectionState.CLOSED:
            logger.debug(f"Ignoring join_room on closed connection {self.connection_ref}")
            return False
        if not isinstance(room_id, str) or not room_id:
            logger.warning(f"Ignoring join_room with invalid room id: {room_id!r}")
            return False

        self.registry.join(self.connection_ref, room_id)
        self.state = ConnectionState.JOINED
        return True

    def build_candidate(self, data: Any) -> MessageCandidate:
        """
        Validate a send_message payload and attach its normalized reply snapshot.

        Raises:
            ValidationError: a required field is missing, not a string or blank.
        """
        try:
            request = SendMessageRequest.model_validate(data)
        except SchemaError as e:
            fields = sorted({str(err["loc"][0]) for err in e.errors() if err["loc"]})
            raise ValidationError(fields or list(REQUIRED_SEND_FIELDS)) from e

        missing = [
            name for name in REQUIRED_SEND_FIELDS
            if not (getattr(request, name) or "").strip()
        ]
        if missing:
            raise ValidationError(missing)

        reply = ReplyResolver.normalize(
            request.replyToMessageId,
            request.replyToMessageContent,
            request.replyToUsername,
        )
        return MessageCandidate(
            room_id=request.roomId,
            user_id=request.userId,
            username=request.username,
            message=request.message,
            reply_to_message_id=reply.message_id,
            reply_to_message_content=reply.content,
            reply_to_username=reply.username,
        )

    async def send(self, data: Any) -> Optional[MessagePayload]:
        """
        Persist one message and broadcast it to its room.

        Returns:
            The broadcast payload, or None when the send was dropped.
        """
        if self.state is not ConnectionState.JOINED:
            logger.warning(f"Dropping send_message from {self.connection_ref} in state {self.state.value}")
            record_send_outcome("not_joined")
            return None

        try:
            candidate = self.build_candidate(data)
        except ValidationError as e:
            logger.warning(f"Rejected send_message from {self.connection_ref}: {e}")
            record_send_outcome("validation_error")
            return None

        logger.debug(
            f"send_message: room={candidate.room_id}, user={candidate.user_id}, "
            f"reply_to={candidate.reply_to_message_id}"
        )

        try:
            record = await self.store.insert(candidate)
            if not record:
                raise EmptyResultWarning(f"insert into room {candidate.room_id} returned no record")
        except PersistenceError as e:
            logger.error(f"Message not stored, skipping broadcast: {e}")
            record_send_outcome("persistence_error")
            return None
        except EmptyResultWarning as e:
            logger.warning(f"Message stored without result, skipping broadcast: {e}")
            record_send_outcome("empty_result")
            return None

        payload = MessagePayload.from_record(record)
        delivered = await self.registry.broadcast(record.room_id, payload.model_dump())
        logger.info(f"Message {record.id} broadcast to room {record.room_id} ({delivered} recipients)")
        record_send_outcome("broadcast")
        return payload

    def disconnect(self) -> list[str]:
        """Leave every room. The service is not used again afterwards."""
        rooms = self.registry.leave(self.connection_ref)
        self.state = ConnectionState.CLOSED
        return rooms
