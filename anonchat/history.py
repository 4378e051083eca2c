import logging

from anonchat.schemas import MessagePayload
from anonchat.storage import MessageStore

logger = logging.getLogger(__name__)


class HistoryLoader:
    """Serves a room's stored messages in broadcast shape, oldest first."""

    def __init__(self, store: MessageStore) -> None:
        self.store = store

    async def load(self, room_id: str) -> list[MessagePayload]:
        # PersistenceError propagates: callers answer with a generic failure, never partial history
        records = await self.store.query(room_id)
        logger.info(f"Loaded {len(records)} history messages for room {room_id}")
        return [MessagePayload.from_record(record) for record in records]
