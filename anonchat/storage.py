import logging
from typing import Callable, Optional

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session, declarative_base
from starlette.concurrency import run_in_threadpool

from anonchat.config import settings
from anonchat.errors import ConnectivityError, PersistenceError
from anonchat.schemas import MessageCandidate, MessageRecord
from anonchat.utils import new_message_id, utc_now_iso

logger = logging.getLogger(__name__)

# check_same_thread=False is required for SQLite since store calls run in a thread pool
connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    settings.DATABASE_URL,
    connect_args=connect_args,
    echo=False,
)

# Create SessionLocal class for creating database sessions
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for SQLAlchemy models
Base = declarative_base()


def init_db() -> None:
    """
    Create tables and verify the store is reachable.
    Called during application startup; failure is fatal.
    """
    logger.debug(f"Initializing database with URL: {engine.url!r}")
    try:
        # Import models to register them with Base.metadata
        from anonchat.models import Message  # noqa: F401

        logger.debug("Creating database tables...")
        Base.metadata.create_all(bind=engine)
    except SQLAlchemyError as e:
        logger.error(f"Failed to initialize database: {e}")
        raise ConnectivityError(f"database unreachable: {e}") from e

    MessageStore().check_connectivity()
    logger.info("Database initialized successfully")


def check_db_health() -> bool:
    """
    Check if the database is reachable and schema is applied.

    Returns:
        True if DB is healthy and schema exists, False otherwise.
    """
    try:
        MessageStore().check_connectivity()
    except ConnectivityError as e:
        logger.error(f"Database health check failed: {e}")
        return False
    logger.debug("Database health check passed")
    return True


# =============================================================================
# Message Store
# =============================================================================

class MessageStore:
    """
    Durable insert/query over the messages table.

    Session work is blocking, so the public coroutines hand it to the thread
    pool; awaiting them is the relay's only suspension point.
    """

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self._session_factory = session_factory

    def check_connectivity(self) -> None:
        """Raise ConnectivityError unless the DB answers and the messages table exists."""
        logger.debug("Checking database connectivity...")
        try:
            with self._session_factory() as db:
                db.execute(text("SELECT 1"))
                if not inspect(db.connection()).has_table("messages"):
                    raise ConnectivityError("database schema not applied: 'messages' table not found")
        except SQLAlchemyError as e:
            raise ConnectivityError(f"database unreachable: {e}") from e

    async def insert(self, candidate: MessageCandidate) -> Optional[MessageRecord]:
        return await run_in_threadpool(self._insert, candidate)

    async def query(self, room_id: str) -> list[MessageRecord]:
        return await run_in_threadpool(self._query, room_id)

    def _insert(self, candidate: MessageCandidate) -> Optional[MessageRecord]:
        from anonchat.models import Message

        row = Message(
            id=candidate.id or new_message_id(),
            room_id=candidate.room_id,
            user_id=candidate.user_id,
            username=candidate.username,
            message=candidate.message,
            created_at=candidate.created_at or utc_now_iso(),
            reply_to_message_id=candidate.reply_to_message_id,
            reply_to_message_content=candidate.reply_to_message_content,
            reply_to_username=candidate.reply_to_username,
        )
        # Every returned field is known before the write; nothing is re-read after commit
        record = MessageRecord.model_validate(row)
        logger.info(f"Inserting message: id={row.id}, room={row.room_id}, user={row.user_id}")

        with self._session_factory() as db:
            try:
                db.add(row)
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Failed to insert message {row.id}: {e}")
                raise PersistenceError(f"insert failed: {e}") from e

        return record

    def _query(self, room_id: str) -> list[MessageRecord]:
        from anonchat.models import Message

        logger.info(f"Querying messages: room={room_id}")
        try:
            with self._session_factory() as db:
                rows = (
                    db.query(Message)
                    .filter(Message.room_id == room_id)
                    .order_by(Message.created_at.asc(), Message.seq.asc())
                    .all()
                )
                records = [MessageRecord.model_validate(row) for row in rows]
        except SQLAlchemyError as e:
            logger.error(f"Failed to query messages for room {room_id}: {e}")
            raise PersistenceError(f"query failed: {e}") from e

        logger.debug(f"Retrieved {len(records)} messages for room {room_id}")
        return records
