"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic payload schemas, see schemas.py.
"""

from sqlalchemy import Column, Integer, String, Text

from anonchat.storage import Base


class Message(Base):
    """
    SQLAlchemy model for chat messages, one append-only row per send.

    Table: messages
    Primary Key: seq (insertion order, tie-breaker for equal created_at)
    """
    __tablename__ = "messages"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String, unique=True, nullable=False, index=True)
    room_id = Column(String, nullable=False, index=True)
    user_id = Column(String, nullable=False)
    username = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    created_at = Column(String, nullable=False, index=True)  # ISO-8601 UTC, microseconds
    # Reply snapshot: all three set or all three null
    reply_to_message_id = Column(String, nullable=True)
    reply_to_message_content = Column(Text, nullable=True)
    reply_to_username = Column(String, nullable=True)
