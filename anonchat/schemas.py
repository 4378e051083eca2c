"""
Pydantic schemas for event and response validation.

This module contains:
- Inbound event models (send_message payloads)
- Internal record models passed between store and relay
- Outbound payload models (receive_message, history, health)
"""

from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


# =============================================================================
# Inbound Event Models
# =============================================================================

class SendMessageRequest(BaseModel):
    """
    Payload of a `send_message` event as sent by clients.

    Required fields are declared optional here so that a missing field can be
    reported as a relay ValidationError rather than a schema failure.
    """
    roomId: Optional[str] = Field(None, description="Target room")
    userId: Optional[str] = Field(None, description="Ephemeral per-session user id")
    username: Optional[str] = Field(None, description="Display name")
    message: Optional[str] = Field(None, description="Message text")
    replyToMessageId: Optional[str] = Field(None, description="Id of the replied-to message")
    replyToMessageContent: Optional[str] = Field(None, description="Snapshot of the replied-to text")
    replyToUsername: Optional[str] = Field(None, description="Snapshot of the replied-to author")

    @field_validator("replyToMessageId", "replyToMessageContent", "replyToUsername", mode="before")
    @classmethod
    def drop_malformed_reply_field(cls, v: Any) -> Optional[str]:
        """Reply fields are optional: a non-string value counts as absent."""
        return v if isinstance(v, str) else None

    model_config = {
        "extra": "ignore",
        "json_schema_extra": {
            "examples": [
                {
                    "roomId": "r1",
                    "userId": "u-42",
                    "username": "A",
                    "message": "hello",
                }
            ]
        }
    }


# =============================================================================
# Store Models
# =============================================================================

class MessageCandidate(BaseModel):
    """A message ready for insertion. id/created_at are filled by the store when unset."""
    room_id: str
    user_id: str
    username: str
    message: str
    reply_to_message_id: Optional[str] = None
    reply_to_message_content: Optional[str] = None
    reply_to_username: Optional[str] = None
    id: Optional[str] = None
    created_at: Optional[str] = None


class MessageRecord(BaseModel):
    """A persisted message row, detached from its session."""
    id: str
    room_id: str
    user_id: str
    username: str
    message: str
    created_at: str
    reply_to_message_id: Optional[str] = None
    reply_to_message_content: Optional[str] = None
    reply_to_username: Optional[str] = None

    model_config = {"from_attributes": True}


# =============================================================================
# Outbound Payload Models
# =============================================================================

class MessagePayload(BaseModel):
    """
    Wire shape shared by `receive_message` broadcasts and history responses.
    Reply fields are always present, null when the message is not a reply.
    """
    id: str = Field(..., description="Unique message identifier")
    roomId: str = Field(..., description="Room the message belongs to")
    userId: str = Field(..., description="Sender's ephemeral user id")
    username: str = Field(..., description="Sender's display name")
    message: str = Field(..., description="Message text")
    timestamp: str = Field(..., description="Store-assigned creation time (ISO-8601 UTC)")
    replyToMessageId: Optional[str] = None
    replyToMessageContent: Optional[str] = None
    replyToUsername: Optional[str] = None

    @classmethod
    def from_record(cls, record: MessageRecord) -> "MessagePayload":
        return cls(
            id=record.id,
            roomId=record.room_id,
            userId=record.user_id,
            username=record.username,
            message=record.message,
            timestamp=record.created_at,
            replyToMessageId=record.reply_to_message_id,
            replyToMessageContent=record.reply_to_message_content,
            replyToUsername=record.reply_to_username,
        )


class ErrorResponse(BaseModel):
    """Response model for history failures."""
    error: str = Field(..., description="Error description")


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
