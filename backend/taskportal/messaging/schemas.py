"""Pydantic schemas for direct messaging.

Wire names follow the browser client: inbound WebSocket payloads use
camelCase ids (``userId``, ``senderId``, ``receiverId``), persisted messages
keep the column names of the ``messages`` table.
"""
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class EventType(str, Enum):
    """WebSocket frame types.

    Attributes:
        REGISTER: Client announces its identity.
        SEND_MESSAGE: Client asks to persist and deliver a message.
        MARK_AS_READ: Client marks a peer's messages as read.
        RECEIVE_MESSAGE: New message pushed to the receiver.
        MESSAGE_SENT: Acknowledgment to the sending connection.
        UNREAD_COUNTS: Full per-peer unread snapshot.
        MESSAGES_READ: Read receipt pushed to the original sender.
        ERROR: An operation failed.
    """
    REGISTER = "register"
    SEND_MESSAGE = "send-message"
    MARK_AS_READ = "mark-as-read"
    RECEIVE_MESSAGE = "receive-message"
    MESSAGE_SENT = "message-sent"
    UNREAD_COUNTS = "unread-counts"
    MESSAGES_READ = "messages-read"
    ERROR = "error"


class Message(BaseModel):
    """A persisted direct message.

    Attributes:
        id: Ledger-assigned identifier.
        sender_id: User who sent the message.
        receiver_id: User the message is addressed to.
        message: Message body, stored as sent.
        created_at: Persistence time (UTC).
        is_read: Flips to True once the receiver marks the conversation read.
    """
    id: int = Field(..., description="Ledger-assigned message ID")
    sender_id: int = Field(..., description="Sender user ID")
    receiver_id: int = Field(..., description="Receiver user ID")
    message: str = Field(..., description="Message body")
    created_at: datetime = Field(..., description="Persistence time (UTC)")
    is_read: bool = Field(default=False, description="Read by the receiver")


# =============================================================================
# Inbound WebSocket payloads
# =============================================================================


class RegisterPayload(BaseModel):
    """Payload of a ``register`` frame."""
    userId: int = Field(..., gt=0, description="Identity of the connection")


class SendMessagePayload(BaseModel):
    """Payload of a ``send-message`` frame.

    ``senderId`` is optional; when present it must match the registered
    identity of the connection.
    """
    senderId: Optional[int] = Field(default=None, gt=0)
    receiverId: int = Field(..., gt=0)
    message: str = Field(...)

    @field_validator("message")
    @classmethod
    def _non_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("message cannot be empty")
        return value


class MarkAsReadPayload(BaseModel):
    """Payload of a ``mark-as-read`` frame.

    ``senderId`` is the peer whose messages are being marked read;
    ``receiverId`` (optional) is the caller.
    """
    senderId: int = Field(..., gt=0)
    receiverId: Optional[int] = Field(default=None, gt=0)


# =============================================================================
# REST responses
# =============================================================================


class UnreadCountResponse(BaseModel):
    """Unread messages from a single peer."""
    count: int = Field(..., ge=0)


class MarkReadResponse(BaseModel):
    """Result of ``POST /api/messages/mark-read/{other_user_id}``."""
    success: bool = Field(default=True)
    message: str = Field(default="Messages marked as read")
    count: int = Field(..., ge=0, description="Rows flipped to read")
