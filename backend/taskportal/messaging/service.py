"""Messaging orchestration shared by the WebSocket handler and the REST facade.

Both paths go through the same methods so the real-time view and the REST
snapshot are always computed from the same ledger queries.

Ordering contract for a send: the message is durably stored first, then
delivered, then the receiver's unread counts are pushed. Nothing is ever
delivered for a message that failed to persist.
"""
import logging
from typing import Dict, List, Optional

from taskportal.config import get_config

from .aggregator import UnreadAggregator
from .errors import ValidationError
from .ledger import MessageLedger, run_ledger_call
from .registry import ConnectionRegistry, registry
from .schemas import EventType, Message

logger = logging.getLogger(__name__)


class MessagingService:
    """Send, mark-read and read-side queries over the ledger.

    Attributes:
        ledger: The message ledger.
        registry: Presence registry used for fan-out.
        aggregator: Unread-count pusher.
        allow_unauthenticated_sockets: Accept ``register`` from sockets
            without a session cookie (development only).
    """

    def __init__(
        self,
        ledger: MessageLedger,
        registry: ConnectionRegistry,
        timeout: float = 5.0,
        allow_self_messages: bool = False,
        write_timeout: float = 30.0,
        allow_unauthenticated_sockets: bool = False,
    ) -> None:
        self.ledger = ledger
        self.registry = registry
        self.aggregator = UnreadAggregator(ledger, registry, timeout)
        self.allow_unauthenticated_sockets = allow_unauthenticated_sockets
        self._timeout = timeout
        self._write_timeout = write_timeout
        self._allow_self_messages = allow_self_messages

    async def send_message(self, sender_id: int, receiver_id: int, body: str) -> Message:
        """Persist a message and deliver it to the receiver's connections.

        Args:
            sender_id: Registered identity of the sending connection.
            receiver_id: Target user.
            body: Non-blank message body.

        Returns:
            The persisted message (for the sender's acknowledgment).

        Raises:
            ValidationError: Self-message while self-messages are disabled.
            PersistenceError: The message could not be stored.

        Note:
            A store call that times out keeps running on its executor thread
            and may still commit. Appends therefore get the longer write
            deadline; a client retrying after a timeout error can still end
            up with the message stored twice.
        """
        if sender_id == receiver_id and not self._allow_self_messages:
            raise ValidationError("Cannot send a message to yourself")

        message = await run_ledger_call(
            self.ledger.append, sender_id, receiver_id, body, timeout=self._write_timeout
        )
        logger.info("[Messaging] Stored message %s from %s to %s", message.id, sender_id, receiver_id)

        delivered = await self.registry.send_to_user(
            receiver_id,
            {"type": EventType.RECEIVE_MESSAGE.value, **message.model_dump(mode="json")},
        )
        if not delivered:
            logger.debug("[Messaging] User %s offline; message %s waits for fetch", receiver_id, message.id)

        await self.aggregator.push_unread_counts(receiver_id)
        return message

    async def mark_conversation_read(self, reader_id: int, peer_id: int) -> int:
        """Mark everything ``peer_id`` sent to ``reader_id`` as read.

        The peer gets a ``messages-read`` receipt when anything changed, and
        both participants get fresh unread snapshots.

        Returns:
            Number of messages flipped to read.
        """
        count = await run_ledger_call(
            self.ledger.mark_read, peer_id, reader_id, timeout=self._write_timeout
        )
        logger.info("[Messaging] User %s read %d messages from %s", reader_id, count, peer_id)

        if count:
            await self.registry.send_to_user(
                peer_id,
                {"type": EventType.MESSAGES_READ.value, "readerId": reader_id},
            )
        await self.aggregator.push_unread_counts(reader_id)
        await self.aggregator.push_unread_counts(peer_id)
        return count

    async def history(self, user_id: int, other_user_id: int) -> List[Message]:
        return await run_ledger_call(
            self.ledger.history, user_id, other_user_id, timeout=self._timeout
        )

    async def unread_counts(self, user_id: int) -> Dict[int, int]:
        return await run_ledger_call(
            self.ledger.unread_counts_for, user_id, timeout=self._timeout
        )

    async def unread_count_from(self, user_id: int, other_user_id: int) -> int:
        return await run_ledger_call(
            self.ledger.unread_count_from, user_id, other_user_id, timeout=self._timeout
        )


_service: Optional[MessagingService] = None


def get_messaging_service() -> MessagingService:
    """Return the process-wide service, building it from config on first use."""
    global _service
    if _service is None:
        config = get_config()
        _service = MessagingService(
            ledger=MessageLedger.get_instance(config.database.path),
            registry=registry,
            timeout=config.database.query_timeout_seconds,
            allow_self_messages=config.messaging.allow_self_messages,
            write_timeout=config.database.write_timeout_seconds,
            allow_unauthenticated_sockets=config.messaging.allow_unauthenticated_sockets,
        )
    return _service


def set_messaging_service(service: Optional[MessagingService]) -> None:
    """Replace (or clear, with None) the process-wide service."""
    global _service
    _service = service
