"""Per-connection messaging protocol.

Each WebSocket gets one MessagingSession. The session starts ANONYMOUS,
becomes IDENTIFIED on ``register`` and stays there until the connection
closes. Only ``register`` is accepted while ANONYMOUS.

Protocol Message Types (client -> server):
    - register: {userId}
    - send-message: {senderId?, receiverId, message}
    - mark-as-read: {senderId, receiverId?}  (senderId is the peer)

Server -> client frames:
    - receive-message, message-sent: persisted message fields
    - unread-counts: {counts: {peerId: count}}
    - messages-read: {readerId}
    - error: {message}

Failures never close the connection: they are answered with an ``error``
frame on the connection that caused them.
"""
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Type, TypeVar

from fastapi import WebSocket
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .errors import AuthenticationError, MessagingError, ValidationError
from .schemas import EventType, MarkAsReadPayload, RegisterPayload, SendMessagePayload
from .service import MessagingService

logger = logging.getLogger(__name__)

P = TypeVar("P", bound=BaseModel)


class SessionState(str, Enum):
    """Lifecycle of a messaging connection."""
    ANONYMOUS = "anonymous"
    IDENTIFIED = "identified"
    CLOSED = "closed"


def _parse(model: Type[P], data: Dict[str, Any], event: str) -> P:
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or "payload"
        raise ValidationError(f"Invalid {event} payload: {field}: {first.get('msg')}") from e


class MessagingSession:
    """Protocol state machine for one WebSocket connection.

    Attributes:
        websocket: The connection this session speaks on.
        state: Current lifecycle state.
        user_id: Registered identity, once IDENTIFIED.
    """

    def __init__(
        self,
        websocket: WebSocket,
        service: MessagingService,
        session_user_id: Optional[int] = None,
    ) -> None:
        """Create a session for a freshly accepted connection.

        Args:
            websocket: The accepted connection.
            service: Shared messaging service.
            session_user_id: Identity from the session cookie, when the
                connection carries one. Registration must match it, and
                is refused without one unless the service allows
                unauthenticated sockets.
        """
        self.websocket = websocket
        self.service = service
        self.session_user_id = session_user_id
        self.state = SessionState.ANONYMOUS
        self.user_id: Optional[int] = None
        self._handlers: Dict[str, Callable[[Dict[str, Any]], Awaitable[None]]] = {
            EventType.REGISTER.value: self.on_register,
            EventType.SEND_MESSAGE.value: self.on_send_message,
            EventType.MARK_AS_READ.value: self.on_mark_as_read,
        }

    async def handle(self, data: Any) -> None:
        """Dispatch one inbound frame, answering failures with an error frame."""
        try:
            if not isinstance(data, dict):
                raise ValidationError("Invalid frame: expected a JSON object")
            event = data.get("type")
            handler = self._handlers.get(event) if isinstance(event, str) else None
            if handler is None:
                raise ValidationError(f"Unknown event type: {event!r}")
            await handler(data)
        except MessagingError as e:
            logger.warning("[WS] user=%s rejected frame: %s", self.user_id, e.message)
            await self.send_error(e.message)

    # -----------------------------------------------------------------------
    # Transitions
    # -----------------------------------------------------------------------

    async def on_register(self, data: Dict[str, Any]) -> None:
        payload = _parse(RegisterPayload, data, EventType.REGISTER.value)
        user_id = payload.userId

        if self.session_user_id is None:
            if not self.service.allow_unauthenticated_sockets:
                raise AuthenticationError("Sign in before registering")
        elif self.session_user_id != user_id:
            raise AuthenticationError("Cannot register as a different user than the session")
        if self.state is SessionState.IDENTIFIED and self.user_id != user_id:
            raise ValidationError("Connection is already registered as another user")

        self.service.registry.register(user_id, self.websocket)
        self.user_id = user_id
        self.state = SessionState.IDENTIFIED
        logger.info("[WS] Registered user %s", user_id)

        await self.service.aggregator.push_unread_counts(user_id)

    async def on_send_message(self, data: Dict[str, Any]) -> None:
        self._require_identified()
        payload = _parse(SendMessagePayload, data, EventType.SEND_MESSAGE.value)
        if payload.senderId is not None and payload.senderId != self.user_id:
            raise AuthenticationError("senderId does not match the registered user")

        message = await self.service.send_message(
            self.user_id, payload.receiverId, payload.message
        )
        await self.websocket.send_json(
            {"type": EventType.MESSAGE_SENT.value, **message.model_dump(mode="json")}
        )

    async def on_mark_as_read(self, data: Dict[str, Any]) -> None:
        self._require_identified()
        payload = _parse(MarkAsReadPayload, data, EventType.MARK_AS_READ.value)
        if payload.receiverId is not None and payload.receiverId != self.user_id:
            raise AuthenticationError("receiverId does not match the registered user")

        await self.service.mark_conversation_read(self.user_id, payload.senderId)

    def on_disconnect(self) -> None:
        """Drop the connection from the registry. Safe to call twice."""
        if self.state is SessionState.CLOSED:
            return
        self.service.registry.unregister(self.websocket)
        self.state = SessionState.CLOSED
        logger.info("[WS] Connection of user %s closed", self.user_id)

    # -----------------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------------

    def _require_identified(self) -> None:
        if self.state is not SessionState.IDENTIFIED:
            raise AuthenticationError("Register before sending events")

    async def send_error(self, message: str) -> None:
        await self.websocket.send_json({"type": EventType.ERROR.value, "message": message})
