"""Caller identity for REST and WebSocket requests.

The auth service (login, OAuth, password checks) lives outside this
backend. After a successful login it stores the safe user object
``{"id", "name", "email"}`` under ``"user"`` in the signed session cookie
(Starlette ``SessionMiddleware``); this module only reads it back.
"""
import logging
from typing import Any, Mapping, Optional

from fastapi import Request, WebSocket
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from taskportal.messaging.errors import AuthenticationError, handle_messaging_error

logger = logging.getLogger(__name__)

SESSION_USER_KEY = "user"


class CurrentUser(BaseModel):
    """Authenticated identity as established by the auth service."""
    id: int = Field(..., gt=0, description="User ID")
    name: str = Field(default="", description="Display name")
    email: str = Field(default="", description="Login email")


def _user_from_scope(scope: Mapping[str, Any]) -> Optional[CurrentUser]:
    session = scope.get("session") or {}
    raw = session.get(SESSION_USER_KEY)
    if not isinstance(raw, dict):
        return None
    try:
        return CurrentUser.model_validate(raw)
    except PydanticValidationError:
        logger.warning("Ignoring malformed session user: %r", raw)
        return None


def get_current_user(request: Request) -> CurrentUser:
    """FastAPI dependency: the authenticated caller, or 401.

    Raises:
        HTTPException: 401 when the session carries no valid identity.
    """
    user = _user_from_scope(request.scope)
    if user is None:
        raise handle_messaging_error(AuthenticationError())
    return user


def get_optional_user(request: Request) -> Optional[CurrentUser]:
    """FastAPI dependency: the authenticated caller, or None."""
    return _user_from_scope(request.scope)


def get_session_user_id(websocket: WebSocket) -> Optional[int]:
    """User id carried by a WebSocket's session cookie, if any."""
    user = _user_from_scope(websocket.scope)
    return user.id if user else None
