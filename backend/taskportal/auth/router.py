"""Auth router.

Endpoints:
    GET /api/me - Current session user (or null)
"""
from typing import Optional

from fastapi import APIRouter, Depends

from .dependencies import CurrentUser, get_optional_user

router = APIRouter(prefix="/api", tags=["auth"])


@router.get("/me")
async def me(user: Optional[CurrentUser] = Depends(get_optional_user)) -> dict:
    """Return the caller's identity so the client can set its user context."""
    return {"user": user.model_dump() if user else None}
