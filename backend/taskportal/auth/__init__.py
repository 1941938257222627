"""Caller identity (consumer side of the external auth service).

Provides:
    - get_current_user: FastAPI dependency returning the session user or 401.
    - get_session_user_id: session identity of a WebSocket connection.
"""
