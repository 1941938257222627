"""Task Portal messaging backend.

This is the main entry point for the direct-messaging service of the task
portal. Users see each other's messages in real time over a WebSocket and
load history and unread badges over REST.

Modules:
    - messaging: presence registry, DuckDB message ledger, unread counts,
      WebSocket protocol and REST facade
    - auth: caller identity read from the signed session cookie
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.sessions import SessionMiddleware

from taskportal.auth.router import router as auth_router
from taskportal.config import get_config
from taskportal.messaging.ledger import MessageLedger
from taskportal.messaging.registry import registry
from taskportal.messaging.router import router as messages_router
from taskportal.messaging.router import ws_router as messages_ws_router
from taskportal.messaging.service import get_messaging_service, set_messaging_service

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# uvicorn.access logs every badge refresh; httpx/httpcore log every test request.
for _noisy in (
    "uvicorn.access",
    "httpx",
    "httpcore",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in taskportal.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    # Open the ledger up front so a bad database path fails at startup
    get_messaging_service()
    logger.info(
        "Messaging ready on http://%s:%s (database=%s)",
        config.server.host,
        config.server.port,
        config.database.path,
    )

    yield  # Application runs here

    # Shutdown
    registry.clear()
    set_messaging_service(None)
    MessageLedger.reset_instance()
    logger.info("Application shutdown complete")


_config = get_config()

# Create FastAPI application with metadata
app = FastAPI(
    title="Task Portal Messaging API",
    description="Real-time direct messaging between task portal users",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_config.server.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Same cookie the auth service writes after login
app.add_middleware(
    SessionMiddleware,
    secret_key=_config.secrets.session.secret_key,
    session_cookie=_config.secrets.session.cookie_name,
    max_age=_config.secrets.session.max_age_seconds,
    same_site="lax",
    https_only=_config.secrets.session.https_only,
)

# Register all routers
app.include_router(messages_ws_router)
app.include_router(messages_router)
app.include_router(auth_router)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object indicating the server is running.
    """
    return {"status": "ok"}


@app.get("/")
async def root() -> dict:
    return {"message": "Task Portal messaging API is running"}
