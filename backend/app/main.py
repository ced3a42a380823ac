"""Marketplace Chat Backend Application.

This is the main entry point for the realtime chat service of the car
marketplace. Buyers and sellers talk in pairwise conversations; messages are
stored durably and relayed live, and receivers get notifications wherever
they are in the application.

Modules:
    - chat: WebSocket connection registry, broadcast hub, notifications
    - messages: DuckDB-backed durable message store and REST API
    - client: asyncio client library (reconnection, history merge, typing)
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.chat.hub import BroadcastHub
from app.chat.notifications import NotificationDispatcher
from app.chat.registry import ConnectionRegistry
from app.chat.router import router as chat_router
from app.config import AppConfig, get_config
from app.messages.router import router as messages_router
from app.messages.service import MessageStore
from app.responses import error_response

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
for _noisy in (
    "httpx",
    "httpcore",
    "websockets",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config: AppConfig = app.state.config or get_config()

    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    store = MessageStore(db_path=config.store.db_path)
    registry = ConnectionRegistry()
    hub = BroadcastHub(registry, NotificationDispatcher(registry))

    app.state.message_store = store
    app.state.registry = registry
    app.state.hub = hub
    logger.info(
        f"Chat service ready on http://{config.server.host}:{config.server.port} "
        f"(store={config.store.db_path})"
    )

    yield  # Application runs here

    # Shutdown
    registry.clear()
    store.close()
    logger.info("Application shutdown complete")


def create_app(config: Optional[AppConfig] = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        config: Explicit configuration; defaults to ``get_config()`` at startup.
    """
    app = FastAPI(
        title="Marketplace Chat API",
        description="Realtime buyer/seller chat and notifications for the car marketplace",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.config = config

    origins = (config or get_config()).server.allowed_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(chat_router)
    app.include_router(messages_router)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request, exc: StarletteHTTPException):
        return error_response(exc.status_code, exc.detail)

    @app.get("/health")
    async def health() -> dict:
        """Health check endpoint.

        Returns:
            dict: Status and number of open realtime connections.
        """
        registry = getattr(app.state, "registry", None)
        return {
            "status": "ok",
            "connections": registry.connection_count() if registry else 0,
        }

    return app


app = create_app()
