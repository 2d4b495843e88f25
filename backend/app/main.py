"""Huddle Backend Application.

This is the main entry point for the Huddle chat backend: authenticated
users join rooms, exchange messages, and see read receipts and typing
indicators in real time.

Modules:
    - chat: Connection registry, broadcast router and hub session state machine
    - sentiment: Fail-open sentiment annotation of outgoing messages
    - storage: DuckDB persistence for rooms, users, messages and receipts
    - rooms: HTTP API for rooms, members, history and users
    - auth: JWT bearer token verification
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.auth.service import TokenIdentityService
from app.chat.broadcast import BroadcastRouter
from app.chat.hub import ChatHub
from app.chat.membership import RoomMembershipAuthority
from app.chat.registry import ConnectionRegistry
from app.chat.router import WebSocketTransport, router as chat_router
from app.config import AppSettings, get_config
from app.rooms.router import router as rooms_router, users_router
from app.sentiment.service import SentimentAnnotator, SentimentScorer, TextAnalyticsSentimentScorer
from app.storage.gateway import ChatStoreGateway
from app.storage.service import ChatStorageService

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# httpx/httpcore log every request to the sentiment endpoint; uvicorn.access
# logs every HTTP call including health checks.
for _noisy in (
    "httpx",
    "httpcore",
    "httpcore.http11",
    "httpcore.connection",
    "uvicorn.access",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


def _build_scorer(config: AppSettings) -> Optional[SentimentScorer]:
    sentiment = config.sentiment
    api_key = config.secrets.sentiment.api_key
    if not sentiment.enabled:
        logger.info("Sentiment annotation disabled in config")
        return None
    if not sentiment.endpoint or not api_key:
        logger.warning("Sentiment endpoint or API key missing; messages will be scored neutral")
        return None
    logger.info(f"Sentiment scorer ready: endpoint={sentiment.endpoint}")
    return TextAnalyticsSentimentScorer(sentiment.endpoint, api_key, language=sentiment.language)


def create_app(
    settings: Optional[AppSettings] = None,
    *,
    storage: Optional[ChatStorageService] = None,
    scorer: Optional[SentimentScorer] = None,
    identity: Optional[TokenIdentityService] = None,
) -> FastAPI:
    """Build the FastAPI application.

    Collaborators are constructed during lifespan startup unless passed in
    (tests pass an in-memory storage service and a fake scorer).

    Args:
        settings: Settings to use instead of the loaded configuration.
        storage: Storage service to use instead of opening ``storage.db_path``.
        scorer: Sentiment scorer to use instead of the configured endpoint.
        identity: Token verifier to use instead of the configured JWT secret.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager for startup/shutdown events."""
        # Startup
        config = settings or get_config()

        configured_level = getattr(logging, config.logging.level.upper(), None)
        if configured_level is not None:
            logging.getLogger().setLevel(configured_level)
            logger.info("Root logger level set to %s", config.logging.level.upper())

        storage_service = storage or ChatStorageService(config.storage.db_path)
        store = ChatStoreGateway(storage_service)
        active_scorer = scorer if scorer is not None else _build_scorer(config)

        registry = ConnectionRegistry()
        transport = WebSocketTransport()
        broadcast = BroadcastRouter(registry, transport)

        app.state.config = config
        app.state.store = store
        app.state.registry = registry
        app.state.transport = transport
        app.state.identity = identity or TokenIdentityService(
            secret_key=config.secrets.jwt.secret_key,
            algorithm=config.secrets.jwt.algorithm,
            issuer=config.auth.issuer,
            audience=config.auth.audience,
        )
        app.state.hub = ChatHub(
            registry=registry,
            router=broadcast,
            membership=RoomMembershipAuthority(store),
            store=store,
            annotator=SentimentAnnotator(active_scorer, config.sentiment.timeout_seconds),
            recent_page_size=config.chat.recent_messages_page_size,
            max_message_length=config.chat.max_message_length,
            announce_disconnect=config.chat.announce_disconnect,
        )
        logger.info(
            f"Chat hub ready on http://{config.server.host}:{config.server.port} "
            f"(storage={config.storage.db_path})"
        )

        yield  # Application runs here

        # Shutdown
        if isinstance(active_scorer, TextAnalyticsSentimentScorer):
            await active_scorer.aclose()
        if storage is None:
            storage_service.close()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Huddle API",
        description="Real-time chat backend with rooms, read receipts and sentiment",
        version="0.1.0",
        lifespan=lifespan,
    )

    allowed_origins = (settings or get_config()).server.allowed_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register all routers
    app.include_router(chat_router)
    app.include_router(rooms_router)
    app.include_router(users_router)

    @app.get("/health")
    async def health() -> dict:
        """Health check endpoint.

        Returns:
            dict: Status object indicating the server is running.
        """
        return {"status": "ok"}

    return app


app = create_app()
