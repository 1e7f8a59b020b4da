"""
chatbus Application

FastAPI application with the WebSocket endpoint and the chat HTTP API.
This is the main entry point for running an instance:

    uvicorn chatbus.transport.app:app

Any number of instances can run behind a load balancer; they share the
database and the event bus and nothing else.

Storage is configured via environment variables:
- CHATBUS_STORAGE_BACKEND: "memory", "sqlite", "postgresql", "mysql"
- CHATBUS_DATABASE_URL: SQLAlchemy connection URL

The event bus is configured via:
- CHATBUS_BUS_BACKEND: "memory" (single instance) or "redis"
- CHATBUS_REDIS_URL: Redis URL for cross-instance fan-out

AI replies are configured via:
- CHATBUS_LLM_MODEL: Model identifier (default: "gemini/gemini-2.0-flash")
  - Google Gemini: "gemini/gemini-2.0-flash"
  - OpenAI: "gpt-4o-mini", "gpt-4o"
  - Azure OpenAI: "azure/<deployment>"
  - Anthropic: "claude-sonnet-4-5-20250929"
  - Ollama: "ollama/llama3.2"
- CHATBUS_AI_SYSTEM_PROMPT: Optional system prompt for the assistant

Provider-specific API keys:
- GOOGLE_API_KEY, OPENAI_API_KEY, AZURE_OPENAI_API_KEY / AZURE_OPENAI_ENDPOINT,
  ANTHROPIC_API_KEY (Ollama runs locally, no API key needed)

Other:
- CHATBUS_QUEUE_SIZE: Outbound frames buffered per connection (default: 200)

Environment variables can be loaded from a .env file in the project root.
"""

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, WebSocket

# Load environment variables from .env file
load_dotenv()

from chatbus import __version__
from chatbus.bus import EventBus, SUBSCRIPTION_PATTERN, create_bus_from_env
from chatbus.llm import GenerationService, LangChainGenerationService, LLMConfig
from chatbus.orchestration import AIReplyOrchestrator, ConversationOrchestrator
from chatbus.session import SessionRegistry
from chatbus.storage import StorageBundle, create_storage_from_env
from chatbus.transport.broadcaster import LocalRoomBroadcaster
from chatbus.transport.handler import WebSocketHandler
from chatbus.transport.queue import ConnectionQueueManager
from chatbus.transport.routes import register_error_handlers, router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def create_app(
    storage: StorageBundle | None = None,
    bus: EventBus | None = None,
    generator: GenerationService | None = None,
) -> FastAPI:
    """
    Build an application instance.

    Components not passed in are created from the environment at startup.

    Args:
        storage: Message and user stores
        bus: Event bus adapter
        generator: Text generation behind AI replies
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan manager.

        Initializes and tears down all instance components.
        """
        # Startup
        logger.info("Starting chatbus...")

        bundle = storage or await create_storage_from_env()
        logger.info(f"Storage initialized: {type(bundle.messages).__name__}")

        event_bus = bus or create_bus_from_env()
        registry = SessionRegistry()
        queue_manager = ConnectionQueueManager(
            max_queue_size=int(os.getenv("CHATBUS_QUEUE_SIZE", "200")),
        )
        broadcaster = LocalRoomBroadcaster(registry, queue_manager)

        ai = AIReplyOrchestrator(
            storage=bundle,
            bus=event_bus,
            generator=generator or LangChainGenerationService(
                config=LLMConfig.from_env(),
                system_prompt=os.getenv("CHATBUS_AI_SYSTEM_PROMPT"),
            ),
        )
        orchestrator = ConversationOrchestrator(storage=bundle, bus=event_bus, ai=ai)
        handler = WebSocketHandler(
            registry=registry,
            queues=queue_manager,
            orchestrator=orchestrator,
        )

        await event_bus.subscribe_pattern(SUBSCRIPTION_PATTERN, broadcaster.deliver)
        logger.info(f"Subscribed {type(event_bus).__name__} to {SUBSCRIPTION_PATTERN}")

        app.state.storage = bundle
        app.state.bus = event_bus
        app.state.registry = registry
        app.state.queue_manager = queue_manager
        app.state.broadcaster = broadcaster
        app.state.orchestrator = orchestrator
        app.state.handler = handler

        logger.info("chatbus started")

        yield

        # Shutdown
        logger.info("Shutting down chatbus...")
        await handler.drain()
        await event_bus.close()
        await queue_manager.shutdown()
        await bundle.close()
        app.state.orchestrator = None
        app.state.handler = None
        logger.info("chatbus stopped")

    app = FastAPI(
        title="chatbus",
        description="Horizontally scalable real-time chat over a shared event bus",
        version=__version__,
        lifespan=lifespan,
    )
    app.include_router(router)
    register_error_handlers(app)

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """
        WebSocket endpoint for chat clients.

        Clients send register / join_room first, then chat events.
        """
        handler = getattr(websocket.app.state, "handler", None)
        if handler is None:
            await websocket.close(code=1011, reason="chatbus not initialized")
            return

        await handler.handle_connection(websocket)

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        state = app.state
        registry = getattr(state, "registry", None)
        queue_manager = getattr(state, "queue_manager", None)
        event_bus = getattr(state, "bus", None)
        bundle = getattr(state, "storage", None)
        return {
            "status": "healthy" if getattr(state, "handler", None) else "starting",
            "sessions": registry.session_count if registry else 0,
            "users": registry.user_count if registry else 0,
            "rooms": registry.room_count if registry else 0,
            "connection_queues": queue_manager.connection_count() if queue_manager else 0,
            "bus": type(event_bus).__name__ if event_bus else None,
            "bus_subscribed": event_bus.is_subscribed if event_bus else False,
            "storage": type(bundle.messages).__name__ if bundle else None,
        }

    return app


app = create_app()
