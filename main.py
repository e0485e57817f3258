import inspect
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from routes.prompt_route import router as prompt_router
from routes.session_route import router as session_router
from routes.tool_route import router as tool_router
from services.agent.conversation_engine import ConversationEngine
from services.agent.model_service import OpenAIModelService, create_client
from services.automation_service import AutomationService
from services.errors import HandshakeError, PartialDiscoveryError
from services.mcp.bridge import ToolServerBridge
from services.mcp.tool_registry import ToolRegistry
from services.session.session_store import SessionStore
from utils.app_config import AppConfig
from utils.logging_setup import configure_logging

from dotenv import load_dotenv

load_dotenv()  # Load environment variables from .env file if present

LOGGER = logging.getLogger(__name__)


async def start_tool_servers(config: AppConfig) -> List[ToolServerBridge]:
    """Spawn and initialize every configured tool server.

    A server that fails to start or handshake is logged and left out; the
    others keep working.
    """
    bridges: List[ToolServerBridge] = []
    for name, command in config.tool_servers.items():
        try:
            bridge = await ToolServerBridge.spawn(
                name,
                command,
                cwd=config.tool_server_cwd,
                request_timeout=config.tool_request_timeout,
                handshake_timeout=config.tool_handshake_timeout,
            )
        except (OSError, ValueError) as exc:
            LOGGER.error("Could not start tool server '%s': %s", name, exc)
            continue
        try:
            await bridge.initialize()
        except HandshakeError as exc:
            LOGGER.error("%s", exc)
            await bridge.shutdown()
            continue
        bridges.append(bridge)
    return bridges


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan manager to initialize:
      - the OpenAI async client and model service
      - the tool-server bridges and the aggregated tool catalog
      - the session store, conversation engine, and automation service
    and attach them to `app.state`.
    """
    config = AppConfig.from_env()
    configure_logging(config.log_level)

    try:
        openai_client = create_client(config.openai_api_key)
    except Exception as exc:
        raise RuntimeError("Failed to initialize OpenAI Async client") from exc
    app.state.openai_client = openai_client

    bridges = await start_tool_servers(config)
    registry = ToolRegistry()
    try:
        await registry.discover(bridges)
    except PartialDiscoveryError as exc:
        LOGGER.warning("%s; continuing with the remaining tools", exc)

    session_store = SessionStore(timeout=config.session_timeout)
    model_service = OpenAIModelService(openai_client, model=config.openai_model, max_tokens=config.model_max_tokens)
    engine = ConversationEngine(model_service, registry)

    app.state.session_store = session_store
    app.state.tool_registry = registry
    app.state.automation_service = AutomationService(session_store, engine, registry)

    try:
        yield
    finally:
        LOGGER.info("Shutting down tool servers...")
        await registry.shutdown()
        session_store.close()

        # Gracefully close the OpenAI client if it exposes a close/aclose method.
        client = getattr(app.state, "openai_client", None)
        if client is not None:
            aclose = getattr(client, "aclose", None) or getattr(client, "close", None)
            if aclose is not None:
                try:
                    if inspect.iscoroutinefunction(aclose):
                        await aclose()
                    else:
                        result = aclose()
                        if inspect.isawaitable(result):
                            await result
                except Exception as exc:
                    # Shutdown errors must not mask the original exit reason.
                    LOGGER.debug("Closing the OpenAI client failed: %s", exc)


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application instance.
    """
    app = FastAPI(lifespan=lifespan)
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])

    @app.get("/health")
    async def health(request: Request):
        """
        Simple health check that reports the tool catalog and session count.
        """
        registry = getattr(request.app.state, "tool_registry", None)
        store = getattr(request.app.state, "session_store", None)
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "tools": len(registry.list_tools()) if registry is not None else 0,
            "sessions": len(store) if store is not None else 0,
        }

    # Register application routers
    app.include_router(session_router)
    app.include_router(prompt_router)
    app.include_router(tool_router)

    return app


app = create_app()
