"""
FastAPI application — the weatherchat entry point.

  /api/conversations...       CRUD over the conversation store
  /api/settings               per-user settings, defaults created on first read
  /api/weather-agent/stream   streaming relay to the hosted weather agent
  /ws                         realtime typing/join notifications

The store, relay and notification hub are built once per app by
create_app() and live on app.state; handlers reach them through
dependencies. There is no authentication: every request acts as the
configured demo user.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import APIRouter, Depends, FastAPI, Request, WebSocket
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ValidationError as PydanticValidationError
from starlette.background import BackgroundTask

from weatherchat import __version__
from weatherchat.config import get_config
from weatherchat.errors import (
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from weatherchat.realtime import NotificationHub
from weatherchat.relay import AgentRelay
from weatherchat.schemas import (
    ConversationIn,
    ConversationPatch,
    MessageIn,
    SettingsPatch,
    StreamRequest,
)
from weatherchat.storage import ConversationStore, store_from_config
from weatherchat.storage.models import DEFAULT_SETTINGS

logger = logging.getLogger(__name__)


def _setup_logging(cfg: dict):
    log_cfg = cfg.get("logging", {})
    level = getattr(logging, log_cfg.get("level", "INFO").upper(), logging.INFO)
    log_file = log_cfg.get("file")

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        from pathlib import Path
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )


def _init_state(app: FastAPI):
    """Fill in whatever create_app() was not handed, from config."""
    state = app.state
    if state.cfg is None:
        state.cfg = get_config()
    cfg = state.cfg
    if state.store is None:
        state.store = store_from_config(cfg)
    if state.relay is None:
        state.relay = AgentRelay.from_config(cfg)
    state.user_id = cfg.get("demo_user", "demo-user")
    state.default_thread_id = cfg.get("agent", {}).get("default_thread_id", "demo-thread")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    _init_state(app)
    cfg = app.state.cfg
    _setup_logging(cfg)

    logger.info(
        "weatherchat started, listening on %s:%s, agent %s",
        cfg.get("server", {}).get("host", "0.0.0.0"),
        cfg.get("server", {}).get("port", 5000),
        app.state.relay.url,
    )
    logger.info("Store: %s", app.state.store.name)
    logger.info("Relay concurrency limit: %d", app.state.relay.max_concurrent)

    yield

    app.state.store.close()
    logger.info("weatherchat shutting down")


# ---------------------------------------------------------------------------
# Dependencies and helpers
# ---------------------------------------------------------------------------

def get_store(request: Request) -> ConversationStore:
    return request.app.state.store


def get_relay(request: Request) -> AgentRelay:
    return request.app.state.relay


def get_user_id(request: Request) -> str:
    return request.app.state.user_id


async def _parse(request: Request, model: type[BaseModel], error: str):
    """Read the JSON body into `model`, or raise ValidationError(error)."""
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError(error)
    try:
        return model.model_validate(body)
    except PydanticValidationError as e:
        logger.debug("%s: %s", error, e)
        raise ValidationError(error)


router = APIRouter()


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------

@router.get("/api/conversations")
async def list_conversations(
    store: ConversationStore = Depends(get_store),
    user_id: str = Depends(get_user_id),
):
    return [c.to_dict() for c in store.list_conversations(user_id)]


@router.post("/api/conversations")
async def create_conversation(
    request: Request,
    store: ConversationStore = Depends(get_store),
    user_id: str = Depends(get_user_id),
):
    data = await _parse(request, ConversationIn, "Invalid conversation data")
    conv = store.create_conversation(title=data.title, thread_id=data.threadId, user_id=user_id)
    return conv.to_dict()


@router.get("/api/conversations/{conversation_id}")
async def get_conversation(conversation_id: str, store: ConversationStore = Depends(get_store)):
    conv = store.get_conversation(conversation_id)
    if conv is None:
        raise NotFoundError("Conversation not found")
    return conv.to_dict()


@router.patch("/api/conversations/{conversation_id}")
async def update_conversation(
    conversation_id: str,
    request: Request,
    store: ConversationStore = Depends(get_store),
):
    data = await _parse(request, ConversationPatch, "Invalid conversation data")
    try:
        conv = store.update_conversation(conversation_id, title=data.title)
    except NotFoundError:
        raise NotFoundError("Conversation not found")
    return conv.to_dict()


@router.delete("/api/conversations/{conversation_id}")
async def delete_conversation(conversation_id: str, store: ConversationStore = Depends(get_store)):
    if not store.delete_conversation(conversation_id):
        raise NotFoundError("Conversation not found")
    return {"success": True}


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

@router.get("/api/conversations/{conversation_id}/messages")
async def list_messages(conversation_id: str, store: ConversationStore = Depends(get_store)):
    return [m.to_dict() for m in store.list_messages(conversation_id)]


@router.post("/api/conversations/{conversation_id}/messages")
async def create_message(
    conversation_id: str,
    request: Request,
    store: ConversationStore = Depends(get_store),
):
    data = await _parse(request, MessageIn, "Invalid message data")
    msg = store.create_message(
        conversation_id=conversation_id,
        role=data.role,
        content=data.content,
        metadata=data.metadata,
    )
    return msg.to_dict()


# ---------------------------------------------------------------------------
# Weather agent relay
# ---------------------------------------------------------------------------

@router.post("/api/weather-agent/stream")
async def weather_agent_stream(request: Request, relay: AgentRelay = Depends(get_relay)):
    """
    Relay a chat turn to the weather agent and stream its body back as-is.
    The upstream connection is established (and its status checked) before
    the response starts, so an upstream failure is a plain 502 JSON error.
    """
    turn = await _parse(request, StreamRequest, "Invalid chat request")
    thread_id = turn.threadId or request.app.state.default_thread_id

    stream = await relay.open(turn.messages, thread_id, turn.options())
    return StreamingResponse(
        stream,
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
        # Runs after the body is sent or the client went away
        background=BackgroundTask(stream.aclose),
    )


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

@router.get("/api/settings")
async def get_settings(
    store: ConversationStore = Depends(get_store),
    user_id: str = Depends(get_user_id),
):
    return store.get_or_create_settings(user_id, DEFAULT_SETTINGS).to_dict()


@router.patch("/api/settings")
async def update_settings(
    request: Request,
    store: ConversationStore = Depends(get_store),
    user_id: str = Depends(get_user_id),
):
    patch = await _parse(request, SettingsPatch, "Invalid settings data")
    try:
        settings = store.update_settings(user_id, patch.changes())
    except NotFoundError:
        raise NotFoundError("Settings not found")
    return settings.to_dict()


# ---------------------------------------------------------------------------
# Health and realtime
# ---------------------------------------------------------------------------

@router.get("/api/health")
async def health(request: Request):
    state = request.app.state
    return {
        "status": "ok",
        "version": __version__,
        "store": state.store.name,
        "relay_in_flight": state.relay.in_flight,
    }


@router.websocket("/ws")
async def realtime(websocket: WebSocket):
    await websocket.app.state.hub.serve(websocket)


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

async def _not_found(request: Request, exc: NotFoundError):
    return JSONResponse({"error": str(exc)}, status_code=404)


async def _invalid(request: Request, exc: ValidationError):
    return JSONResponse({"error": str(exc)}, status_code=400)


async def _upstream(request: Request, exc: UpstreamError):
    return JSONResponse({"error": "Failed to communicate with weather agent"}, status_code=502)


async def _unexpected(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse({"error": "Internal server error"}, status_code=500)


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

def create_app(
    cfg: dict | None = None,
    store: ConversationStore | None = None,
    relay: AgentRelay | None = None,
) -> FastAPI:
    """
    Build the application. Pieces not passed in are built from `cfg`
    (or config.yaml when `cfg` is None, deferred to startup).
    """
    app = FastAPI(
        title="weatherchat",
        description="Chat backend and streaming relay for a hosted weather agent.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.cfg = cfg
    app.state.store = store
    app.state.relay = relay
    app.state.hub = NotificationHub()
    if cfg is not None:
        _init_state(app)

    app.include_router(router)
    app.add_exception_handler(NotFoundError, _not_found)
    app.add_exception_handler(ValidationError, _invalid)
    app.add_exception_handler(UpstreamError, _upstream)
    # StreamError has no handler: once the body has started, the only
    # thing left to do is drop the connection.
    app.add_exception_handler(Exception, _unexpected)
    return app


app = create_app()
