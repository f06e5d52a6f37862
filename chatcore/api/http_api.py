"""
HTTP API adapter for the chatcore orchestrator.

Architectural role:
- Expose conversation and session operations over HTTP.
- Enforce adapter-level input validation (pydantic request models).
- Delegate all conversation work to `chatcore.core.engine.ConversationOrchestrator`.
- Normalize orchestrator output to JSON or SSE transport contracts.

Identity:
- The caller identity is read from the `X-Owner-Id` header. An upstream
  identity provider is expected to set it; this adapter does not authenticate.

Endpoint responsibilities:
- `POST /v1/chat/messages`: run one turn and return the exchange.
- `POST /v1/chat/messages/stream`: run one streamed turn; SSE `token` events
  followed by one `done` event carrying the exchange.
- `POST /v1/sessions`, `GET /v1/sessions`, `GET /v1/sessions/{id}`,
  `GET /v1/sessions/{id}/messages`, `POST /v1/sessions/{id}/archive`,
  `DELETE /v1/sessions/{id}`, `PUT /v1/sessions/{id}/config`,
  `POST /v1/sessions/{id}/title`: owner-checked session operations.
- `POST /v1/messages/{id}/attachments`: append an image attachment.
- `GET /v1/models`: models advertised by the runtime.

Error handling strategy:
- `AccessDenied` -> HTTP 403, `SessionNotFound` -> HTTP 404,
  `ValueError` from the orchestrator -> HTTP 400.
- Pydantic validation failures follow FastAPI defaults (HTTP 422).
- Provider and image backend failures never reach this module; they are
  already assistant replies.

Side effects:
- Loads environment variables at import time via `load_dotenv()`.
- Emits request debug logs only when `DEBUG == "true"`.
"""

from dotenv import load_dotenv

load_dotenv()

import asyncio
import json
import logging
import os
import queue
import threading
from dataclasses import asdict

from fastapi import Depends, FastAPI, Header, Query
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from chatcore.core.engine import ConversationOrchestrator
from chatcore.core.errors import AccessDenied, SessionNotFound
from chatcore.llm.provider_config import STORE_SNAPSHOT_PATH
from chatcore.memory.store import InMemoryStore


logger = logging.getLogger(__name__)

app = FastAPI(title="chatcore")
# Sensitive request/response debug logging is opt-in.
DEBUG = os.getenv("DEBUG") == "true"

_orchestrator = None
_orchestrator_lock = threading.Lock()


def get_orchestrator() -> ConversationOrchestrator:
    """Lazily build the process-wide orchestrator (overridable in tests)."""
    global _orchestrator
    with _orchestrator_lock:
        if _orchestrator is None:
            _orchestrator = ConversationOrchestrator(InMemoryStore(snapshot_path=STORE_SNAPSHOT_PATH))
        return _orchestrator


def get_owner_id(x_owner_id: str = Header(..., min_length=1)) -> str:
    return x_owner_id


# ============================================================
# Request Schemas
# ============================================================

class GenerationOptions(BaseModel):
    model: str | None = None
    temperature: float | None = Field(None, ge=0)
    max_tokens: int | None = Field(None, gt=0)
    top_k: int | None = Field(None, gt=0)
    top_p: float | None = Field(None, ge=0, le=1)
    frequency_penalty: float | None = None
    presence_penalty: float | None = None
    repeat_penalty: float | None = None
    seed: int | None = None
    timeout: float | None = Field(None, gt=0)
    base_url: str | None = None
    image_params: dict | None = None


class ChatMessageRequest(GenerationOptions):
    session_id: str | None = None
    content: str = Field(..., min_length=1)
    stream: bool = False

    def options(self) -> dict:
        return self.model_dump(exclude={"session_id", "content"}, exclude_none=True)


class CreateSessionRequest(BaseModel):
    title: str | None = None
    metadata: dict = Field(default_factory=dict)


class DynamicConfigRequest(BaseModel):
    base_url: str | None = None
    timeout: float | None = Field(None, gt=0)


class TitleRequest(BaseModel):
    model: str | None = None
    force: bool = False


class AttachmentRequest(BaseModel):
    url: str = Field(..., min_length=1)
    filename: str = Field(..., min_length=1)
    original_prompt: str | None = None
    metadata: dict = Field(default_factory=dict)


# ============================================================
# Error Mapping
# ============================================================

@app.exception_handler(AccessDenied)
async def access_denied_handler(request, exc):
    return JSONResponse(status_code=403, content={"error": str(exc)})


@app.exception_handler(SessionNotFound)
async def session_not_found_handler(request, exc):
    return JSONResponse(status_code=404, content={"error": str(exc)})


@app.exception_handler(ValueError)
async def value_error_handler(request, exc):
    return JSONResponse(status_code=400, content={"error": str(exc)})


def _page(items, total, page, limit, key):
    return {key: [item.to_dict() for item in items], "total": total, "page": page, "limit": limit}


# ============================================================
# Conversation
# ============================================================

@app.post("/v1/chat/messages")
async def send_message(
    body: ChatMessageRequest,
    owner_id: str = Depends(get_owner_id),
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
):
    if DEBUG:
        logger.debug("Incoming message from %s: %r", owner_id, body.content)

    options = body.options()
    # Non-streaming transport: tokens are not forwarded anywhere.
    options["stream"] = False

    result = await asyncio.to_thread(
        orchestrator.handle, body.session_id, owner_id, body.content, options
    )
    return result.to_dict()


def _sse(event: str, data: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"


@app.post("/v1/chat/messages/stream")
async def stream_message(
    body: ChatMessageRequest,
    owner_id: str = Depends(get_owner_id),
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
):
    """
    Streamed turn as server-sent events.

    Response formatting:
    - `event: token` frames with `{"content": fragment}` in arrival order.
    - One terminal `event: done` frame with the exchange JSON, or
      `event: error` when the turn itself could not be completed.

    Ownership is checked before the stream opens so access errors stay HTTP
    status codes.
    """
    if body.session_id is not None:
        await asyncio.to_thread(orchestrator.get_session, owner_id, body.session_id)

    options = body.options()
    options["stream"] = True

    events = queue.Queue()

    def on_token(fragment, accumulated):
        events.put(_sse("token", {"content": fragment}))

    def run_turn():
        try:
            result = orchestrator.handle(
                body.session_id, owner_id, body.content, options, on_token=on_token
            )
            events.put(_sse("done", result.to_dict()))
        except Exception as err:
            logger.exception("Streamed turn failed")
            events.put(_sse("error", {"error": str(err)}))
        finally:
            events.put(None)

    threading.Thread(target=run_turn, daemon=True).start()

    def event_stream():
        while True:
            frame = events.get()
            if frame is None:
                return
            yield frame

    return StreamingResponse(event_stream(), media_type="text/event-stream")


# ============================================================
# Sessions
# ============================================================

@app.post("/v1/sessions", status_code=201)
async def create_session(
    body: CreateSessionRequest,
    owner_id: str = Depends(get_owner_id),
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
):
    session = await asyncio.to_thread(
        orchestrator.create_session, owner_id, body.title, body.metadata
    )
    return session.to_dict()


@app.get("/v1/sessions")
async def list_sessions(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    owner_id: str = Depends(get_owner_id),
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
):
    sessions, total = await asyncio.to_thread(orchestrator.list_sessions, owner_id, page, limit)
    return _page(sessions, total, page, limit, "sessions")


@app.get("/v1/sessions/{session_id}")
async def get_session(
    session_id: str,
    owner_id: str = Depends(get_owner_id),
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
):
    session = await asyncio.to_thread(orchestrator.get_session, owner_id, session_id)
    return session.to_dict()


@app.get("/v1/sessions/{session_id}/messages")
async def get_messages(
    session_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    owner_id: str = Depends(get_owner_id),
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
):
    messages, total = await asyncio.to_thread(
        orchestrator.get_messages, owner_id, session_id, page, limit
    )
    return _page(messages, total, page, limit, "messages")


@app.post("/v1/sessions/{session_id}/archive")
async def archive_session(
    session_id: str,
    owner_id: str = Depends(get_owner_id),
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
):
    session = await asyncio.to_thread(orchestrator.archive_session, owner_id, session_id)
    return session.to_dict()


@app.delete("/v1/sessions/{session_id}")
async def delete_session(
    session_id: str,
    owner_id: str = Depends(get_owner_id),
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
):
    session = await asyncio.to_thread(orchestrator.delete_session, owner_id, session_id)
    return session.to_dict()


@app.put("/v1/sessions/{session_id}/config")
async def set_session_config(
    session_id: str,
    body: DynamicConfigRequest,
    owner_id: str = Depends(get_owner_id),
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
):
    config = await asyncio.to_thread(
        orchestrator.set_dynamic_config,
        owner_id,
        session_id,
        base_url=body.base_url,
        timeout=body.timeout,
    )
    return asdict(config)


@app.post("/v1/sessions/{session_id}/title")
async def generate_title(
    session_id: str,
    body: TitleRequest,
    owner_id: str = Depends(get_owner_id),
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
):
    session = await asyncio.to_thread(
        orchestrator.generate_title, owner_id, session_id, body.model, body.force
    )
    return session.to_dict()


@app.post("/v1/messages/{message_id}/attachments")
async def attach_image(
    message_id: str,
    body: AttachmentRequest,
    owner_id: str = Depends(get_owner_id),
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
):
    message = await asyncio.to_thread(
        orchestrator.attach_image,
        owner_id,
        message_id,
        body.url,
        body.filename,
        body.original_prompt,
        body.metadata,
    )
    return message.to_dict()


# ============================================================
# Model Listing
# ============================================================

@app.get("/v1/models")
async def list_models(orchestrator: ConversationOrchestrator = Depends(get_orchestrator)):
    """
    Return runtime models as OpenAI-style model metadata.

    An unreachable runtime yields an empty list, not an error.
    """
    names = await asyncio.to_thread(orchestrator.list_models)

    return {
        "object": "list",
        "data": [{"id": name, "object": "model", "owned_by": "local"} for name in names],
    }
