"""
Chat HTTP API

REST counterpart of the WebSocket events, for clients that post messages
over HTTP. Mutations go through the same orchestrator and are published on
the bus exactly like their WebSocket equivalents.

    GET    /api/chat/messages/{channel_id}   channel history, oldest first
    POST   /api/chat/message                 send_message
    PUT    /api/chat/message/{id}            edit_message
    DELETE /api/chat/message/{id}            delete_message
    PUT    /api/chat/message/{id}/read       message_read
    POST   /api/chat/ai                      ai_message

Errors map to ``{"error": {"code", "message"}}``:
ValidationError -> 400, NotFoundError -> 404, BusError -> 503.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from chatbus.bus.ports import BusError
from chatbus.orchestration import ConversationOrchestrator, OrchestrationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chat", tags=["chat"])


def get_orchestrator(request: Request) -> ConversationOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Chat service not initialized")
    return orchestrator


OrchestratorDep = Annotated[ConversationOrchestrator, Depends(get_orchestrator)]


# Field presence is checked by the orchestrator so HTTP and WebSocket
# clients get the same rejections.

class FileBody(BaseModel):
    url: str | None = None
    mimeType: str | None = None
    filename: str | None = None


class SendMessageRequest(BaseModel):
    channelId: str | None = None
    senderId: str | None = None
    text: str | None = None
    file: FileBody | None = None
    parentMessage: str | None = None


class EditMessageRequest(BaseModel):
    text: str | None = None


class AIMessageRequest(BaseModel):
    channelId: str | None = None
    senderId: str | None = None
    text: str | None = None


@router.get("/messages/{channel_id}")
async def list_messages(channel_id: str, orchestrator: OrchestratorDep) -> list[dict[str, Any]]:
    return await orchestrator.list_messages(channel_id)


@router.post("/message", status_code=201)
async def send_message(body: SendMessageRequest, orchestrator: OrchestratorDep) -> Any:
    envelope = await orchestrator.handle("send_message", body.model_dump(exclude_none=True))
    return envelope.payload


@router.put("/message/{message_id}")
async def edit_message(
    message_id: str,
    body: EditMessageRequest,
    orchestrator: OrchestratorDep,
) -> Any:
    envelope = await orchestrator.handle(
        "edit_message",
        {"messageId": message_id, "text": body.text},
    )
    return envelope.payload


@router.delete("/message/{message_id}")
async def delete_message(message_id: str, orchestrator: OrchestratorDep) -> Any:
    envelope = await orchestrator.handle("delete_message", {"messageId": message_id})
    return envelope.payload


@router.put("/message/{message_id}/read")
async def mark_read(message_id: str, orchestrator: OrchestratorDep) -> Any:
    envelope = await orchestrator.handle("message_read", {"messageId": message_id})
    return envelope.payload


@router.post("/ai")
async def ai_message(body: AIMessageRequest, orchestrator: OrchestratorDep) -> dict[str, Any]:
    """Generate an AI reply. The result is also published to the channel."""
    envelope = await orchestrator.handle("ai_message", body.model_dump(exclude_none=True))
    return envelope.model_dump(mode="json")


def _error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse({"error": {"code": code, "message": message}}, status_code=status_code)


def register_error_handlers(app: FastAPI) -> None:
    """Map domain and bus errors to HTTP responses."""

    @app.exception_handler(OrchestrationError)
    async def orchestration_error_handler(request: Request, exc: OrchestrationError) -> JSONResponse:
        return _error_response(exc.status_code, exc.code, exc.message)

    @app.exception_handler(BusError)
    async def bus_error_handler(request: Request, exc: BusError) -> JSONResponse:
        logger.error(f"Bus failure on {request.method} {request.url.path}: {exc}")
        return _error_response(503, "BUS_UNAVAILABLE", "Message bus unavailable")
