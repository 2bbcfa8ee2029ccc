"""Chat API endpoints."""

import json
from collections.abc import AsyncGenerator

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from notewise.api.deps import get_chat_service, get_owner_id
from notewise.qa.schemas import ChatRequest, ChatResponse
from notewise.qa.service import ChatService

router = APIRouter(prefix="/api/chat", tags=["chat"])


@router.post("", response_model=ChatResponse)
async def ask_question(
    request: ChatRequest,
    owner_id: str = Depends(get_owner_id),
    service: ChatService = Depends(get_chat_service),
) -> ChatResponse:
    """Answer a question from the owner's notes.

    Provider outages produce a canned answer with degraded set, never an error.
    """
    return await service.answer(owner_id, request)


@router.post("/stream")
async def ask_question_stream(
    request: ChatRequest,
    owner_id: str = Depends(get_owner_id),
    service: ChatService = Depends(get_chat_service),
) -> StreamingResponse:
    """Stream an answer as Server-Sent Events.

    Events:
    - event: token, data: {"text": "..."}
    - event: done, data: {"citations": [...], "context_used": bool}
    """
    context, tokens = await service.stream(owner_id, request)

    async def event_generator() -> AsyncGenerator[str, None]:
        async for token in tokens:
            yield f"event: token\ndata: {json.dumps({'text': token})}\n\n"
        done_data = {
            "citations": [c.model_dump() for c in context.citations],
            "context_used": not context.is_empty,
        }
        yield f"event: done\ndata: {json.dumps(done_data)}\n\n"

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
    )
