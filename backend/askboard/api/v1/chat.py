# askboard/api/v1/chat.py
from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel
from typing import Any, Dict, Optional
import logging

from askboard.core.errors import AskboardError, ConversationNotFoundError, ValidationError
from askboard.services.composer import compose

logger = logging.getLogger("api.chat")

router = APIRouter(prefix="/api/v1", tags=["chat"])


class AskRequest(BaseModel):
    query: str
    conversation_id: Optional[str] = None
    stream: bool = False


def _http_error(e: AskboardError) -> HTTPException:
    if isinstance(e, ValidationError):
        return HTTPException(status_code=400, detail=e.message)
    if isinstance(e, ConversationNotFoundError):
        return HTTPException(status_code=404, detail=e.message)
    return HTTPException(status_code=e.status_code or 502, detail=e.message)


@router.post("/ask")
async def ask_endpoint(req: AskRequest, request: Request) -> Dict[str, Any]:
    service = request.app.state.chat_service
    store = request.app.state.conversation_store
    logger.info("Received /api/v1/ask conversation=%s stream=%s", req.conversation_id, req.stream)

    try:
        if req.conversation_id:
            store.select(req.conversation_id)
        turn = await service.send(req.query, use_stream=req.stream)
    except AskboardError as e:
        raise _http_error(e)

    if turn is None:
        raise HTTPException(status_code=400, detail=ValidationError.default_message)

    return {
        "status": turn.outcome.status,
        "conversation_id": turn.conversation_id,
        "task_id": turn.outcome.task_id,
        "cached": turn.outcome.cached,
        "message": turn.assistant_message.model_dump(mode="json", by_alias=True) if turn.assistant_message else None,
        "plan": turn.plan.model_dump(mode="json") if turn.plan else None,
        "error": turn.outcome.error_message,
    }


@router.post("/cancel")
async def cancel_endpoint(request: Request):
    cancelled = await request.app.state.chat_service.cancel()
    return {"cancelled": cancelled}


@router.post("/cancel-all")
async def cancel_all_endpoint(request: Request):
    try:
        count = await request.app.state.chat_service.cancel_all()
    except AskboardError as e:
        raise _http_error(e)
    return {"cancelled_count": count}


@router.get("/tasks")
async def tasks_endpoint(request: Request):
    try:
        tasks = await request.app.state.orchestrator.active_tasks()
    except AskboardError as e:
        raise _http_error(e)
    return {"tasks": [t.model_dump(mode="json") for t in tasks]}


@router.post("/compose")
async def compose_endpoint(payload: Dict[str, Any]):
    plan = compose(payload)
    return plan.model_dump(mode="json")

