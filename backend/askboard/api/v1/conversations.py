# askboard/api/v1/conversations.py
from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel
from typing import Literal, Optional

from askboard.core.errors import ConversationNotFoundError, ValidationError
from askboard.models.conversation import Conversation
from askboard.services.conversation_store import ConversationStore, display_title, preview

router = APIRouter(prefix="/api/v1/conversations", tags=["conversations"])


class RenameRequest(BaseModel):
    title: str


def _store(request: Request) -> ConversationStore:
    return request.app.state.conversation_store


def _summary(store: ConversationStore, conversation: Conversation) -> dict:
    return {
        "id": conversation.id,
        "title": display_title(conversation),
        "preview": preview(conversation),
        "message_count": len(conversation.messages),
        "updated_at": conversation.updated_at.isoformat(),
        "isArchived": conversation.is_archived,
        "isStarred": conversation.is_starred,
        "current": conversation.id == store.current_id,
    }


def _detail(store: ConversationStore, conversation: Conversation) -> dict:
    body = conversation.to_storage()
    body["display_title"] = display_title(conversation)
    body["current"] = conversation.id == store.current_id
    return body


def _call(store: ConversationStore, fn, *args) -> dict:
    try:
        conversation = fn(*args)
    except ConversationNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    return _detail(store, conversation)


@router.get("")
async def list_conversations(
    request: Request,
    search: Optional[str] = Query(None, description="Match title or message text"),
    filter: Literal["all", "starred", "archived"] = Query("all"),
):
    store = _store(request)
    return {
        "current_id": store.current_id,
        "conversations": [_summary(store, c) for c in store.list(search=search, filter=filter)],
    }


@router.post("")
async def create_conversation(request: Request):
    store = _store(request)
    return _detail(store, store.create_conversation())


@router.delete("")
async def clear_history(request: Request):
    store = _store(request)
    return _detail(store, store.clear_history())


@router.get("/{conversation_id}")
async def get_conversation(conversation_id: str, request: Request):
    store = _store(request)
    return _call(store, store.get, conversation_id)


@router.post("/{conversation_id}/select")
async def select_conversation(conversation_id: str, request: Request):
    store = _store(request)
    return _call(store, store.select, conversation_id)


@router.patch("/{conversation_id}")
async def rename_conversation(conversation_id: str, req: RenameRequest, request: Request):
    store = _store(request)
    return _call(store, store.rename, conversation_id, req.title)


@router.post("/{conversation_id}/archive")
async def archive_conversation(conversation_id: str, request: Request):
    store = _store(request)
    return _call(store, store.archive, conversation_id)


@router.post("/{conversation_id}/unarchive")
async def unarchive_conversation(conversation_id: str, request: Request):
    store = _store(request)
    return _call(store, store.unarchive, conversation_id)


@router.post("/{conversation_id}/star")
async def star_conversation(conversation_id: str, request: Request):
    store = _store(request)
    return _call(store, store.star, conversation_id)


@router.post("/{conversation_id}/unstar")
async def unstar_conversation(conversation_id: str, request: Request):
    store = _store(request)
    return _call(store, store.unstar, conversation_id)


@router.delete("/{conversation_id}")
async def delete_conversation(conversation_id: str, request: Request):
    store = _store(request)
    try:
        store.delete(conversation_id)
    except ConversationNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    return {"deleted": conversation_id, "current_id": store.current_id}
