# askboard/services/conversation_store.py
"""
Conversation history with a current selection.

Conversations and messages are immutable models; every mutation builds a new
list and swaps it in with one assignment, then persists it through the
repository. Readers holding an old list keep a consistent snapshot.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, List, Literal, Optional

from askboard.core.config import settings
from askboard.core.errors import ConversationNotFoundError, ValidationError
from askboard.models.conversation import ChatMessage, Conversation, Role, utcnow
from askboard.models.response import StructuredResponse
from askboard.services.repository import ConversationRepository, InMemoryConversationRepository

logger = logging.getLogger("conversation_store")

ConversationFilter = Literal["all", "starred", "archived"]

TITLE_PREVIEW_CHARS = 30
MESSAGE_PREVIEW_CHARS = 60


def _truncate(text: str, limit: int) -> str:
    return text[:limit] + "..." if len(text) > limit else text


def display_title(conversation: Conversation) -> str:
    if conversation.title:
        return conversation.title
    first_user = next((m for m in conversation.messages if m.role == "user"), None)
    if first_user is not None:
        return _truncate(first_user.content, TITLE_PREVIEW_CHARS)
    return "New Conversation"


def preview(conversation: Conversation) -> str:
    last = conversation.last_message
    if last is None:
        return "New conversation"
    return _truncate(last.content, MESSAGE_PREVIEW_CHARS)


class ConversationStore:
    def __init__(
        self,
        repository: Optional[ConversationRepository] = None,
        dedup_window: Optional[float] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository or InMemoryConversationRepository()
        window = dedup_window if dedup_window is not None else settings.DEDUP_WINDOW_SECONDS
        self.dedup_window = timedelta(seconds=window)
        self._clock = clock

        self._conversations: List[Conversation] = self.repository.load()
        self._current_id: Optional[str] = None
        if self._conversations:
            self._current_id = self._most_recent().id
        else:
            self.create_conversation()

    # -------- reads -------- #

    @property
    def conversations(self) -> List[Conversation]:
        return list(self._conversations)

    @property
    def current_id(self) -> Optional[str]:
        return self._current_id

    @property
    def current(self) -> Optional[Conversation]:
        if self._current_id is None:
            return None
        return self._find(self._current_id)

    def get(self, conversation_id: str) -> Conversation:
        conversation = self._find(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(f"Conversation {conversation_id} not found")
        return conversation

    def list(self, search: Optional[str] = None, filter: ConversationFilter = "all") -> List[Conversation]:
        items = self._conversations
        if filter == "starred":
            items = [c for c in items if c.is_starred]
        elif filter == "archived":
            items = [c for c in items if c.is_archived]
        elif filter != "all":
            raise ValidationError(f"Unknown conversation filter {filter!r}")

        if search:
            needle = search.lower()
            items = [
                c for c in items
                if needle in (c.title or "").lower()
                or any(needle in m.content.lower() for m in c.messages)
            ]
        return sorted(items, key=lambda c: c.updated_at, reverse=True)

    # -------- mutations -------- #

    def create_conversation(self, title: Optional[str] = None) -> Conversation:
        now = self._clock()
        conversation = Conversation(title=title, created_at=now, updated_at=now)
        self._commit([conversation] + self._conversations)
        self._current_id = conversation.id
        logger.info("Created conversation %s", conversation.id)
        return conversation

    def select(self, conversation_id: str) -> Conversation:
        conversation = self.get(conversation_id)
        self._current_id = conversation.id
        return conversation

    def append(
        self,
        conversation_id: Optional[str],
        role: Role,
        content: str,
        response: Optional[StructuredResponse] = None,
    ) -> Optional[ChatMessage]:
        """
        Append a message and bump the conversation's updated_at.

        Returns None when the conversation's last message has the same role
        and content and was appended within the dedup window.
        """
        if conversation_id is None:
            conversation = self.current or self.create_conversation()
        else:
            conversation = self.get(conversation_id)

        now = self._clock()
        if self._is_duplicate(conversation, role, content, now):
            logger.info("Dropping duplicate %s message in conversation %s", role, conversation.id)
            return None

        message = ChatMessage(role=role, content=content, timestamp=now, response=response)
        self._replace(
            conversation.model_copy(
                update={"messages": conversation.messages + [message], "updated_at": now}
            )
        )
        return message

    def rename(self, conversation_id: str, title: str) -> Conversation:
        title = (title or "").strip()
        if not title:
            raise ValidationError("Title cannot be empty")
        return self._update(conversation_id, title=title)

    def archive(self, conversation_id: str) -> Conversation:
        return self._update(conversation_id, is_archived=True)

    def unarchive(self, conversation_id: str) -> Conversation:
        return self._update(conversation_id, is_archived=False)

    def star(self, conversation_id: str) -> Conversation:
        return self._update(conversation_id, is_starred=True)

    def unstar(self, conversation_id: str) -> Conversation:
        return self._update(conversation_id, is_starred=False)

    def delete(self, conversation_id: str) -> None:
        self.get(conversation_id)
        self._commit([c for c in self._conversations if c.id != conversation_id])
        logger.info("Deleted conversation %s", conversation_id)

        if self._current_id == conversation_id:
            if self._conversations:
                self._current_id = self._most_recent().id
            else:
                self.create_conversation()

    def clear_history(self) -> Conversation:
        self._conversations = []
        self._current_id = None
        logger.info("Cleared conversation history")
        return self.create_conversation()

    # -------- internals -------- #

    def _find(self, conversation_id: str) -> Optional[Conversation]:
        return next((c for c in self._conversations if c.id == conversation_id), None)

    def _most_recent(self) -> Conversation:
        return max(self._conversations, key=lambda c: c.updated_at)

    def _is_duplicate(self, conversation: Conversation, role: Role, content: str, now: datetime) -> bool:
        # only the immediately preceding message counts
        last = conversation.last_message
        return (
            last is not None
            and last.role == role
            and last.content == content
            and last.timestamp > now - self.dedup_window
        )

    def _update(self, conversation_id: str, **changes) -> Conversation:
        conversation = self.get(conversation_id)
        changes["updated_at"] = self._clock()
        updated = conversation.model_copy(update=changes)
        self._replace(updated)
        return updated

    def _replace(self, conversation: Conversation) -> None:
        self._commit([conversation if c.id == conversation.id else c for c in self._conversations])

    def _commit(self, conversations: List[Conversation]) -> None:
        self._conversations = conversations
        self.repository.save(conversations)
