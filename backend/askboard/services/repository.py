# askboard/services/repository.py
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Sequence

from pydantic import ValidationError as PydanticValidationError

from askboard.models.conversation import Conversation

logger = logging.getLogger("repository")

SCHEMA_VERSION = 1
DEFAULT_KEY = "chat_conversations"


class ConversationRepository(ABC):
    """Persistence boundary for the conversation list."""

    @abstractmethod
    def load(self) -> List[Conversation]:
        ...

    @abstractmethod
    def save(self, conversations: Sequence[Conversation]) -> None:
        ...


class InMemoryConversationRepository(ConversationRepository):
    def __init__(self, conversations: Sequence[Conversation] = ()):
        self._stored: List[Dict[str, Any]] = [c.to_storage() for c in conversations]
        self.save_count = 0

    def load(self) -> List[Conversation]:
        return [Conversation.model_validate(c) for c in self._stored]

    def save(self, conversations: Sequence[Conversation]) -> None:
        self._stored = [c.to_storage() for c in conversations]
        self.save_count += 1


class JsonFileConversationRepository(ConversationRepository):
    """
    Conversations kept under one key of a small JSON key-value file.

    The value is an envelope ``{"schema_version": 1, "conversations": [...]}``.
    A bare list under the key is the unversioned layout (version 0) and is
    upgraded on the next save. Other keys in the file are preserved.
    """

    def __init__(self, path: str | os.PathLike, key: str = DEFAULT_KEY):
        self.path = Path(path)
        self.key = key

    def _read_file(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as f:
                document = json.load(f)
        except (OSError, ValueError) as e:
            logger.error("Could not read conversations from %s: %s", self.path, e)
            return {}
        if not isinstance(document, dict):
            logger.error("Ignoring %s: top level is not an object", self.path)
            return {}
        return document

    @staticmethod
    def _unwrap(value: Any) -> List[Any]:
        if isinstance(value, list):
            return value
        if not isinstance(value, dict):
            logger.error("Unrecognised conversation storage layout: %s", type(value).__name__)
            return []
        version = value.get("schema_version", 0)
        if not isinstance(version, int) or version > SCHEMA_VERSION:
            logger.error("Conversation storage schema %r is newer than supported (%s)", version, SCHEMA_VERSION)
            return []
        conversations = value.get("conversations")
        return conversations if isinstance(conversations, list) else []

    def load(self) -> List[Conversation]:
        value = self._read_file().get(self.key)
        if value is None:
            return []

        conversations: List[Conversation] = []
        for raw in self._unwrap(value):
            try:
                conversations.append(Conversation.model_validate(raw))
            except PydanticValidationError as e:
                logger.warning("Skipping malformed stored conversation: %s", e)
        logger.info("Loaded %s conversations from %s", len(conversations), self.path)
        return conversations

    def save(self, conversations: Sequence[Conversation]) -> None:
        document = self._read_file()
        document[self.key] = {
            "schema_version": SCHEMA_VERSION,
            "conversations": [c.to_storage() for c in conversations],
        }

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=self.path.name, suffix=".tmp", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, ensure_ascii=False, indent=2)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
        logger.debug("Saved %s conversations to %s", len(conversations), self.path)
