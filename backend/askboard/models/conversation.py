# askboard/models/conversation.py
import uuid
from datetime import datetime, timezone
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from typing import List, Literal, Optional

from askboard.models.response import StructuredResponse

Role = Literal["user", "assistant"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ChatMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    # stored under "type" by the web client
    role: Role = Field(
        validation_alias=AliasChoices("role", "type"),
        serialization_alias="type",
    )
    content: str
    timestamp: datetime = Field(default_factory=utcnow)
    response: Optional[StructuredResponse] = None

    @field_validator("timestamp")
    @classmethod
    def _utc_timestamp(cls, value: datetime) -> datetime:
        return _as_utc(value)


class Conversation(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    title: Optional[str] = None
    messages: List[ChatMessage] = []
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    is_archived: bool = Field(
        default=False,
        validation_alias=AliasChoices("is_archived", "isArchived", "archived"),
        serialization_alias="isArchived",
    )
    is_starred: bool = Field(
        default=False,
        validation_alias=AliasChoices("is_starred", "isStarred"),
        serialization_alias="isStarred",
    )

    @field_validator("created_at", "updated_at")
    @classmethod
    def _utc_timestamps(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @property
    def last_message(self) -> Optional[ChatMessage]:
        return self.messages[-1] if self.messages else None

    def to_storage(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
