# askboard/models/state.py
from enum import Enum
from pydantic import BaseModel, ConfigDict
from typing import Any, Dict, Literal, Optional

from askboard.core.errors import AskboardError
from askboard.models.response import StructuredResponse, structured_from_payload

Priority = Literal["low", "normal", "high"]


class InitiateRequest(BaseModel):
    query: str
    conversation_id: Optional[str] = None
    priority: Priority = "normal"


class InitiateResponse(BaseModel):
    # cached responses carry layout/components/dataset/insights at top level
    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    task_id: Optional[str] = None
    status: Literal["processing", "queued", "completed"] = "processing"
    message: str = ""
    success: bool = True
    estimated_time: Optional[float] = None
    cached: bool = False
    conversation_id: Optional[str] = None
    message_id: Optional[str] = None

    @property
    def is_cache_hit(self) -> bool:
        return self.cached and self.status == "completed"

    def cached_response(self) -> StructuredResponse:
        return structured_from_payload(self.model_dump())


class TaskStatus(BaseModel):
    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    task_id: str
    status: Literal["processing", "queued", "completed", "failed", "cancelled"]
    progress: Optional[float] = None
    progress_message: Optional[str] = None
    conversation_id: Optional[str] = None
    message_id: Optional[str] = None
    response: Optional[StructuredResponse] = None
    error: Optional[str] = None
    completed_at: Optional[str] = None
    success: bool = True

    @property
    def is_terminal(self) -> bool:
        return self.status in ("completed", "failed", "cancelled")

    def structured_response(self) -> StructuredResponse:
        if self.response is not None:
            return self.response
        return structured_from_payload(self.model_dump(exclude={"response"}))

    def failure_message(self) -> str:
        if self.error:
            return self.error
        if self.response is not None and self.response.error:
            return self.response.error
        return "Chat processing failed"


class CancelResponse(BaseModel):
    success: bool = False
    message: str = ""


class CancelAllResponse(BaseModel):
    cancelled_count: int = 0
    message: str = ""


class StreamEvent(BaseModel):
    type: Literal["progress", "partial", "complete", "error"]
    task_id: Optional[str] = None
    data: Optional[Any] = None
    progress: Optional[float] = None
    message: Optional[str] = None
    error: Optional[str] = None


class OrchestratorState(str, Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"


OutcomeStatus = Literal["completed", "failed", "cancelled", "timed_out"]


class TaskOutcome(BaseModel):
    """Normalized terminal result of one logical request."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    status: OutcomeStatus
    task_id: Optional[str] = None
    response: Optional[StructuredResponse] = None
    error: Optional[AskboardError] = None
    conversation_id: Optional[str] = None
    message_id: Optional[str] = None
    cached: bool = False

    @property
    def ok(self) -> bool:
        return self.status == "completed"

    @property
    def error_message(self) -> Optional[str]:
        return self.error.message if self.error is not None else None

    def raise_for_status(self) -> "TaskOutcome":
        if self.error is not None and not self.ok:
            raise self.error
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "task_id": self.task_id,
            "cached": self.cached,
            "conversation_id": self.conversation_id,
            "message_id": self.message_id,
            "error": self.error.to_dict() if self.error is not None else None,
        }
