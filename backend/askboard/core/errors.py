# askboard/core/errors.py
from typing import Any, Optional

import httpx


class AskboardError(Exception):
    """Base class for every error the client surfaces to its caller."""

    kind: str = "error"
    default_message: str = "Unknown error occurred"

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None):
        self.message = message or self.default_message
        self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message, "status_code": self.status_code}


class ValidationError(AskboardError):
    kind = "validation"
    default_message = "Message cannot be empty"


class AuthError(AskboardError):
    kind = "auth"
    default_message = "Authentication failed. Please log in again."


class RateLimitError(AskboardError):
    kind = "rate_limit"
    default_message = "Rate limit exceeded. Please wait before sending another message."


class ServerError(AskboardError):
    kind = "server"
    default_message = "Server error. Please try again later."


class NotFoundError(AskboardError):
    kind = "not_found"
    default_message = "Chat task expired or was removed"


class ConversationNotFoundError(NotFoundError):
    kind = "conversation_not_found"
    default_message = "Conversation not found"


class RequestError(AskboardError):
    kind = "request"
    default_message = "The request was rejected by the server."


class TransportError(AskboardError):
    kind = "transport"
    default_message = "Network error. Please check your connection and try again."


class TaskFailed(AskboardError):
    kind = "failed"
    default_message = "Chat processing failed"


class TaskTimeout(AskboardError):
    kind = "timeout"
    default_message = "Chat processing timeout. Please try again."


class TaskCancelled(AskboardError):
    kind = "cancelled"
    default_message = "Task was cancelled"


def _detail_from_body(response: httpx.Response) -> Optional[str]:
    try:
        body: Any = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        for key in ("detail", "message", "error"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return None


def error_from_response(response: httpx.Response) -> AskboardError:
    """Map a non-2xx response onto the error taxonomy."""
    status = response.status_code
    detail = _detail_from_body(response)

    if status == 401:
        return AuthError(status_code=status)
    if status == 403:
        return AuthError(
            "Access denied. You do not have permission to use the AI Assistant.",
            status_code=status,
        )
    if status == 404:
        return NotFoundError(detail, status_code=status)
    if status == 429:
        return RateLimitError(status_code=status)
    if status >= 500:
        return ServerError(status_code=status)
    if status == 400 and detail and "empty" in detail.lower():
        return ValidationError(detail, status_code=status)
    return RequestError(detail or f"HTTP {status}", status_code=status)
