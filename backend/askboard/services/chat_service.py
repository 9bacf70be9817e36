# askboard/services/chat_service.py
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from askboard.models.conversation import ChatMessage
from askboard.models.render import RenderPlan
from askboard.models.response import StructuredResponse
from askboard.models.state import TaskOutcome
from askboard.services.composer import compose, error_plan
from askboard.services.conversation_store import ConversationStore
from askboard.services.orchestrator import TaskOrchestrator

logger = logging.getLogger("chat_service")

FAILURE_TEMPLATE = "I apologize, but I encountered an error: {error}"


@dataclass
class ChatTurn:
    outcome: TaskOutcome
    conversation_id: str
    user_message: Optional[ChatMessage] = None
    assistant_message: Optional[ChatMessage] = None
    plan: Optional[RenderPlan] = None


class ChatService:
    """
    User input → conversation → task → assistant message → render plan.

    The assistant reply is appended to the conversation that was current when
    the question was asked, even if the user switched conversations while the
    task was running.
    """

    def __init__(self, orchestrator: TaskOrchestrator, store: ConversationStore):
        self.orchestrator = orchestrator
        self.store = store
        self.progress: Optional[float] = None
        self.progress_message: Optional[str] = None

    @property
    def busy(self) -> bool:
        return self.orchestrator.busy

    async def send(
        self,
        content: str,
        use_stream: bool = False,
        on_progress: Optional[Callable[[float, Optional[str]], None]] = None,
    ) -> Optional[ChatTurn]:
        content = (content or "").strip()
        if not content:
            return None

        conversation = self.store.current or self.store.create_conversation()
        user_message = self.store.append(conversation.id, "user", content)

        def _progress(value: float, message: Optional[str]) -> None:
            self.progress = value
            self.progress_message = message
            if on_progress is not None:
                on_progress(value, message)

        self.progress, self.progress_message = 0.0, None
        try:
            outcome = await self.orchestrator.submit(
                content,
                conversation_id=conversation.id,
                on_progress=_progress,
                use_stream=use_stream,
            )
        finally:
            self.progress, self.progress_message = None, None

        turn = ChatTurn(outcome=outcome, conversation_id=conversation.id, user_message=user_message)

        if outcome.status == "cancelled":
            logger.info("Request for conversation %s was cancelled", conversation.id)
            return turn

        if outcome.ok:
            response = outcome.response or StructuredResponse()
            turn.assistant_message = self.store.append(
                conversation.id, "assistant", response.summary_text(), response=outcome.response
            )
            turn.plan = compose(outcome.response)
        else:
            error = outcome.error_message or "Unknown error occurred"
            turn.assistant_message = self.store.append(
                conversation.id, "assistant", FAILURE_TEMPLATE.format(error=error)
            )
            turn.plan = error_plan(error)
        return turn

    async def cancel(self) -> bool:
        return await self.orchestrator.cancel()

    async def cancel_all(self) -> int:
        return await self.orchestrator.cancel_all()
