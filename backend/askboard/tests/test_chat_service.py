# tests/test_chat_service.py
import asyncio

from askboard.services.chat_service import ChatService
from askboard.services.conversation_store import ConversationStore
from askboard.services.orchestrator import TaskOrchestrator

from conftest import FakeClock, FakeTaskService, legacy_payload


def make_service(svc: FakeTaskService, clock: FakeClock, **kwargs) -> ChatService:
    kwargs.setdefault("timeout", 300)
    kwargs.setdefault("poll_interval", 2.0)
    orchestrator = TaskOrchestrator(svc.client(), clock=clock, sleep=clock.sleep, **kwargs)
    return ChatService(orchestrator, ConversationStore())


def test_successful_turn_appends_summary_and_plan(clock):
    svc = FakeTaskService(
        statuses=[
            {"task_id": "t1", "status": "processing", "progress": 50, "progress_message": "Running SQL"},
            {"task_id": "t1", "status": "completed", "success": True, "response": legacy_payload()},
        ]
    )
    chat = make_service(svc, clock)
    seen = []

    def on_progress(value, message):
        seen.append((value, message, chat.progress, chat.progress_message))

    turn = asyncio.run(chat.send("  customers by region ", on_progress=on_progress))

    assert turn.outcome.ok
    assert turn.user_message.content == "customers by region"
    assert turn.assistant_message.content == "North has the most customers"
    assert turn.assistant_message.response is not None
    assert turn.plan.component_ids() == ["dataset_0"]
    assert seen == [(50, "Running SQL", 50, "Running SQL")]
    assert chat.progress is None and chat.progress_message is None

    messages = chat.store.get(turn.conversation_id).messages
    assert [m.role for m in messages] == ["user", "assistant"]
    sent = svc.calls("POST", "/chat/initiate/")[0]
    assert turn.conversation_id in sent.content.decode()


def test_summary_falls_back_to_query_intent(clock):
    payload = legacy_payload(insights=None)
    svc = FakeTaskService(statuses=[{"task_id": "t1", "status": "completed", "success": True, "response": payload}])
    turn = asyncio.run(make_service(svc, clock).send("q"))
    assert turn.assistant_message.content == "Count customers by region"


def test_failure_appends_apology_with_error(clock):
    svc = FakeTaskService(statuses=[{"task_id": "t1", "status": "failed", "error": "Database unavailable"}])
    chat = make_service(svc, clock)

    turn = asyncio.run(chat.send("q"))

    assert turn.outcome.status == "failed"
    assert turn.assistant_message.content == "I apologize, but I encountered an error: Database unavailable"
    assert turn.plan.is_error


def test_timeout_appends_apology(clock):
    svc = FakeTaskService()
    chat = make_service(svc, clock, timeout=20)

    turn = asyncio.run(chat.send("q"))

    assert turn.outcome.status == "timed_out"
    assert turn.assistant_message.content == (
        "I apologize, but I encountered an error: Chat processing timeout. Please try again."
    )


def test_cancelled_turn_appends_nothing():
    svc = FakeTaskService()
    orchestrator = TaskOrchestrator(svc.client(), timeout=30, poll_interval=0.01, max_poll_interval=0.01)
    chat = ChatService(orchestrator, ConversationStore())

    async def scenario():
        pending = asyncio.ensure_future(chat.send("long question"))
        while svc.status_calls < 1:
            await asyncio.sleep(0.005)
        await chat.cancel()
        return await pending

    turn = asyncio.run(scenario())

    assert turn.outcome.status == "cancelled"
    assert turn.assistant_message is None
    assert turn.plan is None
    assert [m.role for m in chat.store.current.messages] == ["user"]


def test_empty_content_does_nothing(clock):
    svc = FakeTaskService()
    chat = make_service(svc, clock)
    assert asyncio.run(chat.send("   ")) is None
    assert svc.requests == []
    assert chat.store.current.messages == []
