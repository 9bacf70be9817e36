# tests/test_orchestrator.py
import asyncio

import httpx
import pytest

from askboard.core.errors import TaskCancelled, TaskTimeout, ValidationError
from askboard.models.state import OrchestratorState
from askboard.services.orchestrator import PollSchedule, TaskOrchestrator
from askboard.services.task_client import TaskClient

from conftest import BASE_URL, FakeClock, FakeTaskService, legacy_payload, sse


def make_orchestrator(svc: FakeTaskService, clock: FakeClock, **kwargs) -> TaskOrchestrator:
    kwargs.setdefault("timeout", 300)
    kwargs.setdefault("poll_interval", 2.0)
    kwargs.setdefault("backoff_factor", 1.25)
    kwargs.setdefault("max_poll_interval", 10.0)
    kwargs.setdefault("max_server_errors", 5)
    return TaskOrchestrator(svc.client(), clock=clock, sleep=clock.sleep, **kwargs)


def completed(task_id="t1", **extra):
    body = {"task_id": task_id, "status": "completed", "progress": 100, "success": True,
            "response": legacy_payload()}
    body.update(extra)
    return body


def processing(progress, task_id="t1", message=None):
    return {"task_id": task_id, "status": "processing", "progress": progress, "progress_message": message}


class Recorder:
    def __init__(self):
        self.events = []

    def progress(self, value, message):
        self.events.append(("progress", value))

    def complete(self, response):
        self.events.append(("complete", response))

    def error(self, message):
        self.events.append(("error", message))

    def callbacks(self):
        return {"on_progress": self.progress, "on_complete": self.complete, "on_error": self.error}

    def of(self, kind):
        return [e for e in self.events if e[0] == kind]


def test_poll_schedule_backs_off_to_cap():
    schedule = PollSchedule(2.0, 1.25, 10.0)
    values = [schedule.next() for _ in range(12)]
    assert values[:3] == [2.0, 2.5, 3.125]
    assert max(values) == 10.0
    assert values == sorted(values)


def test_empty_query_is_rejected(clock):
    svc = FakeTaskService()
    orch = make_orchestrator(svc, clock)
    with pytest.raises(ValidationError):
        asyncio.run(orch.submit("   "))
    assert svc.requests == []


def test_cache_hit_completes_without_polling(clock):
    svc = FakeTaskService(
        initiate={"success": True, "task_id": "t1", "status": "completed", "cached": True, **legacy_payload()}
    )
    orch = make_orchestrator(svc, clock)
    rec = Recorder()

    outcome = asyncio.run(orch.submit("customers by region", **rec.callbacks()))

    assert outcome.status == "completed"
    assert outcome.cached is True
    assert outcome.response.insights.key_findings == ["North has the most customers"]
    assert svc.status_calls == 0
    assert len(rec.of("complete")) == 1
    assert orch.state == OrchestratorState.COMPLETED


def test_malformed_cached_payload_fails_with_outcome(clock):
    svc = FakeTaskService(
        initiate={"success": True, "task_id": "t1", "status": "completed", "cached": True,
                  "components": [{"type": "bar_chart"}]}
    )
    orch = make_orchestrator(svc, clock)
    rec = Recorder()

    outcome = asyncio.run(orch.submit("q", **rec.callbacks()))

    assert outcome.status == "failed"
    assert outcome.error_message == "Malformed response from server"
    assert rec.of("error") == [("error", "Malformed response from server")]
    assert rec.of("complete") == []
    assert svc.status_calls == 0
    assert orch.state == OrchestratorState.FAILED


def test_progress_is_monotonic_and_terminal_fires_once_last(clock):
    svc = FakeTaskService(
        statuses=[processing(10), processing(40), processing(30), processing(40), processing(70), completed()]
    )
    orch = make_orchestrator(svc, clock)
    rec = Recorder()

    outcome = asyncio.run(orch.submit("q", **rec.callbacks()))

    assert outcome.ok
    assert [v for _, v in rec.of("progress")] == [10, 40, 70, 100]
    assert rec.events[-1][0] == "complete"
    assert len(rec.of("complete")) == 1
    assert rec.of("error") == []


def test_failed_status_surfaces_server_error_text(clock):
    svc = FakeTaskService(
        statuses=[processing(20), {"task_id": "t1", "status": "failed", "error": "SQL generation failed"}]
    )
    orch = make_orchestrator(svc, clock)
    rec = Recorder()

    outcome = asyncio.run(orch.submit("q", **rec.callbacks()))

    assert outcome.status == "failed"
    assert outcome.error_message == "SQL generation failed"
    assert rec.of("error") == [("error", "SQL generation failed")]


def test_not_found_is_fatal(clock):
    svc = FakeTaskService(statuses=[httpx.Response(404, json={"detail": "gone"})])
    orch = make_orchestrator(svc, clock)

    outcome = asyncio.run(orch.submit("q"))

    assert outcome.status == "failed"
    assert outcome.error_message == "Chat task expired or was removed"
    assert svc.status_calls == 1


def test_transient_network_errors_are_retried(clock):
    svc = FakeTaskService(statuses=[processing(10), httpx.ConnectError("down"), completed()])
    orch = make_orchestrator(svc, clock)

    outcome = asyncio.run(orch.submit("q"))

    assert outcome.ok
    assert svc.status_calls == 3


def test_server_errors_give_up_after_limit(clock):
    svc = FakeTaskService(statuses=[httpx.Response(500, json={})])
    orch = make_orchestrator(svc, clock, max_server_errors=3)

    outcome = asyncio.run(orch.submit("q"))

    assert outcome.status == "failed"
    assert svc.status_calls == 3


def test_timeout_cancels_on_server_and_reports_once(clock):
    svc = FakeTaskService(statuses=[processing(5)])
    orch = make_orchestrator(svc, clock)
    rec = Recorder()

    outcome = asyncio.run(orch.submit("slow question", **rec.callbacks()))

    assert outcome.status == "timed_out"
    assert isinstance(outcome.error, TaskTimeout)
    assert clock.now == pytest.approx(300)
    assert sum(clock.sleeps) <= 300 + 1e-6
    assert max(clock.sleeps) <= 10.0
    assert svc.cancelled_task_ids == ["t1"]
    assert rec.of("error") == [("error", "Chat processing timeout. Please try again.")]
    assert orch.state == OrchestratorState.TIMED_OUT
    with pytest.raises(TaskTimeout):
        outcome.raise_for_status()


def test_cancel_mid_poll_settles_cancelled_without_terminal_callbacks():
    svc = FakeTaskService(statuses=[processing(10)])
    orch = TaskOrchestrator(svc.client(), timeout=30, poll_interval=0.01, max_poll_interval=0.01)
    rec = Recorder()

    async def scenario():
        pending = asyncio.ensure_future(orch.submit("q", **rec.callbacks()))
        while svc.status_calls < 2:
            await asyncio.sleep(0.005)
        calls_before = svc.status_calls
        assert await orch.cancel() is True
        outcome = await pending
        await asyncio.sleep(0.05)
        return outcome, calls_before

    outcome, calls_before = asyncio.run(scenario())

    assert outcome.status == "cancelled"
    assert isinstance(outcome.error, TaskCancelled)
    assert svc.cancelled_task_ids == ["t1"]
    assert svc.status_calls <= calls_before + 1
    assert rec.of("complete") == [] and rec.of("error") == []
    assert orch.state == OrchestratorState.CANCELLED
    assert orch.busy is False


def test_cancel_with_nothing_in_flight(clock):
    orch = make_orchestrator(FakeTaskService(), clock)
    assert asyncio.run(orch.cancel()) is False


def test_server_side_cancel_yields_cancelled(clock):
    svc = FakeTaskService(statuses=[processing(10), {"task_id": "t1", "status": "cancelled"}])
    orch = make_orchestrator(svc, clock)

    outcome = asyncio.run(orch.submit("q"))

    assert outcome.status == "cancelled"
    assert svc.cancelled_task_ids == []


def test_identical_submission_in_flight_reuses_request(clock):
    svc = FakeTaskService(statuses=[processing(10), processing(50), completed()])
    orch = make_orchestrator(svc, clock)

    async def scenario():
        return await asyncio.gather(orch.submit("same question"), orch.submit("  same question "))

    first, second = asyncio.run(scenario())

    assert svc.initiate_calls == 1
    assert first.status == second.status == "completed"
    assert first.task_id == second.task_id == "t1"


def test_new_submission_supersedes_in_flight_request():
    initiated = []

    def initiate(request):
        initiated.append(request)
        return {"success": True, "task_id": f"t{len(initiated)}", "status": "processing"}

    svc = FakeTaskService(initiate=initiate)

    # t1 never finishes; t2 completes on the first poll
    def handler(request):
        if "/chat/response/t2/" in request.url.path:
            svc.requests.append(request)
            return httpx.Response(200, json=completed(task_id="t2"))
        return svc.handler(request)

    client = TaskClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    orch = TaskOrchestrator(client, timeout=30, poll_interval=0.01, max_poll_interval=0.01)

    async def scenario():
        first = asyncio.ensure_future(orch.submit("first question"))
        while svc.status_calls < 1:
            await asyncio.sleep(0.005)
        second = await orch.submit("second question")
        return await first, second

    first, second = asyncio.run(scenario())

    assert first.status == "cancelled"
    assert second.status == "completed"
    assert second.task_id == "t2"
    assert svc.cancelled_task_ids == ["t1"]


def test_stream_path_honours_progress_gate_and_completes(clock):
    svc = FakeTaskService(
        stream_lines=[
            sse({"type": "progress", "task_id": "s1", "progress": 20, "message": "Planning"}),
            sse({"type": "progress", "task_id": "s1", "progress": 10}),
            sse({"type": "partial", "task_id": "s1", "data": {"rows": 3}}),
            sse({"type": "progress", "task_id": "s1", "progress": 60}),
            sse({"type": "complete", "task_id": "s1", "data": {"response": legacy_payload()}}),
        ]
    )
    orch = make_orchestrator(svc, clock)
    rec = Recorder()
    partials = []

    outcome = asyncio.run(orch.submit("q", use_stream=True, on_partial=partials.append, **rec.callbacks()))

    assert outcome.ok
    assert outcome.task_id == "s1"
    assert outcome.response.analysis.query_intent == "Count customers by region"
    assert [v for _, v in rec.of("progress")] == [20, 60]
    assert partials == [{"rows": 3}]
    assert svc.initiate_calls == 0


def test_stream_error_event_fails(clock):
    svc = FakeTaskService(stream_lines=[sse({"type": "error", "error": "model overloaded"})])
    orch = make_orchestrator(svc, clock)

    outcome = asyncio.run(orch.submit("q", use_stream=True))

    assert outcome.status == "failed"
    assert outcome.error_message == "model overloaded"


def test_stream_closed_early_fails(clock):
    svc = FakeTaskService(stream_lines=[sse({"type": "progress", "task_id": "s1", "progress": 5})])
    orch = make_orchestrator(svc, clock)

    outcome = asyncio.run(orch.submit("q", use_stream=True))

    assert outcome.status == "failed"
    assert "Stream ended" in outcome.error_message
