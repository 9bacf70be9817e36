# askboard/services/orchestrator.py
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional

from pydantic import ValidationError as PydanticValidationError

from askboard.core.config import settings
from askboard.core.errors import (
    AskboardError,
    NotFoundError,
    ServerError,
    TaskCancelled,
    TaskFailed,
    TaskTimeout,
    TransportError,
    ValidationError,
)
from askboard.models.response import StructuredResponse
from askboard.models.state import OrchestratorState, StreamEvent, TaskOutcome
from askboard.services.task_client import TaskClient

logger = logging.getLogger("orchestrator")

ProgressCallback = Callable[[float, Optional[str]], None]
PartialCallback = Callable[[Any], None]
CompleteCallback = Callable[[StructuredResponse], None]
ErrorCallback = Callable[[str], None]


class _Aborted(Exception):
    """Raised inside the runner when the request's abort signal fires."""


class _DeadlineExceeded(Exception):
    """Raised inside the runner when the wall-clock deadline passes."""


class PollSchedule:
    """Poll interval that starts small and grows by a factor up to a cap."""

    def __init__(self, initial: float, factor: float, maximum: float):
        self._current = initial
        self.factor = factor
        self.maximum = maximum

    def next(self) -> float:
        value = min(self._current, self.maximum)
        self._current = min(self._current * self.factor, self.maximum)
        return value


@dataclass
class Callbacks:
    on_progress: Optional[ProgressCallback] = None
    on_partial: Optional[PartialCallback] = None
    on_complete: Optional[CompleteCallback] = None
    on_error: Optional[ErrorCallback] = None


@dataclass
class _Request:
    key: str
    deadline: float
    callbacks: Callbacks
    future: asyncio.Future
    abort: asyncio.Event = field(default_factory=asyncio.Event)
    signals: List[asyncio.Event] = field(default_factory=list)
    runner: Optional[asyncio.Task] = None
    task_id: Optional[str] = None
    conversation_id: Optional[str] = None
    message_id: Optional[str] = None
    last_progress: float = 0.0

    def __post_init__(self):
        self.signals.append(self.abort)

    @property
    def aborted(self) -> bool:
        return any(s.is_set() for s in self.signals)

    @property
    def settled(self) -> bool:
        return self.future.done()


_END = object()


async def _anext(iterator):
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return _END


class TaskOrchestrator:
    """
    Owns the lifecycle of one logical chat request at a time.

    ``submit`` drives initiate → (cache hit | poll/stream) and always settles
    with a TaskOutcome whose status is completed, failed, cancelled or
    timed_out. A second submit of the same content while the first is in
    flight awaits the first; different content cancels the first.
    """

    def __init__(
        self,
        client: TaskClient,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
        backoff_factor: Optional[float] = None,
        max_poll_interval: Optional[float] = None,
        max_server_errors: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.timeout = timeout if timeout is not None else settings.TASK_TIMEOUT_SECONDS
        self.poll_interval = poll_interval if poll_interval is not None else settings.POLL_INTERVAL_SECONDS
        self.backoff_factor = backoff_factor if backoff_factor is not None else settings.POLL_BACKOFF_FACTOR
        self.max_poll_interval = (
            max_poll_interval if max_poll_interval is not None else settings.POLL_MAX_INTERVAL_SECONDS
        )
        self.max_server_errors = max_server_errors if max_server_errors is not None else settings.MAX_SERVER_ERRORS
        self._clock = clock
        self._sleep = sleep
        self._active: Optional[_Request] = None
        self.state = OrchestratorState.IDLE

    # -------- public API -------- #

    @property
    def active_task_id(self) -> Optional[str]:
        request = self._active
        if request is None or request.settled:
            return None
        return request.task_id

    @property
    def busy(self) -> bool:
        return self._active is not None and not self._active.settled

    async def submit(
        self,
        query: str,
        conversation_id: Optional[str] = None,
        priority: str = "normal",
        on_progress: Optional[ProgressCallback] = None,
        on_partial: Optional[PartialCallback] = None,
        on_complete: Optional[CompleteCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        use_stream: bool = False,
    ) -> TaskOutcome:
        key = (query or "").strip()
        if not key:
            raise ValidationError()

        current = self._active
        if current is not None and not current.settled:
            if current.key == key:
                logger.info("Duplicate submission while in flight; awaiting task %s", current.task_id)
                return await asyncio.shield(current.future)
            logger.info("New submission supersedes task %s", current.task_id)
            await self._abort(current)

        loop = asyncio.get_running_loop()
        request = _Request(
            key=key,
            deadline=self._clock() + self.timeout,
            callbacks=Callbacks(on_progress, on_partial, on_complete, on_error),
            future=loop.create_future(),
        )
        self._active = request
        self._set_state(request, OrchestratorState.SUBMITTING)
        request.runner = asyncio.ensure_future(self._drive(request, conversation_id, priority, use_stream))

        try:
            return await asyncio.shield(request.future)
        finally:
            if self._active is request and request.settled:
                self._active = None

    async def cancel(self) -> bool:
        """Cancel the active request, if any. Returns True when something was cancelled."""
        request = self._active
        if request is None or request.settled:
            return False
        await self._abort(request)
        return True

    async def cancel_all(self) -> int:
        await self.cancel()
        resp = await self.client.cancel_all()
        return resp.cancelled_count

    async def active_tasks(self):
        return await self.client.list_tasks()

    # -------- runner -------- #

    async def _drive(self, request: _Request, conversation_id: Optional[str], priority: str, use_stream: bool):
        try:
            if use_stream:
                outcome = await self._run_stream(request, conversation_id)
            else:
                outcome = await self._run_poll(request, conversation_id, priority)
            self._settle(request, outcome)
        except _Aborted:
            self._settle(request, self._outcome(request, "cancelled", error=TaskCancelled()))
            if request.abort.is_set():
                # aborted locally; the server still thinks the task is running
                await self._cancel_on_server(request)
        except _DeadlineExceeded:
            logger.warning("Task %s exceeded %.0fs deadline", request.task_id, self.timeout)
            await self._cancel_on_server(request)
            self._settle(request, self._outcome(request, "timed_out", error=TaskTimeout()))
        except AskboardError as e:
            logger.warning("Task %s failed: %s", request.task_id, e.message)
            self._settle(request, self._outcome(request, "failed", error=e))
        except Exception as e:
            logger.exception("Unexpected error while running task %s", request.task_id)
            self._set_state(request, OrchestratorState.FAILED)
            if not request.settled:
                request.future.set_exception(e)
        finally:
            if request.task_id:
                self.client.release_poll(request.task_id)

    async def _run_poll(self, request: _Request, conversation_id: Optional[str], priority: str) -> TaskOutcome:
        initiated = await self._interruptible(
            request, self.client.initiate(request.key, conversation_id, priority)
        )
        if not initiated.success:
            raise TaskFailed(initiated.message or "Failed to initiate chat")

        request.task_id = initiated.task_id
        request.conversation_id = initiated.conversation_id
        request.message_id = initiated.message_id

        if initiated.is_cache_hit:
            logger.info("Cache hit for task %s; skipping poll", initiated.task_id)
            response = self._checked(initiated.cached_response)
            return self._outcome(request, "completed", response=response, cached=True)

        if not initiated.task_id:
            raise ServerError("Server did not return a task id")

        request.signals.append(self.client.register_poll(initiated.task_id))
        self._set_state(request, OrchestratorState.POLLING)

        schedule = PollSchedule(self.poll_interval, self.backoff_factor, self.max_poll_interval)
        server_errors = 0
        polls = 0

        while True:
            if request.aborted:
                raise _Aborted()
            if self._remaining(request) <= 0:
                raise _DeadlineExceeded()

            polls += 1
            status = None
            try:
                status = await self._interruptible(request, self.client.get_status(request.task_id))
                server_errors = 0
            except NotFoundError as e:
                raise NotFoundError(status_code=e.status_code) from e
            except TransportError as e:
                logger.warning("Poll %s for task %s hit a network error: %s", polls, request.task_id, e.message)
            except ServerError as e:
                server_errors += 1
                logger.warning(
                    "Poll %s for task %s hit a server error (%s/%s)",
                    polls, request.task_id, server_errors, self.max_server_errors,
                )
                if server_errors >= self.max_server_errors:
                    raise

            if status is not None:
                request.conversation_id = status.conversation_id or request.conversation_id
                request.message_id = status.message_id or request.message_id
                self._observe_progress(request, status.progress, status.progress_message)

                if status.status == "completed":
                    if status.success:
                        logger.info("Task %s completed after %s polls", request.task_id, polls)
                        response = self._checked(status.structured_response)
                        return self._outcome(request, "completed", response=response)
                    raise TaskFailed(status.failure_message())
                if status.status == "failed":
                    raise TaskFailed(status.failure_message())
                if status.status == "cancelled":
                    logger.info("Task %s was cancelled on the server", request.task_id)
                    raise _Aborted()

            remaining = self._remaining(request)
            if remaining <= 0:
                raise _DeadlineExceeded()
            await self._interruptible(request, self._sleep(min(schedule.next(), remaining)))

    async def _run_stream(self, request: _Request, conversation_id: Optional[str]) -> TaskOutcome:
        events = self.client.stream(request.key, conversation_id)
        interrupted = False
        try:
            while True:
                if request.aborted:
                    raise _Aborted()
                if self._remaining(request) <= 0:
                    raise _DeadlineExceeded()
                try:
                    event = await self._interruptible(request, _anext(events))
                except (_Aborted, _DeadlineExceeded):
                    # the generator is mid-read and is being cancelled
                    interrupted = True
                    raise
                if event is _END:
                    raise TaskFailed("Stream ended before the response was complete")

                if event.task_id and request.task_id is None:
                    request.task_id = event.task_id
                    request.signals.append(self.client.register_poll(event.task_id))
                    self._set_state(request, OrchestratorState.POLLING)

                if event.type == "progress":
                    self._observe_progress(request, event.progress or 0, event.message)
                elif event.type == "partial":
                    self._fire(request.callbacks.on_partial, event.data)
                elif event.type == "complete":
                    return self._outcome(request, "completed", response=self._response_from_event(event))
                elif event.type == "error":
                    raise TaskFailed(event.error or "Streaming error")
        finally:
            if not interrupted:
                await events.aclose()

    # -------- helpers -------- #

    def _remaining(self, request: _Request) -> float:
        return request.deadline - self._clock()

    async def _interruptible(self, request: _Request, aw: Awaitable):
        """
        Await ``aw`` unless the request is aborted or its deadline passes first.
        """
        work = asyncio.ensure_future(aw)
        waiters = [asyncio.ensure_future(s.wait()) for s in request.signals]
        try:
            done, _ = await asyncio.wait(
                [work, *waiters],
                timeout=max(self._remaining(request), 0),
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for w in waiters:
                w.cancel()

        if work in done:
            return work.result()
        work.cancel()
        if request.aborted:
            raise _Aborted()
        raise _DeadlineExceeded()

    def _observe_progress(self, request: _Request, progress: Optional[float], message: Optional[str]) -> None:
        if progress is None or request.settled:
            return
        if progress <= request.last_progress:
            return
        request.last_progress = progress
        self._fire(request.callbacks.on_progress, progress, message)

    @staticmethod
    def _checked(build: Callable[[], StructuredResponse]) -> StructuredResponse:
        try:
            return build()
        except PydanticValidationError as e:
            raise ServerError("Malformed response from server") from e

    @staticmethod
    def _response_from_event(event: StreamEvent) -> StructuredResponse:
        data = event.data
        if isinstance(data, dict) and isinstance(data.get("response"), dict):
            data = data["response"]
        try:
            return StructuredResponse.model_validate(data or {})
        except PydanticValidationError as e:
            raise ServerError("Malformed response from server") from e

    def _outcome(self, request: _Request, status: str, **kwargs) -> TaskOutcome:
        return TaskOutcome(
            status=status,
            task_id=request.task_id,
            conversation_id=request.conversation_id,
            message_id=request.message_id,
            **kwargs,
        )

    def _settle(self, request: _Request, outcome: TaskOutcome) -> None:
        if request.settled:
            return
        request.future.set_result(outcome)
        self._set_state(request, OrchestratorState(outcome.status))

        cb = request.callbacks
        if outcome.status == "completed":
            self._fire(cb.on_complete, outcome.response)
        elif outcome.status in ("failed", "timed_out"):
            self._fire(cb.on_error, outcome.error_message)

    async def _abort(self, request: _Request) -> None:
        request.abort.set()
        self._settle(request, self._outcome(request, "cancelled", error=TaskCancelled()))
        if request.runner is not None:
            await asyncio.wait([request.runner])

    async def _cancel_on_server(self, request: _Request) -> None:
        if not request.task_id:
            logger.info("No task id yet; nothing to cancel on server")
            return
        try:
            await self.client.cancel(request.task_id)
        except AskboardError as e:
            logger.warning("Best-effort cancel of task %s failed: %s", request.task_id, e.message)

    def _set_state(self, request: _Request, state: OrchestratorState) -> None:
        if self._active is request:
            self.state = state

    @staticmethod
    def _fire(callback: Optional[Callable], *args) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("Callback %r raised", callback)
