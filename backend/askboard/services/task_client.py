# askboard/services/task_client.py
import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from askboard.core.config import settings
from askboard.core.errors import (
    NotFoundError,
    ServerError,
    TransportError,
    ValidationError,
    error_from_response,
)
from askboard.models.state import (
    CancelAllResponse,
    CancelResponse,
    InitiateRequest,
    InitiateResponse,
    StreamEvent,
    TaskStatus,
)

logger = logging.getLogger("task_client")

PRIORITIES = ("low", "normal", "high")
TERMINAL_STREAM_EVENTS = ("complete", "error")


def parse_sse_line(line: str) -> Optional[StreamEvent]:
    """
    Decode one ``data: <json>`` line of the chat stream.

    Returns None for anything that is not a well-formed data line
    (comments, ``event:`` fields, blank keep-alives, broken JSON).
    """
    if not line.startswith("data:"):
        return None
    raw = line[len("data:"):].strip()
    if not raw:
        return None
    try:
        return StreamEvent.model_validate(json.loads(raw))
    except (ValueError, PydanticValidationError):
        logger.warning("Failed to parse streaming data: %s", line)
        return None


class TaskClient:
    """
    Transport for the asynchronous chat task service.

    Holds no conversation state. The only local state is the set of abort
    events for task ids that are currently being polled, so ``cancel`` can
    stop a local poll loop as well as the server task.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.API_BASE_URL).rstrip("/")
        self.token = token if token is not None else settings.API_TOKEN
        self.timeout = timeout if timeout is not None else settings.HTTP_TIMEOUT_SECONDS
        self._transport = transport
        self._polls: Dict[str, asyncio.Event] = {}

    # -------- plumbing -------- #

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=self._headers(),
            transport=self._transport,
        )

    async def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        try:
            async with self._client() as client:
                resp = await client.request(method, path, json=payload)
        except httpx.TransportError as e:
            logger.warning("%s %s failed: %s", method, path, e)
            raise TransportError() from e

        if resp.is_error:
            err = error_from_response(resp)
            logger.warning("%s %s -> HTTP %s (%s)", method, path, resp.status_code, err.kind)
            raise err

        try:
            return resp.json()
        except ValueError as e:
            raise ServerError("Malformed response from server", status_code=resp.status_code) from e

    @staticmethod
    def _parse(model, body: Any):
        try:
            return model.model_validate(body)
        except PydanticValidationError as e:
            logger.error("Unexpected %s payload: %s", model.__name__, e)
            raise ServerError("Malformed response from server") from e

    # -------- local polling resources -------- #

    def register_poll(self, task_id: str) -> asyncio.Event:
        event = self._polls.get(task_id)
        if event is None:
            event = asyncio.Event()
            self._polls[task_id] = event
        return event

    def release_poll(self, task_id: str, abort: bool = False) -> None:
        event = self._polls.pop(task_id, None)
        if event is not None and abort:
            event.set()

    def polling_task_ids(self) -> List[str]:
        return list(self._polls.keys())

    # -------- operations -------- #

    async def initiate(
        self,
        query: str,
        conversation_id: Optional[str] = None,
        priority: str = "normal",
    ) -> InitiateResponse:
        query = (query or "").strip()
        if not query:
            raise ValidationError()
        if priority not in PRIORITIES:
            raise ValidationError(f"Unknown priority {priority!r}")

        req = InitiateRequest(query=query, conversation_id=conversation_id, priority=priority)
        logger.info("Initiating chat task (priority=%s, conversation=%s)", priority, conversation_id)
        body = await self._request("POST", "/chat/initiate/", req.model_dump(exclude_none=True))
        resp = self._parse(InitiateResponse, body)
        logger.info("Initiated task %s status=%s cached=%s", resp.task_id, resp.status, resp.cached)
        return resp

    async def get_status(self, task_id: str) -> TaskStatus:
        body = await self._request("GET", f"/chat/response/{task_id}/")
        if isinstance(body, dict) and "task not found" in str(body.get("error") or "").lower():
            raise NotFoundError()
        status = self._parse(TaskStatus, body)
        logger.debug("Task %s status=%s progress=%s", task_id, status.status, status.progress)
        return status

    async def cancel(self, task_id: str) -> CancelResponse:
        self.release_poll(task_id, abort=True)
        logger.info("Cancelling task %s", task_id)
        body = await self._request("POST", f"/chat/cancel/{task_id}/", {})
        return self._parse(CancelResponse, body)

    async def cancel_all(self) -> CancelAllResponse:
        for task_id in self.polling_task_ids():
            self.release_poll(task_id, abort=True)
        body = await self._request("POST", "/chat/cancel-all/", {})
        resp = self._parse(CancelAllResponse, body)
        logger.info("Cancelled %s tasks on server", resp.cancelled_count)
        return resp

    async def list_tasks(self) -> List[TaskStatus]:
        body = await self._request("GET", "/chat/tasks/")
        if isinstance(body, dict):
            body = body.get("tasks") or []
        if not isinstance(body, list):
            raise ServerError("Malformed response from server")
        return [self._parse(TaskStatus, item) for item in body]

    async def stream(self, query: str, conversation_id: Optional[str] = None) -> AsyncIterator[StreamEvent]:
        """
        Server-Sent-Events fast path.

        Yields events until the first ``complete`` or ``error`` event, or until
        the server closes the stream.
        """
        query = (query or "").strip()
        if not query:
            raise ValidationError()

        payload = InitiateRequest(query=query, conversation_id=conversation_id).model_dump(
            exclude_none=True, exclude={"priority"}
        )
        headers = {"Accept": "text/event-stream"}
        try:
            async with self._client() as client:
                async with client.stream("POST", "/chat/stream/", json=payload, headers=headers) as resp:
                    if resp.is_error:
                        await resp.aread()
                        raise error_from_response(resp)
                    async for line in resp.aiter_lines():
                        event = parse_sse_line(line)
                        if event is None:
                            continue
                        yield event
                        if event.type in TERMINAL_STREAM_EVENTS:
                            return
        except httpx.TransportError as e:
            logger.warning("Chat stream failed: %s", e)
            raise TransportError() from e
