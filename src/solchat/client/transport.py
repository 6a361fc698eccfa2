"""
Client side of the event stream.

:class:`ChatApiClient` talks to the API with ``httpx`` and yields parsed stream events;
:class:`MessageAssembler` folds those events into ``Message`` objects.  Events are applied one at a
time, so a stream cut off halfway still leaves a well-formed (if shorter) transcript.
"""

import json
import logging
from typing import (
    Any,
    AsyncIterator,
    Dict,
    Iterable,
    List,
    Optional,
)

import httpx

from solchat.config import settings
from solchat.core.schema import (
    Message,
    MessageStartEvent,
    RunStartedEvent,
    RunStateEvent,
    TextDeltaEvent,
    ToolCallPart,
    ToolCallResultEvent,
    ToolCallStartedEvent,
    ToolOutputInjection,
    find_tool_call,
    parse_event,
)

logger = logging.getLogger(__name__)


class ApiError(RuntimeError):
    """The API rejected a request or could not be reached."""


def iter_sse_events(lines: Iterable[str]) -> Iterable[Any]:
    """Parse ``data:`` frames from already split lines into event models."""
    for line in lines:
        event = _parse_sse_line(line)
        if event is not None:
            yield event


def _parse_sse_line(line: str) -> Any:
    line = line.strip()
    if not line.startswith("data:"):
        return None
    payload = line[len("data:") :].strip()
    if not payload:
        return None
    try:
        return parse_event(json.loads(payload))
    except ValueError as exc:
        logger.warning("Skipping malformed stream frame: %s (%s)", payload, exc)
        return None


class MessageAssembler:
    """Rebuilds the message list from stream events."""

    def __init__(self, messages: Optional[List[Message]] = None) -> None:
        self.messages: List[Message] = list(messages or [])
        self.run_id: Optional[str] = None
        self.last_state: Optional[RunStateEvent] = None

    def _message(self, message_id: str) -> Message:
        for message in reversed(self.messages):
            if message.id == message_id:
                return message
        # The stream started mid-message; open it so deltas are not lost
        message = Message(id=message_id, role="assistant")
        self.messages.append(message)
        return message

    def apply(self, event: Any) -> Optional[ToolCallPart]:
        """
        Fold one event into :attr:`messages`.

        Returns the affected tool-call part for tool events, otherwise *None*.
        """
        if isinstance(event, RunStartedEvent):
            self.run_id = event.run_id
        elif isinstance(event, MessageStartEvent):
            self._message(event.message_id)
        elif isinstance(event, TextDeltaEvent):
            self._message(event.message_id).append_text(event.delta)
        elif isinstance(event, ToolCallStartedEvent):
            existing = find_tool_call(self.messages, event.tool_call_id)
            if existing is not None:
                return existing
            part = ToolCallPart(
                tool_call_id=event.tool_call_id, tool_name=event.tool_name, input=event.input
            )
            self._message(event.message_id).parts.append(part)
            return part
        elif isinstance(event, ToolCallResultEvent):
            part = find_tool_call(self.messages, event.tool_call_id)
            if part is None:
                logger.warning("Result for unknown tool call %s", event.tool_call_id)
                return None
            part.resolve(event.output)
            return part
        elif isinstance(event, RunStateEvent):
            self.run_id = event.run_id
            self.last_state = event
        return None

    def pending_deferred_calls(self) -> List[ToolCallPart]:
        """Tool calls the server is waiting on, per the last ``run-state`` event."""
        if self.last_state is None:
            return []
        pending = []
        for call_id in self.last_state.pending_tool_call_ids:
            part = find_tool_call(self.messages, call_id)
            if part is not None and not part.state.is_terminal:
                pending.append(part)
        return pending


class ChatApiClient:
    """Async HTTP client for the SolChat API."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout_s: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url or f"http://{settings.API_HOST}:{settings.API_PORT}"
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout_s, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "ChatApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def _stream(self, path: str, body: Dict[str, Any]) -> AsyncIterator[Any]:
        try:
            async with self._client.stream("POST", path, json=body) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise ApiError(_error_detail(response))
                async for line in response.aiter_lines():
                    event = _parse_sse_line(line)
                    if event is not None:
                        yield event
        except httpx.HTTPError as exc:
            raise ApiError(f"Error connecting to API: {exc}") from exc

    def chat(
        self,
        messages: List[Message],
        network: str,
        wallet_address: Optional[str],
        session_id: Optional[str] = None,
    ) -> AsyncIterator[Any]:
        """Start a turn and stream its events."""
        body = {
            "messages": [m.to_wire() for m in messages],
            "walletAddress": wallet_address,
            "network": network,
            "sessionId": session_id,
        }
        return self._stream("/chat", body)

    def inject(self, run_id: str, injection: ToolOutputInjection) -> AsyncIterator[Any]:
        """Send a deferred tool output and stream the continuation."""
        return self._stream(f"/runs/{run_id}/tool-output", injection.to_wire())

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise ApiError(f"Error connecting to API: {exc}") from exc
        if response.status_code >= 400:
            raise ApiError(_error_detail(response))
        return response

    async def create_session(self) -> str:
        response = await self._request("POST", "/sessions")
        return str(response.json()["sessionId"])

    async def list_sessions(self) -> List[Dict[str, Any]]:
        response = await self._request("GET", "/sessions")
        return list(response.json())

    async def get_session(self, session_id: str) -> Dict[str, Any]:
        response = await self._request("GET", f"/sessions/{session_id}")
        return dict(response.json())

    async def delete_session(self, session_id: str) -> None:
        await self._request("DELETE", f"/sessions/{session_id}")


def _error_detail(response: httpx.Response) -> str:
    try:
        detail = response.json().get("detail")
    except ValueError:
        detail = None
    return f"API error {response.status_code}: {detail or response.text}"
