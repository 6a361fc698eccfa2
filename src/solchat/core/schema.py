"""
Schema definitions for client <-> orchestrator <-> tool messages.

These data models serve as the contract between the chat model, the orchestration loop, the
streaming transport and the session store.  We keep them separate from runtime logic so they can be
imported anywhere without side-effects.  On the wire every field is camelCase.
"""

import time
import uuid
from enum import Enum
from typing import (
    Annotated,
    Any,
    Dict,
    List,
    Literal,
    Optional,
    Union,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
)
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base model: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        """JSON-safe dict using wire (camelCase) names."""
        return self.model_dump(mode="json", by_alias=True)


def new_id() -> str:
    """Opaque identifier for messages, runs and tool calls."""
    return uuid.uuid4().hex


def now_ms() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


# ---------------------------------------------------------------------------
# Message parts
# ---------------------------------------------------------------------------
class ToolCallState(str, Enum):
    """Lifecycle of a tool-call part.  Transitions only move forward."""

    PENDING_INPUT = "pending-input"
    INVOKED = "invoked"
    FULFILLED = "fulfilled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ToolCallState.FULFILLED, ToolCallState.FAILED)


_STATE_RANK = {
    ToolCallState.PENDING_INPUT: 0,
    ToolCallState.INVOKED: 1,
    ToolCallState.FULFILLED: 2,
    ToolCallState.FAILED: 2,
}


def is_failure_output(output: Any) -> bool:
    """True when a tool output describes a failure rather than a result."""
    if not isinstance(output, dict):
        return False
    return (
        output.get("error") is not None
        or output.get("success") is False
        or output.get("confirmed") is False
    )


class TextPart(WireModel):
    """Plain text content."""

    type: Literal["text"] = "text"
    text: str = ""


class ToolCallPart(WireModel):
    """A tool invocation requested by the model, with its result once known."""

    type: Literal["tool-call"] = "tool-call"
    tool_call_id: str
    tool_name: str
    input: Dict[str, Any] = Field(default_factory=dict)
    state: ToolCallState = ToolCallState.INVOKED
    output: Any = None

    def transition(self, state: ToolCallState) -> None:
        """Move to *state*; raises ``ValueError`` on a backward or sideways move."""
        if state == self.state:
            return
        if self.state.is_terminal or _STATE_RANK[state] < _STATE_RANK[self.state]:
            raise ValueError(
                f"Tool call '{self.tool_call_id}' cannot move from {self.state.value} "
                f"to {state.value}"
            )
        self.state = state

    def resolve(self, output: Any) -> bool:
        """
        Attach *output* and move to the matching terminal state.

        Returns ``False`` (and changes nothing) if the call already has a result.
        """
        if self.state.is_terminal:
            return False
        self.transition(ToolCallState.FAILED if is_failure_output(output) else ToolCallState.FULFILLED)
        self.output = output
        return True


Part = Annotated[Union[TextPart, ToolCallPart], Field(discriminator="type")]


class Message(WireModel):
    """One chat message made of ordered parts."""

    id: str = Field(default_factory=new_id)
    role: Literal["user", "assistant"]
    parts: List[Part] = Field(default_factory=list)

    @classmethod
    def user(cls, text: str) -> "Message":
        """Convenience constructor for a user text message."""
        return cls(role="user", parts=[TextPart(text=text)])

    @property
    def text(self) -> str:
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))

    def append_text(self, delta: str) -> None:
        """Extend the trailing text part, or open a new one."""
        if self.parts and isinstance(self.parts[-1], TextPart):
            self.parts[-1].text += delta
        else:
            self.parts.append(TextPart(text=delta))

    def tool_calls(self) -> List[ToolCallPart]:
        return [p for p in self.parts if isinstance(p, ToolCallPart)]


def find_tool_call(messages: List[Message], tool_call_id: str) -> Optional[ToolCallPart]:
    """Locate a tool-call part by id anywhere in *messages*."""
    for message in messages:
        for part in message.tool_calls():
            if part.tool_call_id == tool_call_id:
                return part
    return None


# ---------------------------------------------------------------------------
# Sessions & injections
# ---------------------------------------------------------------------------
class Session(WireModel):
    """A persisted chat thread."""

    id: str
    title: str = "New chat"
    messages: List[Message] = Field(default_factory=list)
    updated_at: int = Field(default_factory=now_ms)


class ToolOutputInjection(WireModel):
    """Result of a deferred tool call, supplied by the client."""

    tool_name: str
    tool_call_id: str
    output: Any = None


# ---------------------------------------------------------------------------
# Orchestrator runs & stream events
# ---------------------------------------------------------------------------
class RunState(str, Enum):
    """Workflow state of an orchestrator run."""

    AWAITING_MODEL = "awaiting-model"
    AWAITING_EXTERNAL_INPUT = "awaiting-external-input"
    DONE = "done"
    STOPPED_BY_BUDGET = "stopped-by-budget"
    FAILED = "failed"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self not in (RunState.AWAITING_MODEL, RunState.AWAITING_EXTERNAL_INPUT)


class RunStartedEvent(WireModel):
    type: Literal["run-started"] = "run-started"
    run_id: str


class MessageStartEvent(WireModel):
    type: Literal["message-start"] = "message-start"
    message_id: str
    role: Literal["user", "assistant"] = "assistant"


class TextDeltaEvent(WireModel):
    type: Literal["text-delta"] = "text-delta"
    message_id: str
    delta: str


class ToolCallStartedEvent(WireModel):
    type: Literal["tool-call-started"] = "tool-call-started"
    message_id: str
    tool_call_id: str
    tool_name: str
    input: Dict[str, Any] = Field(default_factory=dict)


class ToolCallResultEvent(WireModel):
    type: Literal["tool-call-result"] = "tool-call-result"
    tool_call_id: str
    output: Any = None
    state: ToolCallState


class RunStateEvent(WireModel):
    """Closes every stream segment."""

    type: Literal["run-state"] = "run-state"
    run_id: str
    state: RunState
    steps: int = 0
    pending_tool_call_ids: List[str] = Field(default_factory=list)
    error: Optional[str] = None


StreamEvent = Annotated[
    Union[
        RunStartedEvent,
        MessageStartEvent,
        TextDeltaEvent,
        ToolCallStartedEvent,
        ToolCallResultEvent,
        RunStateEvent,
    ],
    Field(discriminator="type"),
]

_EVENT_ADAPTER: TypeAdapter = TypeAdapter(StreamEvent)


def parse_event(data: Dict[str, Any]) -> Any:
    """Validate a wire dict into the matching stream event model."""
    return _EVENT_ADAPTER.validate_python(data)
