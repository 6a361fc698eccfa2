"""
Planner interface for SolChat.

This module is the only place that *directly* calls an LLM.  Everything else (orchestrator, tools,
session store) stays model-agnostic.

A planner performs exactly one model step: given the system prompt, the conversation so far and the
declared tools, it streams text chunks and then yields the complete tool calls the model requested
(if any).  The orchestrator decides what to do with them.

We support two back-ends out of the box:

1. **Anthropic** via the native tool-use API.
2. **OpenAI-compatible** chat completions (OpenAI, Groq, ...) via function calling.

Additional providers can be added by subclassing :class:`BasePlanner` and registering via
:func:`register_planner`.
"""

import json
import logging
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Any,
    AsyncIterator,
    Callable,
    Dict,
    List,
    Sequence,
    Type,
    Union,
)

from pydantic import (
    BaseModel,
    Field,
)

from solchat.config import settings
from solchat.core.schema import (
    Message,
    TextPart,
    ToolCallPart,
    ToolCallState,
    new_id,
)
from solchat.tools import ToolSchema

logger = logging.getLogger(__name__)


class PlannerError(RuntimeError):
    """Raised when the model provider cannot produce a step."""


# ---------------------------------------------------------------------------
# Planner output
# ---------------------------------------------------------------------------
class TextChunk(BaseModel):
    """A piece of assistant text, streamed as it arrives."""

    text: str


class ToolCallRequest(BaseModel):
    """A call that the model wants the orchestrator to execute."""

    id: str = Field(default_factory=new_id)
    name: str = Field(..., description="Declared tool name")
    input: Dict[str, Any] = Field(default_factory=dict, description="Arguments for the tool")


PlannerChunk = Union[TextChunk, ToolCallRequest]


# ---------------------------------------------------------------------------
# Registry helpers
# ---------------------------------------------------------------------------
_PLANNER_REGISTRY: dict[str, Type["BasePlanner"]] = {}


def register_planner(name: str) -> Callable:
    """Decorator to register a planner class under *name*."""

    def wrapper(cls: Type["BasePlanner"]) -> Type["BasePlanner"]:
        _PLANNER_REGISTRY[name] = cls
        return cls

    return wrapper


def load_planner(name: str | None = None) -> "BasePlanner":
    """
    Factory that returns an instantiated planner.

    Fallback order:
    1. *name* arg
    2. ``settings.PLANNER`` env option
    3. default: ``"anthropic"``
    """

    target = name or getattr(settings, "PLANNER", "anthropic")
    cls = _PLANNER_REGISTRY.get(target.lower())
    if cls is None:
        raise ValueError(f"Planner '{target}' is not registered.")
    return cls()


def _output_for_model(part: ToolCallPart) -> Any:
    if part.state.is_terminal:
        return part.output
    return {"error": "Tool call was not completed"}


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------
class BasePlanner(ABC):
    """Abstract planner that turns conversation context into text and tool calls."""

    @abstractmethod
    def step(
        self,
        system_prompt: str,
        messages: Sequence[Message],
        tools: Sequence[ToolSchema],
    ) -> AsyncIterator[PlannerChunk]:
        """
        Run one model step.

        Yields :class:`TextChunk` objects while the model writes, followed by one
        :class:`ToolCallRequest` per requested call, in the order the model issued them.

        Raises
        ------
        PlannerError
            If the provider fails.
        """


# ---------------------------------------------------------------------------
# Concrete planners
# ---------------------------------------------------------------------------
@register_planner("anthropic")
class AnthropicPlanner(BasePlanner):
    """Anthropic Claude-based planner with native tool use."""

    def __init__(self, client: Any = None) -> None:
        if client is None:
            import anthropic  # pylint: disable=import-outside-toplevel

            client = anthropic.AsyncAnthropic(api_key=settings.ANTHROPIC_API_KEY)
        self._client = client

    @staticmethod
    def convert_messages(messages: Sequence[Message]) -> List[Dict[str, Any]]:
        """Map chat messages onto Anthropic's content-block format."""
        converted: List[Dict[str, Any]] = []
        for message in messages:
            if message.role == "user":
                converted.append(
                    {"role": "user", "content": [{"type": "text", "text": message.text or " "}]}
                )
                continue

            content: List[Dict[str, Any]] = []
            results: List[Dict[str, Any]] = []
            for part in message.parts:
                if isinstance(part, TextPart):
                    if part.text:
                        content.append({"type": "text", "text": part.text})
                elif isinstance(part, ToolCallPart):
                    content.append(
                        {
                            "type": "tool_use",
                            "id": part.tool_call_id,
                            "name": part.tool_name,
                            "input": part.input,
                        }
                    )
                    results.append(
                        {
                            "type": "tool_result",
                            "tool_use_id": part.tool_call_id,
                            "content": json.dumps(_output_for_model(part)),
                            "is_error": part.state != ToolCallState.FULFILLED,
                        }
                    )
            if not content:
                continue
            converted.append({"role": "assistant", "content": content})
            if results:
                converted.append({"role": "user", "content": results})
        return converted

    async def step(
        self,
        system_prompt: str,
        messages: Sequence[Message],
        tools: Sequence[ToolSchema],
    ) -> AsyncIterator[PlannerChunk]:
        import anthropic  # pylint: disable=import-outside-toplevel

        params: Dict[str, Any] = {
            "model": settings.ANTHROPIC_MODEL,
            "max_tokens": settings.MAX_TOKENS,
            "system": system_prompt,
            "messages": self.convert_messages(messages),
            "temperature": 0.2,
        }
        if tools:
            params["tools"] = [
                {"name": t["name"], "description": t["description"], "input_schema": t["parameters"]}
                for t in tools
            ]

        try:
            async with self._client.messages.stream(**params) as stream:
                async for text in stream.text_stream:
                    yield TextChunk(text=text)
                final = await stream.get_final_message()
        except anthropic.APIError as exc:
            logger.error("Anthropic planner error: %s", exc)
            raise PlannerError(f"Error calling Anthropic: {exc}") from exc

        for block in final.content:
            if block.type == "tool_use":
                yield ToolCallRequest(id=block.id, name=block.name, input=dict(block.input or {}))


@register_planner("openai")
class OpenAIPlanner(BasePlanner):
    """OpenAI-compatible planner using streamed function calling."""

    def __init__(self, client: Any = None) -> None:
        if client is None:
            import openai  # pylint: disable=import-outside-toplevel

            client = openai.AsyncOpenAI(
                api_key=settings.OPENAI_API_KEY, base_url=settings.OPENAI_BASE_URL
            )
        self._client = client

    @staticmethod
    def convert_messages(messages: Sequence[Message]) -> List[Dict[str, Any]]:
        """Map chat messages onto the chat-completions format."""
        converted: List[Dict[str, Any]] = []
        for message in messages:
            if message.role == "user":
                converted.append({"role": "user", "content": message.text})
                continue

            calls = message.tool_calls()
            entry: Dict[str, Any] = {"role": "assistant", "content": message.text or None}
            if calls:
                entry["tool_calls"] = [
                    {
                        "id": part.tool_call_id,
                        "type": "function",
                        "function": {"name": part.tool_name, "arguments": json.dumps(part.input)},
                    }
                    for part in calls
                ]
            elif not message.text:
                continue
            converted.append(entry)
            for part in calls:
                converted.append(
                    {
                        "role": "tool",
                        "tool_call_id": part.tool_call_id,
                        "content": json.dumps(_output_for_model(part)),
                    }
                )
        return converted

    async def step(
        self,
        system_prompt: str,
        messages: Sequence[Message],
        tools: Sequence[ToolSchema],
    ) -> AsyncIterator[PlannerChunk]:
        import openai  # pylint: disable=import-outside-toplevel

        params: Dict[str, Any] = {
            "model": settings.OPENAI_MODEL,
            "messages": [{"role": "system", "content": system_prompt}]
            + self.convert_messages(messages),
            "temperature": 0.2,
            "max_tokens": settings.MAX_TOKENS,
            "stream": True,
        }
        if tools:
            params["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t["name"],
                        "description": t["description"],
                        "parameters": t["parameters"],
                    },
                }
                for t in tools
            ]

        # Tool calls arrive as fragments keyed by index
        pending: Dict[int, Dict[str, str]] = {}
        try:
            stream = await self._client.chat.completions.create(**params)
            async for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                if delta.content:
                    yield TextChunk(text=delta.content)
                for fragment in delta.tool_calls or []:
                    slot = pending.setdefault(fragment.index, {"id": "", "name": "", "arguments": ""})
                    if fragment.id:
                        slot["id"] = fragment.id
                    if fragment.function is not None:
                        slot["name"] += fragment.function.name or ""
                        slot["arguments"] += fragment.function.arguments or ""
        except openai.OpenAIError as exc:
            logger.error("OpenAI planner error: %s", exc)
            raise PlannerError(f"Error calling OpenAI: {exc}") from exc

        for index in sorted(pending):
            slot = pending[index]
            try:
                arguments = json.loads(slot["arguments"] or "{}")
            except json.JSONDecodeError:
                logger.warning("Unparseable arguments for tool '%s': %s", slot["name"], slot["arguments"])
                arguments = {}
            if not isinstance(arguments, dict):
                arguments = {}
            yield ToolCallRequest(id=slot["id"] or new_id(), name=slot["name"], input=arguments)
