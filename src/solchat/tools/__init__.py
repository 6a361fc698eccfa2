"""
Tool registry for SolChat.

A :class:`ToolRegistry` holds the tool declarations in effect for one request.  Each declaration has
a pydantic input model (used both to validate arguments and to describe the tool to the model) and,
optionally, an async executor.  A declaration without an executor is a *deferred* tool: the
orchestrator surfaces its calls to the client and waits for the client to inject the output.
"""

import logging
from dataclasses import (
    dataclass,
    field,
)
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterator,
    List,
    Optional,
    Type,
    TypedDict,
)

from pydantic import BaseModel

logger = logging.getLogger(__name__)

Executor = Callable[[Any], Awaitable[Dict[str, Any]]]
"""Async callable receiving the validated input model and returning a JSON-able dict."""


def default_failure_output(reason: str) -> Dict[str, Any]:
    """Generic failure shape used when a tool does not declare its own."""
    return {"error": reason}


class ToolSchema(TypedDict):
    """
    Schema for a tool as presented to the model.
    """

    name: str
    description: str
    parameters: Dict[str, Any]


@dataclass
class ToolDeclaration:
    """A callable tool as seen by the model."""

    name: str
    description: str
    input_model: Type[BaseModel]
    executor: Optional[Executor] = None
    output_model: Optional[Type[BaseModel]] = None
    failure_output: Callable[[str], Dict[str, Any]] = field(default=default_failure_output)

    @property
    def is_deferred(self) -> bool:
        """Deferred tools have no server-side executor."""
        return self.executor is None

    def schema(self) -> ToolSchema:
        """JSON schema description handed to the planner."""
        parameters = self.input_model.model_json_schema()
        parameters.pop("title", None)
        return {"name": self.name, "description": self.description, "parameters": parameters}


class ToolRegistry:
    """Ordered set of tool declarations, unique by name."""

    def __init__(self) -> None:
        self._tools: Dict[str, ToolDeclaration] = {}

    def declare(
        self,
        name: str,
        description: str,
        input_model: Type[BaseModel],
        executor: Optional[Executor] = None,
        output_model: Optional[Type[BaseModel]] = None,
        failure_output: Optional[Callable[[str], Dict[str, Any]]] = None,
    ) -> ToolDeclaration:
        """
        Declare a tool.

        Parameters
        ----------
        name:
            Unique tool name, matched exactly against the names the model calls.
        description:
            Natural language description for the model.
        input_model:
            Pydantic model validating the tool arguments.
        executor:
            Async function run server-side.  Leave as *None* for deferred tools.
        output_model:
            Optional model validating injected outputs of deferred tools.
        failure_output:
            Builds the tool-specific failure shape from a reason string.

        Raises
        ------
        ValueError
            If a tool with the same name is already declared.
        """
        if name in self._tools:
            raise ValueError(f"Tool '{name}' is already registered.")
        logger.debug("Registering tool '%s' (deferred=%s)", name, executor is None)
        declaration = ToolDeclaration(
            name=name,
            description=description,
            input_model=input_model,
            executor=executor,
            output_model=output_model,
            failure_output=failure_output or default_failure_output,
        )
        self._tools[name] = declaration
        return declaration

    def get(self, name: str) -> Optional[ToolDeclaration]:
        return self._tools.get(name)

    def names(self) -> List[str]:
        return list(self._tools)

    def schemas(self) -> List[ToolSchema]:
        """Schemas of every declared tool, in declaration order."""
        return [tool.schema() for tool in self._tools.values()]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[ToolDeclaration]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)
