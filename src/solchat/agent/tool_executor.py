"""Dispatches tool calls declared in a ``ToolRegistry`` and wraps errors."""

import logging
from typing import (
    Any,
    Dict,
)

from pydantic import (
    BaseModel,
    ValidationError,
)

from solchat.tools import (
    ToolDeclaration,
    ToolRegistry,
)

logger = logging.getLogger(__name__)


class ToolExecutionError(RuntimeError):
    """Raised when a requested tool is unknown or cannot run server-side."""


class ToolInputError(ValueError):
    """Raised when model-supplied arguments do not match a tool's input model."""


def _describe_validation_error(exc: ValidationError) -> str:
    problems = []
    for err in exc.errors():
        location = ".".join(str(loc) for loc in err.get("loc", ())) or "input"
        problems.append(f"{location}: {err.get('msg')}")
    return "; ".join(problems)


def validate_tool_input(tool: ToolDeclaration, args: Dict[str, Any] | None) -> BaseModel:
    """
    Validate *args* against *tool*'s input model.

    Raises
    ------
    ToolInputError
        With a readable ``location: message`` summary when validation fails.
    """
    try:
        return tool.input_model.model_validate(args if args is not None else {})
    except ValidationError as exc:
        logger.info("Rejected input for tool '%s': %s", tool.name, exc)
        raise ToolInputError(
            f"Invalid arguments for tool '{tool.name}': {_describe_validation_error(exc)}"
        ) from exc


async def execute_tool(
    registry: ToolRegistry, name: str, args: Dict[str, Any] | None = None
) -> Dict[str, Any]:
    """
    Look up *name* in *registry*, validate *args* and run its executor.

    Parameters
    ----------
    registry:
        Tools in effect for the current request.
    name:
        The declared tool name.
    args:
        Raw arguments from the model.  If *None*, an empty dict is assumed.

    Returns
    -------
    dict
        The executor's output, or ``{"error": ...}`` when validation fails or the executor raises.

    Raises
    ------
    ToolExecutionError
        If the tool is not declared or has no executor (deferred tools are resolved by the client).
    """

    if args is None:
        args = {}

    tool = registry.get(name)
    if tool is None:
        raise ToolExecutionError(f"Tool '{name}' is not registered.")
    if tool.executor is None:
        raise ToolExecutionError(f"Tool '{name}' is deferred and has no server-side executor.")

    try:
        validated = validate_tool_input(tool, args)
    except ToolInputError as exc:
        return {"error": str(exc)}

    try:
        logger.debug("Executing tool '%s' with args=%s", name, args)
        return await tool.executor(validated)
    except Exception as exc:  # pylint: disable=broad-except
        logger.exception("Unhandled error in tool '%s'", name)
        return {"error": f"Tool '{name}' raised an error: {exc}"}
