"""
Basic sanity tests for the tool executor.

Run with:
$ pytest -q
"""

from typing import (
    Any,
    Dict,
)

import pytest
from pydantic import BaseModel

from solchat.agent.tool_executor import (
    ToolExecutionError,
    execute_tool,
)
from solchat.tools import ToolRegistry


class AddInput(BaseModel):
    a: int
    b: int


# This is a stub tool for testing purposes.
async def _add(args: AddInput) -> Dict[str, Any]:
    """Return the sum of two integers (used only for tests)."""

    return {"sum": args.a + args.b}


async def _explode(_args: AddInput) -> Dict[str, Any]:
    raise RuntimeError("kaboom")


@pytest.fixture
def registry() -> ToolRegistry:
    registry = ToolRegistry()
    registry.declare("add", "Add two integers", AddInput, executor=_add)
    registry.declare("explode", "Always fails", AddInput, executor=_explode)
    registry.declare("confirmLater", "Resolved by the client", AddInput)
    return registry


@pytest.mark.asyncio
async def test_execute_tool_success(registry: ToolRegistry) -> None:
    """Executor should return the correct value when the tool is valid."""

    assert await execute_tool(registry, "add", {"a": 2, "b": 3}) == {"sum": 5}


@pytest.mark.asyncio
async def test_execute_tool_missing(registry: ToolRegistry) -> None:
    """Executor should raise *ToolExecutionError* for an unknown tool."""

    try:
        await execute_tool(registry, "not_a_tool", {})
    except ToolExecutionError as exc:
        assert "not_a_tool" in str(exc)
    else:  # pragma: no cover
        raise AssertionError("ToolExecutionError was not raised")


@pytest.mark.asyncio
async def test_execute_tool_deferred(registry: ToolRegistry) -> None:
    """Deferred tools have no server-side executor."""

    with pytest.raises(ToolExecutionError, match="deferred"):
        await execute_tool(registry, "confirmLater", {"a": 1, "b": 1})


@pytest.mark.asyncio
async def test_execute_tool_bad_args(registry: ToolRegistry) -> None:
    """Wrong arguments come back as a structured error, not an exception."""

    result = await execute_tool(registry, "add", {"a": 2})  # missing 'b'
    assert result["error"].startswith("Invalid arguments for tool 'add'")
    assert "b" in result["error"]


@pytest.mark.asyncio
async def test_execute_tool_executor_error(registry: ToolRegistry) -> None:
    """An executor that raises is reported as an error output."""

    result = await execute_tool(registry, "explode", {"a": 1, "b": 2})
    assert result == {"error": "Tool 'explode' raised an error: kaboom"}


def test_registry_rejects_duplicates(registry: ToolRegistry) -> None:
    with pytest.raises(ValueError, match="already registered"):
        registry.declare("add", "Again", AddInput, executor=_add)


def test_registry_schemas_follow_declaration_order(registry: ToolRegistry) -> None:
    schemas = registry.schemas()
    assert [s["name"] for s in schemas] == ["add", "explode", "confirmLater"]
    assert set(schemas[0]["parameters"]["properties"]) == {"a", "b"}
    assert "title" not in schemas[0]["parameters"]
    assert registry.get("confirmLater").is_deferred
    assert not registry.get("add").is_deferred
