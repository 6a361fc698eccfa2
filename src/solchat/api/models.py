"""
Pydantic models for SolChat API requests and responses.
This module defines the request and response schemas used by the SolChat API.
"""

from typing import (
    List,
    Optional,
)

from pydantic import Field

from solchat.core.schema import (
    Message,
    RunState,
    WireModel,
)


# ---------------------------------------------------------------------------
# Pydantic request / response schema
# ---------------------------------------------------------------------------
class ChatRequest(WireModel):
    """One conversation turn: the full prior history plus request context."""

    messages: List[Message] = Field(default_factory=list, description="Prior chat messages")
    wallet_address: Optional[str] = Field(None, description="Connected wallet address, if any")
    network: str = Field("devnet", description="Cluster: devnet or mainnet")
    session_id: Optional[str] = Field(None, description="Session to save the transcript under")


class SessionResponse(WireModel):
    """Response with session information."""

    session_id: str


class SaveSessionRequest(WireModel):
    """Full replacement of a session's messages."""

    messages: List[Message]


class RunSnapshot(WireModel):
    """Current state of an orchestrator run."""

    run_id: str
    network: str
    state: RunState
    steps: int
    pending_tool_call_ids: List[str]
    error: Optional[str] = None
    messages: List[Message]
