"""
Shared fixtures: deterministic addresses, an in-memory RPC stand-in and a scripted planner.
"""

import asyncio
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Optional,
    Sequence,
    Union,
)

import pytest

from solchat.agent.orchestrator import Orchestrator
from solchat.agent.planner_interface import (
    BasePlanner,
    TextChunk,
)
from solchat.chain.rpc import (
    RpcError,
    SignatureInfo,
)
from solchat.chain.transaction import (
    base58_encode,
    transaction_signature,
)
from solchat.core.schema import Message


def make_address(seed: int) -> str:
    """Valid base58 public key made of one repeated byte."""
    return base58_encode(bytes([seed]) * 32)


ADDR_1 = make_address(1)
ADDR_2 = make_address(2)
BLOCKHASH = make_address(7)


class FakeRpc:
    """Records calls and answers from canned data, like a tiny cluster."""

    def __init__(
        self,
        balances: Optional[Dict[str, int]] = None,
        signatures: Optional[List[SignatureInfo]] = None,
        fail: bool = False,
        delays: Optional[Dict[str, float]] = None,
    ) -> None:
        self.balances = balances or {}
        self.signatures = signatures or []
        self.fail = fail
        self.delays = delays or {}
        self.balance_calls: List[str] = []
        self.history_calls: List[tuple] = []
        self.airdrop_calls: List[tuple] = []
        self.confirm_calls: List[str] = []
        self.sent: List[bytes] = []

    def _check(self, method: str) -> None:
        if self.fail:
            raise RpcError(f"{method}: RPC error: node unavailable")

    async def get_balance(self, address: str) -> int:
        self.balance_calls.append(address)
        await asyncio.sleep(self.delays.get(address, 0))
        self._check("getBalance")
        return self.balances.get(address, 0)

    async def get_signatures_for_address(self, address: str, limit: int) -> List[SignatureInfo]:
        self.history_calls.append((address, limit))
        self._check("getSignaturesForAddress")
        return self.signatures[:limit]

    async def request_airdrop(self, address: str, lamports: int) -> str:
        self.airdrop_calls.append((address, lamports))
        self._check("requestAirdrop")
        return "airdropSig111"

    async def get_latest_blockhash(self) -> str:
        self._check("getLatestBlockhash")
        return BLOCKHASH

    async def send_raw_transaction(self, transaction: bytes) -> str:
        self._check("sendTransaction")
        self.sent.append(transaction)
        return transaction_signature(transaction)

    async def confirm_transaction(self, signature: str, commitment: str | None = None) -> str:
        self.confirm_calls.append(signature)
        return commitment or "confirmed"


Script = Union[Sequence[Any], Callable[[Sequence[Message]], Sequence[Any]]]


class ScriptedPlanner(BasePlanner):
    """Plays back one script per step; exceptions in a script are raised mid-stream."""

    def __init__(self, *steps: Script) -> None:
        self.steps = list(steps)
        self.calls: List[Dict[str, Any]] = []

    async def step(self, system_prompt, messages, tools):  # type: ignore[override]
        self.calls.append(
            {
                "system_prompt": system_prompt,
                "messages": [m.model_copy(deep=True) for m in messages],
                "tools": [t["name"] for t in tools],
            }
        )
        script = self.steps.pop(0) if self.steps else [TextChunk(text="Done.")]
        if callable(script):
            script = script(messages)
        for chunk in script:
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk


async def collect(events) -> List[Any]:
    return [event async for event in events]


@pytest.fixture
def fake_rpc() -> FakeRpc:
    return FakeRpc(balances={ADDR_1: 2_500_000_000, ADDR_2: 1_000_000_000})


@pytest.fixture
def make_orchestrator(fake_rpc: FakeRpc):
    """Factory for orchestrators wired to *fake_rpc*."""

    def factory(planner: BasePlanner, **kwargs: Any) -> Orchestrator:
        return Orchestrator(planner=planner, rpc_factory=lambda _url: fake_rpc, **kwargs)

    return factory
