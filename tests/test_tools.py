"""Tests for the Solana tool declarations and the network-dependent prompt."""

import pytest

from conftest import (
    ADDR_1,
    FakeRpc,
)
from solchat.agent.prompts import build_system_prompt
from solchat.agent.tool_executor import (
    ToolExecutionError,
    execute_tool,
)
from solchat.chain.rpc import SignatureInfo
from solchat.core.network import (
    NetworkProfile,
    get_network_profile,
    normalize_network,
)
from solchat.tools.solana_tools import build_registry

DEVNET = NetworkProfile(name="devnet", rpc_url="http://devnet.test")
MAINNET = NetworkProfile(name="mainnet", rpc_url="http://mainnet.test")

SIGNATURES = [
    SignatureInfo(signature="A" * 88, slot=300, err=None, block_time=1_700_000_000),
    SignatureInfo(signature="B" * 88, slot=200, err={"InstructionError": [0, "Custom"]}, block_time=None),
    SignatureInfo(signature="C" * 88, slot=100, err=None, block_time=1_600_000_000),
    SignatureInfo(signature="D" * 88, slot=50, err=None, block_time=1_500_000_000),
]


@pytest.mark.asyncio
async def test_get_balance(fake_rpc: FakeRpc) -> None:
    registry = build_registry(DEVNET, fake_rpc)

    result = await execute_tool(registry, "getBalance", {"address": ADDR_1})

    assert result == {
        "address": ADDR_1,
        "balance": 2.5,
        "lamports": 2_500_000_000,
        "cluster": "devnet",
    }


@pytest.mark.asyncio
async def test_get_balance_invalid_address_skips_rpc(fake_rpc: FakeRpc) -> None:
    registry = build_registry(DEVNET, fake_rpc)

    result = await execute_tool(registry, "getBalance", {"address": "not-an-address"})

    assert result == {"error": "Invalid address or failed to fetch balance"}
    assert fake_rpc.balance_calls == []


@pytest.mark.asyncio
async def test_get_balance_rpc_failure() -> None:
    registry = build_registry(DEVNET, FakeRpc(fail=True))

    result = await execute_tool(registry, "getBalance", {"address": ADDR_1})

    assert result == {"error": "Invalid address or failed to fetch balance"}


@pytest.mark.asyncio
async def test_airdrop_out_of_range_is_rejected(fake_rpc: FakeRpc) -> None:
    registry = build_registry(DEVNET, fake_rpc)

    result = await execute_tool(registry, "requestAirdrop", {"address": ADDR_1, "amount": 5})

    assert result["error"].startswith("Invalid arguments for tool 'requestAirdrop'")
    assert "signature" not in result
    assert fake_rpc.airdrop_calls == []


@pytest.mark.asyncio
async def test_airdrop_success(fake_rpc: FakeRpc) -> None:
    registry = build_registry(DEVNET, fake_rpc)

    result = await execute_tool(registry, "requestAirdrop", {"address": ADDR_1, "amount": 1.5})

    assert result == {
        "success": True,
        "signature": "airdropSig111",
        "amount": 1.5,
        "address": ADDR_1,
        "explorerUrl": "https://explorer.solana.com/tx/airdropSig111?cluster=devnet",
    }
    assert fake_rpc.airdrop_calls == [(ADDR_1, 1_500_000_000)]
    assert fake_rpc.confirm_calls == ["airdropSig111"]


@pytest.mark.asyncio
async def test_airdrop_faucet_failure() -> None:
    registry = build_registry(DEVNET, FakeRpc(fail=True))

    result = await execute_tool(registry, "requestAirdrop", {"address": ADDR_1, "amount": 1})

    assert result == {
        "success": False,
        "error": "Airdrop failed. Devnet faucet may be rate-limited, try again later.",
    }


@pytest.mark.asyncio
async def test_history_keeps_node_order_and_limit() -> None:
    rpc = FakeRpc(signatures=SIGNATURES)
    registry = build_registry(DEVNET, rpc)

    result = await execute_tool(registry, "getTransactionHistory", {"address": ADDR_1, "limit": 3})

    transactions = result["transactions"]
    assert rpc.history_calls == [(ADDR_1, 3)]
    assert [t["fullSignature"] for t in transactions] == ["A" * 88, "B" * 88, "C" * 88]
    assert transactions[0]["signature"] == "A" * 20 + "..."
    assert transactions[0]["blockTime"] == "2023-11-14T22:13:20.000Z"
    assert transactions[1]["blockTime"] is None
    assert [t["err"] for t in transactions] == ["Success", "Failed", "Success"]
    assert all(t["explorerUrl"].endswith("?cluster=devnet") for t in transactions)


@pytest.mark.asyncio
async def test_history_mainnet_links_have_no_cluster_param() -> None:
    registry = build_registry(MAINNET, FakeRpc(signatures=SIGNATURES))

    result = await execute_tool(registry, "getTransactionHistory", {"address": ADDR_1, "limit": 1})

    assert result["transactions"][0]["explorerUrl"] == f"https://explorer.solana.com/tx/{'A' * 88}"


@pytest.mark.asyncio
async def test_history_limit_bounds(fake_rpc: FakeRpc) -> None:
    registry = build_registry(DEVNET, fake_rpc)

    result = await execute_tool(registry, "getTransactionHistory", {"address": ADDR_1, "limit": 11})

    assert "Invalid arguments" in result["error"]
    assert fake_rpc.history_calls == []


@pytest.mark.asyncio
async def test_history_rpc_failure() -> None:
    registry = build_registry(DEVNET, FakeRpc(fail=True))

    result = await execute_tool(registry, "getTransactionHistory", {"address": ADDR_1, "limit": 2})

    assert result == {"error": "Failed to fetch transaction history"}


@pytest.mark.asyncio
async def test_send_transaction_is_deferred(fake_rpc: FakeRpc) -> None:
    registry = build_registry(MAINNET, fake_rpc)

    assert registry.get("sendTransaction").is_deferred
    with pytest.raises(ToolExecutionError):
        await execute_tool(registry, "sendTransaction", {"recipientAddress": ADDR_1, "amount": 1})


def test_airdrop_only_on_devnet(fake_rpc: FakeRpc) -> None:
    assert "requestAirdrop" in build_registry(DEVNET, fake_rpc)
    mainnet = build_registry(MAINNET, fake_rpc)
    assert "requestAirdrop" not in mainnet
    assert mainnet.names() == ["getBalance", "sendTransaction", "getTransactionHistory"]


def test_prompt_matches_available_tools() -> None:
    devnet_prompt = build_system_prompt(DEVNET, ADDR_1)
    mainnet_prompt = build_system_prompt(MAINNET, None)

    assert "call requestAirdrop" in devnet_prompt
    assert ADDR_1 in devnet_prompt
    assert "NOT available on mainnet" in mainnet_prompt
    assert "call requestAirdrop" not in mainnet_prompt
    assert "Not connected" in mainnet_prompt


def test_unknown_network_falls_back_to_devnet() -> None:
    assert normalize_network("testnet") == "devnet"
    assert normalize_network("MAINNET") == "mainnet"
    assert get_network_profile("bogus").name == "devnet"
    assert MAINNET.explorer_url("sig") == "https://explorer.solana.com/tx/sig"
    assert DEVNET.explorer_url("sig") == "https://explorer.solana.com/tx/sig?cluster=devnet"
