"""Tests for the JSON-RPC client against ``httpx.MockTransport``."""

import base64
import json
from typing import (
    Any,
    Dict,
    List,
)

import httpx
import pytest

from conftest import ADDR_1
from solchat.chain.rpc import (
    RpcError,
    SolanaRpcClient,
)


def _client(responder, requests: List[Dict[str, Any]] | None = None) -> SolanaRpcClient:
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        if requests is not None:
            requests.append(body)
        return responder(body)

    return SolanaRpcClient("http://rpc.test", transport=httpx.MockTransport(handler))


def _result(value: Any) -> httpx.Response:
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": value})


@pytest.mark.asyncio
async def test_get_balance() -> None:
    requests: List[Dict[str, Any]] = []
    rpc = _client(lambda body: _result({"context": {"slot": 1}, "value": 2_500_000_000}), requests)

    assert await rpc.get_balance(ADDR_1) == 2_500_000_000
    assert requests[0]["method"] == "getBalance"
    assert requests[0]["params"][0] == ADDR_1


@pytest.mark.asyncio
async def test_rpc_error_object() -> None:
    rpc = _client(
        lambda body: httpx.Response(
            200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32602, "message": "Invalid param"}}
        )
    )

    with pytest.raises(RpcError, match="Invalid param"):
        await rpc.get_balance(ADDR_1)


@pytest.mark.asyncio
async def test_http_error_status() -> None:
    rpc = _client(lambda body: httpx.Response(429, text="Too Many Requests"))

    with pytest.raises(RpcError, match="429"):
        await rpc.request_airdrop(ADDR_1, 1_000_000_000)


@pytest.mark.asyncio
async def test_transport_failure() -> None:
    def refuse(body: Dict[str, Any]) -> httpx.Response:
        raise httpx.ConnectError("connection refused")

    with pytest.raises(RpcError, match="ConnectError"):
        await _client(refuse).get_latest_blockhash()


@pytest.mark.asyncio
async def test_signatures_for_address() -> None:
    entries = [
        {"signature": "sig1", "slot": 10, "err": None, "blockTime": 1_700_000_000},
        {"signature": "sig2", "slot": 9, "err": {"InstructionError": [0, "Custom"]}, "blockTime": None},
    ]
    requests: List[Dict[str, Any]] = []
    rpc = _client(lambda body: _result(entries), requests)

    signatures = await rpc.get_signatures_for_address(ADDR_1, 2)

    assert [s.signature for s in signatures] == ["sig1", "sig2"]
    assert signatures[1].err is not None
    assert signatures[0].block_time == 1_700_000_000
    assert requests[0]["params"][1]["limit"] == 2


@pytest.mark.asyncio
async def test_send_raw_transaction_is_base64() -> None:
    requests: List[Dict[str, Any]] = []
    rpc = _client(lambda body: _result("txSig"), requests)

    assert await rpc.send_raw_transaction(b"\x01\x02\x03") == "txSig"
    encoded, options = requests[0]["params"]
    assert base64.b64decode(encoded) == b"\x01\x02\x03"
    assert options["encoding"] == "base64"


@pytest.mark.asyncio
async def test_confirm_transaction_polls_until_confirmed() -> None:
    statuses = [None, {"confirmationStatus": "processed", "err": None}, {"confirmationStatus": "confirmed", "err": None}]

    def responder(body: Dict[str, Any]) -> httpx.Response:
        assert body["method"] == "getSignatureStatuses"
        return _result({"context": {"slot": 1}, "value": [statuses.pop(0)]})

    rpc = _client(responder)

    assert await rpc.confirm_transaction("txSig", "confirmed", timeout_s=5, poll_interval_s=0) == "confirmed"
    assert statuses == []


@pytest.mark.asyncio
async def test_confirm_transaction_failed_on_chain() -> None:
    rpc = _client(
        lambda body: _result({"value": [{"confirmationStatus": "confirmed", "err": {"InsufficientFundsForRent": {}}}]})
    )

    with pytest.raises(RpcError, match="failed"):
        await rpc.confirm_transaction("txSig", poll_interval_s=0)


@pytest.mark.asyncio
async def test_confirm_transaction_times_out() -> None:
    rpc = _client(lambda body: _result({"value": [None]}))

    with pytest.raises(RpcError, match="timed out"):
        await rpc.confirm_transaction("txSig", timeout_s=0, poll_interval_s=0)
