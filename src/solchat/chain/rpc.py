"""
Async Solana JSON-RPC client.

Only the handful of calls the chat tools and the transfer flow need are implemented.  Each call
opens its own short-lived ``httpx.AsyncClient`` with a timeout; there is no retry.  Every failure
(transport error, HTTP status, JSON-RPC error object, malformed payload) surfaces as
:class:`RpcError` so callers have a single exception to convert into a structured tool output.
"""

import asyncio
import base64
import logging
import time
from dataclasses import dataclass
from typing import (
    Any,
    Dict,
    List,
    Optional,
)

import httpx

from solchat.config import settings

logger = logging.getLogger(__name__)

_COMMITMENT_RANK = {"processed": 0, "confirmed": 1, "finalized": 2}


class RpcError(RuntimeError):
    """Raised when a Solana RPC call fails for any reason."""


@dataclass
class SignatureInfo:
    """One entry of ``getSignaturesForAddress``."""

    signature: str
    slot: int
    err: Any = None
    block_time: Optional[int] = None


class SolanaRpcClient:
    """
    Minimal JSON-RPC client for a single cluster endpoint.

    Usage:
        rpc = SolanaRpcClient("https://api.devnet.solana.com")
        lamports = await rpc.get_balance(address)
    """

    def __init__(
        self,
        rpc_url: str,
        timeout_s: float | None = None,
        commitment: str = "confirmed",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.timeout_s = timeout_s if timeout_s is not None else settings.RPC_TIMEOUT_S
        self.commitment = commitment
        self._transport = transport

    async def _rpc_call(self, method: str, params: List[Any]) -> Any:
        """POST a JSON-RPC request and return its ``result`` member."""
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        logger.debug("RPC %s -> %s", method, self.rpc_url)

        try:
            async with httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport) as client:
                response = await client.post(
                    self.rpc_url, json=payload, headers={"Content-Type": "application/json"}
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as exc:
            raise RpcError(f"{method}: HTTP error {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise RpcError(f"{method}: {exc.__class__.__name__}: {exc}") from exc
        except ValueError as exc:
            raise RpcError(f"{method}: invalid JSON response") from exc

        if not isinstance(data, dict):
            raise RpcError(f"{method}: unexpected response")
        if data.get("error"):
            error = data["error"]
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            raise RpcError(f"{method}: RPC error: {message}")
        return data.get("result")

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #
    async def get_balance(self, address: str) -> int:
        """Balance of *address* in lamports."""
        result = await self._rpc_call("getBalance", [address, {"commitment": self.commitment}])
        try:
            return int(result["value"])
        except (TypeError, KeyError, ValueError) as exc:
            raise RpcError("getBalance: malformed result") from exc

    async def get_signatures_for_address(self, address: str, limit: int) -> List[SignatureInfo]:
        """Most recent signatures for *address*, newest first, as returned by the node."""
        result = await self._rpc_call(
            "getSignaturesForAddress",
            [address, {"limit": limit, "commitment": self.commitment}],
        )
        if not isinstance(result, list):
            raise RpcError("getSignaturesForAddress: malformed result")
        return [
            SignatureInfo(
                signature=item["signature"],
                slot=item.get("slot", 0),
                err=item.get("err"),
                block_time=item.get("blockTime"),
            )
            for item in result
        ]

    async def get_latest_blockhash(self) -> str:
        """Recent blockhash to anchor a new transaction."""
        result = await self._rpc_call("getLatestBlockhash", [{"commitment": self.commitment}])
        try:
            return str(result["value"]["blockhash"])
        except (TypeError, KeyError) as exc:
            raise RpcError("getLatestBlockhash: malformed result") from exc

    async def get_signature_status(self, signature: str) -> Optional[Dict[str, Any]]:
        """Status entry for *signature*, or *None* if the node has not seen it yet."""
        result = await self._rpc_call(
            "getSignatureStatuses", [[signature], {"searchTransactionHistory": False}]
        )
        try:
            return result["value"][0]
        except (TypeError, KeyError, IndexError) as exc:
            raise RpcError("getSignatureStatuses: malformed result") from exc

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #
    async def request_airdrop(self, address: str, lamports: int) -> str:
        """Ask the faucet for *lamports*; returns the airdrop signature."""
        result = await self._rpc_call(
            "requestAirdrop", [address, lamports, {"commitment": self.commitment}]
        )
        if not isinstance(result, str):
            raise RpcError("requestAirdrop: no signature returned")
        return result

    async def send_raw_transaction(self, transaction: bytes) -> str:
        """Submit a signed, serialized transaction; returns its signature."""
        encoded = base64.b64encode(transaction).decode("ascii")
        result = await self._rpc_call(
            "sendTransaction",
            [encoded, {"encoding": "base64", "preflightCommitment": self.commitment}],
        )
        if not isinstance(result, str):
            raise RpcError("sendTransaction: no signature returned")
        return result

    async def confirm_transaction(
        self,
        signature: str,
        commitment: str | None = None,
        timeout_s: float | None = None,
        poll_interval_s: float = 1.0,
    ) -> str:
        """
        Poll until *signature* reaches *commitment*.

        Returns the confirmation status reached.

        Raises
        ------
        RpcError
            If the transaction failed on chain or did not confirm within *timeout_s*.
        """
        target = commitment or self.commitment
        timeout_s = timeout_s if timeout_s is not None else settings.CONFIRM_TIMEOUT_S
        deadline = time.monotonic() + timeout_s

        while True:
            status = await self.get_signature_status(signature)
            if status is not None:
                if status.get("err") is not None:
                    raise RpcError(f"Transaction {signature} failed: {status['err']}")
                reached = status.get("confirmationStatus") or "processed"
                if _COMMITMENT_RANK.get(reached, 0) >= _COMMITMENT_RANK.get(target, 1):
                    return reached
            if time.monotonic() >= deadline:
                raise RpcError("Transaction confirmation timed out")
            await asyncio.sleep(poll_interval_s)
