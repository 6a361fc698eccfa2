"""
Solana wallet tools.

:func:`build_registry` assembles the registry for one request from its :class:`NetworkProfile`:
balance, transaction history and the deferred ``sendTransaction`` everywhere, plus
``requestAirdrop`` on the test network only.  Executors never raise; collaborator failures become
the tool's documented failure shape.
"""

import logging
from datetime import (
    datetime,
    timezone,
)
from typing import (
    Any,
    Dict,
    Optional,
)

from pydantic import (
    BaseModel,
    Field,
)

from solchat.chain.rpc import SolanaRpcClient
from solchat.chain.transaction import decode_public_key
from solchat.common import (
    lamports_to_sol,
    sol_to_lamports,
)
from solchat.config import settings
from solchat.core.network import NetworkProfile
from solchat.tools import ToolRegistry

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Input / output models
# ---------------------------------------------------------------------------
class GetBalanceInput(BaseModel):
    address: str = Field(..., description="The Solana wallet public key address to check balance for")


class RequestAirdropInput(BaseModel):
    address: str = Field(..., description="The Solana wallet public key address to airdrop SOL to")
    amount: float = Field(
        ...,
        ge=settings.AIRDROP_MIN_SOL,
        le=settings.AIRDROP_MAX_SOL,
        description=(
            f"Amount of SOL to airdrop ({settings.AIRDROP_MIN_SOL:g} to {settings.AIRDROP_MAX_SOL:g})"
        ),
    )


class SendTransactionInput(BaseModel):
    recipientAddress: str = Field(..., description="The recipient Solana wallet address")
    amount: float = Field(..., gt=0, description="Amount of SOL to send")


class SendTransactionOutput(BaseModel):
    confirmed: bool
    signature: Optional[str] = None
    error: Optional[str] = None


class GetTransactionHistoryInput(BaseModel):
    address: str = Field(..., description="The Solana wallet address to get transaction history for")
    limit: int = Field(..., ge=1, le=10, description="Number of recent transactions to fetch (1-10)")


def send_failure_output(reason: str) -> Dict[str, Any]:
    """Failure shape shared by the client resolver and server-side expiry."""
    return {"confirmed": False, "signature": None, "error": reason}


def airdrop_failure_output(reason: str) -> Dict[str, Any]:
    return {"success": False, "error": reason}


def _iso_timestamp(block_time: Optional[int]) -> Optional[str]:
    if block_time is None:
        return None
    moment = datetime.fromtimestamp(block_time, tz=timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------
def build_registry(profile: NetworkProfile, rpc: SolanaRpcClient) -> ToolRegistry:
    """Declare the tools available on *profile*, bound to *rpc*."""
    registry = ToolRegistry()

    async def get_balance(args: GetBalanceInput) -> Dict[str, Any]:
        try:
            decode_public_key(args.address)
            lamports = await rpc.get_balance(args.address)
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("getBalance failed for %s: %s", args.address, exc)
            return {"error": "Invalid address or failed to fetch balance"}
        return {
            "address": args.address,
            "balance": lamports_to_sol(lamports),
            "lamports": lamports,
            "cluster": profile.name,
        }

    async def get_transaction_history(args: GetTransactionHistoryInput) -> Dict[str, Any]:
        try:
            decode_public_key(args.address)
            signatures = await rpc.get_signatures_for_address(args.address, args.limit)
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("getTransactionHistory failed for %s: %s", args.address, exc)
            return {"error": "Failed to fetch transaction history"}
        return {
            "address": args.address,
            "transactions": [
                {
                    "signature": sig.signature[:20] + "...",
                    "fullSignature": sig.signature,
                    "slot": sig.slot,
                    "err": "Failed" if sig.err else "Success",
                    "blockTime": _iso_timestamp(sig.block_time),
                    "explorerUrl": profile.explorer_url(sig.signature),
                }
                for sig in signatures
            ],
        }

    async def request_airdrop(args: RequestAirdropInput) -> Dict[str, Any]:
        try:
            decode_public_key(args.address)
            signature = await rpc.request_airdrop(args.address, sol_to_lamports(args.amount))
            await rpc.confirm_transaction(signature, "confirmed")
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("requestAirdrop failed for %s: %s", args.address, exc)
            return airdrop_failure_output(
                "Airdrop failed. Devnet faucet may be rate-limited, try again later."
            )
        return {
            "success": True,
            "signature": signature,
            "amount": args.amount,
            "address": args.address,
            "explorerUrl": profile.explorer_url(signature),
        }

    registry.declare(
        "getBalance",
        "Get the SOL balance for a Solana wallet address. Use this when the user asks to check "
        "their balance or any wallet balance.",
        GetBalanceInput,
        executor=get_balance,
    )
    registry.declare(
        "sendTransaction",
        "Prepare a SOL transfer transaction. This will ask the user to confirm and sign on the "
        "client side. Use when the user wants to send SOL to another address.",
        SendTransactionInput,
        output_model=SendTransactionOutput,
        failure_output=send_failure_output,
    )
    registry.declare(
        "getTransactionHistory",
        "Get recent transaction signatures for a wallet address. Use when the user asks about "
        "their transaction history or recent activity.",
        GetTransactionHistoryInput,
        executor=get_transaction_history,
    )
    if profile.airdrop_enabled:
        registry.declare(
            "requestAirdrop",
            "Request a devnet SOL airdrop (faucet) to a wallet address. Only works on devnet. Use "
            "when user asks for free SOL or test tokens.",
            RequestAirdropInput,
            executor=request_airdrop,
            failure_output=airdrop_failure_output,
        )

    return registry
