"""
Client-side resolution of deferred tool calls.

When the model calls ``sendTransaction`` the server has no executor for it: the call reaches the
client, which shows a confirmation affordance and, on approval, builds the transfer, signs it with
the connected wallet, submits it and waits for confirmation.  Whatever happens, exactly one
``ToolOutputInjection`` is produced per call id.
"""

import logging
import math
from dataclasses import dataclass
from typing import (
    Any,
    Dict,
    Optional,
    Set,
)

from solchat.chain.rpc import SolanaRpcClient
from solchat.chain.transaction import (
    build_transfer_transaction,
    transaction_signature,
)
from solchat.chain.wallet import (
    LocalWalletProvider,
    WalletNotConnectedError,
    WalletRejectedError,
)
from solchat.common import sol_to_lamports
from solchat.core.network import NetworkProfile
from solchat.core.schema import (
    ToolCallPart,
    ToolOutputInjection,
)
from solchat.tools.solana_tools import send_failure_output

logger = logging.getLogger(__name__)

SEND_TOOL = "sendTransaction"


def _parse_amount(value: Any) -> float:
    """Read a model-supplied amount; anything that is not a number reads as zero."""
    if isinstance(value, bool):
        return 0.0
    try:
        amount = float(value or 0)
    except (TypeError, ValueError):
        return 0.0
    return amount if math.isfinite(amount) else 0.0


@dataclass
class Affordance:
    """What the UI shows for a pending transfer."""

    tool_call_id: str
    recipient_address: str
    amount: float
    network: str
    can_sign: bool

    @property
    def label(self) -> str:
        return "Sign & Send" if self.can_sign else "Connect wallet to send"


class PendingCallResolver:
    """Turns user approval of a deferred call into a single output injection."""

    def __init__(
        self,
        rpc: SolanaRpcClient,
        wallets: LocalWalletProvider,
        profile: NetworkProfile,
    ) -> None:
        self.rpc = rpc
        self.wallets = wallets
        self.profile = profile
        self._claimed: Set[str] = set()

    def on_deferred_call(self, call: ToolCallPart) -> Affordance:
        """Describe the confirmation affordance for *call*."""
        if call.tool_name != SEND_TOOL:
            raise ValueError(f"No client-side resolver for tool '{call.tool_name}'")
        return Affordance(
            tool_call_id=call.tool_call_id,
            recipient_address=str(call.input.get("recipientAddress", "")),
            amount=_parse_amount(call.input.get("amount")),
            network=self.profile.name,
            can_sign=self.wallets.authenticated,
        )

    def is_claimed(self, tool_call_id: str) -> bool:
        return tool_call_id in self._claimed

    async def resolve(
        self, call: ToolCallPart, approved: bool = True, reason: Optional[str] = None
    ) -> Optional[ToolOutputInjection]:
        """
        Resolve *call* once.

        A declined call resolves with *reason*, or with a user rejection if no reason is given.

        Returns *None* if resolution for this call id has already started (double submission),
        otherwise the injection to send back, success or failure.
        """
        if call.tool_call_id in self._claimed:
            logger.info("Ignoring repeated resolution of %s", call.tool_call_id)
            return None
        self._claimed.add(call.tool_call_id)

        output: Dict[str, Any]
        if not approved:
            output = send_failure_output(reason or "Transaction rejected by user")
        else:
            try:
                signature = await self._sign_and_send(call)
                output = {"confirmed": True, "signature": signature, "error": None}
            except Exception as exc:  # pylint: disable=broad-except
                logger.warning("Transfer for %s failed: %s", call.tool_call_id, exc)
                output = send_failure_output(str(exc) or "Transaction failed")

        return ToolOutputInjection(tool_name=call.tool_name, tool_call_id=call.tool_call_id, output=output)

    async def _sign_and_send(self, call: ToolCallPart) -> str:
        wallet = self.wallets.active_wallet
        if wallet is None:
            raise WalletNotConnectedError("No wallet connected")

        affordance = self.on_deferred_call(call)
        if affordance.amount <= 0:
            raise ValueError("Transfer amount must be positive")

        blockhash = await self.rpc.get_latest_blockhash()
        unsigned = build_transfer_transaction(
            wallet.address,
            affordance.recipient_address,
            sol_to_lamports(affordance.amount),
            blockhash,
        )
        signed = self.wallets.sign_transaction(unsigned, wallet)
        if transaction_signature(signed) == transaction_signature(unsigned):
            raise WalletRejectedError("Wallet returned an unsigned transaction")

        signature = await self.rpc.send_raw_transaction(signed)
        await self.rpc.confirm_transaction(signature, "confirmed")
        logger.info("Transfer %s confirmed for call %s", signature, call.tool_call_id)
        return signature
