"""Terminal rendering of tool calls and their results, one renderer per tool."""

import json
from typing import (
    Any,
    Callable,
    Dict,
    Optional,
)

from solchat.common import (
    AnsiColors,
    colored_print,
    shorten_address,
)
from solchat.core.network import NetworkProfile
from solchat.core.schema import (
    ToolCallPart,
    is_failure_output,
)

PROGRESS_LABELS = {
    "getBalance": "Fetching balance...",
    "requestAirdrop": "Requesting airdrop...",
    "getTransactionHistory": "Loading transactions...",
    "sendTransaction": "Preparing transfer...",
}


def progress_label(tool_name: str) -> str:
    return PROGRESS_LABELS.get(tool_name, f"Running {tool_name}...")


def _error(output: Dict[str, Any], fallback: str) -> None:
    colored_print(f"✗ {output.get('error') or fallback}", AnsiColors.RED)


def _render_balance(output: Dict[str, Any], _profile: Optional[NetworkProfile]) -> None:
    colored_print(f"Balance: {output.get('balance', 0):.4f} SOL", AnsiColors.GREEN)
    colored_print(
        f"  {shorten_address(output.get('address', ''))} · {output.get('cluster')}", AnsiColors.GREY
    )


def _render_airdrop(output: Dict[str, Any], _profile: Optional[NetworkProfile]) -> None:
    colored_print(f"✓ Airdrop successful: {output.get('amount')} SOL received", AnsiColors.GREEN)
    if output.get("explorerUrl"):
        colored_print(f"  {output['explorerUrl']}", AnsiColors.GREY)


def _render_history(output: Dict[str, Any], _profile: Optional[NetworkProfile]) -> None:
    transactions = output.get("transactions") or []
    if not transactions:
        colored_print("No transactions found", AnsiColors.GREY)
        return
    colored_print("Recent transactions:", AnsiColors.GREEN)
    for tx in transactions:
        color = AnsiColors.GREEN if tx.get("err") == "Success" else AnsiColors.RED
        colored_print(f"  • {tx.get('signature')}  {tx.get('explorerUrl')}", color)


def _render_send(output: Dict[str, Any], profile: Optional[NetworkProfile]) -> None:
    signature = output.get("signature") or ""
    colored_print("✓ Transaction confirmed", AnsiColors.GREEN)
    colored_print(f"  {shorten_address(signature, 10)}", AnsiColors.GREY)
    if profile is not None and signature:
        colored_print(f"  {profile.explorer_url(signature)}", AnsiColors.GREY)


_RENDERERS: Dict[str, Callable[[Dict[str, Any], Optional[NetworkProfile]], None]] = {
    "getBalance": _render_balance,
    "requestAirdrop": _render_airdrop,
    "getTransactionHistory": _render_history,
    "sendTransaction": _render_send,
}


def render_tool_result(part: ToolCallPart, profile: Optional[NetworkProfile] = None) -> None:
    """Print the result card for a finished tool call."""
    output = part.output
    if not isinstance(output, dict):
        colored_print(f"[{part.tool_name}] {output}", AnsiColors.YELLOW)
        return
    if is_failure_output(output):
        _error(output, f"{part.tool_name} failed")
        return
    renderer = _RENDERERS.get(part.tool_name)
    if renderer is None:
        # Unknown tool: show the raw payload rather than dropping it
        colored_print(f"[{part.tool_name}] {json.dumps(output)}", AnsiColors.YELLOW)
        return
    renderer(output, profile)
