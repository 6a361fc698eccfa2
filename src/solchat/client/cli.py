"""CLI client for the SolChat API."""

from __future__ import annotations

import asyncio
import logging
from typing import (
    Any,
    AsyncIterator,
    List,
    Optional,
    Tuple,
)

from solchat.chain.rpc import SolanaRpcClient
from solchat.chain.wallet import LocalWalletProvider
from solchat.client.render import (
    progress_label,
    render_tool_result,
)
from solchat.client.resolver import (
    Affordance,
    PendingCallResolver,
)
from solchat.client.transport import (
    ApiError,
    ChatApiClient,
    MessageAssembler,
)
from solchat.common import (
    AnsiColors,
    colored_print,
)
from solchat.config import settings
from solchat.core.network import (
    NetworkProfile,
    get_network_profile,
)
from solchat.core.schema import (
    Message,
    MessageStartEvent,
    RunState,
    RunStateEvent,
    TextDeltaEvent,
    ToolCallPart,
    ToolCallResultEvent,
    ToolCallStartedEvent,
    ToolOutputInjection,
)

logger = logging.getLogger(__name__)

HELP_TEXT = """Commands:
  /new                     start a new chat
  /sessions                list saved chats
  /load <id>               reopen a saved chat
  /delete <id>             delete a saved chat
  /network devnet|mainnet  switch cluster
  /login, /logout          connect or disconnect the wallet
  /wallet                  show the connected wallet
  exit, quit               leave"""

_STATE_NOTICES = {
    RunState.STOPPED_BY_BUDGET: "⚠️ Stopped after reaching the step limit",
    RunState.EXPIRED: "⚠️ The confirmation window expired",
}


# ---------------------------------------------------------------------------
# CLI Client
# ---------------------------------------------------------------------------
def get_user_message() -> Tuple[str, bool]:
    """
    Get a message from the user via standard input.

    Returns:
        Tuple of (user_input, success_flag)
        The success_flag is False if input couldn't be read (e.g., Ctrl+C)
    """
    import signal  # pylint: disable=import-outside-toplevel

    # Ensure SIGINT breaks out of slow system calls such as read()
    signal.siginterrupt(signal.SIGINT, True)

    try:
        user_input = input().strip()
        return user_input, True
    except (EOFError, KeyboardInterrupt):
        return "", False


class ChatShell:
    """Interactive chat loop: streams turns, renders tool cards and resolves transfers."""

    def __init__(
        self,
        api: ChatApiClient,
        wallets: LocalWalletProvider,
        network: str | None = None,
        confirm: Any = None,
    ) -> None:
        self.api = api
        self.wallets = wallets
        self.profile: NetworkProfile = get_network_profile(network)
        self.resolver = self._make_resolver()
        self.session_id: Optional[str] = None
        self.messages: List[Message] = []
        # Answers the "Sign & Send?" prompt; defaults to reading stdin
        self._confirm = confirm or _ask_confirmation

    def _make_resolver(self) -> PendingCallResolver:
        return PendingCallResolver(SolanaRpcClient(self.profile.rpc_url), self.wallets, self.profile)

    @property
    def wallet_address(self) -> Optional[str]:
        wallet = self.wallets.active_wallet
        return wallet.address if wallet is not None else None

    # -- sessions ---------------------------------------------------------
    async def new_session(self) -> None:
        self.session_id = await self.api.create_session()
        self.messages = []
        logger.info("New session %s", self.session_id)

    async def list_sessions(self) -> None:
        sessions = await self.api.list_sessions()
        if not sessions:
            colored_print("No saved chats", AnsiColors.GREY)
            return
        for record in sessions:
            marker = "*" if record.get("id") == self.session_id else " "
            colored_print(f"{marker} {record.get('id')}  {record.get('title')}", AnsiColors.GREY)

    async def load_session(self, session_id: str) -> None:
        record = await self.api.get_session(session_id)
        self.session_id = str(record["id"])
        self.messages = [Message.model_validate(m) for m in record.get("messages", [])]
        colored_print(f"Loaded '{record.get('title')}' ({len(self.messages)} messages)", AnsiColors.GREEN)
        for message in self.messages:
            color = AnsiColors.BLUE if message.role == "user" else AnsiColors.YELLOW
            if message.text:
                colored_print(f"{message.role}: {message.text}", color)

    async def delete_session(self, session_id: str) -> None:
        await self.api.delete_session(session_id)
        if session_id == self.session_id:
            await self.new_session()
        colored_print(f"Deleted {session_id}", AnsiColors.GREY)

    # -- turns ------------------------------------------------------------
    async def send(self, text: str) -> None:
        """Run one user turn, including any transfers the model asks for."""
        self.messages.append(Message.user(text))
        assembler = MessageAssembler(self.messages)
        try:
            await self._consume(
                self.api.chat(self.messages, self.profile.name, self.wallet_address, self.session_id),
                assembler,
            )
            await self._resolve_pending(assembler)
        finally:
            self.messages = assembler.messages
            print()

    async def _resolve_pending(self, assembler: MessageAssembler) -> None:
        while assembler.run_id is not None:
            pending = [
                c
                for c in assembler.pending_deferred_calls()
                if not self.resolver.is_claimed(c.tool_call_id)
            ]
            if not pending:
                return
            call = pending[0]
            try:
                affordance = self.resolver.on_deferred_call(call)
            except ValueError as exc:
                # The server still waits on this call, so it is resolved as failed
                colored_print(f"✗ {exc}", AnsiColors.RED)
                injection = await self.resolver.resolve(call, approved=False, reason=str(exc))
            else:
                injection = await self._confirm_and_resolve(call, affordance)

            if injection is None:
                continue
            await self._consume(self.api.inject(assembler.run_id, injection), assembler)

    async def _confirm_and_resolve(
        self, call: ToolCallPart, affordance: Affordance
    ) -> Optional[ToolOutputInjection]:
        colored_print(
            f"\n💸 Send {affordance.amount} SOL to {affordance.recipient_address} "
            f"on {affordance.network}",
            AnsiColors.YELLOW,
        )
        if affordance.can_sign:
            approved = self._confirm(f"[{affordance.label}] proceed? [y/N] ")
        else:
            # Without a wallet the call resolves as "No wallet connected"
            colored_print(affordance.label, AnsiColors.GREY)
            approved = True
        return await self.resolver.resolve(call, approved=approved)

    async def _consume(self, events: AsyncIterator[Any], assembler: MessageAssembler) -> None:
        async for event in events:
            part = assembler.apply(event)
            if isinstance(event, MessageStartEvent):
                colored_print("\n🤖 ", AnsiColors.YELLOW, end="", flush=True)
            elif isinstance(event, TextDeltaEvent):
                colored_print(event.delta, AnsiColors.YELLOW, end="", flush=True)
            elif isinstance(event, ToolCallStartedEvent):
                colored_print(f"\n{progress_label(event.tool_name)}", AnsiColors.GREY)
            elif isinstance(event, ToolCallResultEvent) and part is not None:
                render_tool_result(part, self.profile)
            elif isinstance(event, RunStateEvent):
                self._report_state(event)

    @staticmethod
    def _report_state(event: RunStateEvent) -> None:
        if event.state == RunState.FAILED:
            colored_print(f"\n✗ {event.error or 'The request failed'}", AnsiColors.RED)
        elif event.state in _STATE_NOTICES:
            colored_print(f"\n{_STATE_NOTICES[event.state]}", AnsiColors.RED)

    # -- commands ---------------------------------------------------------
    async def handle_command(self, line: str) -> None:
        command, _, arg = line.partition(" ")
        arg = arg.strip()
        if command == "/new":
            await self.new_session()
            colored_print("Started a new chat", AnsiColors.GREEN)
        elif command == "/sessions":
            await self.list_sessions()
        elif command == "/load" and arg:
            await self.load_session(arg)
        elif command == "/delete" and arg:
            await self.delete_session(arg)
        elif command == "/network" and arg in {"devnet", "mainnet"}:
            self.profile = get_network_profile(arg)
            self.resolver = self._make_resolver()
            colored_print(f"Network: {self.profile.name}", AnsiColors.GREEN)
        elif command == "/login":
            if self.wallets.login():
                colored_print(f"Wallet connected: {self.wallet_address}", AnsiColors.GREEN)
            else:
                colored_print("Could not load a wallet; set WALLET_KEYPAIR_PATH", AnsiColors.RED)
        elif command == "/logout":
            self.wallets.logout()
            colored_print("Wallet disconnected", AnsiColors.GREY)
        elif command == "/wallet":
            colored_print(self.wallet_address or "No wallet connected", AnsiColors.GREY)
        else:
            colored_print(HELP_TEXT, AnsiColors.GREY)


def _ask_confirmation(prompt: str) -> bool:
    colored_print(prompt, AnsiColors.BLUE, end="")
    answer, ok = get_user_message()
    return ok and answer.lower() in {"y", "yes"}


async def _wait_for_api(api: ChatApiClient, max_retries: int = 5) -> str:
    """Create the first session, retrying while the API thread is still starting."""
    for attempt in range(max_retries):
        try:
            return await api.create_session()
        except ApiError as exc:
            if attempt == max_retries - 1:
                raise
            retry_delay = 0.5 * (2**attempt)  # exponential backoff: 0.5s, 1s, 2s, 4s...
            logger.info(
                "API not ready yet, retrying in %.1f seconds (attempt %d/%d): %s",
                retry_delay,
                attempt + 1,
                max_retries,
                exc,
            )
            await asyncio.sleep(retry_delay)
    raise ApiError("API did not become ready")


async def _chat_loop() -> None:
    wallets = LocalWalletProvider(settings.WALLET_KEYPAIR_PATH)
    wallets.login()

    async with ChatApiClient() as api:
        shell = ChatShell(api, wallets)
        try:
            shell.session_id = await _wait_for_api(api)
        except ApiError as exc:
            colored_print(f"⚠️ Failed to create a session: {exc}", AnsiColors.RED)
            return

        colored_print(
            "\n🔮 SolChat shell - type 'exit' or 'quit' (or Ctrl+C) to exit, /help for commands",
            AnsiColors.GREEN,
        )
        colored_print(
            f"Network: {shell.profile.name} · Wallet: {shell.wallet_address or 'not connected'}",
            AnsiColors.GREY,
        )
        while True:
            colored_print("\n🧑 You: ", AnsiColors.BLUE, end="")
            user_msg, ok = get_user_message()
            if not ok:
                break  # Exit if user input couldn't be retrieved (e.g., Ctrl+C)
            if user_msg.lower() in {"exit", "quit"}:
                break
            if not user_msg:
                continue

            try:
                if user_msg.startswith("/"):
                    await shell.handle_command(user_msg)
                else:
                    await shell.send(user_msg)
            except ApiError as exc:
                logger.error("API request error: %s", exc)
                colored_print(str(exc), AnsiColors.RED)


def run_cli() -> None:
    """Run the CLI client that communicates with the API."""
    asyncio.run(_chat_loop())


if __name__ == "__main__":
    run_cli()
