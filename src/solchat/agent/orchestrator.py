"""
Conversation orchestrator for SolChat.

One *run* covers one conversation turn: it repeatedly asks the planner for the next step, executes
server-side tools inline and feeds their results back, until the model answers without tool calls
or the step budget is used up.

Deferred tools (no executor) suspend the run.  The suspension is explicit workflow state
(``awaiting-external-input``) kept in a :class:`RunStore`, and the run continues only through
:meth:`Orchestrator.resume` once the client has injected every pending output.

State machine::

    awaiting-model --(no tool calls)--------------> done
    awaiting-model --(step budget reached)--------> stopped-by-budget
    awaiting-model --(unknown tool / planner error)> failed
    awaiting-model --(client disconnected)--------> failed
    awaiting-model --(deferred calls)-------------> awaiting-external-input
    awaiting-external-input --(all injected)------> awaiting-model
    awaiting-external-input --(ttl elapsed)-------> expired
"""

import asyncio
import logging
import time
from contextlib import aclosing
from dataclasses import (
    dataclass,
    field,
)
from typing import (
    AsyncIterator,
    Callable,
    Dict,
    List,
    Optional,
    Sequence,
)

from pydantic import ValidationError

from solchat.agent.planner_interface import (
    BasePlanner,
    PlannerError,
    TextChunk,
    ToolCallRequest,
)
from solchat.agent.prompts import build_system_prompt
from solchat.agent.tool_executor import (
    ToolInputError,
    execute_tool,
    validate_tool_input,
)
from solchat.chain.rpc import SolanaRpcClient
from solchat.config import settings
from solchat.core.network import (
    NetworkProfile,
    get_network_profile,
)
from solchat.core.schema import (
    Message,
    MessageStartEvent,
    RunStartedEvent,
    RunState,
    RunStateEvent,
    TextDeltaEvent,
    ToolCallPart,
    ToolCallResultEvent,
    ToolCallStartedEvent,
    ToolOutputInjection,
    find_tool_call,
    new_id,
)
from solchat.tools import ToolRegistry
from solchat.tools.solana_tools import build_registry

logger = logging.getLogger(__name__)

EXPIRED_REASON = "Confirmation window expired"
DISCONNECTED_REASON = "Client disconnected"


class RunNotFoundError(KeyError):
    """Raised when a run id is unknown (never started, or already swept)."""


@dataclass
class Run:
    """Workflow state of one conversation turn."""

    run_id: str
    profile: NetworkProfile
    wallet_address: Optional[str]
    registry: ToolRegistry
    system_prompt: str
    messages: List[Message]
    state: RunState = RunState.AWAITING_MODEL
    steps: int = 0
    step_limit: int = 0
    pending_tool_call_ids: List[str] = field(default_factory=list)
    error: Optional[str] = None
    suspended_at: Optional[float] = None
    finished_at: Optional[float] = None
    updated_at: Optional[float] = None
    session_id: Optional[str] = None

    def state_event(self) -> RunStateEvent:
        return RunStateEvent(
            run_id=self.run_id,
            state=self.state,
            steps=self.steps,
            pending_tool_call_ids=list(self.pending_tool_call_ids),
            error=self.error,
        )

    def finish(self, state: RunState, at: float, error: Optional[str] = None) -> None:
        self.state = state
        self.error = error
        self.finished_at = at


class RunStore:
    """In-process store of runs keyed by id."""

    def __init__(self) -> None:
        self._runs: Dict[str, Run] = {}

    def add(self, run: Run) -> None:
        self._runs[run.run_id] = run

    def get(self, run_id: str) -> Run:
        try:
            return self._runs[run_id]
        except KeyError as exc:
            raise RunNotFoundError(run_id) from exc

    def discard(self, run_id: str) -> None:
        self._runs.pop(run_id, None)

    def all(self) -> List[Run]:
        return list(self._runs.values())

    def __len__(self) -> int:
        return len(self._runs)


class Orchestrator:
    """Drives runs through the planner/tool loop."""

    def __init__(
        self,
        planner: BasePlanner,
        step_budget: int | None = None,
        store: RunStore | None = None,
        rpc_factory: Callable[[str], SolanaRpcClient] = SolanaRpcClient,
        ttl_s: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.planner = planner
        self.step_budget = step_budget if step_budget is not None else settings.STEP_BUDGET
        if self.step_budget < 1:
            raise ValueError("step_budget must be a positive integer")
        self.store = store if store is not None else RunStore()
        self.rpc_factory = rpc_factory
        self.ttl_s = ttl_s if ttl_s is not None else settings.DEFERRED_CALL_TTL_S
        self._clock = clock

    # ------------------------------------------------------------------ #
    # Entry points
    # ------------------------------------------------------------------ #
    def start(
        self,
        messages: Sequence[Message],
        network: str | None = None,
        wallet_address: str | None = None,
        registry: ToolRegistry | None = None,
        session_id: str | None = None,
    ) -> Run:
        """Create and store a run for *messages*; nothing is executed yet."""
        profile = get_network_profile(network)
        if registry is None:
            registry = build_registry(profile, self.rpc_factory(profile.rpc_url))
        run = Run(
            run_id=new_id(),
            profile=profile,
            wallet_address=wallet_address,
            registry=registry,
            system_prompt=build_system_prompt(profile, wallet_address),
            messages=[m.model_copy(deep=True) for m in messages],
            step_limit=self.step_budget,
            updated_at=self._clock(),
            session_id=session_id,
        )
        self.store.add(run)
        logger.info(
            "Run %s started (network=%s, tools=%s)", run.run_id, profile.name, registry.names()
        )
        return run

    async def run(
        self,
        messages: Sequence[Message],
        network: str | None = None,
        wallet_address: str | None = None,
        registry: ToolRegistry | None = None,
    ) -> AsyncIterator[object]:
        """Start a run and stream its events until it finishes or suspends."""
        run = self.start(messages, network, wallet_address, registry)
        yield RunStartedEvent(run_id=run.run_id)
        async with aclosing(self.advance(run)) as events:
            async for event in events:
                yield event

    def inject(self, run_id: str, injection: ToolOutputInjection) -> bool:
        """
        Apply a deferred tool output.

        Returns ``True`` if accepted.  Injections that do not match a pending deferred call of the
        same tool (duplicates, unknown ids, wrong tool, invalid output, finished runs) are ignored.

        Raises
        ------
        RunNotFoundError
            If *run_id* is unknown.
        """
        run = self.store.get(run_id)
        if run.state != RunState.AWAITING_EXTERNAL_INPUT:
            logger.info("Ignoring injection for %s: run is %s", run_id, run.state.value)
            return False
        if injection.tool_call_id not in run.pending_tool_call_ids:
            logger.info("Ignoring injection for %s: call %s not pending", run_id, injection.tool_call_id)
            return False

        part = find_tool_call(run.messages, injection.tool_call_id)
        tool = run.registry.get(injection.tool_name)
        if part is None or tool is None or not tool.is_deferred or part.tool_name != tool.name:
            logger.warning(
                "Ignoring injection for %s: tool '%s' does not match call %s",
                run_id,
                injection.tool_name,
                injection.tool_call_id,
            )
            return False

        output = injection.output
        if tool.output_model is not None:
            try:
                output = tool.output_model.model_validate(output).model_dump()
            except ValidationError as exc:
                logger.warning("Ignoring invalid output for call %s: %s", injection.tool_call_id, exc)
                return False

        part.resolve(output)
        run.pending_tool_call_ids.remove(injection.tool_call_id)
        if not run.pending_tool_call_ids:
            run.state = RunState.AWAITING_MODEL
            run.suspended_at = None
            run.updated_at = self._clock()
        return True

    async def resume(self, run_id: str, injection: ToolOutputInjection) -> AsyncIterator[object]:
        """Inject *injection* and, once nothing is pending, continue the run."""
        self.sweep()
        accepted = self.inject(run_id, injection)
        run = self.store.get(run_id)
        if accepted:
            part = find_tool_call(run.messages, injection.tool_call_id)
            if part is not None:
                yield ToolCallResultEvent(
                    tool_call_id=part.tool_call_id, output=part.output, state=part.state
                )
        if accepted and run.state == RunState.AWAITING_MODEL:
            # The model always gets one step to answer the injected output
            run.step_limit = max(run.step_limit, run.steps + 1)
            async with aclosing(self.advance(run)) as events:
                async for event in events:
                    yield event
        else:
            yield run.state_event()

    # ------------------------------------------------------------------ #
    # Step loop
    # ------------------------------------------------------------------ #
    async def advance(self, run: Run) -> AsyncIterator[object]:
        """
        Step *run* while it awaits the model; always ends with a ``run-state`` event.

        If the consumer stops reading mid-step (the generator is closed or cancelled), the calls of
        the current step are failed and the run ends ``failed``.
        """
        parts: List[ToolCallPart] = []
        try:
            while run.state == RunState.AWAITING_MODEL:
                if run.steps >= run.step_limit:
                    logger.info("Run %s reached step budget (%d)", run.run_id, run.step_limit)
                    run.finish(RunState.STOPPED_BY_BUDGET, self._clock())
                    break
                run.steps += 1
                run.updated_at = self._clock()
                parts = []

                message = Message(role="assistant")
                run.messages.append(message)
                yield MessageStartEvent(message_id=message.id)

                requests: List[ToolCallRequest] = []
                try:
                    async for chunk in self.planner.step(
                        run.system_prompt, run.messages[:-1], run.registry.schemas()
                    ):
                        if isinstance(chunk, TextChunk):
                            message.append_text(chunk.text)
                            yield TextDeltaEvent(message_id=message.id, delta=chunk.text)
                        else:
                            requests.append(chunk)
                except PlannerError as exc:
                    run.finish(RunState.FAILED, self._clock(), str(exc))
                    break
                except Exception as exc:  # pylint: disable=broad-except
                    logger.exception("Planner step failed for run %s", run.run_id)
                    run.finish(RunState.FAILED, self._clock(), f"Planner error: {exc}")
                    break

                if not requests:
                    run.finish(RunState.DONE, self._clock())
                    break

                logger.info(
                    "Step %d of run %s requested tools: %s",
                    run.steps,
                    run.run_id,
                    [r.name for r in requests],
                )
                for request in requests:
                    part = ToolCallPart(
                        tool_call_id=self._unique_call_id(run, request.id),
                        tool_name=request.name,
                        input=request.input,
                    )
                    message.parts.append(part)
                    parts.append(part)
                    yield ToolCallStartedEvent(
                        message_id=message.id,
                        tool_call_id=part.tool_call_id,
                        tool_name=part.tool_name,
                        input=part.input,
                    )

                unknown = [p for p in parts if p.tool_name not in run.registry]
                if unknown:
                    for event in self._abandon_step(run, parts, unknown):
                        yield event
                    break

                executable = [p for p in parts if not run.registry.get(p.tool_name).is_deferred]
                outputs = await asyncio.gather(
                    *(execute_tool(run.registry, p.tool_name, p.input) for p in executable)
                )
                for part, output in zip(executable, outputs):
                    part.resolve(output)
                    yield ToolCallResultEvent(
                        tool_call_id=part.tool_call_id, output=part.output, state=part.state
                    )

                deferred: List[ToolCallPart] = []
                for part in parts:
                    tool = run.registry.get(part.tool_name)
                    if not tool.is_deferred:
                        continue
                    try:
                        validate_tool_input(tool, part.input)
                    except ToolInputError as exc:
                        # Rejected before it reaches the client; the model sees the error next step
                        part.resolve(tool.failure_output(str(exc)))
                        yield ToolCallResultEvent(
                            tool_call_id=part.tool_call_id, output=part.output, state=part.state
                        )
                        continue
                    deferred.append(part)

                if deferred:
                    run.state = RunState.AWAITING_EXTERNAL_INPUT
                    run.pending_tool_call_ids = [p.tool_call_id for p in deferred]
                    run.suspended_at = self._clock()
                    logger.info(
                        "Run %s awaiting client output for %s", run.run_id, run.pending_tool_call_ids
                    )

            yield run.state_event()
        except (GeneratorExit, asyncio.CancelledError):
            if run.state == RunState.AWAITING_MODEL:
                self._disconnect(run, parts)
            raise

    def _disconnect(self, run: Run, parts: List[ToolCallPart]) -> None:
        logger.warning("Run %s lost its consumer at step %d", run.run_id, run.steps)
        for part in parts:
            if part.state.is_terminal:
                continue
            tool = run.registry.get(part.tool_name)
            part.resolve(
                tool.failure_output(DISCONNECTED_REASON) if tool else {"error": DISCONNECTED_REASON}
            )
        run.finish(RunState.FAILED, self._clock(), DISCONNECTED_REASON)

    def _abandon_step(
        self, run: Run, parts: List[ToolCallPart], unknown: List[ToolCallPart]
    ) -> List[ToolCallResultEvent]:
        names = sorted({p.tool_name for p in unknown})
        unknown_ids = {p.tool_call_id for p in unknown}
        logger.warning("Run %s requested unknown tool(s) %s", run.run_id, names)
        events = []
        for part in parts:
            if part.tool_call_id in unknown_ids:
                output = {"error": f"Unknown tool '{part.tool_name}'"}
            else:
                output = run.registry.get(part.tool_name).failure_output(
                    "Skipped because the step referenced an unknown tool"
                )
            part.resolve(output)
            events.append(
                ToolCallResultEvent(tool_call_id=part.tool_call_id, output=part.output, state=part.state)
            )
        run.finish(RunState.FAILED, self._clock(), f"Unknown tool(s): {', '.join(names)}")
        return events

    @staticmethod
    def _unique_call_id(run: Run, candidate: str) -> str:
        if candidate and find_tool_call(run.messages, candidate) is None:
            return candidate
        return new_id()

    # ------------------------------------------------------------------ #
    # Housekeeping
    # ------------------------------------------------------------------ #
    def expire(self, run: Run) -> None:
        """Fail every pending deferred call of *run* and close it."""
        for call_id in run.pending_tool_call_ids:
            part = find_tool_call(run.messages, call_id)
            if part is not None:
                tool = run.registry.get(part.tool_name)
                part.resolve(tool.failure_output(EXPIRED_REASON) if tool else {"error": EXPIRED_REASON})
        logger.info("Run %s expired with pending calls %s", run.run_id, run.pending_tool_call_ids)
        run.pending_tool_call_ids = []
        run.suspended_at = None
        run.finish(RunState.EXPIRED, self._clock(), EXPIRED_REASON)

    def sweep(self) -> None:
        """
        Expire abandoned suspended runs and forget finished runs older than the TTL.

        Runs left in ``awaiting-model`` with no step started for a whole TTL have lost their
        stream and are dropped as well.
        """
        now = self._clock()
        for run in self.store.all():
            if run.state == RunState.AWAITING_MODEL:
                if run.updated_at is not None and now - run.updated_at >= self.ttl_s:
                    logger.info("Dropping stale run %s at step %d", run.run_id, run.steps)
                    self.store.discard(run.run_id)
            elif run.state == RunState.AWAITING_EXTERNAL_INPUT:
                if run.suspended_at is not None and now - run.suspended_at >= self.ttl_s:
                    self.expire(run)
            elif run.state.is_terminal and run.finished_at is not None:
                if now - run.finished_at >= self.ttl_s:
                    self.store.discard(run.run_id)
