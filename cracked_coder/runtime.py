from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from rich.console import Console

from .action_queue import ActionQueue
from .compaction import ContextEvictor
from .config import AgentConfig
from .context import ContextManager
from .errors import LLMError, PlannerDeadlockError, StreamCancelled
from .executor import ActionExecutor
from .models import ModelManager
from .phases import PhaseManager, PhaseTransitionService, PHASE_EMOJIS
from .planner import ActionPlanner
from .prompts import explain_action, first_message, system_instructions
from .scaler import ModelScaler
from .stream import StreamAssembler, display_error
from .tags import validate_structure
from .tools import ActionRegistry

logger = logging.getLogger(__name__)

# Budget used for the single retry after the provider reports a context overflow
RETRY_WINDOW_FACTOR = 0.75


@dataclass
class AgentResult:
    status: str  # completed | awaiting_user | aborted | cancelled | max_rounds
    message: str = ""
    rounds: int = 0


class Agent:
    """One conversation with the model, from the first task message to end_task.

    The agent owns every piece of session state (context, queue, phase,
    retry counters) and passes them to the services that need them.
    """

    def __init__(self, config: AgentConfig, repo: str, transport=None, console: Optional[Console] = None):
        self.config = config
        self.repo = repo
        self.console = console or Console()

        self.model_manager = ModelManager(config)
        self.phase_manager = PhaseManager(config, self.model_manager)
        self.phase_manager.initialize_phase_configs()
        self.context = ContextManager(self.phase_manager)
        self.evictor = ContextEvictor(self.context, self.model_manager.get_context_window)
        self.scaler = ModelScaler(config, self.model_manager, self.phase_manager)
        self.transition = PhaseTransitionService(self.phase_manager, self.context, self.model_manager)

        self.registry = ActionRegistry(repo, config)
        self.registry.register("end_phase", self.transition.transition_to_next_phase)
        self.registry.register("action_explainer", lambda a: explain_action(a["action"]))

        self.queue = ActionQueue()
        self.executor = ActionExecutor(self.registry, self.queue, self.context, self.scaler, self.console)
        self.planner = ActionPlanner(self.registry.implemented_tags(), root=repo)
        self.assembler = StreamAssembler(inactivity_timeout=config.stream_timeout)

        if transport is None:
            from .llm import ChatTransport
            transport = ChatTransport(config)
        self.transport = transport

        self._cancel_event: Optional[asyncio.Event] = None
        self._task_started = False

    # -------- session control --------
    def cancel(self) -> None:
        """Cancel the in-flight request or round. Safe to call from a signal handler on the loop thread."""
        if self._cancel_event is not None:
            self._cancel_event.set()

    def clear_context(self) -> None:
        self.context.clear()
        self._task_started = False

    def start_task(self, goal: str) -> str:
        """Reset per-task state and build the opening message."""
        self.phase_manager.reset()
        self.scaler.reset()
        self.context.set_system_instructions(system_instructions(self.config, self.repo))
        self._task_started = True
        return first_message(goal, self.repo, self.config, self.phase_manager.generate_prompt())

    # -------- model calls --------
    async def _request(self, messages: list[dict]) -> str:
        model = self.model_manager.current_model
        if not self.config.stream:
            return await self.transport.send(model, messages)
        self.console.print()
        text = await self.assembler.consume(
            self.transport.stream(model, messages),
            cancel_event=self._cancel_event,
            on_chunk=lambda c: self.console.print(c, end="", markup=False, highlight=False),
        )
        self.console.print()
        if self.assembler.overflowed:
            display_error(LLMError("BUFFER_OVERFLOW", "response truncated"), self.console)
        return text

    async def _request_with_retry(self) -> str:
        try:
            return await self._request(self.context.get_messages())
        except LLMError as e:
            if not e.is_context_overflow:
                raise
            window = self.model_manager.get_context_window()
            logger.info(f"Provider reported context overflow, evicting to {int(window * RETRY_WINDOW_FACTOR):,} tokens")
            self.evictor.evict(max_tokens=int(window * RETRY_WINDOW_FACTOR))
            return await self._request(self.context.get_messages())

    # -------- agent loop --------
    async def run(self, goal: str, max_rounds: Optional[int] = None, new_task: Optional[bool] = None) -> AgentResult:
        """Drive the conversation until end_task, a question back to the user, an abort or the round limit."""
        self._cancel_event = asyncio.Event()
        max_rounds = max_rounds or self.config.max_rounds
        if new_task or (new_task is None and not self._task_started):
            message = self.start_task(goal)
        else:
            message = goal

        rounds = 0
        try:
            while rounds < max_rounds:
                rounds += 1
                phase = self.phase_manager.current_phase
                self.console.rule(f"{PHASE_EMOJIS[phase]} {phase.value} · round {rounds} · {self.model_manager.current_model}")

                self.context.add_message("user", message)
                self.evictor.evict()

                try:
                    response = await self._request_with_retry()
                except StreamCancelled:
                    self.console.print("[yellow]Request cancelled.[/yellow]")
                    return AgentResult("cancelled", rounds=rounds)
                except LLMError as e:
                    logger.info(f"Transport error {e.error_type}: {e}")
                    display_error(e, self.console)
                    return AgentResult("aborted", str(e), rounds)

                if not response.strip():
                    return AgentResult("aborted", "empty response from model", rounds)
                self.context.add_message("assistant", response)

                diagnostic = validate_structure(response)
                if diagnostic:
                    logger.info(f"Malformed response: {diagnostic}")
                    self.console.print(f"[yellow]{diagnostic}[/yellow]")
                    message = diagnostic
                    continue

                actions = self.planner.find_actions(response)
                if not actions:
                    return AgentResult("awaiting_user", response, rounds)

                try:
                    plan = self.planner.create_plan(actions)
                except PlannerDeadlockError as e:
                    self.console.print(f"[red]{e}[/red]")
                    return AgentResult("aborted", str(e), rounds)

                outcome = await self.executor.execute_plan(plan, cancel_event=self._cancel_event)
                if outcome.cancelled:
                    self.console.print("[yellow]Round cancelled, remaining results discarded.[/yellow]")
                    return AgentResult("cancelled", rounds=rounds)
                if outcome.end_task:
                    self.console.print(f"[green]Task completed:[/green] {outcome.message}")
                    self._task_started = False
                    return AgentResult("completed", outcome.message or "", rounds)
                if outcome.stalled:
                    failed = [f"{a.type}: {r.error}" for a, r in outcome.results if not r.success]
                    self.console.print(f"[red]Round aborted:[/red] {'; '.join(failed)}")
                    return AgentResult("aborted", "; ".join(failed), rounds)
                if outcome.selected_model:
                    self.model_manager.set_current_model(outcome.selected_model)
                if outcome.regenerate:
                    logger.info(f"Phase is now {self.phase_manager.current_phase.name}, asking for a fresh response")
                    self.console.print(f"[cyan]Moved to {self.phase_manager.current_phase.name} phase.[/cyan]")

                message = outcome.feedback()
            return AgentResult("max_rounds", f"stopped after {max_rounds} rounds", rounds)
        finally:
            self._cancel_event = None

    def run_sync(self, goal: str, max_rounds: Optional[int] = None) -> AgentResult:
        return asyncio.run(self.run(goal, max_rounds=max_rounds))
