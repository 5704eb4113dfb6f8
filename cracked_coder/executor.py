from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from rich.console import Console

from .action_queue import ActionQueue, QueuedAction
from .context import ContextManager
from .planner import Action, ExecutionPlan
from .scaler import ModelScaler
from .tools import ActionRegistry, ActionResult

logger = logging.getLogger(__name__)


def _preview(value: Any, limit: int = 200) -> str:
    text = value if isinstance(value, str) else str(value)
    return text if len(text) <= limit else text[:limit] + "..."


def _format_files(files: dict) -> str:
    return "\n\n".join(f"# File: {path}\n```\n{content}\n```" for path, content in files.items())


def format_action_result(action_type: str, result: ActionResult) -> str:
    """Text fed back to the model for one action outcome."""
    if not result.success:
        hint = ""
        if action_type == "read_file":
            hint = " Try <search_file> to find the correct path."
        return f"[Action Result] {action_type}: Failed. Error: {result.error}{hint}"

    data = result.data
    if action_type == "execute_command":
        return "Command execution result: the output is included in the context above.\n\nPlease analyze this output and continue with the task."
    if action_type == "read_file":
        paths = ", ".join(data) if isinstance(data, dict) else str(data)
        return f"Here's the content of the requested file(s) {paths}; it is included in the context above."
    if action_type == "read_directory":
        return f"Here's the content of the requested directory:\n\n{_format_files(data or {})}"
    if action_type == "fetch_url":
        return f"Here's the content from the URL:\n\n{data}"
    if action_type == "end_task":
        return f"Task completed: {data}"
    if action_type == "end_phase":
        return data or "Phase completed. Moving to next phase."
    if action_type == "relative_path_lookup":
        return f"Found matching path: {data}"
    return f"[Action Result] {action_type}: {data}"


@dataclass
class RoundOutcome:
    results: list[tuple[Action, ActionResult]] = field(default_factory=list)
    failed: bool = False
    stalled: bool = False
    cancelled: bool = False
    end_task: bool = False
    message: Optional[str] = None
    selected_model: Optional[str] = None
    regenerate: bool = False

    def feedback(self) -> str:
        return "\n\n".join(format_action_result(a.type, r) for a, r in self.results)


class ActionExecutor:
    """Runs planned actions and records their outcomes in the conversation context."""

    def __init__(self, registry: ActionRegistry, queue: ActionQueue, context: ContextManager,
                 scaler: Optional[ModelScaler] = None, console: Optional[Console] = None):
        self.registry = registry
        self.queue = queue
        self.context = context
        self.scaler = scaler
        self.console = console or Console()

    async def execute_action(self, action: Action) -> ActionResult:
        params = self.registry.parse_params(action.type, action.content)
        error = self.registry.validate_params(action.type, params)
        if error:
            result = ActionResult(success=False, error=error)
        else:
            self.console.print(f"[dim]Running {action.type}...[/dim]")
            result = await self.registry.dispatch(action.type, params)

        self._record(action, params, result)
        if result.success:
            logger.info(f"Action {action.type} succeeded: {_preview(result.data)}")
            self.console.print(f"[green]{action.type}[/green] done")
        else:
            logger.info(f"Action {action.type} failed: {result.error}")
            self.console.print(f"[red]{action.type} failed:[/red] {result.error}")
        return result

    def _record(self, action: Action, params: dict, result: ActionResult) -> None:
        kind = action.type
        if kind == "read_file":
            paths = params.get("path") or []
            for path in paths:
                if result.success and isinstance(result.data, dict):
                    self.context.update_operation_result(kind, path, data=result.data.get(path), success=True)
                else:
                    self.context.update_operation_result(kind, path, success=False, error=result.error)
        elif kind == "write_file" and params.get("path"):
            path = params["path"]
            self.context.update_operation_result(kind, path, data=result.data if result.success else None,
                                                 success=result.success, error=result.error)
            if result.success and self.context.has_file_operation("read_file", path):
                # later reads of this file must see the new content
                self.context.update_operation_result("read_file", path, data=params.get("content"), success=True)
            if self.scaler is not None:
                self.scaler.increment_try_count(path)
        elif kind == "execute_command" and params.get("command"):
            self.context.update_operation_result(kind, params["command"], data=result.data if result.success else None,
                                                 success=result.success, error=result.error)

        if result.success:
            self.context.add_message("system", f"Action {kind} succeeded")
        else:
            self.context.add_message("system", f"Action {kind} failed: {result.error}")

    def _note(self, outcome: RoundOutcome, entry: QueuedAction, result: ActionResult) -> None:
        self.queue.set_result(entry, result)
        outcome.results.append((entry.action, result))
        if result.selected_model:
            outcome.selected_model = result.selected_model
        if result.regenerate:
            outcome.regenerate = True
        if entry.action.type == "end_task" and result.success:
            outcome.end_task = True
            outcome.message = result.data

    async def execute_plan(self, plan: ExecutionPlan, cancel_event: Optional[asyncio.Event] = None) -> RoundOutcome:
        outcome = RoundOutcome()
        for group in plan.groups:
            if cancel_event is not None and cancel_event.is_set():
                outcome.cancelled = True
                break

            for action in group.actions:
                self.queue.enqueue(action)

            results = []
            if group.parallel:
                batch = self.queue.pending()
                results = await asyncio.gather(*(self.execute_action(e.action) for e in batch))
                for e, r in zip(batch, results):
                    self._note(outcome, e, r)
            else:
                entry = self.queue.dequeue()
                while entry is not None:
                    r = await self.execute_action(entry.action)
                    self._note(outcome, entry, r)
                    results.append(r)
                    if not r.success:
                        break
                    entry = self.queue.dequeue()

            if cancel_event is not None and cancel_event.is_set():
                outcome.cancelled = True
                break
            if any(not r.success for r in results):
                outcome.failed = True
                outcome.stalled = self.queue.is_stalled()
                logger.info(f"Round stopped after a failed action, stalled={outcome.stalled}")
                break
            if outcome.regenerate:
                # the phase changed; actions written for the old phase are dropped
                logger.info("Phase changed mid-round, skipping the remaining groups")
                break

        self.queue.clear()
        return outcome
