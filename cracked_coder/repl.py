from __future__ import annotations
import asyncio
import logging
import signal
from typing import Optional

from rich.console import Console
from rich.table import Table

from .config import AgentConfig
from .phases import PHASE_EMOJIS
from .runtime import Agent, AgentResult

logger = logging.getLogger(__name__)

HELP = """
cracked-coder interactive session.
Describe a task and the agent works through discovery, strategy and execute.
Press Ctrl-C while the model is answering to cancel the request.

Commands:
  /help       Show this help
  /new        Start a new task with the next message
  /clear      Drop the conversation context
  /status     Show phase, model and context usage
  /quit       Exit
"""

console = Console()


class Session:
    def __init__(self, agent: Agent):
        self.agent = agent
        self.new_task = True

    async def _run(self, text: str) -> AgentResult:
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, self.agent.cancel)
            installed = True
        except (NotImplementedError, RuntimeError):
            # no signal handlers on this platform; Ctrl-C interrupts the loop instead
            installed = False
        try:
            return await self.agent.run(text, new_task=self.new_task)
        finally:
            if installed:
                loop.remove_signal_handler(signal.SIGINT)

    def step(self, text: str) -> AgentResult:
        result = asyncio.run(self._run(text))
        # a finished task means the next message starts a fresh one
        self.new_task = result.status == "completed"
        logger.info(f"Turn finished with status {result.status} after {result.rounds} rounds")
        return result

    def status(self) -> Table:
        agent = self.agent
        phase = agent.phase_manager.current_phase
        window = agent.model_manager.get_context_window()
        used = agent.context.get_total_tokens()
        table = Table(show_header=False, box=None)
        table.add_row("Phase", f"{PHASE_EMOJIS[phase]} {phase.value}")
        table.add_row("Model", agent.model_manager.current_model)
        table.add_row("Context", f"{used:,} / {window:,} tokens ({used / window * 100:.1f}%)")
        if agent.scaler.enabled:
            table.add_row("Write tries", str(agent.scaler.get_global_try_count()))
        return table

    def handle_command(self, raw: str) -> bool:
        """Run a slash command. Returns False when the session should end."""
        cmd = raw.strip().split()[0].lower()
        if cmd in ("/quit", "/exit"):
            return False
        if cmd == "/help":
            console.print(HELP)
        elif cmd == "/new":
            self.new_task = True
            console.print("[dim]Next message starts a new task.[/dim]")
        elif cmd == "/clear":
            self.agent.clear_context()
            self.new_task = True
            console.print("[dim]Context cleared.[/dim]")
        elif cmd == "/status":
            console.print(self.status())
        else:
            console.print(f"[yellow]Unknown command {cmd}. Type /help.[/yellow]")
        return True


def repl(config: AgentConfig, repo: str = ".", agent: Optional[Agent] = None):
    sess = Session(agent or Agent(config, repo, console=console))
    console.print(HELP)
    while True:
        try:
            text = console.input("[bold cyan]› [/bold cyan]")
        except (EOFError, KeyboardInterrupt):
            console.print()
            break
        if not text.strip():
            continue
        if text.startswith("/"):
            if not sess.handle_command(text):
                break
            continue
        sess.step(text)
