from __future__ import annotations
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, TYPE_CHECKING

from .config import AgentConfig
from .errors import PhaseError
from .models import ModelManager
from .tools import ActionResult
from . import prompts

if TYPE_CHECKING:
    from .context import ContextManager

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    DISCOVERY = "discovery"
    STRATEGY = "strategy"
    EXECUTE = "execute"


PHASE_ORDER = [Phase.DISCOVERY, Phase.STRATEGY, Phase.EXECUTE]

PHASE_EMOJIS = {
    Phase.DISCOVERY: "🔍",
    Phase.STRATEGY: "🎯",
    Phase.EXECUTE: "⚡",
}


@dataclass
class PhaseConfig:
    phase: Phase
    model: str
    generate_prompt: Callable[[AgentConfig], str]


class PhaseManager:
    """Forward-only Discovery -> Strategy -> Execute cycle.

    Each phase binds a model and an instruction template. Every transition
    pushes the new phase's model to the model manager. Execute is terminal
    until reset() starts a new task.
    """

    def __init__(self, config: AgentConfig, model_manager: ModelManager):
        self.config = config
        self.model_manager = model_manager
        self.current_phase: Phase = Phase.DISCOVERY
        self._configs: dict[Phase, PhaseConfig] = {}

    @property
    def initialized(self) -> bool:
        return bool(self._configs)

    def initialize_phase_configs(self) -> None:
        self._configs = {
            Phase.DISCOVERY: PhaseConfig(Phase.DISCOVERY, self.config.discovery_model, prompts.discovery_prompt),
            Phase.STRATEGY: PhaseConfig(Phase.STRATEGY, self.config.strategy_model, prompts.strategy_prompt),
            Phase.EXECUTE: PhaseConfig(Phase.EXECUTE, self.config.execute_model, prompts.execute_prompt),
        }
        self.current_phase = Phase.DISCOVERY
        self.model_manager.set_current_model(self._configs[Phase.DISCOVERY].model)

    def get_phase_config(self, phase: Phase) -> PhaseConfig:
        if not self._configs:
            raise PhaseError("Phase configurations are not initialized")
        return self._configs[phase]

    def get_current_phase_config(self) -> PhaseConfig:
        return self.get_phase_config(self.current_phase)

    def generate_prompt(self, phase: Optional[Phase] = None) -> str:
        cfg = self.get_phase_config(phase or self.current_phase)
        return cfg.generate_prompt(self.config)

    def advance(self) -> Phase:
        """Step forward one phase. A no-op in Execute."""
        cfg = self.get_current_phase_config()
        idx = PHASE_ORDER.index(self.current_phase)
        if idx < len(PHASE_ORDER) - 1:
            self.current_phase = PHASE_ORDER[idx + 1]
            cfg = self.get_current_phase_config()
            logger.info(f"Phase advanced to {self.current_phase.value}")
        self.model_manager.set_current_model(cfg.model)
        return self.current_phase

    def reset(self) -> None:
        self.current_phase = Phase.DISCOVERY
        if self._configs:
            self.model_manager.set_current_model(self._configs[Phase.DISCOVERY].model)
        logger.info("Phase reset to discovery")


class PhaseTransitionService:
    """Carries out <end_phase>: drop old instructions, advance, announce, regenerate."""

    def __init__(self, phase_manager: PhaseManager, context: "ContextManager", model_manager: ModelManager):
        self.phase_manager = phase_manager
        self.context = context
        self.model_manager = model_manager

    async def transition_to_next_phase(self, params: Optional[dict] = None) -> ActionResult:
        previous = self.phase_manager.current_phase
        self.context.cleanup_phase_content()
        next_phase = self.phase_manager.advance()
        model = self.phase_manager.get_current_phase_config().model
        self.model_manager.set_current_model(model)
        self.context.add_message("system", f"Current phase is {next_phase.value}")
        if next_phase == previous:
            logger.info(f"Already in final phase {next_phase.value}")
        return ActionResult(
            success=True,
            data=self.phase_manager.generate_prompt(),
            selected_model=model,
            regenerate=True,
        )
