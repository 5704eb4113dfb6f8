from __future__ import annotations
import logging

from .config import AgentConfig
from .models import ModelManager
from .phases import Phase, PhaseManager

logger = logging.getLogger(__name__)

# Writes to one file tolerated before the tier is reconsidered
MODEL_SCALING_INITIAL_TRY_COUNT = 2


class ModelScaler:
    """Escalates to stronger models as writes to the same files keep being retried.

    Counts only while auto-scaling is enabled and the Execute phase is active.
    """

    def __init__(self, config: AgentConfig, model_manager: ModelManager, phase_manager: PhaseManager):
        self.config = config
        self.model_manager = model_manager
        self.phase_manager = phase_manager
        self.try_counts: dict[str, int] = {}
        self.global_try_count = 0

    @property
    def enabled(self) -> bool:
        return bool(self.config.auto_scaler and self.config.auto_scale_available_models)

    def increment_try_count(self, path: str) -> None:
        if not self.enabled or self.phase_manager.current_phase != Phase.EXECUTE:
            return
        count = self.try_counts.get(path, 0) + 1
        self.try_counts[path] = count
        self.global_try_count += 1
        logger.debug(f"Try count for {path}: {count}, global {self.global_try_count}")

        if count > MODEL_SCALING_INITIAL_TRY_COUNT:
            max_tries = max(self.try_counts.values())
            model = self.get_model_for_try_count(max_tries, self.global_try_count)
            if model != self.model_manager.current_model:
                logger.info(f"Scaling model to {model} after {max_tries} tries (global {self.global_try_count})")
            self.model_manager.set_current_model(model)

    def get_model_for_try_count(self, try_count: int, global_tries: int) -> str:
        tiers = self.config.auto_scale_available_models
        cumulative = 0
        for tier in tiers:
            allowance = cumulative + tier.max_write_tries
            cumulative = allowance
            if try_count >= allowance or global_tries >= tier.max_global_tries:
                continue
            return tier.id
        return tiers[-1].id

    def get_try_count(self, path: str) -> int:
        if not self.enabled:
            return 0
        return self.try_counts.get(path, 0)

    def get_global_try_count(self) -> int:
        if not self.enabled:
            return 0
        return self.global_try_count

    def reset(self) -> None:
        self.try_counts.clear()
        self.global_try_count = 0
        self.model_manager.set_current_model(self.config.discovery_model)
