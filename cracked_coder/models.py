from __future__ import annotations
import logging
from typing import Optional

from .config import AgentConfig

logger = logging.getLogger(__name__)


class ModelManager:
    """Holds the model the next request goes to and answers context-window lookups."""

    def __init__(self, config: AgentConfig):
        self.config = config
        self.current_model: str = config.discovery_model

    def set_current_model(self, model_id: str) -> None:
        if model_id != self.current_model:
            logger.info(f"Switching model {self.current_model} -> {model_id}")
        self.current_model = model_id

    def get_context_window(self, model_id: Optional[str] = None) -> int:
        model_id = model_id or self.current_model
        return self.config.context_windows.get(model_id, self.config.default_context_window)
