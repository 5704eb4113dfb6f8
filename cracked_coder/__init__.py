from .config import AgentConfig, ModelTier, load_config
from .runtime import Agent, AgentResult

__all__ = ["AgentConfig", "ModelTier", "load_config", "Agent", "AgentResult"]
