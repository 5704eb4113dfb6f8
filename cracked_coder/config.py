from __future__ import annotations
import json
import logging
import os
from dataclasses import dataclass, field, asdict
from typing import Optional

from .errors import ConfigError

CONFIG_FILENAME = "crkdrc.json"
DEBUG_LOG_FILENAME = "cracked_debug.log"

PROVIDERS = {
    "open-router": "https://openrouter.ai/api/v1",
    "openai": "https://api.openai.com/v1",
    "anthropic": "https://api.anthropic.com",
}

API_KEY_ENV = {
    "open-router": "OPENROUTER_API_KEY",
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}


@dataclass
class ModelTier:
    id: str
    max_write_tries: int
    max_global_tries: int
    description: str = ""


# Ordered cheapest first; the scaler walks them in this order
DEFAULT_MODEL_TIERS = [
    ModelTier(id="qwen/qwen-2.5-coder-32b-instruct", max_write_tries=5, max_global_tries=10,
              description="Cheap model for initial attempts"),
    ModelTier(id="anthropic/claude-3.5-sonnet:beta", max_write_tries=5, max_global_tries=15,
              description="Stronger model once writes keep failing"),
    ModelTier(id="openai/gpt-4o-2024-11-20", max_write_tries=2, max_global_tries=20,
              description="Last resort for stubborn files"),
]

CONTEXT_WINDOWS = {
    "qwen/qwen-2.5-coder-32b-instruct": 32768,
    "anthropic/claude-3.5-sonnet:beta": 200000,
    "anthropic/claude-3.5-sonnet": 200000,
    "openai/gpt-4o-2024-11-20": 128000,
    "openai/gpt-4o-mini": 128000,
}

DEFAULT_LOCK_FILES = [
    "package-lock.json", "yarn.lock", "pnpm-lock.yaml", "poetry.lock",
    "Pipfile.lock", "Cargo.lock", "go.sum", "composer.lock",
]


@dataclass
class DirectoryScannerConfig:
    max_depth: int = 4
    ignore: list[str] = field(default_factory=lambda: [
        ".git", "node_modules", ".venv", "venv", "__pycache__", "dist", "build", "coverage",
    ])


@dataclass
class AgentConfig:
    provider: str = "open-router"
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    discovery_model: str = "qwen/qwen-2.5-coder-32b-instruct"
    strategy_model: str = "qwen/qwen-2.5-coder-32b-instruct"
    execute_model: str = "anthropic/claude-3.5-sonnet:beta"
    auto_scaler: bool = False
    auto_scale_available_models: list[ModelTier] = field(default_factory=lambda: list(DEFAULT_MODEL_TIERS))
    context_windows: dict[str, int] = field(default_factory=lambda: dict(CONTEXT_WINDOWS))
    default_context_window: int = 128000
    stream: bool = True
    stream_timeout: float = 10.0
    max_rounds: int = 50
    temperature: float = 0.0
    max_tokens: int = 8192
    run_all_tests_cmd: str = "yarn test"
    run_one_test_cmd: str = "yarn test {relativeTestPath}"
    run_type_check_cmd: str = "yarn tsc"
    custom_instructions: str = ""
    custom_instructions_path: str = ""
    project_language: str = "typescript"
    package_manager: str = "yarn"
    directory_scanner: DirectoryScannerConfig = field(default_factory=DirectoryScannerConfig)
    lock_files: list[str] = field(default_factory=lambda: list(DEFAULT_LOCK_FILES))
    command_timeout: int = 300
    debug: bool = False
    log_directory: str = "logs"

    def resolved_base_url(self) -> str:
        return self.base_url or PROVIDERS[self.provider]

    def resolved_api_key(self) -> Optional[str]:
        return self.api_key or os.environ.get(API_KEY_ENV.get(self.provider, ""))

    def load_custom_instructions(self, repo: str = ".") -> str:
        """Inline instructions plus the contents of custom_instructions_path, if any."""
        parts = [self.custom_instructions.strip()] if self.custom_instructions.strip() else []
        if self.custom_instructions_path:
            path = os.path.join(repo, self.custom_instructions_path)
            if not os.path.exists(path):
                raise ConfigError(f"custom instructions file not found: {self.custom_instructions_path}")
            with open(path, "r", encoding="utf-8") as f:
                parts.append(f.read().strip())
        return "\n\n".join(parts)


_CAMEL_KEYS = {
    "discoveryModel": "discovery_model",
    "strategyModel": "strategy_model",
    "executeModel": "execute_model",
    "autoScaler": "auto_scaler",
    "autoScaleAvailableModels": "auto_scale_available_models",
    "runAllTestsCmd": "run_all_tests_cmd",
    "runOneTestCmd": "run_one_test_cmd",
    "runTypeCheckCmd": "run_type_check_cmd",
    "customInstructions": "custom_instructions",
    "customInstructionsPath": "custom_instructions_path",
    "projectLanguage": "project_language",
    "packageManager": "package_manager",
    "logDirectory": "log_directory",
    "contextWindows": "context_windows",
    "defaultContextWindow": "default_context_window",
    "streamTimeout": "stream_timeout",
    "maxRounds": "max_rounds",
    "maxTokens": "max_tokens",
    "commandTimeout": "command_timeout",
    "lockFiles": "lock_files",
    "apiKey": "api_key",
    "baseUrl": "base_url",
}


def _tier_from_dict(raw: dict) -> ModelTier:
    try:
        return ModelTier(
            id=raw["id"],
            max_write_tries=int(raw.get("maxWriteTries", raw.get("max_write_tries"))),
            max_global_tries=int(raw.get("maxGlobalTries", raw.get("max_global_tries"))),
            description=raw.get("description", ""),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigError(f"invalid model tier {raw!r}: {e}") from e


def config_from_dict(raw: dict) -> AgentConfig:
    """Build an AgentConfig from a crkdrc-style mapping. Accepts camelCase or snake_case keys."""
    known = set(AgentConfig.__dataclass_fields__)
    kwargs = {}
    for key, value in raw.items():
        name = _CAMEL_KEYS.get(key, key)
        if name == "directoryScanner":
            name = "directory_scanner"
        if name == "gitDiff" and isinstance(value, dict):
            kwargs["lock_files"] = list(value.get("lockFiles", DEFAULT_LOCK_FILES))
            continue
        if name not in known:
            continue
        kwargs[name] = value

    if "auto_scale_available_models" in kwargs:
        kwargs["auto_scale_available_models"] = [
            t if isinstance(t, ModelTier) else _tier_from_dict(t)
            for t in kwargs["auto_scale_available_models"]
        ]
    if isinstance(kwargs.get("directory_scanner"), dict):
        ds = kwargs["directory_scanner"]
        kwargs["directory_scanner"] = DirectoryScannerConfig(
            max_depth=int(ds.get("maxDepth", ds.get("max_depth", 4))),
            ignore=list(ds.get("ignore", DirectoryScannerConfig().ignore)),
        )
    if isinstance(kwargs.get("context_windows"), dict):
        merged = dict(CONTEXT_WINDOWS)
        merged.update(kwargs["context_windows"])
        kwargs["context_windows"] = merged

    config = AgentConfig(**kwargs)
    validate_config(config)
    return config


def validate_config(config: AgentConfig) -> None:
    if config.provider not in PROVIDERS:
        raise ConfigError(f"unknown provider '{config.provider}', expected one of {', '.join(PROVIDERS)}")
    for name in ("discovery_model", "strategy_model", "execute_model"):
        if not getattr(config, name):
            raise ConfigError(f"missing model: {name}")
    if config.auto_scaler and not config.auto_scale_available_models:
        raise ConfigError("autoScaler is enabled but autoScaleAvailableModels is empty")
    for tier in config.auto_scale_available_models:
        if tier.max_write_tries < 0 or tier.max_global_tries < 0:
            raise ConfigError(f"model tier {tier.id} has negative try limits")
    if config.stream_timeout <= 0:
        raise ConfigError("stream_timeout must be positive")


def load_config(path: Optional[str] = None) -> AgentConfig:
    """Load crkdrc.json from path (or the working directory). Missing file means defaults."""
    path = path or os.path.join(os.getcwd(), CONFIG_FILENAME)
    if not os.path.exists(path):
        config = AgentConfig()
        validate_config(config)
        return config
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"could not parse {path}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"{path} must contain a JSON object")
    return config_from_dict(raw)


def write_default_config(path: str) -> str:
    config = AgentConfig()
    data = asdict(config)
    data.pop("api_key", None)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
    return path


def setup_logging(debug: bool = False, log_directory: Optional[str] = None) -> logging.Logger:
    """Attach the debug file handler to the package logger when debugging is on."""
    logger = logging.getLogger("cracked_coder")
    logger.setLevel(logging.DEBUG if debug else logging.WARNING)
    if debug and not any(isinstance(h, logging.FileHandler) for h in logger.handlers):
        directory = log_directory or os.getcwd()
        os.makedirs(directory, exist_ok=True)
        handler = logging.FileHandler(os.path.join(directory, DEBUG_LOG_FILENAME), mode='w')
        handler.setLevel(logging.DEBUG)
        formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(message)s')
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    return logger
