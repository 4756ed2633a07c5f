"""Shared AgentFlow configuration utilities.

Centralises reading of ~/.agentflow/configuration.json so the CLI, the
runners and the LLM provider share one implementation.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_MAX_TOKENS = 2048

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

AGENTFLOW_CONFIG_FILE = Path.home() / ".agentflow" / "configuration.json"


def get_agentflow_config() -> dict[str, Any]:
    """Load configuration from ~/.agentflow/configuration.json."""
    if not AGENTFLOW_CONFIG_FILE.exists():
        return {}
    try:
        with open(AGENTFLOW_CONFIG_FILE, encoding="utf-8-sig") as f:
            return json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def get_preferred_model() -> str:
    """Return the preferred model string in litellm form (e.g. 'openai/gpt-4o-mini')."""
    llm = get_agentflow_config().get("llm", {})
    if llm.get("provider") and llm.get("model"):
        return f"{llm['provider']}/{llm['model']}"
    return llm.get("model") or DEFAULT_MODEL


def get_max_tokens() -> int:
    return get_agentflow_config().get("llm", {}).get("max_tokens", DEFAULT_MAX_TOKENS)


def get_api_key() -> str | None:
    """Return the API key from the environment variable specified in configuration."""
    llm = get_agentflow_config().get("llm", {})
    api_key_env_var = llm.get("api_key_env_var")
    if api_key_env_var:
        return os.environ.get(api_key_env_var)
    return None


def get_use_simulators() -> bool:
    """Whether tool agents should always use the simulation providers.

    ``AGENTFLOW_USE_SIMULATORS`` overrides the ``use_simulators`` config key.
    """
    env = os.getenv("AGENTFLOW_USE_SIMULATORS")
    if env is not None:
        return env.strip().lower() in ("1", "true", "yes", "on")
    return bool(get_agentflow_config().get("use_simulators", False))


def get_visual_delay_ms() -> int:
    return int(get_agentflow_config().get("visual_delay_ms", 0))


def get_history_dir() -> Path:
    configured = get_agentflow_config().get("history_dir")
    if configured:
        return Path(configured).expanduser()
    return Path.home() / ".agentflow" / "runs"


# ---------------------------------------------------------------------------
# RuntimeConfig
# ---------------------------------------------------------------------------


@dataclass
class RuntimeConfig:
    """Engine configuration loaded from ~/.agentflow/configuration.json."""

    model: str = field(default_factory=get_preferred_model)
    temperature: float = 0.7
    max_tokens: int = field(default_factory=get_max_tokens)
    api_key: str | None = field(default_factory=get_api_key)
    api_base: str | None = None
    use_simulators: bool = field(default_factory=get_use_simulators)
    visual_delay_ms: int = field(default_factory=get_visual_delay_ms)
    history_dir: Path = field(default_factory=get_history_dir)
