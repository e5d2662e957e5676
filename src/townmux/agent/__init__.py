"""Agent lifecycle management."""

from .config import (
    AgentConfig,
    PromptChecker,
    ReadinessChecker,
    StartConfig,
    claude_config,
    from_preset,
    prepend_env_vars,
    preset_names,
)
from .double import AgentsDouble, AgentsStub
from .manager import AgentManager, Agents, ReadinessProbe

__all__ = [
    "AgentConfig",
    "AgentManager",
    "Agents",
    "AgentsDouble",
    "AgentsStub",
    "PromptChecker",
    "ReadinessChecker",
    "ReadinessProbe",
    "StartConfig",
    "claude_config",
    "from_preset",
    "prepend_env_vars",
    "preset_names",
]
