"""Agent runtime configuration: readiness, hooks, process hints, presets."""

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from functools import lru_cache
from pathlib import Path
from typing import Protocol, runtime_checkable

import yaml

from ..session.base import Sessions

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0

PRESETS_PATH = Path(__file__).parent / "presets.yaml"

# (sessions, session_id) -> None; raising signals failure
SessionCallback = Callable[[Sessions, str], None]


@runtime_checkable
class ReadinessChecker(Protocol):
    """Decides from captured pane output whether an agent accepts input."""

    def is_ready(self, output: str) -> bool: ...


@dataclass(frozen=True)
class PromptChecker:
    """Ready when the last non-empty line starts with ``prefix``."""

    prefix: str

    def is_ready(self, output: str) -> bool:
        for line in reversed(output.splitlines()):
            if line.strip():
                return line.startswith(self.prefix)
        return False


@dataclass
class AgentConfig:
    """How an agent manager treats the agents it runs.

    Attributes:
        checker: Readiness checker polled against pane output; without one
            the probe just sleeps ``startup_delay``.
        startup_delay: Seconds to wait when there is no checker.
        timeout: Readiness deadline in seconds (values <= 0 mean 30).
        startup_hook: Best-effort hook run by the probe, e.g. to dismiss dialogs.
        on_session_created: Run right after the session is created; raising
            aborts the start and removes the session.
        process_names: Foreground process names that count as "alive".
            Empty means session existence is enough.
        env_vars: Prepended to every start command as KEY=VALUE.
    """

    checker: ReadinessChecker | None = None
    startup_delay: float = 0.0
    timeout: float = DEFAULT_TIMEOUT
    startup_hook: SessionCallback | None = None
    on_session_created: SessionCallback | None = None
    process_names: list[str] = field(default_factory=list)
    env_vars: dict[str, str] = field(default_factory=dict)

    @property
    def effective_timeout(self) -> float:
        return self.timeout if self.timeout > 0 else DEFAULT_TIMEOUT

    def with_env_vars(self, env: Mapping[str, str]) -> "AgentConfig":
        """Return a copy with ``env`` merged over the configured env vars."""
        return replace(self, env_vars={**self.env_vars, **env})


@dataclass
class StartConfig:
    """Per-start configuration for :meth:`AgentManager.start_with_config`.

    ``env_vars`` are merged over the manager-level ones (these win) and
    ``on_created`` runs after the manager-level ``on_session_created``.
    """

    work_dir: str
    command: str
    env_vars: dict[str, str] = field(default_factory=dict)
    on_created: SessionCallback | None = None


def prepend_env_vars(env_vars: Mapping[str, str], command: str) -> str:
    """Return ``"K1=V1 K2=V2 command"`` with keys sorted.

    The command is returned untouched when ``env_vars`` is empty.
    """
    if not env_vars:
        return command
    assignments = " ".join(f"{k}={env_vars[k]}" for k in sorted(env_vars))
    return f"{assignments} {command}"


@lru_cache(maxsize=1)
def _load_presets() -> dict:
    """Load the runtime preset table.

    Raises:
        FileNotFoundError: If the presets file is missing
        ValueError: If YAML parsing fails
    """
    if not PRESETS_PATH.exists():
        raise FileNotFoundError(f"Agent presets file not found: {PRESETS_PATH}")

    try:
        with open(PRESETS_PATH) as f:
            presets = yaml.safe_load(f) or {}
        logger.debug(f"Loaded agent presets from {PRESETS_PATH}")
        return presets
    except yaml.YAMLError as e:
        raise ValueError(f"Failed to parse agent presets YAML: {e}") from e


def preset_names() -> list[str]:
    return sorted(_load_presets())


def from_preset(name: str) -> AgentConfig:
    """Build an AgentConfig from a named runtime preset.

    Raises:
        ValueError: If the preset is unknown.
    """
    presets = _load_presets()
    if name not in presets:
        available = ", ".join(sorted(presets))
        raise ValueError(f"Unknown agent preset '{name}'. Available presets: {available}")

    preset = presets[name] or {}
    prefix = preset.get("ready_prompt_prefix")
    return AgentConfig(
        checker=PromptChecker(prefix) if prefix else None,
        startup_delay=float(preset.get("startup_delay", 0)),
        timeout=float(preset.get("ready_timeout", DEFAULT_TIMEOUT)),
        process_names=list(preset.get("process_names") or []),
    )


def claude_config() -> AgentConfig:
    """Config for Claude Code agents (zombie filtering and prompt readiness)."""
    return from_preset("claude")
